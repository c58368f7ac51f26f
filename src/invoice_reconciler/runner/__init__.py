"""
CLI runner module.

Provides commands:
- scan: Scan Drive, extract and match new invoices
- invoices: List cached invoices
- match / unmatch / link: Manual reconciliation
- stats: Match coverage
- map-folder: Per-year invoice folder mapping
- init-config: Write a default config file
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]

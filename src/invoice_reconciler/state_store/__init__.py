"""
State Store (SQLite-based).

Lightweight persistent DB for tracking:
- Cached invoices per scope (one row per remote file)
- Bank transactions available for matching
- Folder mappings

Enforces uniqueness on (scope, remote file id).
"""

from .sqlite_store import StateStore

__all__ = [
    "StateStore",
]

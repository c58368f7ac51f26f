"""
SSOT (Single Source of Truth) schemas for the reconciler.

These canonical schemas are the ONLY models used across all modules.
"""

from .invoice import (
    CachedInvoiceRecord,
    ExtractedInvoice,
    ExtractionMethod,
    InvoiceFields,
    InvoiceStats,
    Scope,
    TransactionCandidate,
)

__all__ = [
    "CachedInvoiceRecord",
    "ExtractedInvoice",
    "ExtractionMethod",
    "InvoiceFields",
    "InvoiceStats",
    "Scope",
    "TransactionCandidate",
]

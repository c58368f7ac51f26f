"""
Drive scan → Invoice extraction → Bank transaction reconciliation

Discovers invoice files in a remote file store, extracts financial metadata
through a degrading multi-tier pipeline (filename, PDF text layer, local OCR,
remote OCR) and matches each invoice to a recorded bank transaction with a
multi-signal score. Results are cached per scope so scans are idempotent.
"""

__version__ = "0.1.0"

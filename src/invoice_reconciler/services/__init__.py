"""
Scan services.

- DriveFileLister: bounded folder recursion + paginated file listing
- ScanService: background scan jobs (lister → pipeline → matching → cache)
- JobRegistry / JobJanitor: in-memory job state and its periodic sweep
"""

from .file_lister import DriveFileLister
from .scan_jobs import JobJanitor, JobRegistry, ScanJob, ScanStatus
from .scan_service import ScanOptions, ScanService, ScanSetupError

__all__ = [
    "DriveFileLister",
    "JobJanitor",
    "JobRegistry",
    "ScanJob",
    "ScanOptions",
    "ScanService",
    "ScanSetupError",
    "ScanStatus",
]

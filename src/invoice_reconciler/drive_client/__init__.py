"""
Google Drive API Client.

Provides:
- List subfolders and invoice candidate files (paginated)
- Download file contents
- Server-side OCR via temporary document copies
- Retry/backoff for transient network failures

Token issuance and refresh are out of scope; a valid bearer token is given.
"""

from .client import (
    DriveAPIError,
    DriveClient,
    DriveConnectionError,
    DriveError,
    RemoteFile,
)

__all__ = [
    "DriveAPIError",
    "DriveClient",
    "DriveConnectionError",
    "DriveError",
    "RemoteFile",
]

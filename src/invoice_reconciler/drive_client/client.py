"""
Google Drive v3 API client implementation.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
DOCUMENT_MIME_TYPE = "application/vnd.google-apps.document"


class DriveError(Exception):
    """Base exception for Drive client errors."""
    pass


class DriveAPIError(DriveError):
    """API returned an error response."""
    def __init__(self, status_code: int, message: str, response_body: Optional[str] = None):
        self.status_code = status_code
        self.message = message
        self.response_body = response_body
        super().__init__(f"Drive API error {status_code}: {message}")


class DriveConnectionError(DriveError):
    """Failed to connect to Drive."""
    pass


@dataclass
class RemoteFile:
    """Read-only view of one document in the remote store."""
    id: str
    name: str
    modified_time: str  # RFC 3339, e.g. "2026-03-12T09:30:00.000Z"

    @property
    def modified_date(self) -> Optional[str]:
        """Last-modified calendar date (YYYY-MM-DD)."""
        return self.modified_time[:10] if self.modified_time else None

    @classmethod
    def from_api_response(cls, data: dict) -> "RemoteFile":
        """Create from a Drive files resource."""
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            modified_time=data.get("modifiedTime", ""),
        )


class DriveClient:
    """
    Client for the Google Drive v3 API.

    Features:
    - List subfolders and files (query + continuation token)
    - Download file contents
    - Server-side document recognition (copy as Google Doc, export text)
    - Automatic retry with backoff on idempotent requests

    The access token is issued and refreshed elsewhere.
    """

    DEFAULT_TIMEOUT = 30
    DEFAULT_PAGE_SIZE = 200
    FOLDER_PAGE_SIZE = 100

    def __init__(
        self,
        base_url: str,
        token: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize Drive client.

        Args:
            base_url: API root (e.g., "https://www.googleapis.com/drive/v3")
            token: OAuth access token
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

        # Configure session with retry
        self.session = requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        })

        # Copies are not idempotent: only GET and DELETE are retried
        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET", "DELETE"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[dict] = None,
        json_data: Optional[dict] = None,
    ) -> requests.Response:
        """Make an API request with error handling."""
        url = f"{self.base_url}{endpoint}"

        try:
            response = self.session.request(
                method=method,
                url=url,
                params=params,
                json=json_data,
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise DriveConnectionError(f"Failed to connect to Drive at {self.base_url}: {e}")
        except requests.exceptions.Timeout as e:
            raise DriveConnectionError(f"Request to Drive timed out: {e}")
        except requests.exceptions.RequestException as e:
            raise DriveError(f"Request failed: {e}")

        if not response.ok:
            raise DriveAPIError(
                status_code=response.status_code,
                message=response.reason,
                response_body=response.text,
            )

        return response

    def test_connection(self) -> bool:
        """Test connection and token validity."""
        try:
            self._request("GET", "/about", params={"fields": "user"})
            return True
        except DriveError as e:
            logger.warning(f"Drive connection test failed: {e}")
            return False

    def list_folders(self, parent_id: str) -> list[dict[str, str]]:
        """
        List the direct, non-trashed subfolders of a folder.

        Args:
            parent_id: Folder ID

        Returns:
            List of {"id", "name"} dicts
        """
        params: dict[str, Any] = {
            "q": f"mimeType='{FOLDER_MIME_TYPE}' and '{parent_id}' in parents and trashed=false",
            "fields": "nextPageToken,files(id,name)",
            "pageSize": self.FOLDER_PAGE_SIZE,
        }

        folders: list[dict[str, str]] = []
        while True:
            data = self._request("GET", "/files", params=params).json()
            folders.extend(
                {"id": f["id"], "name": f.get("name", "")} for f in data.get("files", [])
            )
            page_token = data.get("nextPageToken")
            if not page_token:
                break
            params["pageToken"] = page_token
        return folders

    def list_files(
        self,
        query: str,
        page_token: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        order_by: str = "modifiedTime desc",
    ) -> tuple[list[RemoteFile], Optional[str]]:
        """
        Fetch one page of files matching a Drive query.

        Args:
            query: Drive search query (``q`` parameter)
            page_token: Continuation token from the previous page
            page_size: Results per page
            order_by: Sort order

        Returns:
            Tuple of (files, next_page_token or None)
        """
        params: dict[str, Any] = {
            "q": query,
            "fields": "nextPageToken,files(id,name,modifiedTime)",
            "orderBy": order_by,
            "pageSize": page_size,
        }
        if page_token:
            params["pageToken"] = page_token

        data = self._request("GET", "/files", params=params).json()
        files = [RemoteFile.from_api_response(f) for f in data.get("files", [])]
        return files, data.get("nextPageToken")

    def download(self, file_id: str) -> bytes:
        """Download a file's raw contents."""
        response = self._request("GET", f"/files/{file_id}", params={"alt": "media"})
        return response.content

    def copy_as_document(self, file_id: str, name: str = "_ocr_temp") -> str:
        """
        Copy a file as a Google Doc, which runs Drive's built-in OCR.

        The copy is a real file in the user's Drive; the caller must delete it.

        Returns:
            ID of the temporary copy
        """
        response = self._request(
            "POST",
            f"/files/{file_id}/copy",
            json_data={"mimeType": DOCUMENT_MIME_TYPE, "name": name},
        )
        return response.json()["id"]

    def export_text(self, file_id: str) -> str:
        """Export a Google Doc as plain text."""
        response = self._request(
            "GET", f"/files/{file_id}/export", params={"mimeType": "text/plain"}
        )
        return response.text

    def delete(self, file_id: str) -> None:
        """Permanently delete a file."""
        self._request("DELETE", f"/files/{file_id}")

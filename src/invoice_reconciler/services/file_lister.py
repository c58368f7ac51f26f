"""
Drive file lister - enumerates invoice candidate files under a folder tree.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..drive_client import DriveError

if TYPE_CHECKING:
    from ..drive_client import DriveClient, RemoteFile

logger = logging.getLogger(__name__)


class DriveFileLister:
    """
    Lists candidate files across a folder and its subfolders.

    - Folder expansion recurses with an explicit depth bound and visits each
      folder once per call (Drive folders may have several parents); a
      folder that cannot be listed contributes only the ids collected so far.
    - Files are listed with one query covering every collected folder,
      most recently modified first, following continuation tokens up to
      ``max_files``.

    Nothing is retained between calls.
    """

    def __init__(
        self,
        client: DriveClient,
        max_depth: int = 5,
        max_files: int = 1000,
        page_size: int = 200,
    ):
        self.client = client
        self.max_depth = max_depth
        self.max_files = max_files
        self.page_size = page_size

    def collect_folder_ids(
        self,
        root_id: str,
        depth: int = 0,
        seen: Optional[set[str]] = None,
    ) -> list[str]:
        """
        Return ``root_id`` followed by every descendant folder id, each once.

        Folders ``max_depth`` levels below the root are included but not
        expanded further. ``seen`` is shared across the recursion of one call.
        """
        if seen is None:
            seen = set()
        seen.add(root_id)
        if depth >= self.max_depth:
            return [root_id]

        try:
            subfolders = self.client.list_folders(root_id)
        except DriveError as e:
            logger.warning(f"Could not list subfolders of {root_id}: {e}")
            return [root_id]

        ids = [root_id]
        for folder in subfolders:
            if folder["id"] in seen:
                continue
            ids.extend(self.collect_folder_ids(folder["id"], depth + 1, seen))
        return ids

    def build_query(self, file_filter: str, folder_ids: Optional[list[str]]) -> str:
        """Drive query for non-trashed files matching the filter, in any of the folders."""
        query = f"{file_filter} and trashed=false"
        if folder_ids:
            parents = " or ".join(f"'{folder_id}' in parents" for folder_id in folder_ids)
            query += f" and ({parents})"
        return query

    def list_candidate_files(
        self,
        root_folder_id: Optional[str],
        file_filter: str = "mimeType='application/pdf'",
    ) -> list[RemoteFile]:
        """
        List candidate files, newest first.

        Args:
            root_folder_id: Folder to scan, or None for the whole drive
            file_filter: Drive query fragment selecting candidate files

        Returns:
            Up to ``max_files`` files

        Raises:
            DriveError: If the first page of files cannot be listed
        """
        folder_ids = self.collect_folder_ids(root_folder_id) if root_folder_id else None
        if folder_ids:
            logger.info(f"Scanning {len(folder_ids)} folder(s) under {root_folder_id}")

        query = self.build_query(file_filter, folder_ids)
        files: list[RemoteFile] = []
        page_token: Optional[str] = None
        first_page = True

        while True:
            try:
                page, page_token = self.client.list_files(
                    query, page_token=page_token, page_size=self.page_size
                )
            except DriveError as e:
                if first_page:
                    raise
                logger.warning(f"File listing stopped after {len(files)} files: {e}")
                break

            first_page = False
            files.extend(page)
            if not page_token or len(files) >= self.max_files:
                break

        return files[: self.max_files]

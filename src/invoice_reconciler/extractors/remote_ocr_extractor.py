"""
Remote OCR tier (last resort).

Drive converts a copy of the PDF into a Google Doc, recognizing its text on
the way; the text is exported and the temporary copy deleted.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from ..schemas import ExtractionMethod, InvoiceFields
from .base import BaseExtractor, ExtractionContext, ExtractionResult
from .text_parser import TextParser

if TYPE_CHECKING:
    from ..drive_client import DriveClient

logger = logging.getLogger(__name__)

TEMP_COPY_NAME = "_ocr_temp"


class RemoteOCRExtractor(BaseExtractor):
    """OCR through the remote store's document conversion."""

    def __init__(self, client: DriveClient, parser: TextParser, min_chars: int = 20):
        self.client = client
        self.parser = parser
        self.min_chars = min_chars

    @property
    def method(self) -> ExtractionMethod:
        return ExtractionMethod.REMOTE_OCR

    def recognize(self, file_id: str) -> str:
        """
        Copy as document, export its text, delete the copy.

        The copy is deleted on every exit path once it exists; a failed
        delete is logged and does not hide the export result.
        """
        temp_id = self.client.copy_as_document(file_id, name=TEMP_COPY_NAME)
        try:
            return self.client.export_text(temp_id)
        finally:
            try:
                self.client.delete(temp_id)
            except Exception as e:
                logger.error(f"Failed to delete temporary OCR copy {temp_id}: {e}")

    def attempt(self, context: ExtractionContext) -> ExtractionResult:
        if not context.file_id:
            return ExtractionResult(method=self.method, skipped_reason="no remote file id")

        try:
            text = self.recognize(context.file_id)
        except Exception as e:
            logger.warning(f"Remote OCR failed for {context.filename}: {e}")
            return ExtractionResult(method=self.method, skipped_reason=f"remote OCR failed: {e}")

        result = ExtractionResult(method=self.method, text=text)
        if result.text_length > self.min_chars:
            result.fields = self.parser.parse(text)
        else:
            result.skipped_reason = f"exported text too short ({result.text_length} chars)"
        return result

    def accepts(self, result: ExtractionResult) -> bool:
        return result.text_length > self.min_chars

    def is_sufficient(self, result: ExtractionResult, merged: InvoiceFields) -> bool:
        return True

"""
Extraction pipeline - folds the extraction tiers over one file.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from ..schemas import ExtractedInvoice, ExtractionMethod, InvoiceFields
from .base import BaseExtractor, ExtractionContext
from .filename_extractor import FilenameExtractor
from .local_ocr import TesseractOCR
from .local_ocr_extractor import LocalOCRExtractor
from .remote_ocr_extractor import RemoteOCRExtractor
from .text_layer_extractor import TextLayerExtractor
from .text_parser import TextParser

if TYPE_CHECKING:
    from ..config import ExtractionConfig
    from ..drive_client import DriveClient

logger = logging.getLogger(__name__)


class ExtractionPipeline:
    """
    Runs extraction tiers in order over one file's bytes.

    Default order:
    1. Filename heuristics - seeds defaults, never sufficient on its own
    2. PDF text layer
    3. Local OCR - skipped when Tesseract/Poppler are not installed
    4. Remote OCR - last resort through the file store

    Each accepted tier's fields override the fields gathered so far, so
    filename-derived values survive wherever a later tier found nothing.
    The first accepted tier whose early-exit predicate holds ends the run.
    ``extraction_method`` is the last accepted tier.
    """

    def __init__(self, extractors: list[BaseExtractor]):
        self.extractors = extractors

    @classmethod
    def from_config(
        cls,
        config: ExtractionConfig,
        client: Optional[DriveClient] = None,
        parser: Optional[TextParser] = None,
    ) -> ExtractionPipeline:
        """Build the default four-tier pipeline."""
        parser = parser or TextParser()
        extractors: list[BaseExtractor] = [
            FilenameExtractor(),
            TextLayerExtractor(parser, min_chars=config.text_layer_min_chars),
        ]
        if config.local_ocr_enabled:
            ocr = TesseractOCR(
                languages=config.ocr_languages,
                dpi=config.ocr_dpi,
                timeout=config.ocr_timeout_seconds,
            )
            extractors.append(LocalOCRExtractor(ocr, parser, min_chars=config.local_ocr_min_chars))
        if config.remote_ocr_enabled and client is not None:
            extractors.append(
                RemoteOCRExtractor(client, parser, min_chars=config.remote_ocr_min_chars)
            )
        return cls(extractors)

    def extract(
        self,
        filename: str,
        file_bytes: bytes,
        file_id: Optional[str] = None,
    ) -> ExtractedInvoice:
        """
        Extract invoice fields from one file. Never raises.

        Args:
            filename: Remote file name (feeds the filename tier)
            file_bytes: File contents
            file_id: Remote file id (needed by the remote OCR tier)

        Returns:
            ExtractedInvoice with extraction_method always set
        """
        context = ExtractionContext(filename=filename, file_bytes=file_bytes, file_id=file_id)

        merged = InvoiceFields()
        method = ExtractionMethod.FILENAME
        raw_text: Optional[str] = None

        for extractor in self.extractors:
            if not extractor.is_available():
                logger.debug(f"{filename}: {extractor.name} not available, skipping")
                continue

            try:
                result = extractor.attempt(context)
            except Exception:
                logger.exception(f"{filename}: {extractor.name} raised, skipping tier")
                continue

            if not extractor.accepts(result):
                logger.debug(f"{filename}: {extractor.name} fell through ({result.skipped_reason})")
                continue

            merged = merged.merged_with(result.fields)
            method = extractor.method
            if result.text:
                raw_text = result.text

            if extractor.is_sufficient(result, merged):
                logger.debug(f"{filename}: accepted {extractor.name}")
                break

        return ExtractedInvoice.from_fields(merged, method, raw_text=raw_text)

"""
Local OCR tier.
"""

import logging
import tempfile
from pathlib import Path

from ..schemas import ExtractionMethod, InvoiceFields
from .base import BaseExtractor, ExtractionContext, ExtractionResult
from .local_ocr import TesseractOCR
from .text_parser import TextParser

logger = logging.getLogger(__name__)


class LocalOCRExtractor(BaseExtractor):
    """
    OCR every page of the PDF on this machine.

    Page images live in a per-attempt temporary directory that is removed
    on every exit path.
    """

    def __init__(self, ocr: TesseractOCR, parser: TextParser, min_chars: int = 20):
        self.ocr = ocr
        self.parser = parser
        self.min_chars = min_chars

    @property
    def method(self) -> ExtractionMethod:
        return ExtractionMethod.LOCAL_OCR

    def is_available(self) -> bool:
        return self.ocr.is_available()

    def attempt(self, context: ExtractionContext) -> ExtractionResult:
        try:
            with tempfile.TemporaryDirectory(prefix="invoice-ocr-") as tmp_dir:
                images = self.ocr.rasterize(context.file_bytes, Path(tmp_dir))
                pages = [self.ocr.recognize_text(image) for image in images]
        except Exception as e:
            logger.warning(f"Local OCR failed for {context.filename}: {e}")
            return ExtractionResult(method=self.method, skipped_reason=f"local OCR failed: {e}")

        text = "\n".join(pages)
        result = ExtractionResult(method=self.method, text=text)
        if result.text_length > self.min_chars:
            result.fields = self.parser.parse(text)
        else:
            result.skipped_reason = f"OCR output too short ({result.text_length} chars)"
        return result

    def accepts(self, result: ExtractionResult) -> bool:
        return result.text_length > self.min_chars

    def is_sufficient(self, result: ExtractionResult, merged: InvoiceFields) -> bool:
        return result.fields.amount is not None or result.fields.date is not None

"""
PDF text layer tier.

Reads the embedded, machine-readable text of a PDF with pdfplumber.
"""

import io
import logging

import pdfplumber

from ..schemas import ExtractionMethod, InvoiceFields
from .base import BaseExtractor, ExtractionContext, ExtractionResult
from .text_parser import TextParser

logger = logging.getLogger(__name__)


def read_text_layer(file_bytes: bytes) -> str:
    """Concatenate the text layer of every page (empty for image-only PDFs)."""
    with pdfplumber.open(io.BytesIO(file_bytes)) as pdf:
        pages = [page.extract_text() or "" for page in pdf.pages]
    return "\n".join(pages)


class TextLayerExtractor(BaseExtractor):
    """
    Use the PDF's own text layer.

    Short text layers are usually scanned images misreported as text PDFs
    (a page number, a stamp), so the tier only counts when the text is
    longer than ``min_chars``.
    """

    def __init__(self, parser: TextParser, min_chars: int = 200):
        self.parser = parser
        self.min_chars = min_chars

    @property
    def method(self) -> ExtractionMethod:
        return ExtractionMethod.TEXT_LAYER

    def attempt(self, context: ExtractionContext) -> ExtractionResult:
        try:
            text = read_text_layer(context.file_bytes)
        except Exception as e:
            logger.debug(f"No readable text layer in {context.filename}: {e}")
            return ExtractionResult(method=self.method, skipped_reason=f"unreadable PDF: {e}")

        result = ExtractionResult(method=self.method, text=text)
        if result.text_length > self.min_chars:
            result.fields = self.parser.parse(text)
        else:
            result.skipped_reason = f"text layer too short ({result.text_length} chars)"
        return result

    def accepts(self, result: ExtractionResult) -> bool:
        return result.text_length > self.min_chars

    def is_sufficient(self, result: ExtractionResult, merged: InvoiceFields) -> bool:
        return merged.amount is not None and merged.date is not None

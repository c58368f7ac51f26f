"""
Filename heuristics tier.

Always runs first and seeds defaults: scanners and accounting exports
often name files like "2026-03-12_Acme_FA-2026-001_123.45.pdf".
"""

import re
from datetime import date
from decimal import Decimal
from typing import Optional

from ..schemas import ExtractionMethod, InvoiceFields
from .base import BaseExtractor, ExtractionContext, ExtractionResult
from .text_parser import parse_amount_token

FILENAME_DATE_PATTERNS = [
    (r"(\d{4})-(\d{2})-(\d{2})", "ymd"),
    (r"(\d{2})-(\d{2})-(\d{4})", "dmy"),
]

FILENAME_AMOUNT_PATTERN = r"(?<![\d.,])(\d+[.,]\d{2})(?![\d.,])"

FILENAME_INVOICE_PATTERN = r"(?<![a-z])((?:FACT|FA|INV|F)[- ]?\d+(?:[- ]\d+)?)"


def _strip_extension(filename: str) -> str:
    return re.sub(r"\.pdf$", "", filename, flags=re.IGNORECASE)


class FilenameExtractor(BaseExtractor):
    """Extract a date, amount, invoice number and vendor guess from a filename."""

    @property
    def method(self) -> ExtractionMethod:
        return ExtractionMethod.FILENAME

    def attempt(self, context: ExtractionContext) -> ExtractionResult:
        stem = _strip_extension(context.filename)
        fields = InvoiceFields(
            date=self._extract_date(stem),
            amount=self._extract_amount(stem),
            invoice_number=self._extract_invoice_number(stem),
            vendor=self._extract_vendor(stem),
        )
        return ExtractionResult(method=self.method, fields=fields)

    def accepts(self, result: ExtractionResult) -> bool:
        return True

    def is_sufficient(self, result: ExtractionResult, merged: InvoiceFields) -> bool:
        # Filenames only seed defaults; a document tier always gets a chance
        return False

    def _extract_date(self, stem: str) -> Optional[str]:
        for pattern, order in FILENAME_DATE_PATTERNS:
            match = re.search(pattern, stem)
            if not match:
                continue
            if order == "ymd":
                year, month, day = match.groups()
            else:
                day, month, year = match.groups()
            try:
                return date(int(year), int(month), int(day)).isoformat()
            except ValueError:
                continue
        return None

    def _extract_amount(self, stem: str) -> Optional[Decimal]:
        match = re.search(FILENAME_AMOUNT_PATTERN, stem)
        if not match:
            return None
        amount = parse_amount_token(match.group(1))
        if amount is not None and amount > 0:
            return amount
        return None

    def _extract_invoice_number(self, stem: str) -> Optional[str]:
        match = re.search(FILENAME_INVOICE_PATTERN, stem, re.IGNORECASE)
        return match.group(1) if match else None

    def _extract_vendor(self, stem: str) -> Optional[str]:
        """Filename with digits and separators removed, short words dropped."""
        words = re.sub(r"[\d_\-.,]+", " ", stem).split()
        words = [word for word in words if len(word) > 2]
        return " ".join(words) if words else None

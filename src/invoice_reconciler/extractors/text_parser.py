"""
Invoice text heuristics.

Maps raw text (a PDF text layer or OCR output) to a partial invoice field
set. Pure and deterministic: no I/O, never raises, an empty result is a
normal outcome.

Supported formats:
- Dates: d/m/Y, d.m.Y, "January 5, 2026", "12 mars 2026", Y-m-d
- Amounts: 1 234,56 / 1.234,56 (French/German), 1,234.56 (English)
- Labels: French, English and German total/amount-due wording
"""

import re
import unicodedata
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Optional

from ..schemas import InvoiceFields

# One monetary number with exactly two decimals, with optional thousands
# grouping by space, dot or comma. Group 1 is the number.
NUM = r"(?<![\d.,])(\d{1,3}(?:[ \u00a0\u202f.,]\d{3})+[.,]\d{2}|\d+[.,]\d{2})(?!\d)"

# Anything short between a label and its number: ":", "(EUR)", "€", ...
GAP = r"[^\d\n]{0,15}?"

# Punctuation, spacing and currency only: "Total : 96,00 €" but not "Total TVA"
SYMBOL_GAP = r"[^\w\n]{0,30}?"

MAX_AMOUNT = Decimal("1000000")

ENGLISH_MONTHS = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
}

# Keys are accent-folded
FRENCH_MONTHS = {
    "janvier": 1,
    "fevrier": 2,
    "mars": 3,
    "avril": 4,
    "mai": 5,
    "juin": 6,
    "juillet": 7,
    "aout": 8,
    "septembre": 9,
    "octobre": 10,
    "novembre": 11,
    "decembre": 12,
}

# Date patterns, tried in order; first valid match wins
DATE_PATTERNS = [
    # 12/03/2026, 12.03.2026
    (r"\b(\d{2})[/.](\d{2})[/.](\d{4})\b", "numeric"),
    # (due) March 12, 2026
    (
        r"\b(?:due\s+)?(" + "|".join(ENGLISH_MONTHS) + r")\s+(\d{1,2}),?\s+(\d{4})\b",
        "english_month",
    ),
    # 12 mars 2026, 1er août 2026
    (
        r"\b(\d{1,2})(?:er)?\s+(" + "|".join(FRENCH_MONTHS) + r")\s+(\d{4})\b",
        "french_month",
    ),
    # 2026-03-12
    (r"\b(\d{4})-(\d{2})-(\d{2})\b", "iso"),
]

# Amount labels, most specific first
AMOUNT_PATTERNS = [
    # Amount due / total including tax
    (r"montant\s+d[uû]" + GAP + NUM, "amount_due"),
    (r"amount\s+due" + GAP + NUM, "amount_due"),
    (r"total\s+t\.?t\.?c\.?" + GAP + NUM, "total_ttc"),
    (r"montant\s+t\.?t\.?c\.?" + GAP + NUM, "total_ttc"),
    (r"total\s+(?:incl(?:uding|\.)?\s+(?:tax|vat)|tax\s+included)" + GAP + NUM, "total_ttc"),
    # Net payable
    (r"net\s+[àa]\s+payer" + GAP + NUM, "net_payable"),
    (r"gesamtbetrag" + GAP + NUM, "net_payable"),
    # Bare "Total", no qualifier (not a subtotal, tax or net line)
    (r"(?<!sous-)(?<!sous )\btotal\b" + SYMBOL_GAP + NUM, "total"),
    # Net totals are better than nothing
    (r"(?:total|montant)\s+h\.?t\.?" + GAP + NUM, "total_net"),
    # Bare currency-tagged numbers
    (r"[$€]\s*" + NUM, "currency_prefix"),
    (NUM + r"\s*(?:USD|EUR|€|\$)", "currency_suffix"),
]

# Optional "20 %" rate, mandatory amount, both after a VAT/TVA token
TAX_PATTERN = (
    r"\b(?:t\.?v\.?a\.?|vat)(?![a-z])[^\d\n]{0,20}?"
    r"(?:(\d{1,2}(?:[.,]\d{1,2})?)\s*%[^\d\n]{0,15}?)?"
    + NUM
)

# Invoice numbers: labelled first, then well-known prefixes
INVOICE_PATTERNS = [
    r"(?:facture|invoice|rechnung|nummer)\s*(?:n[°o]\.?|no\.?|#|number|nr\.?)?\s*:?\s*"
    r"([A-Z]{0,4}-?\d{4,}(?:[-/]\d+)?)",
    r"\b((?:FACT|FA|INV|F)[- ]?\d{3,}(?:[- ]\d+)?)\b",
]

# Lines that are structure, not a company name
VENDOR_DENY_PATTERN = (
    r"\b(?:facture|invoice|rechnung|date|siret|siren|tva|vat|iban|bic|total|montant|"
    r"page|tel|t[ée]l[ée]phone|email|e-mail)\b"
)

VENDOR_MAX_LINES = 10
VENDOR_MAX_LENGTH = 60


def fold_accents(text: str) -> str:
    """Strip diacritics: 'février' -> 'fevrier'."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def parse_amount_token(token: str) -> Optional[Decimal]:
    """
    Parse a two-decimal number written in either convention.

    The last '.' or ',' is the decimal separator; every other separator
    (space, dot, comma) is thousands grouping.
    """
    cleaned = re.sub(r"[\s\u00a0\u202f]", "", token)
    if len(cleaned) < 4 or cleaned[-3] not in ".,":
        return None
    integer_part = re.sub(r"[.,]", "", cleaned[:-3])
    try:
        return Decimal(f"{integer_part}.{cleaned[-2:]}")
    except InvalidOperation:
        return None


def _valid_date(year: int, month: int, day: int) -> Optional[str]:
    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def _in_bounds(amount: Optional[Decimal]) -> bool:
    return amount is not None and Decimal("0") < amount < MAX_AMOUNT


class TextParser:
    """
    Extract invoice fields from free text using pattern matching.

    Each field is recovered independently; a failure on one never affects
    the others.
    """

    def parse(self, text: Optional[str]) -> InvoiceFields:
        """Parse raw text into an InvoiceFields (possibly empty)."""
        if not text or not text.strip():
            return InvoiceFields()

        tax_rate, tax_amount = self._extract_tax(text)
        return InvoiceFields(
            vendor=self._extract_vendor(text),
            amount=self._extract_amount(text),
            date=self._extract_date(text),
            invoice_number=self._extract_invoice_number(text),
            tax_amount=tax_amount,
            tax_rate=tax_rate,
        )

    def _extract_date(self, text: str) -> Optional[str]:
        folded = fold_accents(text).lower()

        for pattern, pattern_type in DATE_PATTERNS:
            for match in re.finditer(pattern, folded):
                if pattern_type == "numeric":
                    day, month, year = (int(g) for g in match.groups())
                elif pattern_type == "english_month":
                    month = ENGLISH_MONTHS[match.group(1)]
                    day, year = int(match.group(2)), int(match.group(3))
                elif pattern_type == "french_month":
                    month = FRENCH_MONTHS[match.group(2)]
                    day, year = int(match.group(1)), int(match.group(3))
                else:
                    year, month, day = (int(g) for g in match.groups())

                parsed = _valid_date(year, month, day)
                if parsed:
                    return parsed
        return None

    def _extract_amount(self, text: str) -> Optional[Decimal]:
        for pattern, _label in AMOUNT_PATTERNS:
            for match in re.finditer(pattern, text, re.IGNORECASE | re.MULTILINE):
                amount = parse_amount_token(match.group(1))
                if _in_bounds(amount):
                    return amount
        return None

    def _extract_tax(self, text: str) -> tuple[Optional[Decimal], Optional[Decimal]]:
        """Return (rate, amount) from the first VAT/TVA mention with an amount."""
        for match in re.finditer(TAX_PATTERN, text, re.IGNORECASE):
            amount = parse_amount_token(match.group(2))
            if not _in_bounds(amount):
                continue
            rate = None
            if match.group(1):
                rate = Decimal(match.group(1).replace(",", "."))
            return rate, amount
        return None, None

    def _extract_invoice_number(self, text: str) -> Optional[str]:
        for pattern in INVOICE_PATTERNS:
            match = re.search(pattern, text, re.IGNORECASE)
            if match:
                return match.group(1).strip()
        return None

    def _extract_vendor(self, text: str) -> Optional[str]:
        """First plausible company line among the leading lines."""
        lines = [line.strip() for line in text.splitlines()]
        lines = [line for line in lines if len(line) > 3]

        for line in lines[:VENDOR_MAX_LINES]:
            if re.fullmatch(r"[\d\s.,/:;+()\-]+", line):
                continue
            if line[0].isdigit():
                continue
            if re.search(VENDOR_DENY_PATTERN, line, re.IGNORECASE):
                continue
            if len(line) >= VENDOR_MAX_LENGTH:
                continue
            return line
        return None

"""
Canonical invoice objects (SSOT).

Every module in the reconciler exchanges invoices, candidates and scopes
through these types. Amounts are always Decimal; dates are ISO strings
(YYYY-MM-DD) so they compare lexically and store as-is in SQLite.
"""

from dataclasses import dataclass, field, fields, replace
from decimal import Decimal
from enum import Enum
from typing import Optional


class ExtractionMethod(str, Enum):
    """Extraction tier that supplied an invoice's accepted fields."""

    FILENAME = "filename"
    TEXT_LAYER = "text-layer"
    LOCAL_OCR = "local-ocr"
    REMOTE_OCR = "remote-ocr"


@dataclass(frozen=True)
class Scope:
    """
    Ownership boundary for cache rows and candidate transactions.

    A scope without company_id is the user's personal scope; with a
    company_id it is narrowed to that company's checking accounts.
    """

    user_id: int
    company_id: Optional[int] = None

    @property
    def is_company(self) -> bool:
        return self.company_id is not None

    def folder_purpose(self, year: int) -> str:
        """Folder-mapping key holding the invoice folder for a given year."""
        if self.company_id is not None:
            return f"invoices_{year}_{self.company_id}"
        return f"invoices_{year}"

    def __str__(self) -> str:
        if self.company_id is not None:
            return f"user {self.user_id} / company {self.company_id}"
        return f"user {self.user_id}"


@dataclass
class InvoiceFields:
    """Partial field set recovered from text or a filename.

    All fields are independently optional; an empty instance is a normal
    outcome for unreadable input.
    """

    vendor: Optional[str] = None
    amount: Optional[Decimal] = None
    date: Optional[str] = None  # YYYY-MM-DD
    invoice_number: Optional[str] = None
    tax_amount: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None  # Percentage, e.g. 20 for 20%

    def is_empty(self) -> bool:
        return all(getattr(self, f.name) is None for f in fields(self))

    def merged_with(self, other: "InvoiceFields") -> "InvoiceFields":
        """Return a copy where every field set in ``other`` overrides ours."""
        overrides = {
            f.name: getattr(other, f.name)
            for f in fields(other)
            if getattr(other, f.name) is not None
        }
        return replace(self, **overrides)


@dataclass
class ExtractedInvoice:
    """Output of the extraction pipeline for one file."""

    extraction_method: ExtractionMethod
    vendor: Optional[str] = None
    amount: Optional[Decimal] = None
    date: Optional[str] = None  # YYYY-MM-DD
    invoice_number: Optional[str] = None
    tax_amount: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None
    raw_text: Optional[str] = None

    @classmethod
    def from_fields(
        cls,
        parsed: InvoiceFields,
        method: ExtractionMethod,
        raw_text: Optional[str] = None,
    ) -> "ExtractedInvoice":
        return cls(
            extraction_method=method,
            vendor=parsed.vendor,
            amount=parsed.amount,
            date=parsed.date,
            invoice_number=parsed.invoice_number,
            tax_amount=parsed.tax_amount,
            tax_rate=parsed.tax_rate,
            raw_text=raw_text,
        )


@dataclass
class TransactionCandidate:
    """A recorded bank transaction eligible for matching.

    Amount is signed as booked (debits are negative).
    """

    id: int
    label: str
    amount: Decimal
    date: str  # YYYY-MM-DD


@dataclass
class CachedInvoiceRecord:
    """One scanned remote file, persisted in the invoice cache."""

    user_id: int
    drive_file_id: str
    filename: str
    extraction_method: ExtractionMethod
    company_id: Optional[int] = None
    vendor: Optional[str] = None
    amount: Optional[Decimal] = None
    tax_amount: Optional[Decimal] = None
    tax_rate: Optional[Decimal] = None
    date: Optional[str] = None
    invoice_number: Optional[str] = None
    raw_text: Optional[str] = None

    # Reconciliation
    transaction_id: Optional[int] = None
    match_confidence: Optional[float] = None

    # Set by the store
    id: Optional[int] = None
    scanned_at: Optional[str] = None

    @property
    def scope(self) -> Scope:
        return Scope(user_id=self.user_id, company_id=self.company_id)

    @property
    def is_matched(self) -> bool:
        return self.transaction_id is not None

    @classmethod
    def from_extraction(
        cls,
        scope: Scope,
        drive_file_id: str,
        filename: str,
        invoice: ExtractedInvoice,
        raw_text_max_chars: int = 2000,
    ) -> "CachedInvoiceRecord":
        raw_text = invoice.raw_text[:raw_text_max_chars] if invoice.raw_text else None
        return cls(
            user_id=scope.user_id,
            company_id=scope.company_id,
            drive_file_id=drive_file_id,
            filename=filename,
            extraction_method=invoice.extraction_method,
            vendor=invoice.vendor,
            amount=invoice.amount,
            tax_amount=invoice.tax_amount,
            tax_rate=invoice.tax_rate,
            date=invoice.date,
            invoice_number=invoice.invoice_number,
            raw_text=raw_text,
        )

    def to_dict(self) -> dict:
        """Serialize for JSON output (raw text omitted)."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "company_id": self.company_id,
            "drive_file_id": self.drive_file_id,
            "filename": self.filename,
            "vendor": self.vendor,
            "amount": str(self.amount) if self.amount is not None else None,
            "tax_amount": str(self.tax_amount) if self.tax_amount is not None else None,
            "tax_rate": str(self.tax_rate) if self.tax_rate is not None else None,
            "date": self.date,
            "invoice_number": self.invoice_number,
            "transaction_id": self.transaction_id,
            "match_confidence": self.match_confidence,
            "extraction_method": self.extraction_method.value,
            "scanned_at": self.scanned_at,
        }


@dataclass
class InvoiceStats:
    """Match coverage for one scope."""

    total: int = 0
    matched: int = 0
    unmatched: int = 0
    match_rate: int = 0  # Integer percent
    by_method: dict[str, int] = field(default_factory=dict)

"""
Base extractor interface and common types.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from ..schemas import ExtractionMethod, InvoiceFields


@dataclass
class ExtractionContext:
    """Everything a tier may look at for one file."""

    filename: str
    file_bytes: bytes
    # Remote file id; tiers that need the remote store skip without it
    file_id: Optional[str] = None


@dataclass
class ExtractionResult:
    """Result from one tier's extraction attempt."""

    method: ExtractionMethod
    fields: InvoiceFields = field(default_factory=InvoiceFields)
    # Text the tier recovered (None for tiers that read no text)
    text: Optional[str] = None
    # Why the tier produced nothing, for logging
    skipped_reason: Optional[str] = None

    @property
    def text_length(self) -> int:
        return len(self.text.strip()) if self.text else 0


class BaseExtractor(ABC):
    """
    Base class for all extraction tiers.

    Each tier implements one technique:
    - Filename heuristics
    - PDF text layer
    - Local OCR
    - Remote OCR through the file store

    Tiers never raise from ``attempt``: failures are logged and reported
    as an empty result with a ``skipped_reason``.
    """

    @property
    @abstractmethod
    def method(self) -> ExtractionMethod:
        """Extraction method recorded when this tier's fields are accepted."""
        pass

    @property
    def name(self) -> str:
        """Tier name for logging."""
        return self.method.value

    def is_available(self) -> bool:
        """Whether the tier can run at all in this environment."""
        return True

    @abstractmethod
    def attempt(self, context: ExtractionContext) -> ExtractionResult:
        """
        Try to extract invoice fields from one file.

        Args:
            context: File name, bytes and remote id

        Returns:
            ExtractionResult (possibly empty)
        """
        pass

    def accepts(self, result: ExtractionResult) -> bool:
        """Whether the result is trustworthy enough to merge its fields."""
        return not result.fields.is_empty()

    @abstractmethod
    def is_sufficient(self, result: ExtractionResult, merged: InvoiceFields) -> bool:
        """
        Early-exit predicate: True stops the pipeline at this tier.

        Only consulted for accepted results.

        Args:
            result: This tier's own result
            merged: Fields accumulated so far, this tier's included

        Returns:
            True if no later tier needs to run
        """
        pass

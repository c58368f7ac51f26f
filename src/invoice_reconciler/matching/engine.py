"""Matching engine for reconciling extracted invoices with bank transactions.

Scores every candidate transaction in the invoice's date window on three
additive signals (amount, date, vendor/label) and accepts the best one only
when its score is strictly above the configured threshold. With the default
tiers no single signal can pass the threshold alone, so an accepted match
always rests on at least two strong signals.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from ..config import MatchingConfig
    from ..schemas import ExtractedInvoice, TransactionCandidate

logger = logging.getLogger(__name__)


@dataclass
class MatchScore:
    """Individual signal contribution to a candidate's score."""

    signal: str
    points: int
    detail: str


@dataclass
class ScoredCandidate:
    """One candidate transaction with its score breakdown."""

    transaction_id: int
    score: int
    signals: list[MatchScore] = field(default_factory=list)

    @property
    def reasons(self) -> list[str]:
        return [f"{s.signal} +{s.points} ({s.detail})" for s in self.signals if s.points > 0]


@dataclass
class MatchDecision:
    """Best candidate for one invoice and whether it was accepted."""

    transaction_id: Optional[int]
    score: int
    accepted: bool
    candidates_considered: int = 0
    signals: list[MatchScore] = field(default_factory=list)
    reasons: list[str] = field(default_factory=list)

    @property
    def confidence(self) -> Optional[float]:
        """Normalized score stored with an accepted match, capped at 1.0."""
        if not self.accepted:
            return None
        return min(self.score / 100, 1.0)

    @property
    def matched_transaction_id(self) -> Optional[int]:
        return self.transaction_id if self.accepted else None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "transaction_id": self.transaction_id,
            "score": self.score,
            "accepted": self.accepted,
            "confidence": self.confidence,
            "candidates_considered": self.candidates_considered,
            "signals": [
                {"signal": s.signal, "points": s.points, "detail": s.detail}
                for s in self.signals
            ],
            "reasons": self.reasons,
        }


def parse_iso_date(value: Optional[str]) -> Optional[date]:
    """Parse the date part of an ISO date/datetime string."""
    if not value:
        return None
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        return None


class MatchingEngine:
    """Engine for matching extracted invoices to bank transactions.

    The engine is pure: candidates are supplied by the caller (see
    ``StateStore.query_candidates``) and every threshold comes from
    ``MatchingConfig``.

    Signals:
    - Amount: absolute transaction amount, or an amount quoted in a foreign
      currency inside the label; the closer of the two wins
    - Date: day distance, with a small baseline inside the window
    - Vendor: label containment, else a shared long token
    """

    def __init__(self, config: MatchingConfig) -> None:
        """Initialize the matching engine.

        Args:
            config: Matching thresholds and tiers.
        """
        self.config = config
        currencies = "|".join(re.escape(c) for c in config.label_currencies)
        self._label_amount_re = (
            re.compile(rf"(\d+[,.]\d{{2}})\s*(?:{currencies})\b", re.IGNORECASE)
            if currencies
            else None
        )

    def should_attempt(self, invoice: ExtractedInvoice, best_guess_date: Optional[str]) -> bool:
        """Matching needs an amount, or both a vendor and a date."""
        return bool(invoice.amount) or bool(invoice.vendor and best_guess_date)

    def candidate_window(self, best_guess_date: str) -> tuple[str, str]:
        """Inclusive (date_from, date_to) around the invoice's date."""
        center = parse_iso_date(best_guess_date)
        if center is None:
            raise ValueError(f"Invalid invoice date: {best_guess_date!r}")
        delta = timedelta(days=self.config.window_days)
        return (center - delta).isoformat(), (center + delta).isoformat()

    def match(
        self,
        invoice: ExtractedInvoice,
        candidates: list[TransactionCandidate],
        best_guess_date: Optional[str] = None,
    ) -> MatchDecision:
        """Pick the best candidate and apply the acceptance threshold.

        Args:
            invoice: Extracted invoice.
            candidates: Transactions in the invoice's window.
            best_guess_date: Date used for scoring when the invoice has none
                (typically the file's last-modified date).

        Returns:
            MatchDecision; transaction_id is the best candidate even when it
            was rejected, ``matched_transaction_id`` only when accepted.
        """
        invoice_date = invoice.date or best_guess_date

        best: Optional[ScoredCandidate] = None
        for candidate in candidates:
            scored = self.score_candidate(invoice, candidate, invoice_date)
            # Strictly greater: the first of equal scores wins
            if best is None or scored.score > best.score:
                best = scored

        if best is None:
            return MatchDecision(transaction_id=None, score=0, accepted=False)

        accepted = best.score > self.config.accept_threshold
        logger.debug(
            "Best candidate tx %d scored %d (%s)",
            best.transaction_id,
            best.score,
            "accepted" if accepted else f"needs > {self.config.accept_threshold}",
        )
        return MatchDecision(
            transaction_id=best.transaction_id,
            score=best.score,
            accepted=accepted,
            candidates_considered=len(candidates),
            signals=best.signals,
            reasons=best.reasons,
        )

    def score_candidate(
        self,
        invoice: ExtractedInvoice,
        candidate: TransactionCandidate,
        invoice_date: Optional[str] = None,
    ) -> ScoredCandidate:
        """Score a single candidate transaction against an invoice.

        Args:
            invoice: Extracted invoice.
            candidate: Transaction to score.
            invoice_date: Date to compare against (defaults to invoice.date).

        Returns:
            ScoredCandidate with per-signal breakdown.
        """
        signals = [
            self._score_amount(invoice.amount, candidate),
            self._score_date(invoice_date or invoice.date, candidate.date),
            self._score_vendor(invoice.vendor, candidate.label),
        ]
        return ScoredCandidate(
            transaction_id=candidate.id,
            score=sum(s.points for s in signals),
            signals=signals,
        )

    def _label_amounts(self, label: str) -> list[Decimal]:
        """Foreign-currency amounts quoted in a label ("100,05 USD")."""
        if not label or self._label_amount_re is None:
            return []
        amounts = []
        for match in self._label_amount_re.finditer(label):
            try:
                amounts.append(Decimal(match.group(1).replace(",", ".")))
            except InvalidOperation:
                continue
        return amounts

    def _score_amount(
        self,
        amount: Optional[Decimal],
        candidate: TransactionCandidate,
    ) -> MatchScore:
        """Score amount closeness.

        Tiers compare with strict "<": a difference of exactly 0.02 falls
        into the second tier.
        """
        if not amount:
            return MatchScore(signal="amount", points=0, detail="missing")

        invoice_amount = abs(amount)
        diffs = [abs(abs(candidate.amount) - invoice_amount)]
        for quoted in self._label_amounts(candidate.label):
            diffs.append(abs(quoted - invoice_amount))
        best_diff = min(diffs)

        for limit, points in self.config.amount_tiers:
            if best_diff < limit:
                return MatchScore(signal="amount", points=points, detail=f"diff {best_diff}")

        if best_diff / invoice_amount < self.config.amount_relative_tolerance:
            return MatchScore(
                signal="amount",
                points=self.config.amount_relative_points,
                detail=f"diff {best_diff} within {self.config.amount_relative_tolerance:%}",
            )

        return MatchScore(signal="amount", points=0, detail=f"mismatch: diff {best_diff}")

    def _score_date(self, invoice_date: Optional[str], tx_date: Optional[str]) -> MatchScore:
        """Score date proximity (inclusive tiers, baseline otherwise)."""
        inv = parse_iso_date(invoice_date)
        tx = parse_iso_date(tx_date)
        if inv is None or tx is None:
            return MatchScore(signal="date", points=0, detail="missing")

        days = abs((tx - inv).days)
        for limit, points in self.config.date_tiers:
            if days <= limit:
                return MatchScore(signal="date", points=points, detail=f"{days} days")

        return MatchScore(
            signal="date",
            points=self.config.date_baseline_points,
            detail=f"{days} days (in window)",
        )

    def _score_vendor(self, vendor: Optional[str], label: Optional[str]) -> MatchScore:
        """Score vendor/label similarity (case-insensitive)."""
        if not vendor or not label:
            return MatchScore(signal="vendor", points=0, detail="missing")

        v = vendor.lower().strip()
        lbl = label.lower().strip()
        if not v or not lbl:
            return MatchScore(signal="vendor", points=0, detail="missing")

        if v in lbl or lbl in v:
            return MatchScore(
                signal="vendor", points=self.config.vendor_contains_points, detail="contains"
            )

        tokens = [
            w for w in re.split(r"[\s.,·\-]+", v) if len(w) >= self.config.vendor_min_token_length
        ]
        shared = [w for w in tokens if w in lbl]
        if shared:
            return MatchScore(
                signal="vendor",
                points=self.config.vendor_token_points,
                detail=f"token: {shared[0]}",
            )

        return MatchScore(signal="vendor", points=0, detail="no match")

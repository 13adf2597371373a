"""Scoring engine for pairing payments with the documents they settle.

A payment is scored against a pool of candidate documents (invoices or
salary receipts). Only plausible candidates are returned: amount equivalent
(same currency within an absolute tolerance, or converted within a
percentage band) and date inside the plausibility window.

Confidence tiers (date offset = payment date - document date):
- HIGH: counterparty tax ID matches and the offset is inside the HIGH window
- MEDIUM: offset inside the MEDIUM window otherwise (no counterparty match,
  or counterparty match outside the HIGH window)
- LOW: any other plausible candidate
Cross-currency candidates are capped at MEDIUM with a counterparty match and
at LOW without one.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import TYPE_CHECKING, Mapping, Sequence

from ..schemas.documents import Document, MatchConfidence
from .currency import ExchangeRateCache, amounts_equivalent
from .identifiers import tax_ids_match

if TYPE_CHECKING:
    from ..config import MatchingConfig

logger = logging.getLogger(__name__)

# Proximity assumed for an existing holder whose date cannot be resolved
UNKNOWN_PROXIMITY_DAYS = 999


@dataclass(frozen=True)
class MatchQuality:
    """Comparable quality of a pairing."""

    confidence: MatchConfidence
    has_counterparty_match: bool
    date_proximity_days: int


def compare_match_quality(a: MatchQuality, b: MatchQuality) -> int:
    """Compare two qualities.

    Order: confidence tier, then counterparty match, then closer date.

    Returns:
        Positive if a is better, negative if b is better, 0 if tied.
    """
    rank_diff = a.confidence.rank - b.confidence.rank
    if rank_diff != 0:
        return rank_diff

    if a.has_counterparty_match != b.has_counterparty_match:
        return 1 if a.has_counterparty_match else -1

    return b.date_proximity_days - a.date_proximity_days


def is_better_match(new: MatchQuality, existing: MatchQuality) -> bool:
    """Return True only if ``new`` is strictly better than ``existing``.

    Irreflexive: a quality is never better than itself, so displacement
    only happens on strict improvement.
    """
    return compare_match_quality(new, existing) > 0


@dataclass
class MatchCandidate:
    """A plausible target for a source document."""

    target: Document
    confidence: MatchConfidence
    date_proximity_days: int
    has_counterparty_match: bool
    reasons: list[str] = field(default_factory=list)
    is_cross_currency: bool = False
    # Set when the target is already held by another source
    is_upgrade: bool = False
    existing_holder_id: str | None = None
    existing_confidence: MatchConfidence | None = None
    existing_has_counterparty_match: bool = False
    existing_date_proximity_days: int | None = None

    @property
    def target_id(self) -> str:
        return self.target.document_id

    @property
    def quality(self) -> MatchQuality:
        """Quality this pairing would have."""
        return MatchQuality(
            confidence=self.confidence,
            has_counterparty_match=self.has_counterparty_match,
            date_proximity_days=self.date_proximity_days,
        )

    @property
    def existing_quality(self) -> MatchQuality | None:
        """Quality of the current holder's pairing (upgrades only)."""
        if not self.is_upgrade:
            return None
        return MatchQuality(
            confidence=self.existing_confidence or MatchConfidence.LOW,
            has_counterparty_match=self.existing_has_counterparty_match,
            date_proximity_days=(
                self.existing_date_proximity_days
                if self.existing_date_proximity_days is not None
                else UNKNOWN_PROXIMITY_DAYS
            ),
        )

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "target_id": self.target_id,
            "target_kind": self.target.kind.value,
            "confidence": self.confidence.value,
            "date_proximity_days": self.date_proximity_days,
            "has_counterparty_match": self.has_counterparty_match,
            "is_cross_currency": self.is_cross_currency,
            "is_upgrade": self.is_upgrade,
            "existing_holder_id": self.existing_holder_id,
            "existing_confidence": (
                self.existing_confidence.value if self.existing_confidence else None
            ),
            "existing_date_proximity_days": self.existing_date_proximity_days,
            "reasons": self.reasons,
        }


class MatchingEngine:
    """Scores one source document against a pool of candidate targets.

    The engine is deterministic: candidates come back ordered by confidence
    tier (descending), then date proximity (ascending), and ties keep the
    order of the candidate pool. Callers rely on "first result wins".
    """

    def __init__(
        self,
        config: MatchingConfig,
        rates: ExchangeRateCache | None = None,
    ) -> None:
        """Initialize the matching engine.

        Args:
            config: Matching windows and tolerances.
            rates: Pre-populated exchange-rate cache for foreign-currency targets.
        """
        self.config = config
        self.rates = rates if rates is not None else ExchangeRateCache()
        # Dates that failed cross-currency matching for lack of a cached rate
        self.cache_miss_dates: set[date] = set()

    def find_matches(
        self,
        source: Document,
        candidate_pool: Sequence[Document],
        include_already_matched: bool = False,
        sources_by_id: Mapping[str, Document] | None = None,
    ) -> list[MatchCandidate]:
        """Find plausible targets for a source document.

        Args:
            source: Document to match (a payment).
            candidate_pool: Targets to consider, in a deterministic order.
            include_already_matched: Offer targets held by another source as
                upgrades; when False only free targets are returned.
            sources_by_id: Source documents by ID, used to compute the date
                proximity of an existing holder.

        Returns:
            Ordered list of MatchCandidate (empty when nothing is plausible).
        """
        candidates: list[MatchCandidate] = []

        for target in candidate_pool:
            existing = target.existing_match
            held_by_other = existing is not None and existing.document_id != source.document_id

            if existing is not None and not include_already_matched:
                continue

            candidate = self._score(source, target)
            if candidate is None:
                continue

            if existing is not None and not held_by_other:
                candidate.reasons.append("Existing match confirmed")
            elif held_by_other:
                candidate.is_upgrade = True
                candidate.existing_holder_id = existing.document_id
                candidate.existing_confidence = existing.confidence
                candidate.existing_has_counterparty_match = existing.has_counterparty_match
                holder = sources_by_id.get(existing.document_id) if sources_by_id else None
                if holder is not None:
                    candidate.existing_date_proximity_days = abs(
                        (holder.business_date - target.business_date).days
                    )
                candidate.reasons.append(f"Potential upgrade from {existing.confidence.value}")

            candidates.append(candidate)

        # list.sort is stable: equal keys keep candidate-pool order
        candidates.sort(key=lambda c: (-c.confidence.rank, c.date_proximity_days))

        return candidates

    def _score(self, source: Document, target: Document) -> MatchCandidate | None:
        """Apply the plausibility filter and grade a pair."""
        cfg = self.config

        amount_result = amounts_equivalent(
            target.amount,
            target.currency,
            target.business_date,
            source.amount,
            cfg.cross_currency_tolerance_percent,
            rates=self.rates,
            target_currency=source.currency,
            absolute_tolerance=cfg.amount_tolerance,
        )

        if amount_result.cache_miss:
            self.cache_miss_dates.add(target.business_date)
            logger.warning(
                "Exchange rate cache miss for %s: %s %s %s cannot be matched against %s %s",
                target.business_date.isoformat(),
                target.kind.value,
                target.document_id,
                target.currency,
                source.kind.value,
                source.document_id,
            )
            return None

        if not amount_result.matches:
            return None

        offset = (source.business_date - target.business_date).days
        if not self._within(offset, cfg.days_before, cfg.days_after):
            return None

        in_high = self._within(offset, cfg.high_days_before, cfg.high_days_after)
        in_medium = self._within(offset, cfg.medium_days_before, cfg.medium_days_after)
        counterparty = tax_ids_match(source.counterparty_tax_id, target.counterparty_tax_id)

        reasons: list[str] = []
        if amount_result.is_cross_currency:
            reasons.append(f"Cross-currency match ({target.currency}->{source.currency})")
            reasons.append(
                f"Exchange rate: {amount_result.rate}, expected: {amount_result.expected_amount}"
            )
        else:
            reasons.append(f"Amount match: {source.amount}")

        if in_high:
            reasons.append(f"Date within high range: {source.business_date.isoformat()}")
        elif in_medium:
            reasons.append(f"Date within medium range: {source.business_date.isoformat()}")
        else:
            reasons.append(f"Date within low range: {source.business_date.isoformat()}")

        if counterparty:
            reasons.append("Counterparty tax ID match")

        confidence = self._confidence(
            in_high=in_high,
            in_medium=in_medium,
            counterparty=counterparty,
            cross_currency=amount_result.is_cross_currency,
        )

        logger.debug(
            "Scored %s %s -> %s %s: %s (offset %d days)",
            source.kind.value,
            source.document_id,
            target.kind.value,
            target.document_id,
            confidence.value,
            offset,
        )

        return MatchCandidate(
            target=target,
            confidence=confidence,
            date_proximity_days=abs(offset),
            has_counterparty_match=counterparty,
            reasons=reasons,
            is_cross_currency=amount_result.is_cross_currency,
        )

    @staticmethod
    def _within(offset: int, days_before: int, days_after: int) -> bool:
        return -days_before <= offset <= days_after

    @staticmethod
    def _confidence(
        in_high: bool,
        in_medium: bool,
        counterparty: bool,
        cross_currency: bool,
    ) -> MatchConfidence:
        """Grade a plausible pair.

        HIGH needs the counterparty and the HIGH window; the MEDIUM window
        alone gives MEDIUM; anything else is LOW. Converted amounts are
        capped one tier lower.
        """
        if in_high and counterparty:
            confidence = MatchConfidence.HIGH
        elif in_medium:
            confidence = MatchConfidence.MEDIUM
        else:
            confidence = MatchConfidence.LOW

        if cross_currency:
            cap = MatchConfidence.MEDIUM if counterparty else MatchConfidence.LOW
            if confidence.rank > cap.rank:
                confidence = cap

        return confidence

"""
Pending updates and batched row writes.

A run records its decisions as pending updates; only at the end are they
translated into one batch of row writes handed to the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from .documents import MatchConfidence, StorageLocation

# Store columns written by the engine
COL_MATCHED_ID = "matched_id"
COL_MATCH_CONFIDENCE = "match_confidence"
COL_HAS_COUNTERPARTY_MATCH = "has_counterparty_match"
COL_PAID = "paid"

WRITABLE_COLUMNS = frozenset(
    {COL_MATCHED_ID, COL_MATCH_CONFIDENCE, COL_HAS_COUNTERPARTY_MATCH, COL_PAID}
)


def _yes_no(flag: bool) -> str:
    return "YES" if flag else "NO"


@dataclass(frozen=True)
class MatchUpdate:
    """A target claimed by a source in this run."""

    target_id: str
    target_location: StorageLocation
    source_id: str
    source_location: StorageLocation
    confidence: MatchConfidence
    has_counterparty_match: bool
    # Source that held the target before this run, if it was displaced
    displaced_source_id: str | None = None


@dataclass(frozen=True)
class ClearMatchUpdate:
    """A displaced source that ends the run without a match."""

    source_id: str
    source_location: StorageLocation
    lost_target_id: str | None = None


@dataclass(frozen=True)
class RowWrite:
    """Values to write into one stored row."""

    location: StorageLocation
    values: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        unknown = set(self.values) - WRITABLE_COLUMNS
        if unknown:
            raise ValueError(f"Unknown columns in row write: {sorted(unknown)}")


def build_match_writes(update: MatchUpdate, tracks_paid: bool = False) -> list[RowWrite]:
    """Build the two row writes (target row, source row) for a match.

    Args:
        update: Pending match.
        tracks_paid: Whether the target sheet carries a paid column.

    Returns:
        Target row write followed by source row write.
    """
    target_values = {
        COL_MATCHED_ID: update.source_id,
        COL_MATCH_CONFIDENCE: update.confidence.value,
        COL_HAS_COUNTERPARTY_MATCH: _yes_no(update.has_counterparty_match),
    }
    if tracks_paid:
        target_values[COL_PAID] = "YES"

    source_values = {
        COL_MATCHED_ID: update.target_id,
        COL_MATCH_CONFIDENCE: update.confidence.value,
    }

    return [
        RowWrite(location=update.target_location, values=target_values),
        RowWrite(location=update.source_location, values=source_values),
    ]


def build_clear_write(update: ClearMatchUpdate) -> RowWrite:
    """Build the row write that clears a source's match reference."""
    return RowWrite(
        location=update.source_location,
        values={COL_MATCHED_ID: "", COL_MATCH_CONFIDENCE: ""},
    )


def build_paid_write(location: StorageLocation) -> RowWrite:
    """Build the row write that marks a document as paid, leaving its match columns alone."""
    return RowWrite(location=location, values={COL_PAID: "YES"})

"""
Data contracts.

- documents: Invoice / Payment / Receipt snapshot model
- updates: pending match updates and the row writes they translate into
- pairs: target sheet x source sheet reconciliation pairs
"""

from .documents import (
    Document,
    DocumentKind,
    ExistingMatch,
    Invoice,
    MatchConfidence,
    Payment,
    Receipt,
    StorageLocation,
    parse_amount,
    parse_date,
)
from .pairs import (
    STANDARD_PAIRS,
    MatchPair,
    get_pair,
    standard_pairs,
)
from .updates import (
    ClearMatchUpdate,
    MatchUpdate,
    RowWrite,
    build_clear_write,
    build_match_writes,
    build_paid_write,
)

__all__ = [
    "STANDARD_PAIRS",
    "ClearMatchUpdate",
    "Document",
    "DocumentKind",
    "ExistingMatch",
    "Invoice",
    "MatchConfidence",
    "MatchPair",
    "MatchUpdate",
    "Payment",
    "Receipt",
    "RowWrite",
    "StorageLocation",
    "build_clear_write",
    "build_match_writes",
    "build_paid_write",
    "get_pair",
    "parse_amount",
    "parse_date",
    "standard_pairs",
]

"""Reconciliation services and the concurrency guard they run under."""

from ledgermatch.schemas.pairs import MatchPair
from ledgermatch.services.concurrency import LockManager, RetryPolicy, with_lock, with_retry
from ledgermatch.services.reconciliation import (
    CascadeOutcome,
    CreditNoteResult,
    MatchingResult,
    MatchingState,
    ReconciliationService,
)

__all__ = [
    "CascadeOutcome",
    "CreditNoteResult",
    "LockManager",
    "MatchPair",
    "MatchingResult",
    "MatchingState",
    "ReconciliationService",
    "RetryPolicy",
    "with_lock",
    "with_retry",
]

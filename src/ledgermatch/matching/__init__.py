"""
Matching engine.

Scores payments against invoices and receipts and normalizes amounts
across currencies. Also holds the per-run cascade structures and the
credit-note offset of received invoices.
"""

from .cascade import CascadeState, Claims, DisplacementQueue, DisplacementQueueItem, visit
from .credit_notes import (
    CreditNoteMatch,
    extract_referenced_invoice_number,
    match_credit_notes,
    normalize_invoice_number,
)
from .currency import CurrencyMatch, ExchangeRate, ExchangeRateCache, amounts_equivalent
from .engine import (
    MatchCandidate,
    MatchingEngine,
    MatchQuality,
    compare_match_quality,
    is_better_match,
)
from .identifiers import normalize_tax_id, tax_ids_match

__all__ = [
    "CascadeState",
    "Claims",
    "CreditNoteMatch",
    "CurrencyMatch",
    "DisplacementQueue",
    "DisplacementQueueItem",
    "ExchangeRate",
    "ExchangeRateCache",
    "MatchCandidate",
    "MatchQuality",
    "MatchingEngine",
    "amounts_equivalent",
    "compare_match_quality",
    "extract_referenced_invoice_number",
    "is_better_match",
    "match_credit_notes",
    "normalize_invoice_number",
    "normalize_tax_id",
    "tax_ids_match",
]

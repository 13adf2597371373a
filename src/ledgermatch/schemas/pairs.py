"""
Reconciliation pairs.

A pair names the target sheet (documents to be settled) and the source
sheet (payments) reconciled together. Lock keys are scoped per pair so
independent pairs run concurrently.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

from .documents import DocumentKind

SHEET_ISSUED_INVOICES = "Facturas Emitidas"
SHEET_RECEIVED_INVOICES = "Facturas Recibidas"
SHEET_RECEIVED_PAYMENTS = "Pagos Recibidos"
SHEET_SENT_PAYMENTS = "Pagos Enviados"
SHEET_RECEIPTS = "Recibos"


@dataclass(frozen=True)
class MatchPair:
    """One target sheet x source sheet reconciliation."""

    name: str
    target_kind: DocumentKind
    target_sheet: str
    source_kind: DocumentKind
    source_sheet: str
    # Target rows carry a "paid" column that is set on match
    tracks_paid: bool = False
    book_id: str = "default"

    @property
    def lock_key(self) -> str:
        return f"match:{self.book_id}:{self.target_sheet}:{self.source_sheet}"

    def for_book(self, book_id: str) -> MatchPair:
        return replace(self, book_id=book_id)


ISSUED_INVOICES_PAIR = MatchPair(
    name="issued-invoices",
    target_kind=DocumentKind.INVOICE,
    target_sheet=SHEET_ISSUED_INVOICES,
    source_kind=DocumentKind.PAYMENT,
    source_sheet=SHEET_RECEIVED_PAYMENTS,
)

RECEIVED_INVOICES_PAIR = MatchPair(
    name="received-invoices",
    target_kind=DocumentKind.INVOICE,
    target_sheet=SHEET_RECEIVED_INVOICES,
    source_kind=DocumentKind.PAYMENT,
    source_sheet=SHEET_SENT_PAYMENTS,
    tracks_paid=True,
)

RECEIPTS_PAIR = MatchPair(
    name="receipts",
    target_kind=DocumentKind.RECEIPT,
    target_sheet=SHEET_RECEIPTS,
    source_kind=DocumentKind.PAYMENT,
    source_sheet=SHEET_SENT_PAYMENTS,
)

# Run order for a full reconciliation
STANDARD_PAIRS: tuple[MatchPair, ...] = (
    ISSUED_INVOICES_PAIR,
    RECEIVED_INVOICES_PAIR,
    RECEIPTS_PAIR,
)


def standard_pairs(book_id: str = "default") -> list[MatchPair]:
    """Return the standard pairs bound to a book."""
    return [pair.for_book(book_id) for pair in STANDARD_PAIRS]


def get_pair(name: str, book_id: str = "default") -> MatchPair:
    """Look up a standard pair by name.

    Raises:
        KeyError: If no standard pair has that name.
    """
    for pair in STANDARD_PAIRS:
        if pair.name == name:
            return pair.for_book(book_id)
    raise KeyError(name)

"""
Credit-note cancellation of received invoices.

A credit note (comprobante type "NC") that fully offsets an unpaid
invoice from the same supplier settles it without any bank payment:
both rows are marked paid. Debit notes ("ND") are never offset.

A credit note cancels an invoice when:
- Both carry the same supplier tax ID
- Amounts agree within 0.01 (credit notes may be stored negative)
- The credit note is not dated before the invoice
- If the concept references an invoice number, it is that invoice's number
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from ..schemas.documents import Document, Invoice
from ..schemas.updates import RowWrite, build_paid_write
from .identifiers import normalize_tax_id

logger = logging.getLogger(__name__)

CREDIT_NOTE_TYPE = "NC"
DEBIT_NOTE_TYPE = "ND"

CANCELLATION_TOLERANCE = Decimal("0.01")

# "Factura N° 2-3160", "Fact. 2-3160", "ref. 2-3160", "s/ 2-3160", "Anulación factura 2-3160"
_REFERENCE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"factura\s*n[°ºro.]*\s*(\d+-\d+)",
        r"fact\.?\s*(\d+-\d+)",
        r"ref\.?\s*(\d+-\d+)",
        r"s/\s*(\d+-\d+)",
        r"anulaci[oó]n\s+(?:factura\s+)?(\d+-\d+)",
    )
)


def normalize_invoice_number(number: str | None) -> str:
    """Pad a "point of sale - sequence" number ("2-3160" -> "00002-00003160").

    Values that are not in two-part dash form are returned stripped.
    """
    cleaned = (number or "").strip()
    parts = cleaned.split("-")
    if len(parts) != 2:
        return cleaned
    point_of_sale, sequence = parts
    return f"{point_of_sale.lstrip('0').rjust(5, '0')}-{sequence.lstrip('0').rjust(8, '0')}"


def extract_referenced_invoice_number(concept: str | None) -> str | None:
    """Return the normalized invoice number a credit-note concept cites, if any."""
    if not concept:
        return None
    for pattern in _REFERENCE_PATTERNS:
        match = pattern.search(concept)
        if match:
            return normalize_invoice_number(match.group(1))
    return None


def _document_type(invoice: Invoice) -> str:
    return (invoice.document_type or "").strip().upper()


def is_credit_note(invoice: Invoice) -> bool:
    return _document_type(invoice) == CREDIT_NOTE_TYPE


@dataclass(frozen=True)
class CreditNoteMatch:
    """A credit note that cancels an invoice."""

    credit_note: Invoice
    invoice: Invoice
    referenced_number: str | None = None

    @property
    def writes(self) -> list[RowWrite]:
        """Paid flags for the invoice row, then the credit-note row."""
        return [
            build_paid_write(self.invoice.location),
            build_paid_write(self.credit_note.location),
        ]

    def to_dict(self) -> dict:
        return {
            "credit_note_id": self.credit_note.document_id,
            "invoice_id": self.invoice.document_id,
            "amount": str(self.invoice.amount),
            "referenced_number": self.referenced_number,
        }


def _cancels(note: Invoice, invoice: Invoice, referenced: str | None) -> bool:
    supplier = normalize_tax_id(note.counterparty_tax_id)
    if not supplier or supplier != normalize_tax_id(invoice.counterparty_tax_id):
        return False
    if abs(abs(note.amount) - invoice.amount) > CANCELLATION_TOLERANCE:
        return False
    if referenced and normalize_invoice_number(invoice.invoice_number) != referenced:
        return False
    return note.business_date >= invoice.business_date


def match_credit_notes(documents: Iterable[Document]) -> list[CreditNoteMatch]:
    """Pair each unpaid credit note with the first unpaid invoice it cancels.

    Credit notes are taken in sheet order and each invoice is cancelled at
    most once. Rows already marked paid take no part.
    """
    invoices = [d for d in documents if isinstance(d, Invoice) and not d.paid]
    credit_notes = [i for i in invoices if is_credit_note(i)]
    open_invoices = [
        i for i in invoices if _document_type(i) not in (CREDIT_NOTE_TYPE, DEBIT_NOTE_TYPE)
    ]

    matches: list[CreditNoteMatch] = []
    cancelled: set[str] = set()
    for note in credit_notes:
        referenced = extract_referenced_invoice_number(note.concept)
        for invoice in open_invoices:
            if invoice.document_id in cancelled:
                continue
            if not _cancels(note, invoice, referenced):
                continue
            cancelled.add(invoice.document_id)
            matches.append(CreditNoteMatch(note, invoice, referenced))
            logger.info(
                "Credit note %s cancels invoice %s (%s)",
                note.document_id,
                invoice.document_id,
                invoice.amount,
            )
            break
        else:
            logger.debug("Credit note %s cancels no open invoice", note.document_id)

    return matches

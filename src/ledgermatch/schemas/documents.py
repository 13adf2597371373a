"""
Document model.

Documents are read-only snapshots owned by one reconciliation run. They are
never mutated in place; every change is expressed as a pending update.

The three kinds share the fields the scorer depends on (counterparty tax ID,
amount, currency, business date); kind-specific fields live on the subclass.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import ClassVar


class DocumentKind(str, Enum):
    """Kind of a reconciled document."""

    INVOICE = "invoice"
    PAYMENT = "payment"
    RECEIPT = "receipt"


class MatchConfidence(str, Enum):
    """Confidence tier of a pairing (HIGH > MEDIUM > LOW)."""

    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @property
    def rank(self) -> int:
        """Numeric rank used for ordering (higher is better)."""
        return _CONFIDENCE_RANK[self]

    @classmethod
    def parse(cls, value: str | None, default: MatchConfidence | None = None) -> MatchConfidence | None:
        """Parse a stored confidence value, returning default when unknown."""
        if not value:
            return default
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            return default


_CONFIDENCE_RANK = {
    MatchConfidence.HIGH: 3,
    MatchConfidence.MEDIUM: 2,
    MatchConfidence.LOW: 1,
}


@dataclass(frozen=True)
class StorageLocation:
    """Address of a document row in the tabular store."""

    sheet: str
    row: int
    book_id: str = "default"

    def __str__(self) -> str:
        return f"{self.sheet}!{self.row}"


@dataclass(frozen=True)
class ExistingMatch:
    """Match already recorded in the store for a document."""

    document_id: str
    confidence: MatchConfidence = MatchConfidence.LOW
    has_counterparty_match: bool = False


@dataclass(frozen=True)
class Document:
    """Common fields of every reconciled document."""

    kind: ClassVar[DocumentKind]

    document_id: str
    counterparty_tax_id: str | None
    amount: Decimal
    currency: str
    business_date: date
    location: StorageLocation
    existing_match: ExistingMatch | None = None

    @property
    def is_matched(self) -> bool:
        """Return True if the store records a match for this document."""
        return self.existing_match is not None


@dataclass(frozen=True)
class Invoice(Document):
    """Invoice (or other billing document) issued or received."""

    kind: ClassVar[DocumentKind] = DocumentKind.INVOICE

    invoice_number: str | None = None
    counterparty_name: str | None = None
    paid: bool | None = None
    # Comprobante type: A, B, C, E, NC (credit note), ND (debit note)
    document_type: str | None = None
    concept: str | None = None


@dataclass(frozen=True)
class Payment(Document):
    """Bank payment, sent or received."""

    kind: ClassVar[DocumentKind] = DocumentKind.PAYMENT

    bank: str | None = None
    counterparty_name: str | None = None


@dataclass(frozen=True)
class Receipt(Document):
    """Salary receipt; the counterparty is the employee."""

    kind: ClassVar[DocumentKind] = DocumentKind.RECEIPT

    employee_name: str | None = None


# === Parsing helpers for stored values ===

_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%Y-%m-%dT%H:%M:%S")


def parse_amount(value: str | int | float | Decimal | None) -> Decimal | None:
    """Parse a stored amount into Decimal.

    Accepts plain ("1234.56"), US ("1,234.56") and Argentine ("1.234,56")
    notation. The last separator present is taken as the decimal mark.

    Returns:
        Decimal, or None if the value is empty or not a number.
    """
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float)):
        return Decimal(str(value))

    text = re.sub(r"[$\s]", "", str(value))
    if not text:
        return None

    negative = text.startswith("-") or text.startswith("(")
    text = text.strip("-()")

    last_comma = text.rfind(",")
    last_dot = text.rfind(".")
    if last_comma > last_dot:
        # Argentine: dots for thousands, comma for decimal
        text = text.replace(".", "").replace(",", ".")
    else:
        text = text.replace(",", "")

    try:
        amount = Decimal(text)
    except InvalidOperation:
        return None
    return -amount if negative else amount


def parse_date(value: str | date | None) -> date | None:
    """Parse a stored business date (ISO or DD/MM/YYYY)."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None

"""Test fixtures and utilities."""

from datetime import date
from decimal import Decimal

import pytest

from ledgermatch.config import Config
from ledgermatch.matching.currency import ExchangeRate, ExchangeRateCache
from ledgermatch.schemas.documents import (
    ExistingMatch,
    Invoice,
    MatchConfidence,
    Payment,
    Receipt,
    StorageLocation,
)
from ledgermatch.schemas.pairs import RECEIVED_INVOICES_PAIR, MatchPair
from ledgermatch.state_store import DocumentSnapshot

COUNTERPARTY_X = "20-12345678-6"
COUNTERPARTY_Y = "30-71234567-1"


def make_invoice(
    document_id: str,
    amount: str = "1210.00",
    business_date: date = date(2025, 1, 15),
    counterparty: str | None = COUNTERPARTY_X,
    currency: str = "ARS",
    row: int = 2,
    matched_to: str | None = None,
    confidence: MatchConfidence = MatchConfidence.LOW,
    has_counterparty_match: bool = False,
    sheet: str = RECEIVED_INVOICES_PAIR.target_sheet,
) -> Invoice:
    """Build an invoice, optionally already matched to a payment."""
    existing = None
    if matched_to:
        existing = ExistingMatch(matched_to, confidence, has_counterparty_match)
    return Invoice(
        document_id=document_id,
        counterparty_tax_id=counterparty,
        amount=Decimal(amount),
        currency=currency,
        business_date=business_date,
        location=StorageLocation(sheet, row),
        existing_match=existing,
        invoice_number=f"A-0001-{row:08d}",
    )


def make_payment(
    document_id: str,
    amount: str = "1210.00",
    business_date: date = date(2025, 1, 15),
    counterparty: str | None = COUNTERPARTY_X,
    row: int = 2,
    matched_to: str | None = None,
    confidence: MatchConfidence = MatchConfidence.LOW,
    sheet: str = RECEIVED_INVOICES_PAIR.source_sheet,
) -> Payment:
    """Build an ARS payment, optionally already matched to a document."""
    existing = ExistingMatch(matched_to, confidence) if matched_to else None
    return Payment(
        document_id=document_id,
        counterparty_tax_id=counterparty,
        amount=Decimal(amount),
        currency="ARS",
        business_date=business_date,
        location=StorageLocation(sheet, row),
        existing_match=existing,
        bank="BBVA",
    )


def make_receipt(
    document_id: str,
    amount: str = "850000.00",
    business_date: date = date(2025, 1, 31),
    employee_cuil: str = "20-12345678-6",
    row: int = 2,
) -> Receipt:
    return Receipt(
        document_id=document_id,
        counterparty_tax_id=employee_cuil,
        amount=Decimal(amount),
        currency="ARS",
        business_date=business_date,
        location=StorageLocation("Recibos", row),
        employee_name="Juan Perez",
    )


@pytest.fixture
def config() -> Config:
    """Default configuration with fast retries."""
    cfg = Config()
    cfg.concurrency.retry_base_delay_ms = 0
    cfg.concurrency.retry_max_delay_ms = 0
    return cfg


@pytest.fixture
def rates() -> ExchangeRateCache:
    """Rate cache with a sell rate of 800 for 2024-01-01."""
    cache = ExchangeRateCache()
    cache.put(ExchangeRate(date(2024, 1, 1), buy=Decimal("800"), sell=Decimal("800")))
    return cache


@pytest.fixture
def pair() -> MatchPair:
    return RECEIVED_INVOICES_PAIR


@pytest.fixture
def empty_snapshot() -> DocumentSnapshot:
    return DocumentSnapshot()

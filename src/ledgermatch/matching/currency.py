"""Cross-currency amount equivalence.

Foreign-currency documents are compared against base-currency payments by
converting with the historical sell rate of the document's date. Rates are
read from an in-memory cache only; populating it is the job of the
prefetch step (see ``ledgermatch.rates_client``), so matching never
performs network I/O.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Iterable

CENTS = Decimal("0.01")
DEFAULT_ABSOLUTE_TOLERANCE = Decimal("1.00")


@dataclass(frozen=True)
class ExchangeRate:
    """Official rate for one date (base-currency units per foreign unit)."""

    rate_date: date
    buy: Decimal
    sell: Decimal


@dataclass(frozen=True)
class CurrencyMatch:
    """Outcome of an amount comparison."""

    matches: bool
    is_cross_currency: bool
    # Sell rate used for conversion (cross-currency only)
    rate: Decimal | None = None
    # Converted amount the payment was compared against (cross-currency only)
    expected_amount: Decimal | None = None
    # True when the comparison failed only because no rate was cached
    cache_miss: bool = False


class ExchangeRateCache:
    """In-memory, date-keyed exchange-rate cache with expiry.

    Reads are synchronous and never fetch. Entries older than ``ttl_seconds``
    are dropped on access.
    """

    def __init__(
        self,
        ttl_seconds: float = 24 * 60 * 60,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[date, tuple[ExchangeRate, float]] = {}

    def get(self, rate_date: date) -> ExchangeRate | None:
        """Return the cached rate for a date, or None on miss/expiry."""
        entry = self._entries.get(rate_date)
        if entry is None:
            return None

        rate, stored_at = entry
        if self._clock() - stored_at > self.ttl_seconds:
            del self._entries[rate_date]
            return None
        return rate

    def put(self, rate: ExchangeRate) -> None:
        """Store a rate under its own date."""
        self._entries[rate.rate_date] = (rate, self._clock())

    def missing_dates(self, dates: Iterable[date]) -> list[date]:
        """Return the distinct dates without a valid cached rate, in input order."""
        missing: list[date] = []
        seen: set[date] = set()
        for d in dates:
            if d in seen:
                continue
            seen.add(d)
            if self.get(d) is None:
                missing.append(d)
        return missing

    def clear(self) -> None:
        self._entries.clear()

    def __contains__(self, rate_date: object) -> bool:
        return isinstance(rate_date, date) and self.get(rate_date) is not None

    def __len__(self) -> int:
        return len(self._entries)


def amounts_equivalent(
    source_amount: Decimal,
    source_currency: str,
    source_date: date,
    target_amount: Decimal,
    tolerance_percent: float | Decimal,
    *,
    rates: ExchangeRateCache,
    target_currency: str = "ARS",
    absolute_tolerance: Decimal = DEFAULT_ABSOLUTE_TOLERANCE,
) -> CurrencyMatch:
    """Compare a document amount with a payment amount.

    Same currency: equal within ``absolute_tolerance`` (rounding).
    Cross currency: ``source_amount`` is converted with the cached sell rate
    of ``source_date`` (rounded to cents) and ``target_amount`` must fall in
    the symmetric band ``expected * (1 +/- tolerance_percent / 100)``.

    A missing rate yields ``matches=False, cache_miss=True``; callers must
    log it so the rate can be prefetched, rather than treat it as a
    business mismatch.

    Args:
        source_amount: Amount of the priced document (invoice, receipt).
        source_currency: Currency of the priced document.
        source_date: Business date used for the rate lookup.
        target_amount: Payment amount.
        tolerance_percent: Cross-currency band, in percent.
        rates: Pre-populated rate cache.
        target_currency: Currency of the payment.
        absolute_tolerance: Same-currency tolerance.

    Returns:
        CurrencyMatch describing the comparison.
    """
    if source_currency.upper() == target_currency.upper():
        return CurrencyMatch(
            matches=abs(source_amount - target_amount) <= absolute_tolerance,
            is_cross_currency=False,
        )

    rate = rates.get(source_date)
    if rate is None:
        return CurrencyMatch(matches=False, is_cross_currency=True, cache_miss=True)

    expected = (source_amount * rate.sell).quantize(CENTS, rounding=ROUND_HALF_UP)
    factor = Decimal(str(tolerance_percent)) / Decimal(100)
    lower = expected * (1 - factor)
    upper = expected * (1 + factor)

    return CurrencyMatch(
        matches=lower <= target_amount <= upper,
        is_cross_currency=True,
        rate=rate.sell,
        expected_amount=expected,
    )

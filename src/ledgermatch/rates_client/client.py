"""
Historical exchange-rate client (ArgentinaDatos, dolar oficial).

Matching reads rates from an in-memory cache only; this client fills that
cache before a run.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..errors import ExchangeRateError
from ..matching.currency import ExchangeRate, ExchangeRateCache
from ..schemas.documents import Document

logger = logging.getLogger(__name__)


def _decimal(value: object, name: str) -> Decimal:
    # bool is an int subclass but never a valid rate
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ExchangeRateError(f"Invalid API response: missing {name}")
    try:
        result = Decimal(str(value))
    except InvalidOperation as e:
        raise ExchangeRateError(f"Invalid API response: {name} is not a number") from e
    if not result.is_finite() or result <= 0:
        raise ExchangeRateError(f"Invalid API response: {name} is not a valid rate")
    return result


class ExchangeRateClient:
    """
    Client for the official USD rate by date.

    Features:
    - One GET per date: {base_url}/{YYYY}/{MM}/{DD}
    - Automatic retry with backoff on transient HTTP failures
    """

    DEFAULT_TIMEOUT = 15

    def __init__(
        self,
        base_url: str,
        timeout: int = DEFAULT_TIMEOUT,
        max_retries: int = 3,
        backoff_factor: float = 0.5,
    ):
        """
        Initialize exchange-rate client.

        Args:
            base_url: Rates endpoint without the date path
            timeout: Request timeout in seconds
            max_retries: Maximum retry attempts for transient failures
            backoff_factor: Backoff factor for retries
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

        self.session = requests.Session()
        self.session.headers.update({"Accept": "application/json"})

        retry_strategy = Retry(
            total=max_retries,
            backoff_factor=backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    def url_for(self, rate_date: date) -> str:
        return f"{self.base_url}/{rate_date:%Y/%m/%d}"

    def get_rate(self, rate_date: date) -> ExchangeRate:
        """Fetch the buy/sell rate for a date.

        Raises:
            ExchangeRateError: On HTTP failure or malformed response.
        """
        url = self.url_for(rate_date)
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.exceptions.RequestException as e:
            raise ExchangeRateError(f"Request for {rate_date.isoformat()} failed: {e}") from e

        if not response.ok:
            raise ExchangeRateError(
                f"Failed to fetch exchange rate for {rate_date.isoformat()}: HTTP {response.status_code}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ExchangeRateError(f"Invalid JSON for {rate_date.isoformat()}") from e

        if not isinstance(data, dict):
            raise ExchangeRateError(f"Invalid API response for {rate_date.isoformat()}")

        return ExchangeRate(
            rate_date=rate_date,
            buy=_decimal(data.get("compra"), "compra"),
            sell=_decimal(data.get("venta"), "venta"),
        )


@dataclass
class PrefetchResult:
    """Outcome of a prefetch pass."""

    fetched: list[date] = field(default_factory=list)
    cached: list[date] = field(default_factory=list)
    failed: dict[date, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


def prefetch_exchange_rates(
    client: ExchangeRateClient,
    cache: ExchangeRateCache,
    dates: Iterable[date],
) -> PrefetchResult:
    """Fill the cache for every distinct date not already cached.

    A failed date is logged and skipped; the remaining dates are still
    fetched. Documents on a failed date later show up as cache misses.
    """
    result = PrefetchResult()
    requested = list(dict.fromkeys(dates))
    missing = cache.missing_dates(requested)
    result.cached = [d for d in requested if d in cache]

    for rate_date in missing:
        try:
            rate = client.get_rate(rate_date)
        except ExchangeRateError as e:
            logger.warning("Failed to prefetch exchange rate for %s: %s", rate_date.isoformat(), e)
            result.failed[rate_date] = str(e)
            continue
        cache.put(rate)
        result.fetched.append(rate_date)

    logger.info(
        "Exchange rates: %d fetched, %d already cached, %d failed",
        len(result.fetched),
        len(result.cached),
        len(result.failed),
    )
    return result


def foreign_currency_dates(documents: Iterable[Document], base_currency: str = "ARS") -> list[date]:
    """Distinct business dates of documents not in the base currency, sorted."""
    base = base_currency.upper()
    return sorted({doc.business_date for doc in documents if doc.currency.upper() != base})

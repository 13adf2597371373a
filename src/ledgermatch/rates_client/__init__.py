"""
Exchange-rate client.

Provides:
- Official USD buy/sell rate by date
- Retry/backoff for transient network failures
- Prefetch into the in-memory cache used by matching
"""

from .client import (
    ExchangeRateClient,
    PrefetchResult,
    foreign_currency_dates,
    prefetch_exchange_rates,
)

__all__ = [
    "ExchangeRateClient",
    "PrefetchResult",
    "foreign_currency_dates",
    "prefetch_exchange_rates",
]

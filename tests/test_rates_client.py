"""Tests for the exchange-rate client.

These tests use responses library to mock HTTP requests,
so they don't require network access.
"""

from datetime import date
from decimal import Decimal

import pytest
import responses
from conftest import make_invoice

from ledgermatch.config import DEFAULT_RATES_URL
from ledgermatch.errors import ExchangeRateError
from ledgermatch.matching.currency import ExchangeRate, ExchangeRateCache
from ledgermatch.rates_client import (
    ExchangeRateClient,
    foreign_currency_dates,
    prefetch_exchange_rates,
)

BASE_URL = "https://rates.test/v1/cotizaciones/dolares/oficial"


@pytest.fixture
def client() -> ExchangeRateClient:
    return ExchangeRateClient(base_url=BASE_URL, max_retries=0)


def _add_rate(day: date, compra=780.5, venta=820.5, status=200):
    responses.add(
        responses.GET,
        f"{BASE_URL}/{day:%Y/%m/%d}",
        json={"casa": "oficial", "compra": compra, "venta": venta, "fecha": day.isoformat()},
        status=status,
    )


class TestExchangeRateClient:
    """Tests for single-date fetches."""

    def test_url_zero_padded(self, client):
        assert client.url_for(date(2024, 1, 5)) == f"{BASE_URL}/2024/01/05"

    def test_default_base_url(self):
        client = ExchangeRateClient(base_url=DEFAULT_RATES_URL + "/")
        assert client.url_for(date(2024, 1, 1)).startswith(
            "https://api.argentinadatos.com/v1/cotizaciones/dolares/oficial/2024/01/01"
        )

    @responses.activate
    def test_get_rate(self, client):
        _add_rate(date(2024, 1, 1))

        rate = client.get_rate(date(2024, 1, 1))

        assert rate == ExchangeRate(date(2024, 1, 1), buy=Decimal("780.5"), sell=Decimal("820.5"))

    @responses.activate
    def test_http_error(self, client):
        responses.add(responses.GET, f"{BASE_URL}/2024/01/01", status=404)

        with pytest.raises(ExchangeRateError, match="HTTP 404"):
            client.get_rate(date(2024, 1, 1))

    @responses.activate
    def test_missing_venta(self, client):
        responses.add(responses.GET, f"{BASE_URL}/2024/01/01", json={"compra": 800})

        with pytest.raises(ExchangeRateError, match="venta"):
            client.get_rate(date(2024, 1, 1))

    @responses.activate
    def test_non_numeric_rate(self, client):
        responses.add(
            responses.GET, f"{BASE_URL}/2024/01/01", json={"compra": "n/a", "venta": 800}
        )

        with pytest.raises(ExchangeRateError, match="compra"):
            client.get_rate(date(2024, 1, 1))

    @responses.activate
    def test_invalid_json(self, client):
        responses.add(responses.GET, f"{BASE_URL}/2024/01/01", body="<html>")

        with pytest.raises(ExchangeRateError, match="Invalid JSON"):
            client.get_rate(date(2024, 1, 1))


class TestPrefetch:
    """Tests for filling the cache."""

    @responses.activate
    def test_fetches_missing_dates_once(self, client):
        cache = ExchangeRateCache()
        cache.put(ExchangeRate(date(2024, 1, 1), Decimal("1"), Decimal("1")))
        _add_rate(date(2024, 1, 2))

        result = prefetch_exchange_rates(
            client, cache, [date(2024, 1, 1), date(2024, 1, 2), date(2024, 1, 2)]
        )

        assert result.success
        assert result.fetched == [date(2024, 1, 2)]
        assert result.cached == [date(2024, 1, 1)]
        assert len(responses.calls) == 1
        assert cache.get(date(2024, 1, 2)).sell == Decimal("820.5")

    @responses.activate
    def test_failed_date_skipped(self, client):
        cache = ExchangeRateCache()
        _add_rate(date(2024, 1, 1), status=500)
        _add_rate(date(2024, 1, 2))

        result = prefetch_exchange_rates(client, cache, [date(2024, 1, 1), date(2024, 1, 2)])

        assert not result.success
        assert date(2024, 1, 1) in result.failed
        assert result.fetched == [date(2024, 1, 2)]
        assert date(2024, 1, 1) not in cache


class TestForeignCurrencyDates:
    """Tests for selecting dates that need a rate."""

    def test_only_non_base_currency(self):
        documents = [
            make_invoice("F1", currency="USD", business_date=date(2024, 1, 2)),
            make_invoice("F2", currency="ARS", business_date=date(2024, 1, 3)),
            make_invoice("F3", currency="usd", business_date=date(2024, 1, 1)),
            make_invoice("F4", currency="USD", business_date=date(2024, 1, 2)),
        ]
        assert foreign_currency_dates(documents, "ARS") == [date(2024, 1, 1), date(2024, 1, 2)]

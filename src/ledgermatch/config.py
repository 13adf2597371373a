"""
Configuration management (SSOT).

This module defines ALL configuration for the reconciliation engine.
All config keys are defined here; no other module should invent config keys.

Key invariants:
- Date windows are measured as (payment date - document date) in days
- HIGH window is contained in the MEDIUM window, which is contained in the
  plausibility window [-days_before, days_after]
- Cascade bounds are a backstop; strict-improvement displacement terminates
  on its own
"""

import logging
import os
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path

import yaml

from .errors import ConfigValidationError

logger = logging.getLogger(__name__)

__all__ = [
    "CascadeConfig",
    "ConcurrencyConfig",
    "Config",
    "ConfigValidationError",
    "MatchingConfig",
    "RatesConfig",
    "create_default_config",
    "load_config",
]

DEFAULT_RATES_URL = "https://api.argentinadatos.com/v1/cotizaciones/dolares/oficial"


@dataclass
class MatchingConfig:
    """Scorer settings.

    The plausibility window is the widest one: a candidate outside
    [-days_before, days_after] is never returned. The HIGH and MEDIUM
    windows only decide the confidence tier.
    """

    # Plausibility (LOW tier) window
    days_before: int = 10
    days_after: int = 60
    # HIGH tier window
    high_days_before: int = 0
    high_days_after: int = 15
    # MEDIUM tier window
    medium_days_before: int = 3
    medium_days_after: int = 30
    # Symmetric band around the converted amount (percent)
    cross_currency_tolerance_percent: float = 5.0
    # Absolute tolerance for same-currency amounts (rounding)
    amount_tolerance: Decimal = Decimal("1.00")
    # Currency payments are booked in
    base_currency: str = "ARS"


@dataclass
class CascadeConfig:
    """Bounds for the displacement drain."""

    max_cascade_depth: int = 10
    cascade_timeout_ms: int = 30_000


@dataclass
class ConcurrencyConfig:
    """Lock and retry settings for a full run."""

    lock_timeout_ms: int = 5_000
    max_retries: int = 2
    retry_base_delay_ms: int = 100
    retry_max_delay_ms: int = 2_000


@dataclass
class RatesConfig:
    """Exchange-rate prefetch settings."""

    base_url: str = DEFAULT_RATES_URL
    timeout_seconds: int = 15
    max_retries: int = 3
    cache_ttl_hours: int = 24


@dataclass
class Config:
    """Application configuration (SSOT).

    All configuration is centralized here. No other module should define
    configuration keys or defaults.
    """

    matching: MatchingConfig = field(default_factory=MatchingConfig)
    cascade: CascadeConfig = field(default_factory=CascadeConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    rates: RatesConfig = field(default_factory=RatesConfig)
    store_path: Path = field(default_factory=lambda: Path("data/ledger.db"))
    book_id: str = "default"

    def validate(self) -> list[str]:
        """Validate configuration completeness and consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors: list[str] = []
        m = self.matching

        windows = {
            "days_before": m.days_before,
            "days_after": m.days_after,
            "high_days_before": m.high_days_before,
            "high_days_after": m.high_days_after,
            "medium_days_before": m.medium_days_before,
            "medium_days_after": m.medium_days_after,
        }
        for name, value in windows.items():
            if value < 0:
                errors.append(f"matching.{name} must be >= 0")

        # Tier windows must nest
        if m.high_days_before > m.medium_days_before or m.high_days_after > m.medium_days_after:
            errors.append("HIGH date window must be contained in the MEDIUM window")
        if m.medium_days_before > m.days_before or m.medium_days_after > m.days_after:
            errors.append("MEDIUM date window must be contained in days_before/days_after")

        if m.cross_currency_tolerance_percent < 0:
            errors.append("matching.cross_currency_tolerance_percent must be >= 0")
        if m.amount_tolerance < 0:
            errors.append("matching.amount_tolerance must be >= 0")

        if self.cascade.max_cascade_depth < 1:
            errors.append("cascade.max_cascade_depth must be >= 1")
        if self.cascade.cascade_timeout_ms <= 0:
            errors.append("cascade.cascade_timeout_ms must be > 0")

        if self.concurrency.lock_timeout_ms <= 0:
            errors.append("concurrency.lock_timeout_ms must be > 0")
        if self.concurrency.max_retries < 0:
            errors.append("concurrency.max_retries must be >= 0")

        if not self.rates.base_url:
            errors.append("rates.base_url is required")

        return errors

    def ensure_valid(self) -> None:
        """Raise ConfigValidationError if validate() reports problems."""
        errors = self.validate()
        if errors:
            raise ConfigValidationError("; ".join(errors))


def _env_int(name: str, default: int) -> int:
    """Read an integer override, keeping the default when malformed."""
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r", name, raw)
        return default


def load_config(config_path: Path) -> Config:
    """
    Load configuration from YAML file.

    Environment variables can override config values:
    - LEDGERMATCH_DAYS_BEFORE
    - LEDGERMATCH_DAYS_AFTER
    - LEDGERMATCH_TOLERANCE_PERCENT (cross-currency band)
    - LEDGERMATCH_MAX_CASCADE_DEPTH
    - LEDGERMATCH_CASCADE_TIMEOUT_MS
    - LEDGERMATCH_LOCK_TIMEOUT_MS
    - LEDGERMATCH_MAX_RETRIES
    - LEDGERMATCH_STORE_PATH
    - LEDGERMATCH_RATES_URL
    """
    if config_path.exists():
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
    else:
        data = {}

    # Matching config
    matching_data = data.get("matching", {})
    matching = MatchingConfig(
        days_before=_env_int(
            "LEDGERMATCH_DAYS_BEFORE", matching_data.get("days_before", 10)
        ),
        days_after=_env_int("LEDGERMATCH_DAYS_AFTER", matching_data.get("days_after", 60)),
        high_days_before=matching_data.get("high_days_before", 0),
        high_days_after=matching_data.get("high_days_after", 15),
        medium_days_before=matching_data.get("medium_days_before", 3),
        medium_days_after=matching_data.get("medium_days_after", 30),
        cross_currency_tolerance_percent=_env_float(
            "LEDGERMATCH_TOLERANCE_PERCENT",
            matching_data.get("cross_currency_tolerance_percent", 5.0),
        ),
        amount_tolerance=Decimal(str(matching_data.get("amount_tolerance", "1.00"))),
        base_currency=matching_data.get("base_currency", "ARS"),
    )

    # Cascade config
    cascade_data = data.get("cascade", {})
    cascade = CascadeConfig(
        max_cascade_depth=_env_int(
            "LEDGERMATCH_MAX_CASCADE_DEPTH", cascade_data.get("max_cascade_depth", 10)
        ),
        cascade_timeout_ms=_env_int(
            "LEDGERMATCH_CASCADE_TIMEOUT_MS", cascade_data.get("cascade_timeout_ms", 30_000)
        ),
    )

    # Concurrency config
    concurrency_data = data.get("concurrency", {})
    concurrency = ConcurrencyConfig(
        lock_timeout_ms=_env_int(
            "LEDGERMATCH_LOCK_TIMEOUT_MS", concurrency_data.get("lock_timeout_ms", 5_000)
        ),
        max_retries=_env_int("LEDGERMATCH_MAX_RETRIES", concurrency_data.get("max_retries", 2)),
        retry_base_delay_ms=concurrency_data.get("retry_base_delay_ms", 100),
        retry_max_delay_ms=concurrency_data.get("retry_max_delay_ms", 2_000),
    )

    # Rates config
    rates_data = data.get("rates", {})
    rates = RatesConfig(
        base_url=os.environ.get(
            "LEDGERMATCH_RATES_URL", rates_data.get("base_url", DEFAULT_RATES_URL)
        ),
        timeout_seconds=rates_data.get("timeout_seconds", 15),
        max_retries=rates_data.get("max_retries", 3),
        cache_ttl_hours=rates_data.get("cache_ttl_hours", 24),
    )

    store_path = os.environ.get(
        "LEDGERMATCH_STORE_PATH", data.get("store_path", "data/ledger.db")
    )

    return Config(
        matching=matching,
        cascade=cascade,
        concurrency=concurrency,
        rates=rates,
        store_path=Path(store_path),
        book_id=str(data.get("book_id", "default")),
    )


def create_default_config(config_path: Path) -> None:
    """Create a default configuration file."""
    default_config = """# Document reconciliation configuration
#
# Date windows are measured as (payment date - document date) in days.
# A window [before, after] accepts payments up to `before` days earlier
# and `after` days later than the document.

matching:
  days_before: 10                          # Plausibility window (LOW tier)
  days_after: 60
  high_days_before: 0                      # HIGH tier window
  high_days_after: 15
  medium_days_before: 3                    # MEDIUM tier window
  medium_days_after: 30
  cross_currency_tolerance_percent: 5.0    # Band around converted amount
  amount_tolerance: "1.00"                 # Same-currency absolute tolerance
  base_currency: "ARS"

# Displacement drain bounds
cascade:
  max_cascade_depth: 10
  cascade_timeout_ms: 30000

# Per-pair lock and retry
concurrency:
  lock_timeout_ms: 5000
  max_retries: 2
  retry_base_delay_ms: 100
  retry_max_delay_ms: 2000

# Historical exchange rates (prefetched before matching)
rates:
  base_url: "https://api.argentinadatos.com/v1/cotizaciones/dolares/oficial"
  timeout_seconds: 15
  max_retries: 3
  cache_ttl_hours: 24

# Reference document store
store_path: "data/ledger.db"
book_id: "default"
"""

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        f.write(default_config)

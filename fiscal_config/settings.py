"""
Runtime settings (``fiscal_config.settings``).

``FiscalSettings`` is a frozen dataclass read once at start-up.  Values
come from a YAML file: the explicit ``path`` argument, else the
``FISCAL_SETTINGS_PATH`` environment variable, else built-in defaults.
Unknown keys are rejected so that typos do not silently fall back.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from decimal import Decimal
from pathlib import Path
from typing import Any

from fiscal_config.loader import load_yaml_file
from fiscal_kernel.domain.aggregator import RoundingPolicy
from fiscal_kernel.domain.currency import CurrencyRegistry
from fiscal_kernel.domain.invoice import MAX_PAYMENT_TERMS_DAYS
from fiscal_kernel.exceptions import InvalidCurrencyError, ReferenceDataError
from fiscal_kernel.logging_config import get_logger

logger = get_logger("config.settings")

SETTINGS_PATH_ENV = "FISCAL_SETTINGS_PATH"


@dataclass(frozen=True)
class FiscalSettings:
    base_currency: str = "DOP"
    rounding_policy: RoundingPolicy = RoundingPolicy.PER_LINE
    lock_timeout_seconds: float = 5.0
    contention_max_attempts: int = 3
    contention_backoff_seconds: float = 0.05
    expiry_warning_days: int = 30
    usage_warning_percent: Decimal = Decimal("90")
    default_payment_terms_days: int = 30

    def __post_init__(self) -> None:
        CurrencyRegistry.validate(self.base_currency)
        if not isinstance(self.rounding_policy, RoundingPolicy):
            object.__setattr__(self, "rounding_policy", RoundingPolicy(self.rounding_policy))
        if not isinstance(self.usage_warning_percent, Decimal):
            object.__setattr__(
                self, "usage_warning_percent", Decimal(str(self.usage_warning_percent))
            )
        if self.lock_timeout_seconds <= 0:
            raise ValueError("lock_timeout_seconds must be positive")
        if self.contention_max_attempts < 1:
            raise ValueError("contention_max_attempts must be at least 1")
        if self.contention_backoff_seconds < 0:
            raise ValueError("contention_backoff_seconds must not be negative")
        if self.expiry_warning_days < 0:
            raise ValueError("expiry_warning_days must not be negative")
        if not Decimal("0") < self.usage_warning_percent <= Decimal("100"):
            raise ValueError("usage_warning_percent must be in (0, 100]")
        if not 0 <= self.default_payment_terms_days <= MAX_PAYMENT_TERMS_DAYS:
            raise ValueError(
                f"default_payment_terms_days must be between 0 and {MAX_PAYMENT_TERMS_DAYS}"
            )


def settings_from_dict(data: dict[str, Any], source: str = "settings") -> FiscalSettings:
    known = {f.name for f in fields(FiscalSettings)}
    unknown = set(data) - known
    if unknown:
        raise ReferenceDataError(source, f"unknown settings {sorted(unknown)}")
    try:
        return FiscalSettings(**data)
    except (TypeError, ValueError, InvalidCurrencyError) as exc:
        raise ReferenceDataError(source, str(exc)) from exc


def load_settings(path: Path | str | None = None) -> FiscalSettings:
    """
    Load settings.

    A path given explicitly or through the environment that does not
    exist yields the defaults, logged at WARNING.
    """
    if path is None:
        path = os.environ.get(SETTINGS_PATH_ENV)
    if path is None:
        return FiscalSettings()

    path = Path(path)
    if not path.exists():
        logger.warning("settings_file_missing", extra={"path": str(path)})
        return FiscalSettings()

    settings = settings_from_dict(load_yaml_file(path), str(path))
    logger.info("settings_loaded", extra={"path": str(path)})
    return settings

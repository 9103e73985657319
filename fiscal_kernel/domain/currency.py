"""Currency -- ISO 4217 registry and precision-derived rounding."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import ClassVar

from fiscal_kernel.exceptions import InvalidCurrencyError


@dataclass(frozen=True)
class CurrencyInfo:
    """Information about a single ISO 4217 currency."""

    code: str
    decimal_places: int
    name: str

    @property
    def quantum(self) -> Decimal:
        """Smallest representable unit, for Decimal.quantize()."""
        if self.decimal_places == 0:
            return Decimal("1")
        return Decimal("0." + "0" * self.decimal_places)


class CurrencyRegistry:
    """Registry of the ISO 4217 currencies invoiced by Dominican businesses."""

    _CURRENCIES: ClassVar[dict[str, CurrencyInfo]] = {
        "DOP": CurrencyInfo("DOP", 2, "Dominican Peso"),
        "USD": CurrencyInfo("USD", 2, "US Dollar"),
        "EUR": CurrencyInfo("EUR", 2, "Euro"),
        "CAD": CurrencyInfo("CAD", 2, "Canadian Dollar"),
        "GBP": CurrencyInfo("GBP", 2, "Pound Sterling"),
        "CHF": CurrencyInfo("CHF", 2, "Swiss Franc"),
        "MXN": CurrencyInfo("MXN", 2, "Mexican Peso"),
        "COP": CurrencyInfo("COP", 2, "Colombian Peso"),
        "HTG": CurrencyInfo("HTG", 2, "Haitian Gourde"),
        "JPY": CurrencyInfo("JPY", 0, "Japanese Yen"),
    }

    @classmethod
    def is_valid(cls, code: str) -> bool:
        """Check if a currency code is registered."""
        if not code or not isinstance(code, str):
            return False
        return code.upper().strip() in cls._CURRENCIES

    @classmethod
    def get_info(cls, code: str) -> CurrencyInfo:
        """Get currency information by code."""
        return cls._CURRENCIES[cls.validate(code)]

    @classmethod
    def get_decimal_places(cls, code: str) -> int:
        """Get decimal places for a currency."""
        return cls.get_info(code).decimal_places

    @classmethod
    def validate(cls, code: str) -> str:
        """Validate and normalize a currency code."""
        if not code or not isinstance(code, str):
            raise InvalidCurrencyError(str(code))
        normalized = code.upper().strip()
        if normalized not in cls._CURRENCIES:
            raise InvalidCurrencyError(code)
        return normalized

    @classmethod
    def all_codes(cls) -> frozenset[str]:
        """Get all valid currency codes."""
        return frozenset(cls._CURRENCIES.keys())


def round_money(value: Decimal, currency: str, rounding: str = ROUND_HALF_UP) -> Decimal:
    """
    Round a monetary value to the currency's decimal places.

    This is the only sanctioned rounding function for invoice amounts.
    """
    return value.quantize(CurrencyRegistry.get_info(currency).quantum, rounding=rounding)

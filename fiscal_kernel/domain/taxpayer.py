"""Dominican taxpayer identifiers: RNC (9 digits) and cédula (11 digits)."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

_NON_DIGITS = re.compile(r"\D")

_RNC_WEIGHTS = (7, 9, 8, 6, 5, 4, 3, 2)
_CEDULA_WEIGHTS = (1, 2, 1, 2, 1, 2, 1, 2, 1, 2)


class TaxpayerIdKind(Enum):
    RNC = "rnc"
    CEDULA = "cedula"


def normalize_taxpayer_id(value: str | None) -> str:
    """Strip dashes, spaces and any other separators."""
    if not value:
        return ""
    return _NON_DIGITS.sub("", value)


def validate_rnc(value: str | None) -> bool:
    digits = normalize_taxpayer_id(value)
    if len(digits) != 9:
        return False
    total = sum(int(d) * w for d, w in zip(digits[:8], _RNC_WEIGHTS))
    check = 11 - (total % 11)
    if check >= 10:
        check -= 9
    return int(digits[8]) == check


def validate_cedula(value: str | None) -> bool:
    digits = normalize_taxpayer_id(value)
    if len(digits) != 11:
        return False
    total = 0
    for d, w in zip(digits[:10], _CEDULA_WEIGHTS):
        product = int(d) * w
        total += product // 10 + product % 10
    remainder = total % 10
    check = 0 if remainder == 0 else 10 - remainder
    return int(digits[10]) == check


def classify_taxpayer_id(value: str | None) -> TaxpayerIdKind | None:
    """Return the id kind when the check digit is valid, else None."""
    if validate_rnc(value):
        return TaxpayerIdKind.RNC
    if validate_cedula(value):
        return TaxpayerIdKind.CEDULA
    return None


def format_taxpayer_id(value: str | None) -> str:
    """Display form: XXX-XXXXX-X for RNC, XXX-XXXXXXX-X for cédula."""
    digits = normalize_taxpayer_id(value)
    if len(digits) == 9:
        return f"{digits[:3]}-{digits[3:8]}-{digits[8:]}"
    if len(digits) == 11:
        return f"{digits[:3]}-{digits[3:10]}-{digits[10:]}"
    return value or ""


@dataclass(frozen=True)
class Customer:
    """The buyer on an invoice.  ``taxpayer_id`` is an RNC or cédula."""

    customer_id: str
    name: str
    taxpayer_id: str | None = None

    @property
    def normalized_taxpayer_id(self) -> str:
        return normalize_taxpayer_id(self.taxpayer_id)

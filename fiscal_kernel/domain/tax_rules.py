"""
Tax Rule Table -- static mapping from tax-class code to rate.

Responsibility:
    Holds the immutable ITBIS classes (standard, reduced, zero-rated,
    exempt) that invoice lines reference, and answers ``rate_of``.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Leaf module: imported by the
    document type registry, the aggregator and the reference data loader.

Invariants enforced:
    - Every rate is a Decimal fraction in [0, 1].
    - Codes are unique within a table.
    - Unknown codes fail with UnknownTaxClassError; there is no default rate.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from decimal import Decimal

from fiscal_kernel.exceptions import ReferenceDataError, UnknownTaxClassError


@dataclass(frozen=True)
class TaxClass:
    """A tax class and its rate (e.g. ITBIS 18% = Decimal("0.18"))."""

    code: str
    label: str
    rate: Decimal
    exempt: bool = False

    def __post_init__(self) -> None:
        if not isinstance(self.rate, Decimal):
            object.__setattr__(self, "rate", Decimal(str(self.rate)))
        if not Decimal("0") <= self.rate <= Decimal("1"):
            raise ReferenceDataError(
                "tax_classes", f"rate {self.rate} of {self.code} is outside [0, 1]"
            )
        if self.exempt and self.rate != Decimal("0"):
            raise ReferenceDataError(
                "tax_classes", f"exempt class {self.code} must have a zero rate"
            )


class TaxRuleTable:
    """Read-only lookup of tax classes by code."""

    def __init__(self, tax_classes: Iterable[TaxClass]):
        classes: dict[str, TaxClass] = {}
        for tax_class in tax_classes:
            if tax_class.code in classes:
                raise ReferenceDataError(
                    "tax_classes", f"duplicate tax class {tax_class.code}"
                )
            classes[tax_class.code] = tax_class
        self._classes = classes

    def get(self, tax_class: str) -> TaxClass:
        try:
            return self._classes[tax_class]
        except KeyError:
            raise UnknownTaxClassError(tax_class) from None

    def rate_of(self, tax_class: str) -> Decimal:
        """Rate of a tax class as a Decimal fraction."""
        return self.get(tax_class).rate

    def is_exempt(self, tax_class: str) -> bool:
        return self.get(tax_class).exempt

    def __contains__(self, tax_class: object) -> bool:
        return tax_class in self._classes

    def codes(self) -> frozenset[str]:
        return frozenset(self._classes)

    def all(self) -> tuple[TaxClass, ...]:
        return tuple(self._classes.values())

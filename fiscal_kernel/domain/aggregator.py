"""
Invoice Line Aggregator -- subtotal, discount, ITBIS and total.

Responsibility:
    Pure computation of ``InvoiceTotals`` from a collection of
    ``InvoiceLine`` values and a ``TaxRuleTable``.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.  Called by
    ``InvoiceDraft.totals()`` for previews and by ``InvoiceCompositor``
    before any NCF is allocated.

Invariants enforced:
    - Decimal only, NEVER float.  Inputs are coerced through ``str``.
    - grand_total == subtotal - total_discount + total_tax exactly, because
      it is computed from the already-rounded components.
    - PER_LINE rounding rounds each line's subtotal, discount and tax to
      the currency precision (ROUND_HALF_UP) before summing.  AGGREGATE
      rounding sums full-precision figures and rounds once.

Failure modes:
    - EmptyLineSetError: no lines.
    - InvalidLineQuantityError: quantity <= 0 or more than 3 decimals.
    - InvalidDiscountError: discount outside [0, 100].
    - InvalidUnitPriceError: negative unit price.
    - UnknownTaxClassError: line references an unregistered tax class.
    - InvalidCurrencyError / InvalidExchangeRateError: bad currency data.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from uuid import uuid4

from fiscal_kernel.domain.currency import CurrencyRegistry, round_money
from fiscal_kernel.domain.tax_rules import TaxRuleTable
from fiscal_kernel.exceptions import (
    EmptyLineSetError,
    InvalidDiscountError,
    InvalidExchangeRateError,
    InvalidLineQuantityError,
    InvalidUnitPriceError,
)
from fiscal_kernel.logging_config import get_logger

logger = get_logger("domain.aggregator")

QUANTITY_MAX_DECIMALS = 3
# Quantity and unit price stay below this so line amounts fit the decimal
# context precision when rounded.
LINE_VALUE_LIMIT = Decimal("1E+12")
_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


class RoundingPolicy(Enum):
    PER_LINE = "per_line"
    AGGREGATE = "aggregate"


def _to_decimal(value: Decimal | int | str) -> Decimal:
    if isinstance(value, float):
        raise TypeError("float amounts are not accepted; pass Decimal or str")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class InvoiceLine:
    """A single line on a fiscal invoice."""

    product_ref: str
    quantity: Decimal
    unit_price: Decimal
    tax_class: str
    discount_pct: Decimal = Decimal("0")
    description: str = ""
    line_id: str = field(default_factory=lambda: uuid4().hex)

    def __post_init__(self) -> None:
        for name in ("quantity", "unit_price", "discount_pct"):
            raw = getattr(self, name)
            try:
                object.__setattr__(self, name, _to_decimal(raw))
            except InvalidOperation:
                raise ValueError(f"{name} is not a number: {raw!r}") from None


@dataclass(frozen=True)
class TaxBreakdown:
    """Taxable base and tax for one tax class."""

    tax_class: str
    rate: Decimal
    base: Decimal
    tax: Decimal


@dataclass(frozen=True)
class InvoiceTotals:
    """Totals of an invoice in its own currency."""

    subtotal: Decimal
    total_discount: Decimal
    total_tax: Decimal
    grand_total: Decimal
    currency: str
    exchange_rate: Decimal = Decimal("1")
    taxable_amount: Decimal = Decimal("0")
    exempt_amount: Decimal = Decimal("0")
    tax_breakdown: tuple[TaxBreakdown, ...] = ()
    rounding_policy: RoundingPolicy = RoundingPolicy.PER_LINE

    @property
    def net_amount(self) -> Decimal:
        return self.subtotal - self.total_discount

    def in_base_currency(self, base_currency: str) -> InvoiceTotals:
        """Convert to the base currency using ``exchange_rate``."""
        base_currency = CurrencyRegistry.validate(base_currency)
        if self.currency == base_currency:
            return self

        def conv(amount: Decimal) -> Decimal:
            return round_money(amount * self.exchange_rate, base_currency)

        subtotal = conv(self.subtotal)
        discount = conv(self.total_discount)
        tax = conv(self.total_tax)
        return InvoiceTotals(
            subtotal=subtotal,
            total_discount=discount,
            total_tax=tax,
            grand_total=subtotal - discount + tax,
            currency=base_currency,
            exchange_rate=Decimal("1"),
            taxable_amount=conv(self.taxable_amount),
            exempt_amount=conv(self.exempt_amount),
            tax_breakdown=tuple(
                TaxBreakdown(b.tax_class, b.rate, conv(b.base), conv(b.tax))
                for b in self.tax_breakdown
            ),
            rounding_policy=self.rounding_policy,
        )


def validate_line(line: InvoiceLine, tax_table: TaxRuleTable) -> None:
    """Raise the specific eligibility error for a malformed line."""
    quantity = line.quantity
    if not quantity.is_finite() or not _ZERO < quantity < LINE_VALUE_LIMIT:
        raise InvalidLineQuantityError(line.line_id, str(quantity))
    # Digits past the allowed decimals must all be zero.
    _, digits, exponent = quantity.as_tuple()
    excess = -exponent - QUANTITY_MAX_DECIMALS
    if excess > 0 and any(digits[-excess:]):
        raise InvalidLineQuantityError(line.line_id, str(quantity))
    if not line.unit_price.is_finite() or not _ZERO <= line.unit_price < LINE_VALUE_LIMIT:
        raise InvalidUnitPriceError(line.line_id, str(line.unit_price))
    if not line.discount_pct.is_finite() or not _ZERO <= line.discount_pct <= _HUNDRED:
        raise InvalidDiscountError(line.line_id, str(line.discount_pct))
    tax_table.get(line.tax_class)


def validate_exchange_rate(
    currency: str, exchange_rate: Decimal | int | str, base_currency: str | None
) -> Decimal:
    rate = _to_decimal(exchange_rate)
    if not rate.is_finite() or rate <= _ZERO:
        raise InvalidExchangeRateError(currency, str(rate), "rate must be positive")
    if base_currency is not None and currency == base_currency and rate != Decimal("1"):
        raise InvalidExchangeRateError(
            currency, str(rate), "base currency invoices use a rate of 1"
        )
    return rate


def compute_totals(
    lines: Iterable[InvoiceLine],
    tax_table: TaxRuleTable,
    currency: str = "DOP",
    exchange_rate: Decimal | int | str = Decimal("1"),
    rounding_policy: RoundingPolicy = RoundingPolicy.PER_LINE,
    base_currency: str | None = None,
) -> InvoiceTotals:
    """
    Compute invoice totals.

    Preconditions:
        - ``lines`` is non-empty; each line is valid per ``validate_line``.
    Postconditions:
        - All amounts are rounded to the currency's decimal places.
        - ``grand_total == subtotal - total_discount + total_tax``.
        - Under PER_LINE, ``taxable_amount + exempt_amount`` equals
          ``subtotal - total_discount``; under AGGREGATE they may differ
          by the currency's smallest unit.
    """
    lines = tuple(lines)
    if not lines:
        raise EmptyLineSetError()
    currency = CurrencyRegistry.validate(currency)
    rate = validate_exchange_rate(currency, exchange_rate, base_currency)

    per_line = rounding_policy is RoundingPolicy.PER_LINE

    def line_round(value: Decimal) -> Decimal:
        return round_money(value, currency) if per_line else value

    subtotal = discount = tax = taxable = exempt = _ZERO
    bases: dict[str, Decimal] = {}
    taxes: dict[str, Decimal] = {}

    for line in lines:
        validate_line(line, tax_table)
        tax_class = tax_table.get(line.tax_class)

        line_subtotal = line_round(line.quantity * line.unit_price)
        line_discount = line_round(line_subtotal * line.discount_pct / _HUNDRED)
        line_taxable = line_subtotal - line_discount
        line_tax = line_round(line_taxable * tax_class.rate)

        subtotal += line_subtotal
        discount += line_discount
        tax += line_tax
        if tax_class.exempt:
            exempt += line_taxable
        else:
            taxable += line_taxable
        bases[tax_class.code] = bases.get(tax_class.code, _ZERO) + line_taxable
        taxes[tax_class.code] = taxes.get(tax_class.code, _ZERO) + line_tax

    subtotal = round_money(subtotal, currency)
    discount = round_money(discount, currency)
    tax = round_money(tax, currency)

    breakdown = tuple(
        TaxBreakdown(
            tax_class=code,
            rate=tax_table.rate_of(code),
            base=round_money(bases[code], currency),
            tax=round_money(taxes[code], currency),
        )
        for code in sorted(bases)
    )

    totals = InvoiceTotals(
        subtotal=subtotal,
        total_discount=discount,
        total_tax=tax,
        grand_total=subtotal - discount + tax,
        currency=currency,
        exchange_rate=rate,
        taxable_amount=round_money(taxable, currency),
        exempt_amount=round_money(exempt, currency),
        tax_breakdown=breakdown,
        rounding_policy=rounding_policy,
    )
    logger.debug(
        "invoice_totals_computed",
        extra={
            "line_count": len(lines),
            "currency": currency,
            "grand_total": str(totals.grand_total),
            "rounding_policy": rounding_policy.value,
        },
    )
    return totals

"""Tests for invoice line aggregation: subtotal, discount, ITBIS, total."""

from decimal import Decimal

import pytest

from fiscal_kernel.domain.aggregator import InvoiceLine, RoundingPolicy, compute_totals
from fiscal_kernel.exceptions import (
    EmptyLineSetError,
    InvalidCurrencyError,
    InvalidDiscountError,
    InvalidExchangeRateError,
    InvalidLineQuantityError,
    InvalidUnitPriceError,
    UnknownTaxClassError,
)


def line(quantity="1", unit_price="100", tax_class="ITBIS_18", discount_pct="0", product_ref="SKU"):
    return InvoiceLine(
        product_ref=product_ref,
        quantity=Decimal(quantity),
        unit_price=Decimal(unit_price),
        tax_class=tax_class,
        discount_pct=Decimal(discount_pct),
    )


class TestTotals:

    def test_discounted_single_line(self, tax_table):
        totals = compute_totals([line("2", "100", discount_pct="10")], tax_table)
        assert totals.subtotal == Decimal("200.00")
        assert totals.total_discount == Decimal("20.00")
        assert totals.total_tax == Decimal("32.40")
        assert totals.grand_total == Decimal("212.40")

    def test_mixed_rates(self, tax_table):
        totals = compute_totals(
            [line("1", "1000", "ITBIS_18"), line("3", "50", "ITBIS_0")], tax_table
        )
        assert totals.subtotal == Decimal("1150.00")
        assert totals.total_discount == Decimal("0.00")
        assert totals.total_tax == Decimal("180.00")
        assert totals.grand_total == Decimal("1330.00")

    def test_exempt_reported_apart_from_taxable(self, tax_table):
        totals = compute_totals(
            [line("1", "100", "EXEMPT"), line("1", "100", "ITBIS_18"), line("1", "100", "ITBIS_0")],
            tax_table,
        )
        assert totals.exempt_amount == Decimal("100.00")
        assert totals.taxable_amount == Decimal("200.00")
        breakdown = {b.tax_class: b for b in totals.tax_breakdown}
        assert set(breakdown) == {"EXEMPT", "ITBIS_0", "ITBIS_18"}
        assert breakdown["ITBIS_18"].tax == Decimal("18.00")
        assert breakdown["EXEMPT"].tax == Decimal("0.00")

    def test_grand_total_reconciles(self, tax_table):
        totals = compute_totals(
            [line("1.333", "19.99", discount_pct="7.5"), line("2.5", "3.33", "ITBIS_16")],
            tax_table,
        )
        assert totals.grand_total == totals.subtotal - totals.total_discount + totals.total_tax

    def test_full_discount(self, tax_table):
        totals = compute_totals([line("1", "100", discount_pct="100")], tax_table)
        assert totals.grand_total == Decimal("0.00")

    def test_zero_decimal_currency(self, tax_table):
        totals = compute_totals([line("3", "333")], tax_table, currency="JPY")
        assert totals.total_tax == Decimal("180")
        assert totals.grand_total == Decimal("1179")


class TestRoundingPolicy:

    def test_per_line_rounds_each_tax(self, tax_table):
        lines = [line("1", "0.03"), line("1", "0.03"), line("1", "0.03")]
        totals = compute_totals(lines, tax_table, rounding_policy=RoundingPolicy.PER_LINE)
        assert totals.total_tax == Decimal("0.03")

    def test_aggregate_rounds_once(self, tax_table):
        lines = [line("1", "0.03"), line("1", "0.03"), line("1", "0.03")]
        totals = compute_totals(lines, tax_table, rounding_policy=RoundingPolicy.AGGREGATE)
        assert totals.total_tax == Decimal("0.02")
        assert totals.rounding_policy is RoundingPolicy.AGGREGATE

    def test_half_up(self, tax_table):
        # 0.25 * 0.18 = 0.045 -> 0.05
        assert compute_totals([line("1", "0.25")], tax_table).total_tax == Decimal("0.05")


class TestCurrency:

    def test_foreign_currency_converted_to_base(self, tax_table):
        totals = compute_totals(
            [line("1", "100")], tax_table, currency="USD",
            exchange_rate=Decimal("58.50"), base_currency="DOP",
        )
        base = totals.in_base_currency("DOP")
        assert base.currency == "DOP"
        assert base.subtotal == Decimal("5850.00")
        assert base.total_tax == Decimal("1053.00")
        assert base.grand_total == Decimal("6903.00")

    def test_base_currency_requires_rate_one(self, tax_table):
        with pytest.raises(InvalidExchangeRateError):
            compute_totals([line()], tax_table, currency="DOP",
                           exchange_rate=Decimal("2"), base_currency="DOP")

    def test_non_positive_rate(self, tax_table):
        with pytest.raises(InvalidExchangeRateError):
            compute_totals([line()], tax_table, currency="USD", exchange_rate=Decimal("0"))

    def test_unknown_currency(self, tax_table):
        with pytest.raises(InvalidCurrencyError):
            compute_totals([line()], tax_table, currency="XYZ")


class TestLineValidation:

    def test_empty(self, tax_table):
        with pytest.raises(EmptyLineSetError):
            compute_totals([], tax_table)

    @pytest.mark.parametrize(
        "quantity",
        ["0", "-1", "1.0001", "0.0000001", "1" + "0" * 30 + ".0001", "1E+12", "1E+40"],
    )
    def test_bad_quantity(self, tax_table, quantity):
        with pytest.raises(InvalidLineQuantityError):
            compute_totals([line(quantity=quantity)], tax_table)

    def test_trailing_zero_quantity_accepted(self, tax_table):
        totals = compute_totals([line(quantity="1.5000", unit_price="10")], tax_table)
        assert totals.subtotal == Decimal("15.00")

    def test_large_quantity_within_limit(self, tax_table):
        totals = compute_totals([line(quantity="999999999999.999", unit_price="1")], tax_table)
        assert totals.subtotal == Decimal("1000000000000.00")

    @pytest.mark.parametrize("price", ["1E+12", "1E+30"])
    def test_price_too_large(self, tax_table, price):
        with pytest.raises(InvalidUnitPriceError):
            compute_totals([line(unit_price=price)], tax_table)

    @pytest.mark.parametrize("discount", ["-1", "100.01", "150"])
    def test_bad_discount(self, tax_table, discount):
        with pytest.raises(InvalidDiscountError):
            compute_totals([line(discount_pct=discount)], tax_table)

    def test_negative_price(self, tax_table):
        with pytest.raises(InvalidUnitPriceError):
            compute_totals([line(unit_price="-0.01")], tax_table)

    def test_unknown_tax_class(self, tax_table):
        with pytest.raises(UnknownTaxClassError):
            compute_totals([line(tax_class="VAT_20")], tax_table)

    def test_float_rejected(self):
        with pytest.raises(TypeError):
            InvoiceLine("SKU", 1.5, Decimal("1"), "ITBIS_18")

    def test_strings_coerced_to_decimal(self):
        item = InvoiceLine("SKU", "2", "10.50", "ITBIS_18")
        assert item.quantity == Decimal("2")
        assert item.unit_price == Decimal("10.50")

"""Tests for NCF sequence value objects and formatting."""

from datetime import date
from decimal import Decimal

import pytest

from fiscal_kernel.domain.sequence import (
    MAX_NUMBER,
    NumberSequence,
    SequenceState,
    format_ncf,
    normalize_series,
)
from fiscal_kernel.exceptions import (
    InvalidRangeError,
    InvalidSeriesError,
    SequenceInvariantViolationError,
)


def _sequence(**overrides):
    values = dict(
        document_type="B01",
        series="1",
        range_start=1,
        range_end=10,
        expiration=date(2024, 12, 31),
    )
    values.update(overrides)
    return NumberSequence.create(**values)


class TestFormatting:

    def test_ncf_layout(self):
        assert format_ncf("B01", "1", 42) == "B0100100000042"
        assert format_ncf("B02", "010", 99_999_999) == "B0201099999999"

    def test_ncf_length(self):
        assert len(format_ncf("B15", "7", 1)) == 14

    @pytest.mark.parametrize("raw,expected", [("1", "001"), ("01", "001"), ("123", "123"), (7, "007")])
    def test_series_padding(self, raw, expected):
        assert normalize_series(raw) == expected

    @pytest.mark.parametrize("raw", ["1234", "A1", "", "-1"])
    def test_series_rejected(self, raw):
        with pytest.raises(InvalidSeriesError):
            normalize_series(raw)


class TestRangeValidation:

    def test_create_starts_cursor_at_range_start(self):
        seq = _sequence(range_start=50, range_end=60)
        assert seq.cursor == 50
        assert seq.id is not None
        assert seq.series == "001"

    def test_end_not_after_start(self):
        with pytest.raises(InvalidRangeError):
            _sequence(range_start=10, range_end=10)

    def test_start_below_one(self):
        with pytest.raises(InvalidRangeError):
            _sequence(range_start=0)

    def test_end_beyond_eight_digits(self):
        with pytest.raises(InvalidRangeError):
            _sequence(range_end=MAX_NUMBER + 1)

    def test_cursor_outside_range_is_invariant_violation(self):
        with pytest.raises(SequenceInvariantViolationError):
            NumberSequence("B01", "001", 1, 10, cursor=12)


class TestCursor:

    def test_advanced_moves_by_one(self):
        seq = _sequence()
        assert seq.advanced().cursor == 2
        assert seq.cursor == 1

    def test_exhaustion(self):
        seq = _sequence(range_start=1, range_end=2).advanced().advanced()
        assert seq.is_exhausted
        assert seq.remaining_capacity == 0
        with pytest.raises(SequenceInvariantViolationError):
            seq.advanced()

    def test_capacity_accounting(self):
        seq = _sequence(range_start=1, range_end=10).advanced().advanced().advanced()
        assert seq.capacity == 10
        assert seq.issued_count == 3
        assert seq.remaining_capacity == 7
        assert seq.usage_percent() == Decimal("30.00")


class TestEligibility:

    def test_valid_through_expiration_day(self):
        seq = _sequence(expiration=date(2024, 6, 30))
        assert seq.is_eligible(date(2024, 6, 30))
        assert not seq.is_eligible(date(2024, 7, 1))

    def test_no_expiration_never_expires(self):
        assert not _sequence(expiration=None).is_expired(date(2099, 1, 1))

    def test_inactive_not_eligible(self):
        assert not _sequence().deactivated().is_eligible(date(2024, 1, 1))

    def test_states(self):
        as_of = date(2024, 1, 1)
        assert _sequence().state(as_of) is SequenceState.ACTIVE
        assert _sequence().deactivated().state(as_of) is SequenceState.INACTIVE
        assert _sequence(expiration=date(2023, 12, 31)).state(as_of) is SequenceState.EXPIRED
        exhausted = _sequence(range_start=1, range_end=2).advanced().advanced()
        assert exhausted.state(as_of) is SequenceState.EXHAUSTED

    def test_days_to_expiry(self):
        seq = _sequence(expiration=date(2024, 1, 31))
        assert seq.days_to_expiry(date(2024, 1, 1)) == 30
        assert _sequence(expiration=None).days_to_expiry(date(2024, 1, 1)) is None


class TestOverlap:

    def test_overlaps(self):
        seq = _sequence(range_start=100, range_end=200)
        assert seq.overlaps(200, 300)
        assert seq.overlaps(50, 100)
        assert not seq.overlaps(201, 300)

    def test_consumed_overlap_only_counts_issued_numbers(self):
        seq = _sequence(range_start=100, range_end=200).advanced().advanced()
        # 100 and 101 issued
        assert seq.consumed_overlaps(101, 150)
        assert not seq.consumed_overlaps(102, 150)
        assert not _sequence(range_start=100, range_end=200).consumed_overlaps(100, 200)

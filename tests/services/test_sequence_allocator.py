"""
Tests for the NCF sequence allocator.

Each test runs against both the in-memory and the SQLite store.
"""

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from fiscal_config.settings import FiscalSettings
from fiscal_kernel.domain.sequence import AlertKind, SequenceState
from fiscal_kernel.exceptions import (
    InvalidRangeError,
    InvalidSeriesError,
    MissingExpirationError,
    NoEligibleSequenceError,
    OverlappingRangeError,
    SequenceContendedError,
    SequenceInvariantViolationError,
    SequenceNotFoundError,
    UnknownDocumentTypeError,
)
from fiscal_kernel.services.sequence_allocator import SequenceAllocator


class TestIssueNext:

    def test_first_number_is_range_start(self, allocator, register_range):
        register_range(range_start=1, range_end=100)
        issued = allocator.issue_next("B01")
        assert issued.ncf == "B0100100000001"
        assert issued.number == 1
        assert issued.series == "001"
        assert issued.issued_at.tzinfo is not None

    def test_monotonic_plus_one(self, allocator, register_range):
        register_range(range_start=500, range_end=600)
        numbers = [allocator.issue_next("B01").number for _ in range(5)]
        assert numbers == [500, 501, 502, 503, 504]

    def test_cursor_persisted(self, allocator, register_range):
        seq = register_range(range_start=1, range_end=10)
        allocator.issue_next("B01")
        allocator.issue_next("B01")
        assert allocator.get_sequence(seq.id).cursor == 3
        assert allocator.remaining_capacity(seq.id) == 8

    def test_issued_numbers_recorded(self, allocator, store, register_range):
        seq = register_range()
        first = allocator.issue_next("B01")
        second = allocator.issue_next("B01")
        recorded = store.issued_numbers(seq.id)
        assert [n.ncf for n in recorded] == [first.ncf, second.ncf]

    def test_exhaustion(self, allocator, register_range):
        seq = register_range(range_start=1, range_end=3)
        for _ in range(3):
            allocator.issue_next("B01")
        with pytest.raises(NoEligibleSequenceError) as exc_info:
            allocator.issue_next("B01")
        assert exc_info.value.document_type == "B01"
        assert allocator.get_sequence(seq.id).cursor == 4
        assert allocator.remaining_capacity(seq.id) == 0

    def test_expired_range_never_issues(self, allocator, register_range):
        register_range(expiration=date(2024, 1, 31))
        assert allocator.issue_next("B01", as_of=date(2024, 1, 31)).number == 1
        with pytest.raises(NoEligibleSequenceError):
            allocator.issue_next("B01", as_of=date(2024, 2, 1))

    def test_as_of_defaults_to_clock(self, allocator, register_range, clock):
        register_range(expiration=date(2024, 1, 10))
        allocator.issue_next("B01")
        clock.advance_days(10)
        with pytest.raises(NoEligibleSequenceError):
            allocator.issue_next("B01")

    def test_lowest_range_start_wins(self, allocator, register_range):
        register_range(series="2", range_start=1000, range_end=2000)
        register_range(series="1", range_start=500, range_end=600)
        assert allocator.issue_next("B01").ncf == "B0100100000500"

    def test_tie_broken_by_series(self, allocator, register_range):
        register_range(series="2", range_start=1, range_end=10)
        register_range(series="1", range_start=1, range_end=10)
        assert allocator.issue_next("B01").series == "001"

    def test_falls_over_to_next_range(self, allocator, register_range):
        register_range(range_start=1, range_end=2)
        register_range(range_start=3, range_end=10)
        numbers = [allocator.issue_next("B01").number for _ in range(4)]
        assert numbers == [1, 2, 3, 4]

    def test_inactive_range_skipped(self, allocator, register_range):
        register_range(range_start=1, range_end=10, active=False)
        register_range(series="2", range_start=1, range_end=10)
        assert allocator.issue_next("B01").series == "002"

    def test_types_are_independent(self, allocator, register_range):
        register_range(document_type="B01")
        register_range(document_type="B02", expiration=None)
        assert allocator.issue_next("B02").ncf == "B0200100000001"
        assert allocator.issue_next("B01").ncf == "B0100100000001"

    def test_unknown_document_type(self, allocator):
        with pytest.raises(UnknownDocumentTypeError):
            allocator.issue_next("Z99")

    def test_no_ranges(self, allocator):
        with pytest.raises(NoEligibleSequenceError):
            allocator.issue_next("B15")

    def test_issuance_logged(self, allocator, register_range, captured_logs):
        register_range()
        issued = allocator.issue_next("B01")
        events = [r for r in captured_logs() if r["message"] == "ncf_issued"]
        assert len(events) == 1
        assert events[0]["ncf"] == issued.ncf
        assert events[0]["document_type"] == "B01"


class TestRegisterSequence:

    def test_expiration_required(self, register_range):
        with pytest.raises(MissingExpirationError):
            register_range(document_type="B01", expiration=None)

    def test_non_expiring_types(self, register_range):
        seq = register_range(document_type="B02", expiration=None)
        assert seq.expiration is None

    @pytest.mark.parametrize("start,end", [(10, 10), (10, 5), (0, 10), (1, 100_000_000)])
    def test_invalid_ranges(self, register_range, start, end):
        with pytest.raises(InvalidRangeError):
            register_range(range_start=start, range_end=end)

    def test_invalid_series(self, register_range):
        with pytest.raises(InvalidSeriesError):
            register_range(series="1000")

    def test_overlap_with_active_range(self, register_range):
        existing = register_range(range_start=1, range_end=100)
        with pytest.raises(OverlappingRangeError) as exc_info:
            register_range(range_start=100, range_end=200)
        assert exc_info.value.existing_sequence_id == str(existing.id)

    def test_adjacent_range_allowed(self, register_range):
        register_range(range_start=1, range_end=100)
        assert register_range(range_start=101, range_end=200).range_start == 101

    def test_other_series_may_overlap(self, register_range):
        register_range(series="1", range_start=1, range_end=100)
        assert register_range(series="2", range_start=1, range_end=100).series == "002"

    def test_consumed_part_of_inactive_range_protected(self, allocator, register_range):
        seq = register_range(range_start=1, range_end=100)
        for _ in range(5):
            allocator.issue_next("B01")
        allocator.deactivate_sequence(seq.id)

        with pytest.raises(OverlappingRangeError):
            register_range(range_start=5, range_end=50)
        reused = register_range(range_start=6, range_end=50)
        assert allocator.issue_next("B01").number == 6
        assert reused.range_start == 6

    def test_unknown_document_type(self, register_range):
        with pytest.raises(UnknownDocumentTypeError):
            register_range(document_type="X01")

    def test_registration_logged(self, register_range, captured_logs):
        seq = register_range()
        events = [r for r in captured_logs() if r["message"] == "sequence_registered"]
        assert events[0]["sequence_id"] == str(seq.id)


class TestAdministration:

    def test_deactivate(self, allocator, register_range):
        seq = register_range()
        retired = allocator.deactivate_sequence(seq.id)
        assert not retired.active
        assert not allocator.get_sequence(seq.id).active
        with pytest.raises(NoEligibleSequenceError):
            allocator.issue_next("B01")

    def test_deactivate_twice_is_noop(self, allocator, register_range):
        seq = register_range()
        allocator.deactivate_sequence(seq.id)
        assert not allocator.deactivate_sequence(seq.id).active

    def test_list_sequences(self, allocator, register_range):
        register_range(document_type="B01", range_start=200, range_end=300)
        register_range(document_type="B01", range_start=1, range_end=100)
        register_range(document_type="B02", expiration=None)
        assert [s.range_start for s in allocator.list_sequences("B01")] == [1, 200]
        assert len(allocator.list_sequences()) == 3

    def test_unknown_sequence(self, allocator):
        with pytest.raises(SequenceNotFoundError):
            allocator.remaining_capacity(uuid4())


class TestMonitoring:

    def test_expiring_soon_window(self, allocator, register_range):
        seq = register_range(expiration=date(2024, 1, 31))
        assert allocator.is_expiring_soon(seq.id, date(2024, 1, 1), 30)
        assert allocator.is_expiring_soon(seq.id, date(2024, 1, 31), 0)
        assert not allocator.is_expiring_soon(seq.id, date(2024, 1, 1), 29)

    def test_expired_is_not_expiring_soon(self, allocator, register_range):
        seq = register_range(expiration=date(2024, 1, 31))
        assert not allocator.is_expiring_soon(seq.id, date(2024, 2, 1), 30)

    def test_no_expiration_is_not_expiring_soon(self, allocator, register_range):
        seq = register_range(document_type="B02", expiration=None)
        assert not allocator.is_expiring_soon(seq.id, date(2024, 1, 1), 10_000)

    def test_health(self, allocator, register_range):
        seq = register_range(range_start=1, range_end=4, expiration=date(2024, 1, 11))
        allocator.issue_next("B01")
        health = allocator.health(seq.id)
        assert health.state is SequenceState.ACTIVE
        assert health.remaining == 3
        assert health.usage_percent == Decimal("25.00")
        assert health.days_to_expiry == 10

    def test_health_exhausted(self, allocator, register_range):
        seq = register_range(range_start=1, range_end=2)
        allocator.issue_next("B01")
        allocator.issue_next("B01")
        assert allocator.health(seq.id).state is SequenceState.EXHAUSTED

    def test_alerts(self, allocator, register_range, clock):
        low = register_range(series="1", range_start=1, range_end=10)
        expiring = register_range(series="2", range_start=1, range_end=10,
                                  expiration=clock.today() + timedelta(days=5))
        register_range(series="3", range_start=1, range_end=10)
        for _ in range(9):
            allocator.issue_next("B01")

        alerts = {(a.sequence_id, a.kind) for a in allocator.alerts()}
        assert (low.id, AlertKind.LOW_CAPACITY) in alerts
        assert (expiring.id, AlertKind.EXPIRING) in alerts
        assert len(alerts) == 2

    def test_no_alerts_for_inactive(self, allocator, register_range, clock):
        seq = register_range(expiration=clock.today() + timedelta(days=1))
        allocator.deactivate_sequence(seq.id)
        assert allocator.alerts() == []


class TestContentionAndInvariants:

    def test_lock_timeout_raises_contended(self, store, reference_cache, clock, register_range):
        seq = register_range()
        allocator = SequenceAllocator(
            store, reference_cache, clock=clock,
            settings=FiscalSettings(lock_timeout_seconds=0.05),
        )
        lock = allocator._lock_for(seq.id)
        lock.acquire()
        try:
            with pytest.raises(SequenceContendedError) as exc_info:
                allocator.issue_next("B01")
            assert exc_info.value.retryable
        finally:
            lock.release()
        assert allocator.issue_next("B01").number == 1

    def test_lost_compare_and_set_raises_contended(self, store, reference_cache, clock, register_range):
        seq = register_range()

        class RacingStore:
            """Moves the cursor between the allocator's read and its write."""

            def __init__(self, inner):
                self._inner = inner

            def __getattr__(self, name):
                return getattr(self._inner, name)

            def get_sequence(self, sequence_id):
                current = self._inner.get_sequence(sequence_id)
                self._inner.save_sequence(current.advanced(), expected_cursor=current.cursor)
                return current

        racing = SequenceAllocator(RacingStore(store), reference_cache, clock=clock)
        with pytest.raises(SequenceContendedError):
            racing.issue_next("B01")
        assert store.get_sequence(seq.id).cursor == 2

    def test_duplicate_ncf_halts_sequence(self, store, reference_cache, clock, settings, captured_logs):
        first = SequenceAllocator(store, reference_cache, clock=clock, settings=settings)
        seq = first.register_sequence("B01", "1", 1, 10, date(2024, 12, 31))
        first.issue_next("B01")

        # Rewind the cursor behind the allocator's back: the next NCF collides.
        current = store.get_sequence(seq.id)
        store.save_sequence(replace(current, cursor=1), expected_cursor=current.cursor)

        with pytest.raises(SequenceInvariantViolationError):
            first.issue_next("B01")
        assert seq.id in first.halted_sequences()
        assert first.health(seq.id).state is SequenceState.HALTED
        with pytest.raises(NoEligibleSequenceError):
            first.issue_next("B01")

        critical = [r for r in captured_logs() if r["level"] == "CRITICAL"]
        assert critical[0]["message"] == "sequence_invariant_violation"

"""
NCF Sequence Allocator -- authoritative issuance of fiscal numbers.

Responsibility:
    Registers authorized NCF ranges, issues the next number for a document
    type, and reports remaining capacity, expiry and health.

Architecture position:
    Kernel > Services.  Depends on a ``SequenceStore`` for persistence and
    on the ``ReferenceDataCache`` for document-type rules.  The invoice
    compositor calls ``issue_next`` as the last step of composition.

Invariants enforced:
    - Uniqueness: no NCF is ever issued twice (per-sequence lock in this
      process, compare-and-set cursor in the store across processes,
      unique NCF constraint in the database).
    - Monotonicity: each issuance moves the cursor forward by exactly 1.
    - Exhaustion safety: a sequence with cursor > range_end never issues.
    - Expiration safety: a sequence past its expiration never issues.
    - Selection: lowest range_start first, ties broken by series then id.
    - A sequence that trips an invariant is halted for the life of the
      allocator and logged at CRITICAL.

Failure modes:
    - UnknownDocumentTypeError: document type not in the registry.
    - NoEligibleSequenceError: nothing left to issue from.  Never retried.
    - SequenceContendedError: lock not acquired within
      ``lock_timeout_seconds`` or lost compare-and-set.  Retryable.
    - SequenceInvariantViolationError: the sequence is halted.
    - InvalidRangeError / OverlappingRangeError / InvalidSeriesError /
      MissingExpirationError: rejected registration.
    - SequenceNotFoundError: unknown sequence id.
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timedelta
from uuid import UUID

from fiscal_config.settings import FiscalSettings
from fiscal_kernel.domain.clock import Clock, SystemClock
from fiscal_kernel.domain.sequence import (
    AlertKind,
    IssuedNumber,
    NumberSequence,
    SequenceAlert,
    SequenceHealth,
    SequenceState,
    format_ncf,
    normalize_series,
)
from fiscal_kernel.exceptions import (
    MissingExpirationError,
    NoEligibleSequenceError,
    OverlappingRangeError,
    SequenceContendedError,
    SequenceInvariantViolationError,
)
from fiscal_kernel.logging_config import LogContext, get_logger
from fiscal_kernel.services.reference_data import ReferenceDataCache
from fiscal_kernel.services.sequence_store import SequenceStore

logger = get_logger("services.sequence_allocator")


class SequenceAllocator:
    """
    Issues NCFs from registered ranges.

    Contract:
        ``issue_next`` returns an IssuedNumber only after the advanced
        cursor and the issued record are durable in the store.

    Non-goals:
        - Does NOT cache sequences.  Every issuance re-reads the sequence
          after acquiring its lock.
        - Does NOT talk to the tax authority; ranges are registered by an
          administrator.
    """

    def __init__(
        self,
        store: SequenceStore,
        reference_data: ReferenceDataCache,
        clock: Clock | None = None,
        settings: FiscalSettings | None = None,
    ):
        self._store = store
        self._reference_data = reference_data
        self._clock = clock or SystemClock()
        self._settings = settings or FiscalSettings()
        self._locks: dict[UUID, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._admin_lock = threading.Lock()
        self._halted: set[UUID] = set()

    # ------------------------------------------------------------------
    # Locking
    # ------------------------------------------------------------------

    def _lock_for(self, sequence_id: UUID) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(sequence_id)
            if lock is None:
                lock = self._locks[sequence_id] = threading.Lock()
            return lock

    def _acquire(self, sequence_id: UUID) -> threading.Lock:
        lock = self._lock_for(sequence_id)
        if not lock.acquire(timeout=self._settings.lock_timeout_seconds):
            logger.warning(
                "sequence_lock_timeout",
                extra={
                    "sequence_id": str(sequence_id),
                    "timeout_seconds": self._settings.lock_timeout_seconds,
                },
            )
            raise SequenceContendedError(
                str(sequence_id),
                f"lock not acquired within {self._settings.lock_timeout_seconds}s",
            )
        return lock

    def _halt(self, sequence: NumberSequence, reason: str) -> None:
        self._halted.add(sequence.id)
        logger.critical(
            "sequence_invariant_violation",
            extra={
                "sequence_id": str(sequence.id),
                "document_type": sequence.document_type,
                "series": sequence.series,
                "cursor": sequence.cursor,
                "reason": reason,
            },
        )

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def issue_next(self, document_type: str, as_of: date | None = None) -> IssuedNumber:
        """
        Issue the next NCF for ``document_type``.

        Preconditions:
            - ``document_type`` is registered.
        Postconditions:
            - The returned number is unique and was the chosen sequence's
              cursor before the increment.
            - The store holds cursor + 1 and the IssuedNumber.

        Raises:
            UnknownDocumentTypeError, NoEligibleSequenceError,
            SequenceContendedError, SequenceInvariantViolationError.
        """
        self._reference_data.document_types.get(document_type)
        now = self._clock.now()
        as_of = as_of or now.date()

        with LogContext.bind(document_type=document_type):
            candidates = [
                seq for seq in self._store.load_sequences(document_type)
                if seq.is_eligible(as_of) and seq.id not in self._halted
            ]
            for candidate in candidates:
                issued = self._issue_from(candidate.id, as_of, now)
                if issued is not None:
                    return issued

            logger.error(
                "no_eligible_sequence",
                extra={"document_type": document_type, "as_of": as_of},
            )
            raise NoEligibleSequenceError(document_type, as_of.isoformat())

    def _issue_from(
        self, sequence_id: UUID, as_of: date, now: datetime
    ) -> IssuedNumber | None:
        """Issue from one sequence, or None when it stopped being eligible."""
        lock = self._acquire(sequence_id)
        try:
            with LogContext.bind(sequence_id=sequence_id):
                if sequence_id in self._halted:
                    return None
                sequence = self._store.get_sequence(sequence_id)
                if not sequence.is_eligible(as_of):
                    logger.debug(
                        "sequence_candidate_skipped",
                        extra={"state": sequence.state(as_of).value},
                    )
                    return None

                number = sequence.cursor
                if not sequence.range_start <= number <= sequence.range_end:
                    reason = (
                        f"cursor {number} outside "
                        f"[{sequence.range_start}, {sequence.range_end}]"
                    )
                    self._halt(sequence, reason)
                    raise SequenceInvariantViolationError(str(sequence_id), reason)

                issued = IssuedNumber(
                    ncf=format_ncf(sequence.document_type, sequence.series, number),
                    sequence_id=sequence.id,
                    document_type=sequence.document_type,
                    series=sequence.series,
                    number=number,
                    issued_at=now,
                )
                try:
                    self._store.save_sequence(
                        sequence.advanced(), expected_cursor=number, issued=issued
                    )
                except SequenceInvariantViolationError as exc:
                    self._halt(sequence, exc.reason)
                    raise

                logger.info(
                    "ncf_issued",
                    extra={
                        "ncf": issued.ncf,
                        "number": number,
                        "remaining": sequence.range_end - number,
                    },
                )
                return issued
        finally:
            lock.release()

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def register_sequence(
        self,
        document_type: str,
        series: str,
        range_start: int,
        range_end: int,
        expiration: date | None,
        active: bool = True,
    ) -> NumberSequence:
        """
        Register a range authorized by the tax authority.

        The range must not intersect an active range of the same type and
        series, nor the already-issued part of an inactive one.
        """
        rule = self._reference_data.document_types.get(document_type)
        series = normalize_series(series)
        candidate = NumberSequence.create(
            document_type=document_type,
            series=series,
            range_start=range_start,
            range_end=range_end,
            expiration=expiration,
            active=active,
        )
        if expiration is None and rule.requires_expiration:
            raise MissingExpirationError(document_type)

        with self._admin_lock:
            for existing in self._store.load_sequences(document_type):
                if existing.series != series:
                    continue
                if existing.active:
                    clash = existing.overlaps(range_start, range_end)
                else:
                    clash = existing.consumed_overlaps(range_start, range_end)
                if clash:
                    raise OverlappingRangeError(
                        document_type, series, range_start, range_end, str(existing.id)
                    )
            self._store.add_sequence(candidate)

        logger.info(
            "sequence_registered",
            extra={
                "sequence_id": str(candidate.id),
                "document_type": document_type,
                "series": series,
                "range_start": range_start,
                "range_end": range_end,
                "expiration": expiration,
                "active": active,
            },
        )
        return candidate

    def deactivate_sequence(self, sequence_id: UUID) -> NumberSequence:
        """Retire a range.  Already-issued numbers stay issued."""
        with self._admin_lock:
            lock = self._acquire(sequence_id)
            try:
                sequence = self._store.get_sequence(sequence_id)
                if not sequence.active:
                    return sequence
                retired = sequence.deactivated()
                self._store.save_sequence(retired, expected_cursor=sequence.cursor)
            finally:
                lock.release()

        logger.info(
            "sequence_deactivated",
            extra={
                "sequence_id": str(sequence_id),
                "document_type": retired.document_type,
                "issued_count": retired.issued_count,
            },
        )
        return retired

    def get_sequence(self, sequence_id: UUID) -> NumberSequence:
        return self._store.get_sequence(sequence_id)

    def list_sequences(self, document_type: str | None = None) -> list[NumberSequence]:
        return self._store.load_sequences(document_type)

    def halted_sequences(self) -> frozenset[UUID]:
        return frozenset(self._halted)

    # ------------------------------------------------------------------
    # Monitoring
    # ------------------------------------------------------------------

    def remaining_capacity(self, sequence_id: UUID) -> int:
        return self._store.get_sequence(sequence_id).remaining_capacity

    def is_expiring_soon(
        self, sequence_id: UUID, as_of: date, horizon_days: int
    ) -> bool:
        """True when as_of <= expiration <= as_of + horizon_days."""
        return self._expiring_within(self._store.get_sequence(sequence_id), as_of, horizon_days)

    @staticmethod
    def _expiring_within(sequence: NumberSequence, as_of: date, horizon_days: int) -> bool:
        if sequence.expiration is None:
            return False
        return as_of <= sequence.expiration <= as_of + timedelta(days=horizon_days)

    def health(self, sequence_id: UUID, as_of: date | None = None) -> SequenceHealth:
        as_of = as_of or self._clock.today()
        sequence = self._store.get_sequence(sequence_id)
        return self._health_of(sequence, as_of)

    def _health_of(self, sequence: NumberSequence, as_of: date) -> SequenceHealth:
        state = (
            SequenceState.HALTED if sequence.id in self._halted else sequence.state(as_of)
        )
        return SequenceHealth(
            sequence_id=sequence.id,
            document_type=sequence.document_type,
            series=sequence.series,
            state=state,
            remaining=sequence.remaining_capacity,
            usage_percent=sequence.usage_percent(),
            days_to_expiry=sequence.days_to_expiry(as_of),
        )

    def alerts(self, as_of: date | None = None) -> list[SequenceAlert]:
        """Low-capacity and expiry warnings for sequences still issuing."""
        as_of = as_of or self._clock.today()
        found: list[SequenceAlert] = []
        for sequence in self._store.load_sequences():
            health = self._health_of(sequence, as_of)
            if health.state is not SequenceState.ACTIVE:
                continue
            if health.usage_percent >= self._settings.usage_warning_percent:
                found.append(SequenceAlert(
                    sequence_id=sequence.id,
                    document_type=sequence.document_type,
                    kind=AlertKind.LOW_CAPACITY,
                    detail=f"{health.usage_percent}% used, {health.remaining} left",
                ))
            if self._expiring_within(sequence, as_of, self._settings.expiry_warning_days):
                found.append(SequenceAlert(
                    sequence_id=sequence.id,
                    document_type=sequence.document_type,
                    kind=AlertKind.EXPIRING,
                    detail=f"expires {sequence.expiration.isoformat()}",
                ))
        if found:
            logger.warning(
                "sequence_alerts_raised",
                extra={"count": len(found), "as_of": as_of},
            )
        return found

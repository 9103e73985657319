"""
NCF sequence value objects.

Responsibility:
    Immutable representations of an allocatable NCF range
    (``NumberSequence``), of a number issued from it (``IssuedNumber``),
    and of its operational health.  Eligibility and formatting rules live
    here so that the allocator and the stores agree on them.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - range_start >= 1, range_end > range_start, range_end <= MAX_NUMBER.
    - range_start <= cursor <= range_end + 1.
    - ``advanced()`` is the only way to move a cursor, and only forward by 1.
    - NCF format: document type + series (3 digits) + number (8 digits).
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from uuid import UUID, uuid4

from fiscal_kernel.exceptions import (
    InvalidRangeError,
    InvalidSeriesError,
    SequenceInvariantViolationError,
)

SERIES_WIDTH = 3
NUMBER_WIDTH = 8
MAX_NUMBER = 10**NUMBER_WIDTH - 1


def normalize_series(series: str | int) -> str:
    """Validate a series label and pad it to three digits."""
    text = str(series).strip()
    if not text.isdigit() or len(text) > SERIES_WIDTH:
        raise InvalidSeriesError(str(series))
    return text.zfill(SERIES_WIDTH)


def format_ncf(document_type: str, series: str, number: int) -> str:
    """
    Render the fiscal identifier, e.g. ``format_ncf("B01", "1", 42)``
    -> ``"B0100100000042"``.
    """
    return f"{document_type}{normalize_series(series)}{str(number).zfill(NUMBER_WIDTH)}"


class SequenceState(Enum):
    """Operational state of a sequence as of a given date."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    EXHAUSTED = "exhausted"
    EXPIRED = "expired"
    HALTED = "halted"


@dataclass(frozen=True)
class NumberSequence:
    """One allocatable NCF range for one document type."""

    document_type: str
    series: str
    range_start: int
    range_end: int
    cursor: int
    expiration: date | None = None
    active: bool = True
    id: UUID | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "series", normalize_series(self.series))
        if self.range_start < 1:
            raise InvalidRangeError(
                self.range_start, self.range_end, "range start must be positive"
            )
        if self.range_end <= self.range_start:
            raise InvalidRangeError(
                self.range_start, self.range_end, "range end must exceed range start"
            )
        if self.range_end > MAX_NUMBER:
            raise InvalidRangeError(
                self.range_start, self.range_end, f"range end exceeds {MAX_NUMBER}"
            )
        if not self.range_start <= self.cursor <= self.range_end + 1:
            raise SequenceInvariantViolationError(
                str(self.id),
                f"cursor {self.cursor} outside [{self.range_start}, {self.range_end + 1}]",
            )

    @classmethod
    def create(
        cls,
        document_type: str,
        series: str,
        range_start: int,
        range_end: int,
        expiration: date | None,
        active: bool = True,
    ) -> NumberSequence:
        """New range with cursor at range_start and a fresh id."""
        return cls(
            document_type=document_type,
            series=series,
            range_start=range_start,
            range_end=range_end,
            cursor=range_start,
            expiration=expiration,
            active=active,
            id=uuid4(),
        )

    @property
    def capacity(self) -> int:
        return self.range_end - self.range_start + 1

    @property
    def remaining_capacity(self) -> int:
        return max(self.range_end - self.cursor + 1, 0)

    @property
    def issued_count(self) -> int:
        return self.cursor - self.range_start

    @property
    def is_exhausted(self) -> bool:
        return self.cursor > self.range_end

    def is_expired(self, as_of: date) -> bool:
        return self.expiration is not None and self.expiration < as_of

    def is_eligible(self, as_of: date) -> bool:
        return self.active and not self.is_expired(as_of) and not self.is_exhausted

    def overlaps(self, range_start: int, range_end: int) -> bool:
        return self.range_start <= range_end and range_start <= self.range_end

    def consumed_overlaps(self, range_start: int, range_end: int) -> bool:
        """True if [range_start, range_end] hits a number already issued."""
        if self.issued_count == 0:
            return False
        return self.range_start <= range_end and range_start <= self.cursor - 1

    def advanced(self) -> NumberSequence:
        if self.is_exhausted:
            raise SequenceInvariantViolationError(
                str(self.id), "attempted to advance past range end"
            )
        return replace(self, cursor=self.cursor + 1)

    def deactivated(self) -> NumberSequence:
        return replace(self, active=False)

    def state(self, as_of: date) -> SequenceState:
        if not self.active:
            return SequenceState.INACTIVE
        if self.is_exhausted:
            return SequenceState.EXHAUSTED
        if self.is_expired(as_of):
            return SequenceState.EXPIRED
        return SequenceState.ACTIVE

    def usage_percent(self) -> Decimal:
        pct = Decimal(self.issued_count) * Decimal(100) / Decimal(self.capacity)
        return pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def days_to_expiry(self, as_of: date) -> int | None:
        if self.expiration is None:
            return None
        return (self.expiration - as_of).days


@dataclass(frozen=True)
class IssuedNumber:
    """A fiscal identifier handed out by the allocator.  Never reused."""

    ncf: str
    sequence_id: UUID
    document_type: str
    series: str
    number: int
    issued_at: datetime


@dataclass(frozen=True)
class SequenceHealth:
    """Snapshot used by administrators to plan new range requests."""

    sequence_id: UUID
    document_type: str
    series: str
    state: SequenceState
    remaining: int
    usage_percent: Decimal
    days_to_expiry: int | None


class AlertKind(Enum):
    LOW_CAPACITY = "low_capacity"
    EXPIRING = "expiring"


@dataclass(frozen=True)
class SequenceAlert:
    sequence_id: UUID
    document_type: str
    kind: AlertKind
    detail: str

"""
Module: fiscal_kernel.models.sequence
Responsibility: ORM persistence for NCF ranges and the numbers issued
    from them.
Architecture position: Kernel > Models.  May import from db/base.py and
    the frozen domain dataclasses it maps to.

Invariants enforced:
    - (document_type, series, range_start) identifies a range.
    - range_start <= cursor <= range_end + 1 (CHECK constraint).
    - Every issued NCF is unique (uq_issued_numbers_ncf).  A duplicate
      insert fails the whole cursor-advance transaction.
    - The cursor only moves through SqlAlchemySequenceStore.save_sequence,
      which updates WHERE cursor = expected.
"""

from datetime import date, datetime, timezone
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from fiscal_kernel.db.base import TimestampedBase
from fiscal_kernel.domain.sequence import IssuedNumber, NumberSequence


class NumberSequenceModel(TimestampedBase):
    """
    One NCF range authorized by the tax authority.

    Guarantees:
        - Rows are never deleted; retiring a range sets active = False.
        - The cursor is the next number to issue.
    """

    __tablename__ = "number_sequences"

    __table_args__ = (
        UniqueConstraint(
            "document_type", "series", "range_start",
            name="uq_number_sequences_type_series_start",
        ),
        CheckConstraint("range_start >= 1", name="ck_number_sequences_start"),
        CheckConstraint("range_end > range_start", name="ck_number_sequences_end"),
        CheckConstraint(
            "cursor >= range_start AND cursor <= range_end + 1",
            name="ck_number_sequences_cursor",
        ),
        Index("idx_number_sequences_type", "document_type", "active"),
    )

    document_type: Mapped[str] = mapped_column(String(3), nullable=False)
    series: Mapped[str] = mapped_column(String(3), nullable=False)
    range_start: Mapped[int] = mapped_column(nullable=False)
    range_end: Mapped[int] = mapped_column(nullable=False)
    cursor: Mapped[int] = mapped_column(nullable=False)
    expiration: Mapped[date | None] = mapped_column(Date, nullable=True)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def to_dto(self) -> NumberSequence:
        return NumberSequence(
            id=self.id,
            document_type=self.document_type,
            series=self.series,
            range_start=self.range_start,
            range_end=self.range_end,
            cursor=self.cursor,
            expiration=self.expiration,
            active=self.active,
        )

    @classmethod
    def from_dto(cls, dto: NumberSequence) -> "NumberSequenceModel":
        return cls(
            id=dto.id,
            document_type=dto.document_type,
            series=dto.series,
            range_start=dto.range_start,
            range_end=dto.range_end,
            cursor=dto.cursor,
            expiration=dto.expiration,
            active=dto.active,
        )

    def __repr__(self) -> str:
        return (
            f"<NumberSequenceModel {self.document_type}{self.series} "
            f"[{self.range_start}-{self.range_end}] cursor={self.cursor}>"
        )


class IssuedNumberModel(TimestampedBase):
    """An NCF handed out by the allocator.  Insert-only."""

    __tablename__ = "issued_numbers"

    __table_args__ = (
        UniqueConstraint("ncf", name="uq_issued_numbers_ncf"),
        UniqueConstraint("sequence_id", "number", name="uq_issued_numbers_seq_number"),
        Index("idx_issued_numbers_sequence", "sequence_id"),
    )

    ncf: Mapped[str] = mapped_column(String(19), nullable=False)
    sequence_id: Mapped[UUID] = mapped_column(
        ForeignKey("number_sequences.id"), nullable=False
    )
    document_type: Mapped[str] = mapped_column(String(3), nullable=False)
    series: Mapped[str] = mapped_column(String(3), nullable=False)
    number: Mapped[int] = mapped_column(nullable=False)
    issued_at: Mapped[datetime] = mapped_column(nullable=False)

    def to_dto(self) -> IssuedNumber:
        issued_at = self.issued_at
        # SQLite drops tzinfo; values are always written in UTC.
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)
        return IssuedNumber(
            ncf=self.ncf,
            sequence_id=self.sequence_id,
            document_type=self.document_type,
            series=self.series,
            number=self.number,
            issued_at=issued_at,
        )

    @classmethod
    def from_dto(cls, dto: IssuedNumber) -> "IssuedNumberModel":
        return cls(
            ncf=dto.ncf,
            sequence_id=dto.sequence_id,
            document_type=dto.document_type,
            series=dto.series,
            number=dto.number,
            issued_at=dto.issued_at.astimezone(timezone.utc),
        )

    def __repr__(self) -> str:
        return f"<IssuedNumberModel {self.ncf}>"

"""
Sequence Store -- persistence collaborator for NCF ranges.

Responsibility:
    Loads and saves ``NumberSequence`` values, records ``IssuedNumber``
    values, and serves the fiscal reference data (tax classes and
    document-type rules).

Architecture position:
    Kernel > Services.  The allocator owns *when* a cursor moves; the
    store owns *how* it is persisted.

Invariants enforced:
    - ``save_sequence`` is a compare-and-set on the cursor: the write only
      lands if the stored cursor still equals ``expected_cursor``.  A lost
      race raises SequenceContendedError and nothing is written.
    - The cursor update and the IssuedNumber record are written in one
      atomic unit: both are durable or neither is.
    - A duplicate NCF raises SequenceInvariantViolationError.

Failure modes:
    - SequenceNotFoundError: unknown sequence id.
    - SequenceContendedError: cursor moved under us, or the database
      could not grant its write lock in time.
    - SequenceInvariantViolationError: NCF already recorded.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable
from contextlib import contextmanager
from typing import Generator
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from fiscal_kernel.domain.document_types import DocumentTypeRule
from fiscal_kernel.domain.sequence import IssuedNumber, NumberSequence
from fiscal_kernel.domain.tax_rules import TaxClass
from fiscal_kernel.exceptions import (
    SequenceContendedError,
    SequenceInvariantViolationError,
    SequenceNotFoundError,
)
from fiscal_kernel.logging_config import get_logger
from fiscal_kernel.models import (
    DocumentTypeRuleModel,
    IssuedNumberModel,
    NumberSequenceModel,
    TaxClassModel,
)

logger = get_logger("services.sequence_store")


def _sort_key(seq: NumberSequence) -> tuple:
    return (seq.range_start, seq.series, str(seq.id))


class SequenceStore(ABC):
    """Abstract persistence for sequences, issued numbers and reference data."""

    @abstractmethod
    def load_sequences(self, document_type: str | None = None) -> list[NumberSequence]:
        """All sequences of ``document_type`` (every type when None),
        ordered by range_start, series, id."""

    @abstractmethod
    def get_sequence(self, sequence_id: UUID) -> NumberSequence:
        ...

    @abstractmethod
    def add_sequence(self, sequence: NumberSequence) -> None:
        ...

    @abstractmethod
    def save_sequence(
        self,
        sequence: NumberSequence,
        expected_cursor: int,
        issued: IssuedNumber | None = None,
    ) -> None:
        """Compare-and-set ``sequence`` and record ``issued`` atomically."""

    @abstractmethod
    def issued_numbers(self, sequence_id: UUID) -> list[IssuedNumber]:
        ...

    @abstractmethod
    def load_tax_classes(self) -> list[TaxClass]:
        ...

    @abstractmethod
    def load_document_type_rules(self) -> list[DocumentTypeRule]:
        ...


class InMemorySequenceStore(SequenceStore):
    """
    Thread-safe in-process store.

    Used in tests and for single-process deployments.  Reference data is
    supplied at construction.
    """

    def __init__(
        self,
        tax_classes: Iterable[TaxClass] = (),
        document_type_rules: Iterable[DocumentTypeRule] = (),
    ):
        self._lock = threading.Lock()
        self._sequences: dict[UUID, NumberSequence] = {}
        self._issued: dict[UUID, list[IssuedNumber]] = {}
        self._ncfs: set[str] = set()
        self._tax_classes = list(tax_classes)
        self._document_type_rules = list(document_type_rules)

    def load_sequences(self, document_type: str | None = None) -> list[NumberSequence]:
        with self._lock:
            sequences = [
                s for s in self._sequences.values()
                if document_type is None or s.document_type == document_type
            ]
        return sorted(sequences, key=_sort_key)

    def get_sequence(self, sequence_id: UUID) -> NumberSequence:
        with self._lock:
            try:
                return self._sequences[sequence_id]
            except KeyError:
                raise SequenceNotFoundError(str(sequence_id)) from None

    def add_sequence(self, sequence: NumberSequence) -> None:
        with self._lock:
            if sequence.id in self._sequences:
                raise SequenceInvariantViolationError(
                    str(sequence.id), "sequence id already stored"
                )
            self._sequences[sequence.id] = sequence
            self._issued[sequence.id] = []

    def save_sequence(
        self,
        sequence: NumberSequence,
        expected_cursor: int,
        issued: IssuedNumber | None = None,
    ) -> None:
        with self._lock:
            current = self._sequences.get(sequence.id)
            if current is None:
                raise SequenceNotFoundError(str(sequence.id))
            if current.cursor != expected_cursor:
                raise SequenceContendedError(
                    str(sequence.id),
                    f"cursor is {current.cursor}, expected {expected_cursor}",
                )
            if issued is not None and issued.ncf in self._ncfs:
                raise SequenceInvariantViolationError(
                    str(sequence.id), f"NCF {issued.ncf} already issued"
                )
            self._sequences[sequence.id] = sequence
            if issued is not None:
                self._ncfs.add(issued.ncf)
                self._issued[sequence.id].append(issued)

    def issued_numbers(self, sequence_id: UUID) -> list[IssuedNumber]:
        with self._lock:
            if sequence_id not in self._sequences:
                raise SequenceNotFoundError(str(sequence_id))
            return list(self._issued[sequence_id])

    def load_tax_classes(self) -> list[TaxClass]:
        return list(self._tax_classes)

    def load_document_type_rules(self) -> list[DocumentTypeRule]:
        return list(self._document_type_rules)


class SqlAlchemySequenceStore(SequenceStore):
    """
    SQLAlchemy-backed store.

    Each call runs in its own short transaction from ``session_factory``,
    so the store is safe to share between threads.  Cross-process safety
    comes from the compare-and-set UPDATE in ``save_sequence``.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    @contextmanager
    def _transaction(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def load_sequences(self, document_type: str | None = None) -> list[NumberSequence]:
        stmt = select(NumberSequenceModel).order_by(
            NumberSequenceModel.range_start,
            NumberSequenceModel.series,
            NumberSequenceModel.id,
        )
        if document_type is not None:
            stmt = stmt.where(NumberSequenceModel.document_type == document_type)
        with self._transaction() as session:
            return [row.to_dto() for row in session.execute(stmt).scalars()]

    def get_sequence(self, sequence_id: UUID) -> NumberSequence:
        with self._transaction() as session:
            row = session.get(NumberSequenceModel, sequence_id, populate_existing=True)
            if row is None:
                raise SequenceNotFoundError(str(sequence_id))
            return row.to_dto()

    def add_sequence(self, sequence: NumberSequence) -> None:
        try:
            with self._transaction() as session:
                session.add(NumberSequenceModel.from_dto(sequence))
        except IntegrityError as exc:
            raise SequenceInvariantViolationError(
                str(sequence.id), f"sequence could not be stored: {exc.orig}"
            ) from exc

    def save_sequence(
        self,
        sequence: NumberSequence,
        expected_cursor: int,
        issued: IssuedNumber | None = None,
    ) -> None:
        try:
            with self._transaction() as session:
                # Compare-and-set: only one writer can move the cursor
                # from expected_cursor.
                result = session.execute(
                    update(NumberSequenceModel)
                    .where(
                        NumberSequenceModel.id == sequence.id,
                        NumberSequenceModel.cursor == expected_cursor,
                    )
                    .values(cursor=sequence.cursor, active=sequence.active)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    if session.get(NumberSequenceModel, sequence.id) is None:
                        raise SequenceNotFoundError(str(sequence.id))
                    raise SequenceContendedError(
                        str(sequence.id),
                        f"cursor no longer {expected_cursor}",
                    )
                if issued is not None:
                    session.add(IssuedNumberModel.from_dto(issued))
                    session.flush()
        except IntegrityError as exc:
            raise SequenceInvariantViolationError(
                str(sequence.id),
                f"issued number rejected by the database: {exc.orig}",
            ) from exc
        except OperationalError as exc:
            logger.warning(
                "sequence_store_write_lock_timeout",
                extra={"sequence_id": str(sequence.id), "error": str(exc.orig)},
            )
            raise SequenceContendedError(
                str(sequence.id), "database write lock not granted"
            ) from exc

    def issued_numbers(self, sequence_id: UUID) -> list[IssuedNumber]:
        with self._transaction() as session:
            if session.get(NumberSequenceModel, sequence_id) is None:
                raise SequenceNotFoundError(str(sequence_id))
            rows = session.execute(
                select(IssuedNumberModel)
                .where(IssuedNumberModel.sequence_id == sequence_id)
                .order_by(IssuedNumberModel.number)
            ).scalars()
            return [row.to_dto() for row in rows]

    def load_tax_classes(self) -> list[TaxClass]:
        with self._transaction() as session:
            rows = session.execute(
                select(TaxClassModel).order_by(TaxClassModel.code)
            ).scalars()
            return [row.to_dto() for row in rows]

    def load_document_type_rules(self) -> list[DocumentTypeRule]:
        with self._transaction() as session:
            rows = session.execute(
                select(DocumentTypeRuleModel).order_by(DocumentTypeRuleModel.code)
            ).scalars()
            return [row.to_dto() for row in rows]

    def seed_reference_data(
        self,
        tax_classes: Iterable[TaxClass],
        document_type_rules: Iterable[DocumentTypeRule],
    ) -> None:
        """Replace the stored tax classes and document-type rules."""
        with self._transaction() as session:
            session.execute(delete(DocumentTypeRuleModel))
            session.execute(delete(TaxClassModel))
            session.add_all(TaxClassModel.from_dto(tc) for tc in tax_classes)
            session.add_all(
                DocumentTypeRuleModel.from_dto(rule) for rule in document_type_rules
            )
        logger.info("reference_data_seeded")

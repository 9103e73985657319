"""
Module: fiscal_kernel.db.base
Responsibility: Declarative base for the fiscal ORM models.  Provides the
    UUID primary key convention and a type annotation map so that every
    table stores amounts, timestamps and ids the same way.
Architecture position: Kernel > DB.  Lowest-level import target for the
    models package.  MUST NOT import from models/, services/ or domain/.

Invariants enforced:
    - UUID primary keys, generated with uuid4 and stored as String(36) so
      the schema works on both PostgreSQL and SQLite.
    - Decimal maps to Numeric(38, 9).  NEVER float for money or rates.
    - datetime maps to DateTime(timezone=True).
    - int maps to BigInteger; NCF numbers go up to 99,999,999.
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, Integer, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as its 36-character string form."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all fiscal models.

    Guarantees:
        - id is a uuid4-generated UUID stored as String(36).
        - Decimal maps to Numeric(38, 9).
        - datetime maps to DateTime(timezone=True).
        - int maps to BigInteger (Integer on SQLite, so that integer
          primary-key semantics and comparisons behave the same).
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(38, 9),
        datetime: DateTime(timezone=True),
        PyUUID: UUIDString(),
        int: BigInteger().with_variant(Integer, "sqlite"),
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


class TimestampedBase(Base):
    """Abstract base adding a server-side creation timestamp."""

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


UUID = PyUUID

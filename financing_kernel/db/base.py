"""
Module: financing_kernel.db.base
Responsibility: Declarative base and portable column types for the ledger's
    SQLAlchemy ORM models.
Architecture position: Kernel > DB.  Lowest-level import target for
    models/.  MUST NOT import from models/, store/, services/ or outer layers.

Invariants enforced:
    - UUID surrogate primary keys on every table; natural keys carry
      UNIQUE constraints.
    - 256-bit quantities: ``UInt256String`` persists Python ints as decimal
      strings so values up to 2**256 - 1 survive every backend unchanged.
    - Timestamps round-trip as timezone-aware UTC, including on SQLite,
      which has no native timezone support.
"""

from datetime import datetime, timezone
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import BigInteger, DateTime, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

# len(str(2**256 - 1)) == 78
UINT256_DIGITS = 78


class UUIDString(TypeDecorator):
    """UUID stored as String(36) for cross-database portability."""

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


class UInt256String(TypeDecorator):
    """
    Non-negative integer stored as its decimal string.

    Contract:
        Transparently converts between Python ``int`` and a String(78)
        column.  Ordering comparisons in SQL are NOT numeric; the ledger
        only ever filters on these columns by equality.
    """

    impl = String(UINT256_DIGITS)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return str(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime.

    SQLite drops tzinfo on storage, so values are normalized to naive UTC
    on the way in there and re-tagged as UTC on the way out everywhere.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
            if dialect.name == "sqlite":
                value = value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all ledger models.

    Guarantees:
        - id is always a uuid4-generated UUID stored as String(36).
        - datetime maps to UTCDateTime.
        - int maps to BigInteger (counters, sequence numbers, bps).
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UTCDateTime(),
        PyUUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


UUID = PyUUID

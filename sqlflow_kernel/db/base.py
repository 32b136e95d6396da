"""
Module: sqlflow_kernel.db.base
Responsibility: Declarative base classes for all SQLAlchemy ORM models.  Provides
    the integer surrogate key convention, the type annotation map, and the
    TrackedBase mixin for timestamps and soft deletion.
Architecture position: Kernel > DB.  This is the lowest-level import target
    within the kernel.  ALL model files import from here.  This module MUST NOT
    import from models/, services/, selectors/, domain/, or outer layers.

Invariants enforced:
    - Monotone integer keys: ids are assigned by the database in insertion
      order.  Step ordering within a record and "latest first" queries rely
      on this.
    - Soft deletion: every tracked entity is removed by setting deleted_at;
      live queries filter on ``deleted_at IS NULL`` via ``live()``.

Failure modes:
    - IntegrityError on duplicate values of unique columns (template, role,
      user and instance names; workflow current record).
"""

from datetime import datetime, timezone
from typing import Any, ClassVar

from sqlalchemy import BigInteger, DateTime, Integer, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql.elements import ColumnElement
from sqlalchemy.types import TypeDecorator

# BIGINT everywhere except SQLite, where only INTEGER PRIMARY KEY autoincrements.
Identifier = BigInteger().with_variant(Integer(), "sqlite")


class UtcDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime on every backend.

    Contract:
        Naive values are taken to be UTC.  SQLite keeps no offset, so values
        are stored there as naive UTC wall time.

    Guarantees:
        - process_bind_param: converts to UTC before storing.
        - process_result_value: always returns an aware UTC datetime.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = as_utc(value)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return as_utc(value)


def as_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime; naive values are UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    """
    Declarative base for all SQLAlchemy models.

    Contract:
        Every ORM model inherits from Base (or TrackedBase) and gets an
        autoincrementing integer primary key.

    Guarantees:
        - id is database-assigned and increases with insertion order.
        - datetime maps to UtcDateTime.
        - int maps to the Identifier type so foreign keys match primary keys.
    """

    type_annotation_map: ClassVar[dict] = {
        datetime: UtcDateTime(),
        int: Identifier,
    }

    id: Mapped[int] = mapped_column(
        Identifier,
        primary_key=True,
        autoincrement=True,
    )


class TrackedBase(Base):
    """
    Abstract base with timestamps and a soft-delete marker.

    Contract:
        created_at is normally supplied by the service from its injected
        Clock; the server default only covers rows inserted outside a
        service (fixtures, migrations).

    Guarantees:
        - updated_at auto-updates on every UPDATE.
        - deleted_at is NULL for live rows.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        UtcDateTime(),
        server_default=func.now(),
        nullable=False,
    )

    updated_at: Mapped[datetime] = mapped_column(
        UtcDateTime(),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    deleted_at: Mapped[datetime | None] = mapped_column(
        UtcDateTime(),
        nullable=True,
        default=None,
    )

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


def live(model: Any) -> ColumnElement[bool]:
    """WHERE clause selecting rows of ``model`` that are not soft-deleted."""
    return model.deleted_at.is_(None)

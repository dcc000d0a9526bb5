"""Base model class for SQLAlchemy ORM."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import JSON, DateTime, Numeric, String, Uuid, event, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from payroll_lifecycle.exceptions import ImmutableRecordError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MoneyType(TypeDecorator):
    """Exact decimal money column.

    NUMERIC(14, 2) on PostgreSQL. SQLite has no exact decimal storage, so
    values are kept as their string representation there.
    """

    impl = Numeric(14, 2)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(32))
        return dialect.type_descriptor(Numeric(14, 2, asdecimal=True))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        value = Decimal(value)
        if dialect.name == "sqlite":
            return str(value)
        return value

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value))


class RateType(MoneyType):
    """Rates, percentages and quantities (more fractional digits)."""

    impl = Numeric(18, 6)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(32))
        return dialect.type_descriptor(Numeric(18, 6, asdecimal=True))


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    type_annotation_map = {
        UUID: Uuid(as_uuid=True),
        datetime: DateTime(timezone=True),
        Decimal: MoneyType(),
    }

    def to_dict(self) -> dict[str, Any]:
        """Convert model to dictionary."""
        return {c.name: getattr(self, c.name) for c in self.__table__.columns}


class TimestampMixin:
    """Mixin for models with created_at timestamp."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )


class UpdatedAtMixin(TimestampMixin):
    """Mixin for mutable models that track their last update."""

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
        nullable=False,
    )


def append_only(model: type[Base]) -> type[Base]:
    """Register ORM listeners that reject updates and deletes of a model."""

    def _reject_update(mapper, connection, target):
        raise ImmutableRecordError(
            f"{model.__name__} rows are immutable; cannot update {target!r}"
        )

    def _reject_delete(mapper, connection, target):
        raise ImmutableRecordError(
            f"{model.__name__} rows are append-only; cannot delete {target!r}"
        )

    event.listen(model, "before_update", _reject_update)
    event.listen(model, "before_delete", _reject_delete)
    return model

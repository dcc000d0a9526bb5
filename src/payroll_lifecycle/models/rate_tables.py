"""Versioned statutory rate tables."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_lifecycle.models.base import Base, JSONType, TimestampMixin, append_only, utcnow


class RateTable(Base, TimestampMixin):
    """A statutory table (contribution schedule or withholding brackets)."""

    __tablename__ = "rate_table"

    rate_table_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    table_key: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    agency: Mapped[str] = mapped_column(String(20), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)

    __table_args__ = (
        CheckConstraint("kind IN ('contribution', 'tax')", name="rate_table_kind_check"),
    )

    versions: Mapped[list[RateTableVersion]] = relationship(
        back_populates="table",
        order_by="RateTableVersion.effective_from",
    )


@append_only
class RateTableVersion(Base):
    """Versioned rate table payload with effective dating.

    Versions are never edited. A newer version's ``effective_from``
    implicitly closes the previous one.
    """

    __tablename__ = "rate_table_version"

    version_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    rate_table_id: Mapped[UUID] = mapped_column(
        ForeignKey("rate_table.rate_table_id", ondelete="RESTRICT"),
        nullable=False,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    published_at: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    published_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("rate_table_id", "version", name="rate_table_version_unique"),
        CheckConstraint(
            "effective_to IS NULL OR effective_to > effective_from",
            name="rate_table_version_dates_check",
        ),
    )

    table: Mapped[RateTable] = relationship(back_populates="versions")

    def is_active_on(self, as_of_date: date) -> bool:
        """Check if version is active on a given date (``effective_to`` exclusive)."""
        if self.effective_from > as_of_date:
            return False
        if self.effective_to is not None and self.effective_to <= as_of_date:
            return False
        return True

"""Append-only audit trail."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_lifecycle.models.base import Base, JSONType, append_only, utcnow


@append_only
class AuditEntry(Base):
    """One recorded action. Never updated or deleted."""

    __tablename__ = "audit_entry"

    audit_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    actor_id: Mapped[UUID | None] = mapped_column(nullable=True)
    timestamp: Mapped[datetime] = mapped_column(nullable=False, default=utcnow)
    old_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    new_values: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)

    __table_args__ = (Index("ix_audit_entity", "entity_type", "entity_id"),)

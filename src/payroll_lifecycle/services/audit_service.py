"""Append-only audit trail."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_lifecycle.events.types import serialize
from payroll_lifecycle.exceptions import PayrollError
from payroll_lifecycle.models import AuditEntry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PendingRejection:
    """A refused attempt, kept so it can be re-recorded after a rollback."""

    entity_type: str
    entity_id: str
    action: str
    actor_id: UUID | None
    new_values: dict[str, Any]


class AuditTrail:
    """Records every transition and every refused attempt.

    Entries are added to the caller's session. Refused attempts are also
    remembered in memory: the command that hit them usually rolls back,
    so the command layer drains and re-records them in a fresh
    transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self._rejections: list[PendingRejection] = []

    def record(
        self,
        entity_type: str,
        entity_id: Any,
        action: str,
        actor_id: UUID | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
    ) -> AuditEntry:
        """Add an audit entry to the current transaction."""
        entry = AuditEntry(
            entity_type=entity_type,
            entity_id=str(entity_id),
            action=action,
            actor_id=actor_id,
            old_values=serialize(old_values) if old_values is not None else None,
            new_values=serialize(new_values) if new_values is not None else None,
        )
        self.session.add(entry)
        return entry

    def record_rejection(
        self,
        entity_type: str,
        entity_id: Any,
        action: str,
        actor_id: UUID | None,
        error: PayrollError,
    ) -> AuditEntry:
        """Record a refused attempt and keep it for replay after rollback."""
        values = {"error_code": error.code, "message": error.message}
        self._rejections.append(
            PendingRejection(
                entity_type=entity_type,
                entity_id=str(entity_id),
                action=f"{action}_rejected",
                actor_id=actor_id,
                new_values=values,
            )
        )
        logger.info(
            "Refused %s on %s %s by %s: %s",
            action,
            entity_type,
            entity_id,
            actor_id,
            error.code,
        )
        return self.record(entity_type, entity_id, f"{action}_rejected", actor_id, None, values)

    def drain_rejections(self) -> list[PendingRejection]:
        """Return and forget the refused attempts recorded so far."""
        pending, self._rejections = self._rejections, []
        return pending

    def replay(self, rejections: list[PendingRejection]) -> None:
        """Re-add refused attempts to the current transaction."""
        for r in rejections:
            self.record(r.entity_type, r.entity_id, r.action, r.actor_id, None, r.new_values)

    async def history(self, entity_type: str, entity_id: Any) -> list[AuditEntry]:
        """All entries for an entity, oldest first."""
        result = await self.session.execute(
            select(AuditEntry)
            .where(
                AuditEntry.entity_type == entity_type,
                AuditEntry.entity_id == str(entity_id),
            )
            .order_by(AuditEntry.audit_id)
        )
        return list(result.scalars().all())

"""Domain event types for payroll period operations.

All events are:
- Immutable (frozen dataclasses)
- Typed with explicit payloads
- Traceable via metadata

The engine persists only its audit trail; events are how notification,
payslip and bank-file consumers learn what happened.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4


class EventCategory(str, Enum):
    """Event categories for routing and filtering."""

    PERIOD = "period"
    CALCULATION = "calculation"
    ADJUSTMENT = "adjustment"
    COMPLIANCE = "compliance"


@dataclass(frozen=True)
class EventMetadata:
    """Metadata attached to every domain event."""

    event_id: UUID
    timestamp: datetime
    correlation_id: UUID  # Links related events
    actor_id: UUID | None  # User or system that triggered
    source_service: str  # Service that emitted
    version: int = 1  # Schema version for evolution

    @classmethod
    def create(
        cls,
        actor_id: UUID | None = None,
        correlation_id: UUID | None = None,
        source_service: str = "payroll_lifecycle",
    ) -> EventMetadata:
        """Create metadata with auto-generated fields."""
        return cls(
            event_id=uuid4(),
            timestamp=datetime.now(timezone.utc),
            correlation_id=correlation_id or uuid4(),
            actor_id=actor_id,
            source_service=source_service,
        )


@dataclass(frozen=True)
class DomainEvent:
    """Base class for all domain events."""

    metadata: EventMetadata

    @property
    def event_type(self) -> str:
        """Event type name for routing."""
        return self.__class__.__name__

    @property
    def category(self) -> EventCategory:
        """Event category for filtering."""
        raise NotImplementedError("Subclasses must define category")

    def to_dict(self) -> dict[str, Any]:
        """Serialize event to dictionary."""
        data = asdict(self)
        data["event_type"] = self.event_type
        return serialize(data)

    def to_json(self) -> str:
        """Serialize event to JSON string."""
        return json.dumps(self.to_dict(), default=str)


def serialize(obj: Any) -> Any:
    """Recursively serialize objects for JSON compatibility."""
    if isinstance(obj, dict):
        return {str(k): serialize(v) for k, v in obj.items()}
    elif isinstance(obj, (list, tuple)):
        return [serialize(v) for v in obj]
    elif isinstance(obj, UUID):
        return str(obj)
    elif isinstance(obj, datetime):
        return obj.isoformat()
    elif isinstance(obj, date):
        return obj.isoformat()
    elif isinstance(obj, Decimal):
        return str(obj)
    elif isinstance(obj, Enum):
        return obj.value
    return obj


# =============================================================================
# Period Events
# =============================================================================


@dataclass(frozen=True)
class PeriodTransitioned(DomainEvent):
    """A period moved between statuses."""

    period_id: UUID
    from_status: str
    to_status: str
    reason: str | None = None

    @property
    def category(self) -> EventCategory:
        return EventCategory.PERIOD


@dataclass(frozen=True)
class TransitionRejected(DomainEvent):
    """An operation on a period or adjustment was refused."""

    entity_type: str
    entity_id: str
    action: str
    error_code: str
    message: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.PERIOD


# =============================================================================
# Calculation Events
# =============================================================================


@dataclass(frozen=True)
class CalculationRunCompleted(DomainEvent):
    """A calculation run finished and its results were persisted."""

    period_id: UUID
    run_number: int
    total: int
    succeeded: int
    failed: int
    total_gross: Decimal
    total_net: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.CALCULATION


@dataclass(frozen=True)
class EmployeeCalculationFailed(DomainEvent):
    """One employee could not be calculated within a run."""

    period_id: UUID
    run_number: int
    employee_id: UUID
    reason: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.CALCULATION


# =============================================================================
# Adjustment Events
# =============================================================================


@dataclass(frozen=True)
class AdjustmentSubmitted(DomainEvent):
    adjustment_id: UUID
    period_id: UUID
    employee_id: UUID
    field: str
    new_value: Decimal

    @property
    def category(self) -> EventCategory:
        return EventCategory.ADJUSTMENT


@dataclass(frozen=True)
class AdjustmentDecided(DomainEvent):
    """An adjustment was approved or rejected."""

    adjustment_id: UUID
    period_id: UUID
    decision: str
    reason: str | None = None

    @property
    def category(self) -> EventCategory:
        return EventCategory.ADJUSTMENT


# =============================================================================
# Compliance Events
# =============================================================================


@dataclass(frozen=True)
class ComplianceReportGenerated(DomainEvent):
    report_id: UUID
    period_id: UUID
    agency: str
    report_type: str
    total_contribution: Decimal
    due_date: date

    @property
    def category(self) -> EventCategory:
        return EventCategory.COMPLIANCE


@dataclass(frozen=True)
class ComplianceReportStatusChanged(DomainEvent):
    report_id: UUID
    agency: str
    from_status: str
    to_status: str

    @property
    def category(self) -> EventCategory:
        return EventCategory.COMPLIANCE

"""Exception hierarchy for the payroll lifecycle engine.

Every error carries a stable ``code`` so callers (CLI, HTTP, events) can
branch on type rather than message. Categories:

- ValidationError: bad input, rejected before any write
- NotFoundError: referenced entity does not exist
- ResolutionError: an employee's inputs could not be resolved; recorded
  per employee inside a calculation run, the run continues
- StateError: the operation is not allowed in the current state
- ConcurrencyError: lock contention; the caller may retry
"""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID


class PayrollError(Exception):
    """Base class for all engine errors."""

    code = "PAYROLL_ERROR"
    category = "error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "category": self.category,
            "message": self.message,
            "details": {k: str(v) if v is not None else None for k, v in self.details.items()},
        }


# ===== Validation =====


class ValidationError(PayrollError):
    """Input rejected before any write."""

    code = "VALIDATION_ERROR"
    category = "validation"

    def __init__(self, message: str, field: str | None = None, **details: Any):
        self.field = field
        if field is not None:
            details["field"] = field
        super().__init__(message, details)


class OverlappingAssignment(ValidationError):
    """Two assignments of the same component overlap for one employee."""

    code = "OVERLAPPING_ASSIGNMENT"

    def __init__(self, employee_id: UUID, component_code: str):
        self.employee_id = employee_id
        self.component_code = component_code
        super().__init__(
            f"Assignment of '{component_code}' for employee {employee_id} "
            "overlaps an existing assignment",
            field="effective_date",
            employee_id=employee_id,
            component_code=component_code,
        )


class ComponentImmutable(ValidationError):
    """Component is referenced by a finalized calculation."""

    code = "COMPONENT_IMMUTABLE"

    def __init__(self, component_code: str):
        self.component_code = component_code
        super().__init__(
            f"Component '{component_code}' is referenced by a finalized period; "
            "create a new code instead",
            field="code",
        )


# ===== Not found =====


class NotFoundError(PayrollError):
    """Referenced entity does not exist."""

    code = "NOT_FOUND"
    category = "not_found"

    def __init__(self, entity_type: str, entity_id: Any):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(
            f"{entity_type} {entity_id} not found",
            {"entity_type": entity_type, "entity_id": entity_id},
        )


class PeriodNotFound(NotFoundError):
    code = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: UUID):
        super().__init__("Payroll period", period_id)


class AdjustmentNotFound(NotFoundError):
    code = "ADJUSTMENT_NOT_FOUND"

    def __init__(self, adjustment_id: UUID):
        super().__init__("Adjustment", adjustment_id)


class ComponentNotFound(NotFoundError):
    code = "COMPONENT_NOT_FOUND"

    def __init__(self, component_code: str):
        super().__init__("Salary component", component_code)


class ReportNotFound(NotFoundError):
    code = "REPORT_NOT_FOUND"

    def __init__(self, report_id: UUID):
        super().__init__("Compliance report", report_id)


# ===== Resolution (per employee) =====


class ResolutionError(PayrollError):
    """An employee's inputs could not be resolved."""

    code = "RESOLUTION_ERROR"
    category = "resolution"


class RateTableNotFound(ResolutionError):
    """No rate table version covers the requested date."""

    code = "RATE_TABLE_NOT_FOUND"

    def __init__(self, table_key: str, effective_date: date):
        self.table_key = table_key
        self.effective_date = effective_date
        super().__init__(
            f"Rate table '{table_key}' has no version effective {effective_date}",
            {"table_key": table_key, "effective_date": effective_date},
        )


class ComponentCycleError(ResolutionError):
    """Percentage bases form a cycle or point at a later evaluation stage."""

    code = "COMPONENT_CYCLE"

    def __init__(self, component_codes: list[str], reason: str | None = None):
        self.component_codes = component_codes
        msg = f"Cannot order components {', '.join(component_codes)}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"components": ",".join(component_codes)})


class ResolutionTimeout(ResolutionError):
    """A collaborator lookup exceeded its time budget."""

    code = "RESOLUTION_TIMEOUT"

    def __init__(self, source: str, timeout: float):
        self.source = source
        self.timeout = timeout
        super().__init__(
            f"{source} lookup timed out after {timeout}s",
            {"source": source, "timeout": timeout},
        )


class AttendanceUnavailable(ResolutionError):
    """Attendance data is not available for an employee and period."""

    code = "ATTENDANCE_UNAVAILABLE"


# ===== State =====


class StateError(PayrollError):
    """Operation not allowed in the current state."""

    code = "STATE_ERROR"
    category = "state"


class InvalidPeriodState(StateError):
    """Period status does not allow the requested operation."""

    code = "INVALID_PERIOD_STATE"

    def __init__(self, period_id: UUID, status: str, operation: str):
        self.period_id = period_id
        self.status = status
        self.operation = operation
        super().__init__(
            f"Cannot {operation} period {period_id} in status '{status}'",
            {"period_id": period_id, "status": status, "operation": operation},
        )


class InvalidTransitionError(StateError):
    """Raised when an invalid state transition is attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str, reason: str | None = None):
        self.from_status = from_status
        self.to_status = to_status
        self.reason = reason
        msg = f"Invalid transition from '{from_status}' to '{to_status}'"
        if reason:
            msg += f": {reason}"
        super().__init__(msg, {"from_status": from_status, "to_status": to_status})


class SelfApprovalNotAllowed(StateError):
    """Approver is the same actor who prepared the item."""

    code = "SELF_APPROVAL_NOT_ALLOWED"

    def __init__(self, entity_type: str, entity_id: UUID, actor_id: UUID):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.actor_id = actor_id
        super().__init__(
            f"Actor {actor_id} cannot approve {entity_type} {entity_id} they prepared",
            {"entity_type": entity_type, "entity_id": entity_id, "actor_id": actor_id},
        )


class PeriodLocked(StateError):
    """Period is finalized; no further writes are permitted."""

    code = "PERIOD_LOCKED"

    def __init__(self, period_id: UUID, operation: str = "modify"):
        self.period_id = period_id
        self.operation = operation
        super().__init__(
            f"Period {period_id} is locked; cannot {operation}",
            {"period_id": period_id, "operation": operation},
        )


class PeriodNotReady(StateError):
    """Period has not reached a reportable status."""

    code = "PERIOD_NOT_READY"

    def __init__(self, period_id: UUID, status: str):
        self.period_id = period_id
        self.status = status
        super().__init__(
            f"Period {period_id} is '{status}'; reports require approved or finalized",
            {"period_id": period_id, "status": status},
        )


class AdjustmentAlreadyDecided(StateError):
    code = "ADJUSTMENT_ALREADY_DECIDED"

    def __init__(self, adjustment_id: UUID, status: str):
        self.adjustment_id = adjustment_id
        self.status = status
        super().__init__(
            f"Adjustment {adjustment_id} is already {status}",
            {"adjustment_id": adjustment_id, "status": status},
        )


class ReportLocked(StateError):
    """A submitted or accepted report cannot be regenerated or changed."""

    code = "REPORT_LOCKED"

    def __init__(self, report_id: UUID, status: str):
        self.report_id = report_id
        self.status = status
        super().__init__(
            f"Compliance report {report_id} is {status} and cannot be altered",
            {"report_id": report_id, "status": status},
        )


# ===== Concurrency =====


class ConcurrencyError(PayrollError):
    """Lock contention; safe to retry."""

    code = "CONCURRENCY_ERROR"
    category = "concurrency"


class RunAlreadyInProgress(ConcurrencyError):
    code = "RUN_ALREADY_IN_PROGRESS"

    def __init__(self, period_id: UUID):
        self.period_id = period_id
        super().__init__(
            f"A calculation run is already in progress for period {period_id}",
            {"period_id": period_id},
        )


class ConcurrentTransitionError(ConcurrencyError):
    """Compare-and-swap on period status failed."""

    code = "CONCURRENT_TRANSITION"

    def __init__(self, period_id: UUID, expected_status: str):
        self.period_id = period_id
        self.expected_status = expected_status
        super().__init__(
            f"Period {period_id} is no longer '{expected_status}'",
            {"period_id": period_id, "expected_status": expected_status},
        )


class PeriodBusy(ConcurrencyError):
    code = "PERIOD_BUSY"

    def __init__(self, period_id: UUID, timeout: float):
        self.period_id = period_id
        super().__init__(
            f"Period {period_id} is mid-transition; gave up after {timeout}s",
            {"period_id": period_id},
        )


# ===== Run lifecycle / integrity =====


class RunCancelled(PayrollError):
    """A calculation run was cancelled before completion."""

    code = "RUN_CANCELLED"
    category = "cancelled"

    def __init__(
        self,
        period_id: UUID,
        completed: int,
        remaining: int,
        reason: str | None = None,
        requested_by: UUID | None = None,
    ):
        self.period_id = period_id
        self.completed = completed
        self.remaining = remaining
        self.reason = reason
        self.requested_by = requested_by
        super().__init__(
            f"Calculation run for period {period_id} cancelled "
            f"({completed} done, {remaining} abandoned)",
            {"period_id": period_id},
        )


class ImmutableRecordError(PayrollError):
    """Attempted to update or delete an append-only record."""

    code = "IMMUTABLE_RECORD"
    category = "integrity"

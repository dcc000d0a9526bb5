"""Manual pay adjustments and their maker-checker approval."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_lifecycle.calculators.engine import CalculationEngine
from payroll_lifecycle.calculators.types import CalculationSummary, PeriodWindow
from payroll_lifecycle.config import Settings, get_settings
from payroll_lifecycle.events import (
    AdjustmentDecided,
    AdjustmentSubmitted,
    EventEmitter,
    EventMetadata,
    TransitionRejected,
)
from payroll_lifecycle.exceptions import (
    AdjustmentAlreadyDecided,
    AdjustmentNotFound,
    InvalidPeriodState,
    PayrollError,
    PeriodLocked,
    SelfApprovalNotAllowed,
    StateError,
    ValidationError,
)
from payroll_lifecycle.models import Adjustment, PayrollPeriod, SalaryComponent
from payroll_lifecycle.models.base import utcnow
from payroll_lifecycle.services.audit_service import AuditTrail
from payroll_lifecycle.services.lifecycle_service import PeriodLifecycleController
from payroll_lifecycle.services.run_queries import CalculationRunQueries
from payroll_lifecycle.services.state_machine import PeriodStateMachine, PeriodStatus

logger = logging.getLogger(__name__)

ADJUSTMENT_TYPES = ("earning", "deduction", "correction", "backpay", "refund")
ENTITY = "adjustment"


@dataclass
class AdjustmentDecision:
    """An approved or rejected adjustment and, if one ran, the recalculation."""

    adjustment: Adjustment
    recalculation: CalculationSummary | None = None


class AdjustmentManager:
    """Submits and decides adjustments.

    An approved adjustment overrides one component's amount for one
    employee on the period's next run. Approving on a period that was
    already calculated reopens it and recalculates immediately.
    """

    def __init__(
        self,
        session: AsyncSession,
        lifecycle: PeriodLifecycleController | None = None,
        engine: CalculationEngine | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.lifecycle = lifecycle or PeriodLifecycleController(session, settings=self.settings)
        self.engine = engine or CalculationEngine(
            session, lifecycle=self.lifecycle, settings=self.settings
        )
        self.audit: AuditTrail = self.lifecycle.audit
        self.emitter: EventEmitter = self.lifecycle.emitter
        self.queries = CalculationRunQueries(session)

    async def get(self, adjustment_id: UUID) -> Adjustment:
        adjustment = await self.session.get(Adjustment, adjustment_id, populate_existing=True)
        if adjustment is None:
            raise AdjustmentNotFound(adjustment_id)
        return adjustment

    async def submit(
        self,
        period_id: UUID,
        employee_id: UUID,
        field: str,
        new_value: Decimal,
        reason: str,
        created_by: UUID,
        adjustment_type: str = "correction",
        old_value: Decimal | None = None,
    ) -> UUID:
        """File a pending adjustment.

        Raises:
            ValidationError: Missing reason, negative value, or a component
                that cannot be adjusted
            PeriodNotFound: No such period
            PeriodLocked: The period is finalized
            InvalidPeriodState: The period is cancelled
        """
        period = await self.lifecycle.get_period(period_id)
        self._guard_period(period, "submit_adjustment", created_by)

        field = field.strip().upper()
        try:
            if not reason or not reason.strip():
                raise ValidationError("A reason is required", field="reason")
            if new_value < 0:
                raise ValidationError("new_value cannot be negative", field="new_value")
            if adjustment_type not in ADJUSTMENT_TYPES:
                raise ValidationError(
                    f"adjustment_type must be one of {', '.join(ADJUSTMENT_TYPES)}",
                    field="adjustment_type",
                )
            result = await self.session.execute(
                select(SalaryComponent).where(SalaryComponent.code == field)
            )
            component = result.scalar_one_or_none()
            if component is None:
                raise ValidationError(f"Unknown component '{field}'", field="field")
            if component.is_statutory:
                raise ValidationError(
                    f"'{field}' is computed from its rate table and cannot be adjusted",
                    field="field",
                )
            await self._require_roster(period, employee_id)
        except ValidationError as e:
            self.lifecycle.reject_attempt(period_id, "submit_adjustment", created_by, e)
            raise

        if old_value is None:
            old_value = await self.queries.component_amount(period_id, employee_id, field)

        adjustment = Adjustment(
            period_id=period_id,
            employee_id=employee_id,
            adjustment_type=adjustment_type,
            field=field,
            old_value=old_value,
            new_value=new_value,
            reason=reason.strip(),
            approval_status="pending",
            created_by=created_by,
        )
        self.session.add(adjustment)
        await self.session.flush()

        self.audit.record(
            ENTITY,
            adjustment.adjustment_id,
            "submitted",
            created_by,
            None,
            {
                "period_id": period_id,
                "employee_id": employee_id,
                "field": field,
                "old_value": old_value,
                "new_value": new_value,
                "reason": adjustment.reason,
            },
        )
        self.emitter.emit(
            AdjustmentSubmitted(
                metadata=EventMetadata.create(actor_id=created_by),
                adjustment_id=adjustment.adjustment_id,
                period_id=period_id,
                employee_id=employee_id,
                field=field,
                new_value=new_value,
            )
        )
        logger.info("Adjustment %s submitted for period %s", adjustment.adjustment_id, period_id)
        return adjustment.adjustment_id

    async def approve(self, adjustment_id: UUID, approver_id: UUID) -> AdjustmentDecision:
        """Approve a pending adjustment.

        Raises:
            AdjustmentNotFound: No such adjustment
            PeriodLocked: The period is finalized
            AdjustmentAlreadyDecided: Already approved or rejected
            SelfApprovalNotAllowed: The approver submitted it
        """
        adjustment = await self.get(adjustment_id)
        period = await self.lifecycle.get_period(adjustment.period_id)

        try:
            self._guard_period(period, "approve", approver_id, audit=False)
            if adjustment.is_decided:
                raise AdjustmentAlreadyDecided(adjustment_id, adjustment.approval_status)
            if approver_id == adjustment.created_by:
                raise SelfApprovalNotAllowed(ENTITY, adjustment_id, approver_id)
            await self._require_roster(period, adjustment.employee_id)
        except (StateError, ValidationError) as e:
            self._refuse(adjustment_id, "approve", approver_id, e)
            raise

        self._decide(adjustment, "approved", approver_id)
        await self.session.flush()

        # draft and calculating periods pick the override up on their next run
        if period.status not in PeriodStateMachine.REOPENABLE:
            return AdjustmentDecision(adjustment=adjustment)

        period_id = period.period_id
        await self.lifecycle.reopen_for_recalculation(
            period_id, approver_id, reason=f"adjustment {adjustment_id} approved"
        )
        recalculation = await self.engine.run(period_id, approver_id)
        return AdjustmentDecision(adjustment=adjustment, recalculation=recalculation)

    async def reject(
        self, adjustment_id: UUID, approver_id: UUID, reason: str
    ) -> AdjustmentDecision:
        """Reject a pending adjustment; it is never applied."""
        adjustment = await self.get(adjustment_id)
        period = await self.lifecycle.get_period(adjustment.period_id)

        try:
            if not reason or not reason.strip():
                raise ValidationError("A rejection reason is required", field="reason")
            self._guard_period(period, "reject", approver_id, audit=False)
            if adjustment.is_decided:
                raise AdjustmentAlreadyDecided(adjustment_id, adjustment.approval_status)
        except (StateError, ValidationError) as e:
            self._refuse(adjustment_id, "reject", approver_id, e)
            raise

        self._decide(adjustment, "rejected", approver_id, reason.strip())
        await self.session.flush()
        return AdjustmentDecision(adjustment=adjustment)

    async def list_for_period(
        self, period_id: UUID, status: str | None = None
    ) -> list[Adjustment]:
        query = (
            select(Adjustment)
            .where(Adjustment.period_id == period_id)
            .order_by(Adjustment.created_at)
        )
        if status is not None:
            query = query.where(Adjustment.approval_status == status)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    def _guard_period(
        self, period: PayrollPeriod, action: str, actor_id: UUID, audit: bool = True
    ) -> None:
        error: StateError | None = None
        if period.is_locked:
            error = PeriodLocked(period.period_id, action.replace("_", " "))
        elif period.status == PeriodStatus.CANCELLED:
            error = InvalidPeriodState(period.period_id, period.status, action.replace("_", " "))
        if error is None:
            return
        if audit:
            self.lifecycle.reject_attempt(period.period_id, action, actor_id, error)
        raise error

    def _decide(
        self,
        adjustment: Adjustment,
        decision: str,
        approver_id: UUID,
        rejection_reason: str | None = None,
    ) -> None:
        old_status = adjustment.approval_status
        adjustment.approval_status = decision
        adjustment.approved_by = approver_id
        adjustment.decided_at = utcnow()
        adjustment.rejection_reason = rejection_reason

        new_values = {"approval_status": decision, "approved_by": approver_id}
        if rejection_reason:
            new_values["rejection_reason"] = rejection_reason
        self.audit.record(
            ENTITY,
            adjustment.adjustment_id,
            decision,
            approver_id,
            {"approval_status": old_status},
            new_values,
        )
        self.emitter.emit(
            AdjustmentDecided(
                metadata=EventMetadata.create(actor_id=approver_id),
                adjustment_id=adjustment.adjustment_id,
                period_id=adjustment.period_id,
                decision=decision,
                reason=rejection_reason,
            )
        )
        logger.info("Adjustment %s %s by %s", adjustment.adjustment_id, decision, approver_id)

    async def _require_roster(self, period: PayrollPeriod, employee_id: UUID) -> None:
        """The employee must have an assignment that applies to the period."""
        assignments = await self.engine.resolver.load_assignments(
            PeriodWindow.from_model(period), employee_ids=[employee_id]
        )
        if not assignments.get(employee_id):
            raise ValidationError(
                f"Employee {employee_id} has no component assignment in this period",
                field="employee_id",
            )

    def _refuse(
        self, adjustment_id: UUID, action: str, actor_id: UUID, error: PayrollError
    ) -> None:
        self.audit.record_rejection(ENTITY, adjustment_id, action, actor_id, error)
        self.emitter.emit(
            TransitionRejected(
                metadata=EventMetadata.create(actor_id=actor_id),
                entity_type=ENTITY,
                entity_id=str(adjustment_id),
                action=action,
                error_code=error.code,
                message=error.message,
            )
        )

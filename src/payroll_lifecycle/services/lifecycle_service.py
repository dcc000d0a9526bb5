"""Payroll period lifecycle: the only writer of period status."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_lifecycle.calculators.types import PERIODS_PER_YEAR
from payroll_lifecycle.config import Settings, get_settings
from payroll_lifecycle.events import (
    EventEmitter,
    EventMetadata,
    PeriodTransitioned,
    TransitionRejected,
)
from payroll_lifecycle.exceptions import (
    ConcurrentTransitionError,
    InvalidPeriodState,
    InvalidTransitionError,
    PeriodLocked,
    PayrollError,
    PeriodNotFound,
    RunAlreadyInProgress,
    SelfApprovalNotAllowed,
    StateError,
    ValidationError,
)
from payroll_lifecycle.models import PayrollPeriod
from payroll_lifecycle.models.base import utcnow
from payroll_lifecycle.services.audit_service import AuditTrail
from payroll_lifecycle.services.locking_service import PeriodLockRegistry, get_lock_registry
from payroll_lifecycle.services.state_machine import PeriodStateMachine, PeriodStatus

if TYPE_CHECKING:
    from payroll_lifecycle.calculators.types import CalculationSummary

logger = logging.getLogger(__name__)

ENTITY = "payroll_period"


class PeriodLifecycleController:
    """Service for managing payroll period lifecycle.

    Operations:
    - create_period: New period in draft
    - begin_calculation: draft → calculating (re-entrant)
    - complete_calculation: Record run totals; calculating → calculated when clean
    - submit_for_review: calculated → reviewing
    - approve: reviewing → approved (maker-checker)
    - reject: reviewing → calculating
    - reopen_for_recalculation: calculated/reviewing/approved → calculating
    - finalize: approved → finalized (locks the period)
    - cancel: any non-terminal status → cancelled

    Every status write is a compare-and-swap on the expected prior
    status, serialized per period by the transition lock. Refused
    attempts are audited.
    """

    def __init__(
        self,
        session: AsyncSession,
        audit: AuditTrail | None = None,
        locks: PeriodLockRegistry | None = None,
        emitter: EventEmitter | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.audit = audit or AuditTrail(session)
        self.locks = locks or get_lock_registry()
        self.emitter = emitter or EventEmitter()
        self.settings = settings or get_settings()

    async def get_period(self, period_id: UUID) -> PayrollPeriod:
        """Load a period with its current persisted status.

        Raises:
            PeriodNotFound: No such period
        """
        result = await self.session.execute(
            select(PayrollPeriod)
            .where(PayrollPeriod.period_id == period_id)
            .execution_options(populate_existing=True)
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise PeriodNotFound(period_id)
        return period

    async def list_periods(
        self, status: str | None = None, limit: int = 100
    ) -> list[PayrollPeriod]:
        query = select(PayrollPeriod).order_by(PayrollPeriod.start_date.desc()).limit(limit)
        if status is not None:
            query = query.where(PayrollPeriod.status == status)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def create_period(
        self,
        period_type: str,
        start_date: date,
        end_date: date,
        pay_date: date,
        name: str | None = None,
        actor_id: UUID | None = None,
    ) -> PayrollPeriod:
        """Create a period in draft.

        Raises:
            ValidationError: Unknown period type or dates out of order
        """
        if period_type not in PERIODS_PER_YEAR:
            raise ValidationError(
                f"period_type must be one of {', '.join(PERIODS_PER_YEAR)}",
                field="period_type",
            )
        if not start_date < end_date:
            raise ValidationError("start_date must be before end_date", field="start_date")
        if not end_date < pay_date:
            raise ValidationError("pay_date must be after end_date", field="pay_date")

        period = PayrollPeriod(
            name=name,
            period_type=period_type,
            start_date=start_date,
            end_date=end_date,
            pay_date=pay_date,
            status=PeriodStatus.DRAFT.value,
            created_by=actor_id,
        )
        self.session.add(period)
        await self.session.flush()

        self.audit.record(
            ENTITY,
            period.period_id,
            "created",
            actor_id,
            None,
            {
                "period_type": period_type,
                "start_date": start_date,
                "end_date": end_date,
                "pay_date": pay_date,
                "status": period.status,
            },
        )
        logger.info("Created %s period %s (%s..%s)", period_type, period.period_id, start_date, end_date)
        return period

    async def begin_calculation(
        self, period_id: UUID, actor_id: UUID | None = None
    ) -> PayrollPeriod:
        """draft → calculating; a calculating period stays calculating."""

        def check(period: PayrollPeriod) -> None:
            if not PeriodStateMachine.can_calculate(period.status):
                raise InvalidPeriodState(period_id, period.status, "calculate")

        return await self._transition(
            period_id,
            PeriodStatus.CALCULATING,
            actor_id,
            action="calculation_started",
            check=check,
            during_run=True,
        )

    async def complete_calculation(
        self,
        period_id: UUID,
        summary: CalculationSummary,
        actor_id: UUID | None = None,
    ) -> PayrollPeriod:
        """Record a run's totals; move to calculated only if no employee failed."""
        values = {
            "employee_count": summary.succeeded,
            "total_gross": summary.total_gross,
            "total_deductions": summary.total_deductions,
            "total_net": summary.total_net,
            "total_employer_contributions": summary.total_employer_contributions,
        }
        to_status = PeriodStatus.CALCULATED if summary.complete else PeriodStatus.CALCULATING
        action = "calculation_completed" if summary.complete else "calculation_incomplete"

        def check(period: PayrollPeriod) -> None:
            if period.status != PeriodStatus.CALCULATING:
                raise InvalidPeriodState(period_id, period.status, "complete calculation for")

        return await self._transition(
            period_id,
            to_status,
            actor_id,
            action=action,
            values=values,
            check=check,
            extra={"run_number": summary.run_number, "failed": summary.failed},
            during_run=True,
        )

    async def submit_for_review(self, period_id: UUID, actor_id: UUID) -> PayrollPeriod:
        """calculated → reviewing; the submitter becomes the preparer."""
        return await self._transition(
            period_id,
            PeriodStatus.REVIEWING,
            actor_id,
            action="submitted_for_review",
            values={"prepared_by": actor_id},
        )

    async def approve(self, period_id: UUID, approver_id: UUID) -> PayrollPeriod:
        """reviewing → approved. The approver must not be the preparer."""

        def check(period: PayrollPeriod) -> None:
            if (
                self.settings.enforce_maker_checker
                and period.status == PeriodStatus.REVIEWING
                and period.prepared_by == approver_id
            ):
                raise SelfApprovalNotAllowed(ENTITY, period_id, approver_id)

        return await self._transition(
            period_id,
            PeriodStatus.APPROVED,
            approver_id,
            action="approved",
            values={"approved_by": approver_id, "approved_at": utcnow()},
            check=check,
        )

    async def reject(self, period_id: UUID, actor_id: UUID, reason: str) -> PayrollPeriod:
        """reviewing → calculating; the period must be recalculated."""
        await self._require_reason(period_id, "rejected", actor_id, reason)

        def check(period: PayrollPeriod) -> None:
            if period.status != PeriodStatus.REVIEWING:
                raise InvalidTransitionError(period.status, "rejected", "only periods under review can be rejected")

        return await self._transition(
            period_id,
            PeriodStatus.CALCULATING,
            actor_id,
            action="rejected",
            reason=reason,
            values={"approved_by": None, "approved_at": None},
            check=check,
        )

    async def reopen_for_recalculation(
        self, period_id: UUID, actor_id: UUID | None = None, reason: str | None = None
    ) -> PayrollPeriod:
        """calculated/reviewing/approved → calculating."""

        def check(period: PayrollPeriod) -> None:
            if not PeriodStateMachine.is_reopen(period.status, PeriodStatus.CALCULATING):
                raise InvalidPeriodState(period_id, period.status, "reopen")

        return await self._transition(
            period_id,
            PeriodStatus.CALCULATING,
            actor_id,
            action="reopened",
            reason=reason,
            values={
                "approved_by": None,
                "approved_at": None,
                "reopen_count": PayrollPeriod.reopen_count + 1,
            },
            check=check,
        )

    async def finalize(self, period_id: UUID, actor_id: UUID) -> PayrollPeriod:
        """approved → finalized. Irreversible; the period is locked."""
        return await self._transition(
            period_id,
            PeriodStatus.FINALIZED,
            actor_id,
            action="finalized",
            values={"finalized_by": actor_id, "locked_at": utcnow()},
        )

    async def cancel(
        self, period_id: UUID, actor_id: UUID, reason: str
    ) -> PayrollPeriod | None:
        """Any non-terminal status → cancelled.

        While a calculation of the period is in flight nothing is written
        here: the run is signalled and None is returned. The run stops
        between employees, rolls back, and the calculate command then
        cancels the period on behalf of ``actor_id``.

        Raises:
            RunAlreadyInProgress: The run is already writing its results
        """
        await self._require_reason(period_id, "cancelled", actor_id, reason)

        if self.locks.is_running(period_id):
            if self.locks.request_cancel(period_id, reason, actor_id):
                return None
            raise RunAlreadyInProgress(period_id)

        return await self._transition(
            period_id,
            PeriodStatus.CANCELLED,
            actor_id,
            action="cancelled",
            reason=reason,
            values={"cancelled_at": utcnow(), "cancel_reason": reason},
        )

    async def _require_reason(
        self, period_id: UUID, action: str, actor_id: UUID, reason: str | None
    ) -> None:
        if reason and reason.strip():
            return
        await self.get_period(period_id)
        error = ValidationError(f"A reason is required to mark a period {action}", field="reason")
        self.reject_attempt(period_id, action, actor_id, error)
        raise error

    def reject_attempt(
        self, period_id: UUID, action: str, actor_id: UUID | None, error: PayrollError
    ) -> None:
        """Audit and announce a refused operation on a period."""
        self.audit.record_rejection(ENTITY, period_id, action, actor_id, error)
        self.emitter.emit(
            TransitionRejected(
                metadata=EventMetadata.create(actor_id=actor_id),
                entity_type=ENTITY,
                entity_id=str(period_id),
                action=action,
                error_code=error.code,
                message=error.message,
            )
        )

    async def _transition(
        self,
        period_id: UUID,
        to_status: PeriodStatus,
        actor_id: UUID | None,
        *,
        action: str,
        reason: str | None = None,
        values: dict[str, Any] | None = None,
        check: Callable[[PayrollPeriod], None] | None = None,
        extra: dict[str, Any] | None = None,
        during_run: bool = False,
    ) -> PayrollPeriod:
        """Validate and apply one status change as a compare-and-swap.

        Only the run itself writes a period while its calculation is in
        flight; anyone else fails fast instead of queueing on the row.
        """
        values = dict(values or {})
        if not during_run and self.locks.is_running(period_id):
            raise RunAlreadyInProgress(period_id)

        async with self.locks.transition_lock(
            period_id, timeout=self.settings.transition_wait_seconds
        ):
            period = await self.get_period(period_id)
            from_status = period.status

            try:
                if period.is_locked:
                    raise PeriodLocked(period_id, action.replace("_", " "))
                if check is not None:
                    check(period)
                errors = PeriodStateMachine.validate_period_for_transition(period, to_status)
                if errors:
                    raise InvalidTransitionError(from_status, to_status.value, "; ".join(errors))
            except StateError as e:
                self.reject_attempt(period_id, action, actor_id, e)
                raise

            result = await self.session.execute(
                update(PayrollPeriod)
                .where(
                    PayrollPeriod.period_id == period_id,
                    PayrollPeriod.status == from_status,
                )
                .values(status=to_status.value, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ConcurrentTransitionError(period_id, from_status)

            period = await self.get_period(period_id)

            new_values: dict[str, Any] = {"status": to_status.value}
            for key in values:
                new_values[key] = getattr(period, key)
            if reason:
                new_values["reason"] = reason
            if extra:
                new_values.update(extra)
            self.audit.record(
                ENTITY, period_id, action, actor_id, {"status": from_status}, new_values
            )

            if from_status != to_status.value:
                self.emitter.emit(
                    PeriodTransitioned(
                        metadata=EventMetadata.create(actor_id=actor_id),
                        period_id=period_id,
                        from_status=from_status,
                        to_status=to_status.value,
                        reason=reason,
                    )
                )
            logger.info(
                "Period %s %s: %s -> %s (actor %s)",
                period_id,
                action,
                from_status,
                to_status.value,
                actor_id,
            )
            return period

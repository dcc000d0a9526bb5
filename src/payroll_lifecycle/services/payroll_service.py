"""Control surface shared by the CLI and the HTTP API.

Each command runs in its own session and transaction: it commits once
when it succeeds and rolls back entirely when it fails. Audit entries
for refused attempts are written again in a separate transaction after
the rollback, so the forensic trail survives the failure.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payroll_lifecycle.calculators.engine import CalculationEngine
from payroll_lifecycle.calculators.rate_resolver import RateTableProvider
from payroll_lifecycle.collaborators import AttendanceProvider, IdentityProvider
from payroll_lifecycle.config import Settings, get_settings
from payroll_lifecycle.events import DomainEvent, EventEmitter
from payroll_lifecycle.exceptions import PayrollError, RunCancelled
from payroll_lifecycle.models import ComplianceReport, PayrollPeriod, SalaryComponent
from payroll_lifecycle.services.adjustment_service import AdjustmentManager
from payroll_lifecycle.services.audit_service import AuditTrail, PendingRejection
from payroll_lifecycle.services.compliance_service import ComplianceReportBuilder
from payroll_lifecycle.services.component_service import ComponentCatalog
from payroll_lifecycle.services.lifecycle_service import PeriodLifecycleController
from payroll_lifecycle.services.locking_service import PeriodLockRegistry, get_lock_registry
from payroll_lifecycle.services.run_queries import CalculationRunQueries

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CommandResult:
    """Outcome of one command."""

    success: bool
    message: str
    data: dict[str, Any] = field(default_factory=dict)
    error_code: str | None = None
    error_category: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "success": self.success,
            "message": self.message,
            "data": self.data,
        }
        if self.error_code is not None:
            result["error_code"] = self.error_code
        return result

    @classmethod
    def ok(cls, message: str, data: dict[str, Any] | None = None) -> CommandResult:
        return cls(success=True, message=message, data=data or {})

    @classmethod
    def failed(cls, error: PayrollError) -> CommandResult:
        return cls(
            success=False,
            message=error.message,
            data=error.to_dict()["details"],
            error_code=error.code,
            error_category=error.category,
        )


@dataclass
class Services:
    """Services bound to one command's session."""

    session: AsyncSession
    lifecycle: PeriodLifecycleController
    engine: CalculationEngine
    adjustments: AdjustmentManager
    reports: ComplianceReportBuilder
    catalog: ComponentCatalog
    queries: CalculationRunQueries

    @property
    def audit(self) -> AuditTrail:
        return self.lifecycle.audit


def period_to_dict(period: PayrollPeriod) -> dict[str, Any]:
    return {
        "period_id": str(period.period_id),
        "name": period.name,
        "period_type": period.period_type,
        "start_date": period.start_date.isoformat(),
        "end_date": period.end_date.isoformat(),
        "pay_date": period.pay_date.isoformat(),
        "status": period.status,
        "employee_count": period.employee_count,
        "total_gross": str(period.total_gross) if period.total_gross is not None else None,
        "total_net": str(period.total_net) if period.total_net is not None else None,
        "reopen_count": period.reopen_count,
    }


def report_to_dict(report: ComplianceReport) -> dict[str, Any]:
    return {
        "report_id": str(report.report_id),
        "period_id": str(report.period_id),
        "agency": report.agency,
        "report_type": report.report_type,
        "run_number": report.run_number,
        "status": report.status,
        "employee_share": str(report.employee_share),
        "employer_share": str(report.employer_share),
        "total_contribution": str(report.total_contribution),
        "employee_count": report.employee_count,
        "due_date": report.due_date.isoformat(),
        "submission_date": report.submission_date.isoformat() if report.submission_date else None,
        "reference_number": report.reference_number,
    }


def component_to_dict(component: SalaryComponent) -> dict[str, Any]:
    return {
        "component_id": str(component.component_id),
        "code": component.code,
        "name": component.name,
        "component_type": component.component_type,
        "is_taxable": component.is_taxable,
        "is_deminimis": component.is_deminimis,
        "agency": component.agency,
        "rate_table_key": component.rate_table_key,
    }


class PayrollCommands:
    """Period, adjustment, report and component commands."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        attendance: AttendanceProvider | None = None,
        identity: IdentityProvider | None = None,
        locks: PeriodLockRegistry | None = None,
        emitter: EventEmitter | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.attendance = attendance
        self.identity = identity
        self.locks = locks or get_lock_registry()
        self.emitter = emitter or EventEmitter()
        self.settings = settings or get_settings()

    def _services(self, session: AsyncSession, emitter: EventEmitter) -> Services:
        lifecycle = PeriodLifecycleController(
            session, locks=self.locks, emitter=emitter, settings=self.settings
        )
        engine = CalculationEngine(
            session,
            attendance=self.attendance,
            identity=self.identity,
            lifecycle=lifecycle,
            settings=self.settings,
        )
        return Services(
            session=session,
            lifecycle=lifecycle,
            engine=engine,
            adjustments=AdjustmentManager(
                session, lifecycle=lifecycle, engine=engine, settings=self.settings
            ),
            reports=ComplianceReportBuilder(session, lifecycle=lifecycle, settings=self.settings),
            catalog=ComponentCatalog(session, audit=lifecycle.audit),
            queries=CalculationRunQueries(session),
        )

    async def execute(
        self,
        name: str,
        action: Callable[[Services], Awaitable[CommandResult]],
    ) -> CommandResult:
        """Run one command in its own transaction."""
        events: list[DomainEvent] = []
        local = EventEmitter()
        local.on_all(events.append)

        async with self.session_factory() as session:
            services = self._services(session, local)
            try:
                with local.batch():
                    result = await action(services)
                await session.commit()
            except PayrollError as e:
                await session.rollback()
                await self._persist_rejections(services.audit.drain_rejections())
                logger.info("Command %s refused: %s (%s)", name, e.message, e.code)
                if isinstance(e, RunCancelled) and e.requested_by is not None:
                    await self._complete_cancellation(e)
                return CommandResult.failed(e)
            except Exception:
                await session.rollback()
                logger.exception("Command %s failed", name)
                raise

        for event in events:
            self.emitter.emit(event)
        return result

    async def query(self, action: Callable[[Services], Awaitable[T]]) -> T:
        """Run a read-only action; nothing is committed."""
        async with self.session_factory() as session:
            return await action(self._services(session, EventEmitter()))

    async def _persist_rejections(self, rejections: list[PendingRejection]) -> None:
        if not rejections:
            return
        async with self.session_factory() as session:
            AuditTrail(session).replay(rejections)
            await session.commit()

    async def _complete_cancellation(self, cancelled: RunCancelled) -> None:
        """Cancel the period once the run that was asked to stop has rolled back."""
        result = await self.cancel_period(
            cancelled.period_id, cancelled.requested_by, cancelled.reason or "cancelled"
        )
        if not result.success:
            logger.warning(
                "Period %s was not cancelled after its run stopped: %s",
                cancelled.period_id,
                result.message,
            )

    # === Periods ===

    async def create_period(
        self,
        period_type: str,
        start_date: date,
        end_date: date,
        pay_date: date,
        name: str | None = None,
        actor_id: UUID | None = None,
    ) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            period = await s.lifecycle.create_period(
                period_type, start_date, end_date, pay_date, name=name, actor_id=actor_id
            )
            return CommandResult.ok("Period created", period_to_dict(period))

        return await self.execute("period create", action)

    async def calculate(self, period_id: UUID, actor_id: UUID | None = None) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            summary = await s.engine.run(period_id, actor_id)
            message = (
                f"Run {summary.run_number}: {summary.succeeded} of {summary.total} employees calculated"
            )
            return CommandResult.ok(message, summary.to_dict())

        return await self.execute("period calculate", action)

    async def submit_for_review(self, period_id: UUID, actor_id: UUID) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            period = await s.lifecycle.submit_for_review(period_id, actor_id)
            return CommandResult.ok("Period submitted for review", period_to_dict(period))

        return await self.execute("period submit", action)

    async def approve_period(self, period_id: UUID, approver_id: UUID) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            period = await s.lifecycle.approve(period_id, approver_id)
            return CommandResult.ok("Period approved", period_to_dict(period))

        return await self.execute("period approve", action)

    async def reject_period(self, period_id: UUID, actor_id: UUID, reason: str) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            period = await s.lifecycle.reject(period_id, actor_id, reason)
            return CommandResult.ok("Period rejected; recalculation required", period_to_dict(period))

        return await self.execute("period reject", action)

    async def finalize_period(self, period_id: UUID, actor_id: UUID) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            period = await s.lifecycle.finalize(period_id, actor_id)
            return CommandResult.ok("Period finalized", period_to_dict(period))

        return await self.execute("period finalize", action)

    async def cancel_period(self, period_id: UUID, actor_id: UUID, reason: str) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            period = await s.lifecycle.cancel(period_id, actor_id, reason)
            if period is None:
                return CommandResult.ok(
                    "Cancellation requested; the period is cancelled once its run stops",
                    {"period_id": str(period_id), "cancellation_requested": True},
                )
            return CommandResult.ok("Period cancelled", period_to_dict(period))

        return await self.execute("period cancel", action)

    # === Adjustments ===

    async def submit_adjustment(
        self,
        period_id: UUID,
        employee_id: UUID,
        field: str,
        new_value: Decimal,
        reason: str,
        created_by: UUID,
        adjustment_type: str = "correction",
        old_value: Decimal | None = None,
    ) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            adjustment_id = await s.adjustments.submit(
                period_id,
                employee_id,
                field,
                new_value,
                reason,
                created_by,
                adjustment_type=adjustment_type,
                old_value=old_value,
            )
            return CommandResult.ok("Adjustment submitted", {"adjustment_id": str(adjustment_id)})

        return await self.execute("adjustment submit", action)

    async def approve_adjustment(self, adjustment_id: UUID, approver_id: UUID) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            decision = await s.adjustments.approve(adjustment_id, approver_id)
            data: dict[str, Any] = {
                "adjustment_id": str(adjustment_id),
                "approval_status": decision.adjustment.approval_status,
            }
            if decision.recalculation is not None:
                data["recalculation"] = decision.recalculation.to_dict()
            return CommandResult.ok("Adjustment approved", data)

        return await self.execute("adjustment approve", action)

    async def reject_adjustment(
        self, adjustment_id: UUID, approver_id: UUID, reason: str
    ) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            decision = await s.adjustments.reject(adjustment_id, approver_id, reason)
            return CommandResult.ok(
                "Adjustment rejected",
                {
                    "adjustment_id": str(adjustment_id),
                    "approval_status": decision.adjustment.approval_status,
                },
            )

        return await self.execute("adjustment reject", action)

    # === Reports ===

    async def generate_report(
        self, period_id: UUID, agency: str, actor_id: UUID | None = None
    ) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            report = await s.reports.build(period_id, agency, actor_id)
            return CommandResult.ok(f"{report.report_type} report generated", report_to_dict(report))

        return await self.execute("report generate", action)

    async def mark_report_ready(self, report_id: UUID, actor_id: UUID | None = None) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            report = await s.reports.mark_ready(report_id, actor_id)
            return CommandResult.ok("Report ready", report_to_dict(report))

        return await self.execute("report ready", action)

    async def submit_report(
        self,
        report_id: UUID,
        actor_id: UUID | None = None,
        submission_date: date | None = None,
    ) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            report = await s.reports.submit(report_id, actor_id, submission_date)
            return CommandResult.ok("Report submitted", report_to_dict(report))

        return await self.execute("report submit", action)

    async def accept_report(
        self, report_id: UUID, reference_number: str, actor_id: UUID | None = None
    ) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            report = await s.reports.accept(report_id, reference_number, actor_id)
            return CommandResult.ok("Report accepted", report_to_dict(report))

        return await self.execute("report accept", action)

    # === Components ===

    async def define_component(
        self, code: str, name: str, component_type: str, actor_id: UUID | None = None, **options: Any
    ) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            component = await s.catalog.define_component(
                code, name, component_type, actor_id=actor_id, **options
            )
            return CommandResult.ok("Component defined", component_to_dict(component))

        return await self.execute("component define", action)

    async def assign_component(
        self,
        employee_id: UUID,
        component_code: str,
        effective_date: date,
        actor_id: UUID | None = None,
        **options: Any,
    ) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            assignment = await s.catalog.assign(
                employee_id, component_code, effective_date, actor_id=actor_id, **options
            )
            return CommandResult.ok(
                "Component assigned", {"assignment_id": str(assignment.assignment_id)}
            )

        return await self.execute("component assign", action)

    # === Rate tables ===

    async def publish_rate_table(
        self,
        table_key: str,
        effective_from: date,
        payload: dict[str, Any],
        *,
        agency: str,
        kind: str,
        effective_to: date | None = None,
        actor_id: UUID | None = None,
    ) -> CommandResult:
        async def action(s: Services) -> CommandResult:
            version = await RateTableProvider(s.session).publish(
                table_key,
                effective_from,
                payload,
                agency=agency,
                kind=kind,
                effective_to=effective_to,
                published_by=actor_id,
            )
            s.audit.record(
                "rate_table",
                table_key,
                "published",
                actor_id,
                None,
                {"version": version.version, "effective_from": effective_from},
            )
            return CommandResult.ok(
                f"Published {table_key} v{version.version}",
                {
                    "table_key": table_key,
                    "version": version.version,
                    "effective_from": effective_from.isoformat(),
                },
            )

        return await self.execute("rate-table publish", action)

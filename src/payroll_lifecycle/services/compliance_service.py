"""Government remittance reports built from approved periods."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_lifecycle.calculators.line_builder import LineItemBuilder
from payroll_lifecycle.calculators.types import ZERO
from payroll_lifecycle.config import Settings, get_settings
from payroll_lifecycle.events import (
    ComplianceReportGenerated,
    ComplianceReportStatusChanged,
    EventMetadata,
)
from payroll_lifecycle.exceptions import (
    InvalidTransitionError,
    PeriodNotReady,
    ReportLocked,
    ReportNotFound,
    StateError,
    ValidationError,
)
from payroll_lifecycle.models import REPORT_TYPES, ComplianceReport
from payroll_lifecycle.models.base import utcnow
from payroll_lifecycle.services.lifecycle_service import PeriodLifecycleController
from payroll_lifecycle.services.run_queries import CalculationRunQueries
from payroll_lifecycle.services.state_machine import PeriodStateMachine

logger = logging.getLogger(__name__)

ENTITY = "compliance_report"

# report status -> allowed next statuses
REPORT_TRANSITIONS: dict[str, tuple[str, ...]] = {
    "draft": ("ready", "superseded"),
    "ready": ("submitted", "superseded"),
    "submitted": ("accepted",),
    "accepted": (),
    "superseded": (),
}


@dataclass(frozen=True)
class PenaltyAssessment:
    due_date: date
    days_until_due: int
    is_overdue: bool
    months_late: int
    penalty_rate: Decimal
    penalty: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "due_date": self.due_date.isoformat(),
            "days_until_due": self.days_until_due,
            "is_overdue": self.is_overdue,
            "months_late": self.months_late,
            "penalty_rate": str(self.penalty_rate),
            "penalty": str(self.penalty),
        }


def months_late(due_date: date, paid_on: date) -> int:
    """Whole months past due, counting a started month as a full one."""
    if paid_on <= due_date:
        return 0
    months = (paid_on.year - due_date.year) * 12 + (paid_on.month - due_date.month)
    if paid_on.day > due_date.day:
        months += 1
    return max(months, 1)


class ComplianceReportBuilder:
    """Aggregates agency contributions and withholdings into remittance reports.

    Reports read only the latest run of approved or finalized periods and
    never touch calculation results. Regenerating a report supersedes
    earlier draft and ready reports for the same period and agency.
    """

    def __init__(
        self,
        session: AsyncSession,
        lifecycle: PeriodLifecycleController | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.lifecycle = lifecycle or PeriodLifecycleController(session, settings=self.settings)
        self.audit = self.lifecycle.audit
        self.emitter = self.lifecycle.emitter
        self.locks = self.lifecycle.locks
        self.queries = CalculationRunQueries(session)

    async def get(self, report_id: UUID) -> ComplianceReport:
        report = await self.session.get(ComplianceReport, report_id, populate_existing=True)
        if report is None:
            raise ReportNotFound(report_id)
        return report

    async def reports_for(
        self, period_id: UUID, agency: str | None = None, include_superseded: bool = False
    ) -> list[ComplianceReport]:
        query = select(ComplianceReport).where(ComplianceReport.period_id == period_id)
        if agency is not None:
            query = query.where(ComplianceReport.agency == agency.upper())
        if not include_superseded:
            query = query.where(ComplianceReport.status != "superseded")
        result = await self.session.execute(query.order_by(ComplianceReport.created_at))
        return list(result.scalars().all())

    async def build(
        self, period_id: UUID, agency: str, actor_id: UUID | None = None
    ) -> ComplianceReport:
        """Generate a draft report for one agency.

        Raises:
            ValidationError: Unknown agency
            PeriodBusy: The period stayed mid-transition past the wait limit
            PeriodNotFound: No such period
            PeriodNotReady: Period is not approved or finalized
            ReportLocked: A submitted or accepted report already exists
        """
        agency = (agency or "").strip().upper()
        if agency not in REPORT_TYPES:
            raise ValidationError(
                f"agency must be one of {', '.join(REPORT_TYPES)}", field="agency"
            )

        async with self.locks.transition_lock(
            period_id, timeout=self.settings.transition_wait_seconds
        ):
            period = await self.lifecycle.get_period(period_id)
            if not PeriodStateMachine.can_report(period.status):
                error = PeriodNotReady(period_id, period.status)
                self.lifecycle.reject_attempt(period_id, f"build_{agency.lower()}_report", actor_id, error)
                raise error

            existing = await self.reports_for(period_id, agency)
            for report in existing:
                if report.is_locked:
                    error = ReportLocked(report.report_id, report.status)
                    self.audit.record_rejection(ENTITY, report.report_id, "regenerate", actor_id, error)
                    raise error

            run_number = await self.queries.latest_run_number(period_id) or 0
            detail: list[dict[str, Any]] = []
            employee_share = ZERO
            employer_share = ZERO
            for run in await self.queries.successful_rows(period_id):
                shares = LineItemBuilder.sum_by_agency(run.line_items).get(agency)
                if shares is None:
                    continue
                employee_share += shares["employee"]
                employer_share += shares["employer"]
                detail.append(
                    {
                        "employee_id": str(run.employee_id),
                        "employee_share": str(shares["employee"]),
                        "employer_share": str(shares["employer"]),
                        "total": str(shares["employee"] + shares["employer"]),
                    }
                )

            for report in existing:
                self._set_status(report, "superseded", actor_id)

            report = ComplianceReport(
                period_id=period_id,
                report_type=REPORT_TYPES[agency],
                agency=agency,
                run_number=run_number,
                employee_share=employee_share,
                employer_share=employer_share,
                total_contribution=employee_share + employer_share,
                employee_count=len(detail),
                detail=detail,
                status="draft",
                due_date=self.due_date(period.pay_date, agency),
                generated_by=actor_id,
            )
            self.session.add(report)
            await self.session.flush()

        self.audit.record(
            ENTITY,
            report.report_id,
            "generated",
            actor_id,
            None,
            {
                "period_id": period_id,
                "agency": agency,
                "run_number": run_number,
                "total_contribution": report.total_contribution,
                "due_date": report.due_date,
            },
        )
        self.emitter.emit(
            ComplianceReportGenerated(
                metadata=EventMetadata.create(actor_id=actor_id),
                report_id=report.report_id,
                period_id=period_id,
                agency=agency,
                report_type=report.report_type,
                total_contribution=report.total_contribution,
                due_date=report.due_date,
            )
        )
        logger.info(
            "Built %s %s report for period %s: %s from %d employees",
            agency,
            report.report_type,
            period_id,
            report.total_contribution,
            report.employee_count,
        )
        return report

    async def mark_ready(self, report_id: UUID, actor_id: UUID | None = None) -> ComplianceReport:
        report = await self.get(report_id)
        self._guard(report, "ready", "mark_ready", actor_id)
        self._set_status(report, "ready", actor_id)
        return report

    async def submit(
        self,
        report_id: UUID,
        actor_id: UUID | None = None,
        submission_date: date | None = None,
    ) -> ComplianceReport:
        report = await self.get(report_id)
        self._guard(report, "submitted", "submit", actor_id)
        report.submission_date = submission_date or date.today()
        self._set_status(report, "submitted", actor_id, {"submission_date": report.submission_date})
        return report

    async def accept(
        self, report_id: UUID, reference_number: str, actor_id: UUID | None = None
    ) -> ComplianceReport:
        if not reference_number or not reference_number.strip():
            raise ValidationError("A reference number is required", field="reference_number")
        report = await self.get(report_id)
        self._guard(report, "accepted", "accept", actor_id)
        report.reference_number = reference_number.strip()
        report.accepted_at = utcnow()
        self._set_status(
            report, "accepted", actor_id, {"reference_number": report.reference_number}
        )
        return report

    def due_date(self, pay_date: date, agency: str) -> date:
        """Configured day of the month after the pay date."""
        day = self.settings.remittance_due_days.get(agency, 10)
        year, month = (pay_date.year + 1, 1) if pay_date.month == 12 else (pay_date.year, pay_date.month + 1)
        return date(year, month, min(day, calendar.monthrange(year, month)[1]))

    def assess_penalty(self, report: ComplianceReport, as_of: date | None = None) -> PenaltyAssessment:
        """Late-remittance exposure of a report as of a date.

        A report submitted on or before its due date carries no penalty;
        otherwise each started month past due costs the agency's rate
        on the total contribution.
        """
        as_of = as_of or date.today()
        rate = self.settings.penalty_rates.get(report.agency, Decimal("0.05"))
        paid_on = report.submission_date or as_of
        late = months_late(report.due_date, paid_on)
        penalty = (Decimal(late) * rate * report.total_contribution).quantize(
            self.settings.money_quantum, rounding=ROUND_HALF_UP
        )
        return PenaltyAssessment(
            due_date=report.due_date,
            days_until_due=(report.due_date - as_of).days,
            is_overdue=late > 0,
            months_late=late,
            penalty_rate=rate,
            penalty=penalty,
        )

    def _guard(
        self, report: ComplianceReport, to_status: str, action: str, actor_id: UUID | None
    ) -> None:
        if to_status in REPORT_TRANSITIONS.get(report.status, ()):
            return
        error: StateError
        if report.is_locked and to_status != "accepted":
            error = ReportLocked(report.report_id, report.status)
        else:
            error = InvalidTransitionError(report.status, to_status)
        self.audit.record_rejection(ENTITY, report.report_id, action, actor_id, error)
        raise error

    def _set_status(
        self,
        report: ComplianceReport,
        to_status: str,
        actor_id: UUID | None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        from_status = report.status
        report.status = to_status
        self.audit.record(
            ENTITY,
            report.report_id,
            to_status,
            actor_id,
            {"status": from_status},
            {"status": to_status, **(extra or {})},
        )
        self.emitter.emit(
            ComplianceReportStatusChanged(
                metadata=EventMetadata.create(actor_id=actor_id),
                report_id=report.report_id,
                agency=report.agency,
                from_status=from_status,
                to_status=to_status,
            )
        )

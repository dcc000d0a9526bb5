"""Payroll calculation engine - main orchestrator."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Protocol
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_lifecycle.calculators.component_resolver import ComponentResolver, needs_attendance
from payroll_lifecycle.calculators.line_builder import LineItemBuilder
from payroll_lifecycle.calculators.rate_resolver import RateTableProvider
from payroll_lifecycle.calculators.statutory import StatutoryCalculator
from payroll_lifecycle.calculators.types import (
    GROSS,
    ZERO,
    AssignmentSpec,
    CalculationSummary,
    ComponentSpec,
    ComponentType,
    EmployeeCalculationContext,
    LineCandidate,
    PeriodWindow,
    ResolvedComponent,
    ResolvedRateTable,
)
from payroll_lifecycle.config import Settings, get_settings
from payroll_lifecycle.events import (
    CalculationRunCompleted,
    EmployeeCalculationFailed,
    EventEmitter,
    EventMetadata,
)
from payroll_lifecycle.exceptions import (
    InvalidPeriodState,
    PeriodLocked,
    ResolutionError,
    RunCancelled,
    ValidationError,
)
from payroll_lifecycle.models import (
    Adjustment,
    CalculationLineItem,
    CalculationRun,
    SalaryComponent,
)
from payroll_lifecycle.services.lifecycle_service import PeriodLifecycleController
from payroll_lifecycle.services.state_machine import PeriodStateMachine

if TYPE_CHECKING:
    from payroll_lifecycle.collaborators import (
        AttendanceProvider,
        AttendanceSummary,
        IdentityProvider,
    )
    from payroll_lifecycle.services.audit_service import AuditTrail
    from payroll_lifecycle.services.locking_service import CancellationToken, PeriodLockRegistry

logger = logging.getLogger(__name__)


class RateSource(Protocol):
    async def resolve(self, table_key: str, effective_date: Any) -> ResolvedRateTable: ...


@dataclass
class EmployeeResult:
    """Result of calculating pay for one employee."""

    employee_id: UUID
    gross: Decimal
    total_deductions: Decimal
    net: Decimal
    employer_contributions: Decimal
    taxable_income: Decimal
    lines: list[LineCandidate]
    errors: list[str]
    warnings: list[str]
    inputs_fingerprint: str
    applied_adjustments: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return len(self.errors) == 0

    @property
    def error_reason(self) -> str | None:
        return "; ".join(self.errors) if self.errors else None


@dataclass
class EmployeeInputs:
    """Everything preloaded for one employee before the workers start."""

    employee_id: UUID
    assignments: list[AssignmentSpec]
    overrides: dict[str, Decimal] = field(default_factory=dict)
    applied_adjustments: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None


def _non_taxable_portion(component: ComponentSpec, amount: Decimal) -> Decimal:
    """Part of a gross component exempt from withholding; de minimis excess is taxable."""
    if component.is_deminimis:
        if component.deminimis_limit is None:
            return amount
        return min(amount, component.deminimis_limit)
    if not component.is_taxable:
        return amount
    return ZERO


class PayCalculator:
    """Per-employee calculation pipeline.

    Stable order per employee:
    1) Resolve components (earnings, allowances, benefits first)
    2) Gross = Σ(earning + allowance + benefit)
    3) Contributions (statutory from rate tables, with floors, ceilings and caps)
    4) Taxable income = gross − non-taxable − employee contributions (floored at 0)
    5) Withholding tax from progressive brackets
    6) Other deductions
    7) Net = gross − total deductions; negative net is an error
    """

    def __init__(
        self,
        resolver: ComponentResolver,
        rates: RateSource,
        statutory: StatutoryCalculator,
        builder: LineItemBuilder,
        catalog: dict[str, ComponentSpec] | None = None,
    ):
        self.resolver = resolver
        self.rates = rates
        self.statutory = statutory
        self.builder = builder
        self.catalog = catalog or {}

    async def calculate(
        self,
        inputs: EmployeeInputs,
        period: PeriodWindow,
        attendance: AttendanceSummary | None = None,
    ) -> EmployeeResult:
        ctx = EmployeeCalculationContext(employee_id=inputs.employee_id, period=period)

        try:
            resolution = self.resolver.resolve_assignments(
                inputs.assignments,
                period,
                attendance,
                overrides=inputs.overrides,
                catalog=self.catalog,
            )
        except ResolutionError as e:
            ctx.errors.append(e.message)
            return self._build_result(ctx, inputs, attendance)
        ctx.warnings.extend(resolution.warnings)

        by_stage: dict[ComponentType, list[ResolvedComponent]] = {t: [] for t in ComponentType}
        for rc in resolution.components:
            by_stage[rc.component_type].append(rc)

        # 1-2) Gross
        non_taxable = ZERO
        for stage in (ComponentType.EARNING, ComponentType.ALLOWANCE, ComponentType.BENEFIT):
            for rc in by_stage[stage]:
                if rc.is_statutory:
                    ctx.errors.append(
                        f"{rc.code}: only contributions and taxes can use a rate table"
                    )
                    continue
                if not rc.amount:
                    continue
                ctx.lines.append(self.builder.create_component_line(rc))
                non_taxable += _non_taxable_portion(rc.component, rc.amount)
        ctx.gross = self.builder.calculate_gross_from_lines(ctx.lines)

        # 3) Contributions
        for rc in by_stage[ComponentType.CONTRIBUTION]:
            if rc.is_statutory:
                await self._statutory_contribution(ctx, rc, resolution.amount_of)
            elif rc.amount:
                line = self.builder.create_component_line(rc)
                ctx.lines.append(line)
                ctx.employee_contributions += -line.amount

        # 4) Taxable income
        ctx.taxable_income = max(ctx.gross - non_taxable - ctx.employee_contributions, ZERO)

        # 5) Taxes
        for rc in by_stage[ComponentType.TAX]:
            if rc.is_statutory:
                await self._statutory_tax(ctx, rc)
            elif rc.amount:
                ctx.lines.append(self.builder.create_component_line(rc))

        # 6) Other deductions
        for rc in by_stage[ComponentType.DEDUCTION]:
            if rc.is_statutory:
                ctx.errors.append(f"{rc.code}: only contributions and taxes can use a rate table")
            elif rc.amount:
                ctx.lines.append(self.builder.create_component_line(rc))

        # 7) Net
        ctx.errors.extend(self.builder.validate_line_signs(ctx.lines))
        total_deductions = self.builder.calculate_deductions_from_lines(ctx.lines)
        ctx.net = ctx.gross - total_deductions
        if ctx.net != self.builder.calculate_net_from_lines(ctx.lines):
            ctx.errors.append("Net pay does not reconcile with line items")
        if ctx.net < 0:
            ctx.errors.append(f"Negative net pay: {ctx.net}")

        return self._build_result(ctx, inputs, attendance, total_deductions)

    async def _load_table(
        self, ctx: EmployeeCalculationContext, rc: ResolvedComponent, kind: str
    ) -> ResolvedRateTable | None:
        key = rc.component.rate_table_key
        assert key is not None
        try:
            table = await self.rates.resolve(key, ctx.period.pay_date)
        except ResolutionError as e:
            ctx.errors.append(f"{rc.code}: {e.message}")
            return None
        if table.kind != kind:
            ctx.errors.append(f"{rc.code}: rate table '{key}' is a {table.kind} table")
            return None
        ctx.rate_versions.append(f"{key}:v{table.version}")
        return table

    async def _statutory_contribution(self, ctx, rc, amount_of) -> None:
        table = await self._load_table(ctx, rc, "contribution")
        if table is None:
            return
        try:
            schedule = self.statutory.parse_contribution_schedule(table.payload)
        except ValidationError as e:
            ctx.errors.append(f"{rc.code}: {e.message}")
            return

        if schedule.basis == GROSS:
            basis = ctx.gross
        else:
            basis = amount_of(schedule.basis)
            if basis is None:
                ctx.warnings.append(
                    f"{rc.code}: contribution basis {schedule.basis} not assigned, using zero"
                )
                basis = ZERO

        shares = self.statutory.calculate_contribution(basis, schedule)
        lines = self.builder.create_contribution_lines(
            rc,
            shares.basis,
            shares.employee,
            shares.employer,
            schedule.employee_rate,
            schedule.employer_rate,
        )
        ctx.lines.extend(lines)
        ctx.employee_contributions += shares.employee
        ctx.employer_contributions += shares.employer

    async def _statutory_tax(self, ctx: EmployeeCalculationContext, rc: ResolvedComponent) -> None:
        table = await self._load_table(ctx, rc, "tax")
        if table is None:
            return
        try:
            brackets = self.statutory.parse_brackets(table.payload, ctx.period.period_type)
        except ValidationError as e:
            ctx.errors.append(f"{rc.code}: {e.message}")
            return

        tax = self.statutory.calculate_progressive_tax(ctx.taxable_income, brackets)
        if tax > 0:
            ctx.lines.append(
                self.builder.create_tax_line(
                    rc, tax, ctx.taxable_income, f"{rc.component.name} on {ctx.taxable_income}"
                )
            )

    def _build_result(
        self,
        ctx: EmployeeCalculationContext,
        inputs: EmployeeInputs,
        attendance: AttendanceSummary | None,
        total_deductions: Decimal = ZERO,
    ) -> EmployeeResult:
        fingerprint = self._compute_inputs_fingerprint(inputs, attendance, ctx.rate_versions)
        if ctx.has_errors:
            return EmployeeResult(
                employee_id=ctx.employee_id,
                gross=ZERO,
                total_deductions=ZERO,
                net=ZERO,
                employer_contributions=ZERO,
                taxable_income=ZERO,
                lines=[],
                errors=ctx.errors,
                warnings=ctx.warnings,
                inputs_fingerprint=fingerprint,
                applied_adjustments=inputs.applied_adjustments,
            )
        return EmployeeResult(
            employee_id=ctx.employee_id,
            gross=ctx.gross,
            total_deductions=total_deductions,
            net=ctx.net,
            employer_contributions=ctx.employer_contributions,
            taxable_income=ctx.taxable_income,
            lines=ctx.lines,
            errors=[],
            warnings=ctx.warnings,
            inputs_fingerprint=fingerprint,
            applied_adjustments=inputs.applied_adjustments,
        )

    @staticmethod
    def _compute_inputs_fingerprint(
        inputs: EmployeeInputs,
        attendance: AttendanceSummary | None,
        rate_versions: list[str],
    ) -> str:
        """Compute fingerprint of all inputs used in calculation."""
        data = {
            "assignments": sorted(
                (a.to_canonical_dict() for a in inputs.assignments),
                key=lambda d: (d["component"], d["effective_date"]),
            ),
            "overrides": {k: str(v) for k, v in sorted(inputs.overrides.items())},
            "attendance": (
                {
                    "days_worked": str(attendance.days_worked),
                    "hours_worked": str(attendance.hours_worked),
                    "overtime_hours": str(attendance.overtime_hours),
                }
                if attendance is not None
                else None
            ),
            "rate_tables": sorted(rate_versions),
        }
        json_str = json.dumps(data, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]


class CalculationEngine:
    """Runs a period's roster through the calculation pipeline.

    - One run per period at a time; a concurrent call fails fast with
      RunAlreadyInProgress
    - Employees are calculated concurrently on a bounded worker pool;
      one employee's failure never aborts the run
    - Results are persisted together, as one CalculationRun row per
      employee under the next run number, after every worker finished
    - A cancelled run writes nothing
    """

    def __init__(
        self,
        session: AsyncSession,
        attendance: AttendanceProvider | None = None,
        identity: IdentityProvider | None = None,
        lifecycle: PeriodLifecycleController | None = None,
        audit: AuditTrail | None = None,
        locks: PeriodLockRegistry | None = None,
        emitter: EventEmitter | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.lifecycle = lifecycle or PeriodLifecycleController(
            session, audit=audit, locks=locks, emitter=emitter, settings=self.settings
        )
        self.locks = self.lifecycle.locks
        self.emitter = self.lifecycle.emitter
        self.identity = identity
        self.builder = LineItemBuilder.from_settings(self.settings)
        self.statutory = StatutoryCalculator(
            self.settings.money_quantum, self.settings.rounding_mode
        )
        self.resolver = ComponentResolver(
            session,
            attendance=attendance,
            attendance_timeout=self.settings.attendance_timeout_seconds,
            quantum=self.settings.money_quantum,
            rounding=self.settings.rounding_mode,
        )

    async def run(
        self,
        period_id: UUID,
        actor_id: UUID | None = None,
        cancel_token: CancellationToken | None = None,
    ) -> CalculationSummary:
        """Calculate every eligible employee of a period.

        Raises:
            RunAlreadyInProgress: Another run holds the period's run lock
            PeriodNotFound: No such period
            InvalidPeriodState / PeriodLocked: Period is not draft or calculating
            RunCancelled: The run was cancelled; nothing was written
        """
        async with self.locks.run_lock(period_id, self.session, cancel_token) as token:
            return await self._run_locked(period_id, actor_id, token)

    async def _run_locked(
        self,
        period_id: UUID,
        actor_id: UUID | None,
        token: CancellationToken,
    ) -> CalculationSummary:
        period = await self.lifecycle.get_period(period_id)
        if not PeriodStateMachine.can_calculate(period.status):
            if period.is_locked:
                error = PeriodLocked(period_id, "calculate")
            else:
                error = InvalidPeriodState(period_id, period.status, "calculate")
            self.lifecycle.reject_attempt(period_id, "calculate", actor_id, error)
            raise error

        period = await self.lifecycle.begin_calculation(period_id, actor_id)
        window = PeriodWindow.from_model(period)

        inputs = await self._load_inputs(window)
        roster = await self._eligible(inputs)
        logger.info("Calculating period %s: %d employees", period_id, len(roster))

        catalog = await self._catalog()
        rates = RateTableProvider(self.session, timeout=self.settings.rate_table_timeout_seconds)
        await rates.preload(
            (
                a.component.rate_table_key
                for e in roster
                for a in e.assignments
                if a.component.rate_table_key
            ),
            window.pay_date,
        )
        calculator = PayCalculator(
            self.resolver,
            rates,
            self.statutory,
            self.builder,
            catalog=catalog,
        )

        semaphore = asyncio.Semaphore(max(1, self.settings.calculation_workers))
        completed = 0

        async def work(employee_inputs: EmployeeInputs) -> EmployeeResult | None:
            nonlocal completed
            async with semaphore:
                if token.cancelled:
                    return None
                result = await self._calculate_one(calculator, employee_inputs, window)
                completed += 1
                return result

        try:
            results = await asyncio.gather(*(work(e) for e in roster))
        finally:
            await rates.settle()

        if token.cancelled:
            logger.warning(
                "Run for period %s cancelled after %d of %d employees",
                period_id,
                completed,
                len(roster),
            )
            raise RunCancelled(
                period_id,
                completed,
                len(roster) - completed,
                reason=token.reason,
                requested_by=token.requested_by,
            )
        token.seal()

        finished = [r for r in results if r is not None]
        run_number = await self._next_run_number(period_id)
        summary = self._persist(period_id, run_number, finished, actor_id)
        await self.session.flush()

        await self.lifecycle.complete_calculation(period_id, summary, actor_id)

        metadata = EventMetadata.create(actor_id=actor_id)
        for employee_id, reason in summary.errors.items():
            self.emitter.emit(
                EmployeeCalculationFailed(
                    metadata=metadata,
                    period_id=period_id,
                    run_number=run_number,
                    employee_id=employee_id,
                    reason=reason,
                )
            )
        self.emitter.emit(
            CalculationRunCompleted(
                metadata=metadata,
                period_id=period_id,
                run_number=run_number,
                total=summary.total,
                succeeded=summary.succeeded,
                failed=summary.failed,
                total_gross=summary.total_gross,
                total_net=summary.total_net,
            )
        )
        logger.info(
            "Run %d for period %s: %d succeeded, %d failed",
            run_number,
            period_id,
            summary.succeeded,
            summary.failed,
        )
        return summary

    async def _calculate_one(
        self,
        calculator: PayCalculator,
        inputs: EmployeeInputs,
        window: PeriodWindow,
    ) -> EmployeeResult:
        if inputs.error is not None:
            return self._failed(inputs, inputs.error)
        attendance = None
        if needs_attendance(inputs.assignments):
            try:
                attendance = await self.resolver.fetch_attendance(inputs.employee_id, window)
            except ResolutionError as e:
                return self._failed(inputs, e.message)
        result = await calculator.calculate(inputs, window, attendance)
        if not result.success:
            logger.warning(
                "Employee %s failed in period %s: %s",
                inputs.employee_id,
                window.period_id,
                result.error_reason,
            )
        return result

    @staticmethod
    def _failed(inputs: EmployeeInputs, reason: str) -> EmployeeResult:
        return EmployeeResult(
            employee_id=inputs.employee_id,
            gross=ZERO,
            total_deductions=ZERO,
            net=ZERO,
            employer_contributions=ZERO,
            taxable_income=ZERO,
            lines=[],
            errors=[reason],
            warnings=[],
            inputs_fingerprint="",
            applied_adjustments=inputs.applied_adjustments,
        )

    def _persist(
        self,
        period_id: UUID,
        run_number: int,
        results: list[EmployeeResult],
        actor_id: UUID | None,
    ) -> CalculationSummary:
        summary = CalculationSummary(period_id=period_id, run_number=run_number, total=len(results))

        for result in results:
            run = CalculationRun(
                period_id=period_id,
                run_number=run_number,
                employee_id=result.employee_id,
                status="success" if result.success else "error",
                error_reason=result.error_reason,
                gross_pay=result.gross,
                total_deductions=result.total_deductions,
                net_pay=result.net,
                employer_contributions=result.employer_contributions,
                taxable_income=result.taxable_income,
                warnings=list(result.warnings),
                applied_adjustments=list(result.applied_adjustments),
                inputs_fingerprint=result.inputs_fingerprint,
                engine_version=self.settings.engine_version,
                created_by=actor_id,
                line_items=[
                    CalculationLineItem(
                        sequence=i,
                        component_code=line.component_code,
                        component_type=line.component_type.value,
                        line_type=line.line_type.value,
                        agency=line.agency,
                        amount=line.amount,
                        basis=line.basis,
                        rate=line.rate,
                        quantity=line.quantity,
                        is_taxable=line.is_taxable,
                        explanation=line.explanation,
                    )
                    for i, line in enumerate(result.lines, start=1)
                ],
            )
            self.session.add(run)

            if result.success:
                summary.succeeded += 1
                summary.total_gross += result.gross
                summary.total_deductions += result.total_deductions
                summary.total_net += result.net
                summary.total_employer_contributions += result.employer_contributions
            else:
                summary.failed += 1
                summary.errors[result.employee_id] = result.error_reason or "error"

        return summary

    # === Data Loading Methods ===

    async def _load_inputs(self, window: PeriodWindow) -> list[EmployeeInputs]:
        """Roster: employees with an applicable assignment, plus approved adjustments."""
        assignments = await self.resolver.load_assignments(window)

        result = await self.session.execute(
            select(Adjustment)
            .where(
                Adjustment.period_id == window.period_id,
                Adjustment.approval_status == "approved",
            )
            .order_by(Adjustment.decided_at, Adjustment.created_at)
        )
        overrides: dict[UUID, dict[str, Adjustment]] = {}
        for adj in result.scalars().all():
            # Latest decision per field wins
            overrides.setdefault(adj.employee_id, {})[adj.field] = adj

        for employee_id in sorted(set(overrides) - set(assignments), key=str):
            logger.warning(
                "Approved adjustments for employee %s in period %s have no applicable assignment",
                employee_id,
                window.period_id,
            )

        inputs: list[EmployeeInputs] = []
        for employee_id in sorted(assignments, key=str):
            chosen = overrides.get(employee_id, {})
            inputs.append(
                EmployeeInputs(
                    employee_id=employee_id,
                    assignments=assignments[employee_id],
                    overrides={code: adj.new_value for code, adj in chosen.items()},
                    applied_adjustments=[
                        {
                            "adjustment_id": str(adj.adjustment_id),
                            "field": code,
                            "old_value": str(adj.old_value) if adj.old_value is not None else None,
                            "new_value": str(adj.new_value),
                        }
                        for code, adj in sorted(chosen.items())
                    ],
                )
            )
        return inputs

    async def _eligible(self, inputs: list[EmployeeInputs]) -> list[EmployeeInputs]:
        """Keep active employees; unknown employees stay in as failures."""
        if self.identity is None:
            return inputs

        profiles = await asyncio.gather(
            *(self.identity.get_profile(e.employee_id) for e in inputs)
        )
        eligible: list[EmployeeInputs] = []
        for employee_inputs, profile in zip(inputs, profiles):
            if profile is None:
                eligible.append(
                    EmployeeInputs(
                        employee_id=employee_inputs.employee_id,
                        assignments=[],
                        applied_adjustments=employee_inputs.applied_adjustments,
                        error=f"Employee {employee_inputs.employee_id} is not known to the identity provider",
                    )
                )
            elif profile.is_eligible:
                eligible.append(employee_inputs)
            else:
                logger.info(
                    "Skipping employee %s (%s)",
                    employee_inputs.employee_id,
                    profile.employment_status,
                )
        return eligible

    async def _catalog(self) -> dict[str, ComponentSpec]:
        result = await self.session.execute(select(SalaryComponent))
        return {c.code: ComponentSpec.from_model(c) for c in result.scalars().all()}

    async def _next_run_number(self, period_id: UUID) -> int:
        result = await self.session.execute(
            select(func.max(CalculationRun.run_number)).where(
                CalculationRun.period_id == period_id
            )
        )
        return (result.scalar() or 0) + 1

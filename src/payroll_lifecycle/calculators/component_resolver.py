"""Per-employee component resolution for a payroll period."""

from __future__ import annotations

import asyncio
import heapq
import logging
from collections import defaultdict
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_lifecycle.calculators.types import (
    GROSS,
    ZERO,
    AssignmentSpec,
    ComponentSpec,
    PeriodWindow,
    ResolutionResult,
    ResolvedComponent,
    count_weekdays,
)
from payroll_lifecycle.exceptions import (
    AttendanceUnavailable,
    ComponentCycleError,
    PeriodNotFound,
    ResolutionError,
    ResolutionTimeout,
)
from payroll_lifecycle.models import EmployeeComponentAssignment, PayrollPeriod

if TYPE_CHECKING:
    from payroll_lifecycle.collaborators import AttendanceProvider, AttendanceSummary

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


def is_applicable(assignment: AssignmentSpec, period: PeriodWindow) -> bool:
    """Whether an assignment contributes to a period.

    Recurring assignments must be active on the pay date (end date
    inclusive). One-time assignments apply only to the period their
    effective date falls in.
    """
    if assignment.frequency == "one_time":
        return period.contains(assignment.effective_date)
    if assignment.effective_date > period.pay_date:
        return False
    if assignment.end_date is not None and assignment.end_date < period.pay_date:
        return False
    return True


class ComponentResolver:
    """Resolves an employee's assigned components into per-period amounts.

    Resolution order is fixed by component type: earnings, then
    allowances and benefits, then contributions, taxes and other
    deductions. Within that order, percentage components are placed after
    the component their basis names. Statutory components (those with a
    rate table) are returned without an amount; the engine computes them.
    """

    def __init__(
        self,
        session: AsyncSession | None,
        attendance: AttendanceProvider | None = None,
        attendance_timeout: float | None = None,
        quantum: Decimal = Decimal("0.01"),
        rounding: str = ROUND_HALF_UP,
    ):
        self.session = session
        self.attendance = attendance
        self.attendance_timeout = attendance_timeout
        self.quantum = quantum
        self.rounding = rounding

    def _round(self, amount: Decimal) -> Decimal:
        return amount.quantize(self.quantum, rounding=self.rounding)

    async def resolve(self, employee_id: UUID, period_id: UUID) -> list[ResolvedComponent]:
        """Resolve one employee's components for a period."""
        period = await self.session.get(PayrollPeriod, period_id)
        if period is None:
            raise PeriodNotFound(period_id)
        window = PeriodWindow.from_model(period)

        by_employee = await self.load_assignments(window, employee_ids=[employee_id])
        assignments = by_employee.get(employee_id, [])

        attendance = None
        if needs_attendance(assignments):
            attendance = await self.fetch_attendance(employee_id, window)

        return self.resolve_assignments(assignments, window, attendance).components

    async def load_assignments(
        self,
        period: PeriodWindow,
        employee_ids: list[UUID] | None = None,
    ) -> dict[UUID, list[AssignmentSpec]]:
        """Load applicable assignments for a period, grouped by employee."""
        query = select(EmployeeComponentAssignment).where(
            EmployeeComponentAssignment.effective_date <= period.pay_date,
            (
                EmployeeComponentAssignment.end_date.is_(None)
                | (EmployeeComponentAssignment.end_date >= period.start_date)
            ),
        )
        if employee_ids is not None:
            query = query.where(EmployeeComponentAssignment.employee_id.in_(employee_ids))

        result = await self.session.execute(query)
        grouped: dict[UUID, list[AssignmentSpec]] = defaultdict(list)
        for row in result.unique().scalars().all():
            spec = AssignmentSpec.from_model(row)
            if is_applicable(spec, period):
                grouped[spec.employee_id].append(spec)
        return dict(grouped)

    async def fetch_attendance(
        self, employee_id: UUID, period: PeriodWindow
    ) -> AttendanceSummary | None:
        """Fetch attendance totals, bounded by the attendance timeout.

        Unavailable attendance returns None; a timeout raises
        ResolutionTimeout.
        """
        if self.attendance is None:
            return None
        try:
            return await asyncio.wait_for(
                self.attendance.get_attendance(employee_id, period),
                timeout=self.attendance_timeout,
            )
        except asyncio.TimeoutError:
            raise ResolutionTimeout("Attendance", self.attendance_timeout or 0) from None
        except AttendanceUnavailable as e:
            logger.info("Attendance unavailable for employee %s: %s", employee_id, e)
            return None

    def resolve_assignments(
        self,
        assignments: list[AssignmentSpec],
        period: PeriodWindow,
        attendance: AttendanceSummary | None = None,
        overrides: dict[str, Decimal] | None = None,
        catalog: dict[str, ComponentSpec] | None = None,
    ) -> ResolutionResult:
        """Resolve assignments without touching the database.

        Args:
            assignments: The employee's assignments (inapplicable ones are skipped)
            period: The period being calculated
            attendance: Attendance totals, if available
            overrides: Component code -> amount from approved adjustments
            catalog: Components by code, for overrides of unassigned components

        Raises:
            ComponentCycleError: Percentage bases cannot be ordered
            ResolutionError: A unit-based component has no unit rate
        """
        overrides = overrides or {}
        result = ResolutionResult()

        nodes: dict[str, AssignmentSpec] = {}
        for assignment in sorted(
            (a for a in assignments if is_applicable(a, period)),
            key=lambda a: a.effective_date,
        ):
            code = assignment.component.code
            if code in nodes:
                result.warnings.append(
                    f"{code}: more than one assignment applies; using the latest"
                )
            nodes[code] = assignment

        for code, amount in overrides.items():
            if code in nodes:
                continue
            component = (catalog or {}).get(code)
            if component is None:
                result.warnings.append(f"{code}: adjustment names an unknown component")
                continue
            nodes[code] = AssignmentSpec(
                assignment_id=None,
                employee_id=assignments[0].employee_id if assignments else UUID(int=0),
                component=component,
                amount=amount,
            )

        order = self._evaluation_order(nodes, overrides)

        resolved: dict[str, ResolvedComponent] = {}
        for code in order:
            assignment = nodes[code]
            if code in overrides:
                rc = ResolvedComponent(
                    component=assignment.component,
                    amount=self._round(overrides[code]),
                    explanation=f"{assignment.component.name} (adjusted)",
                    overridden=True,
                )
            elif assignment.component.is_statutory:
                rc = ResolvedComponent(component=assignment.component, amount=None)
            else:
                rc = self._resolve_one(assignment, period, attendance, resolved, result.warnings)
            resolved[code] = rc
            result.components.append(rc)

        return result

    def _evaluation_order(
        self, nodes: dict[str, AssignmentSpec], overrides: dict[str, Decimal]
    ) -> list[str]:
        """Topologically order components by percentage basis, ties by (rank, code)."""
        gross_codes = [c for c, a in nodes.items() if a.component.component_type.is_gross]
        dependencies: dict[str, set[str]] = {code: set() for code in nodes}

        for code, assignment in nodes.items():
            if assignment.percentage is None or code in overrides:
                continue
            if assignment.component.is_statutory:
                continue

            rank = assignment.component.component_type.rank
            basis = assignment.basis_code or GROSS

            if basis == GROSS:
                if rank <= 1:
                    raise ComponentCycleError(
                        [code], "GROSS basis is only valid for contributions, taxes and deductions"
                    )
                dependencies[code].update(gross_codes)
                continue

            if basis == code:
                raise ComponentCycleError([code], "component is its own basis")
            if basis not in nodes:
                # Resolved as a zero basis with a warning
                continue

            basis_assignment = nodes[basis]
            if basis_assignment.component.component_type.rank > rank:
                raise ComponentCycleError(
                    [code, basis], f"basis {basis} is evaluated after {code}"
                )
            if basis_assignment.component.is_statutory and basis not in overrides:
                raise ComponentCycleError(
                    [code, basis], f"basis {basis} is computed from a rate table"
                )
            dependencies[code].add(basis)

        dependents: dict[str, list[str]] = defaultdict(list)
        indegree = {code: len(deps) for code, deps in dependencies.items()}
        for code, deps in dependencies.items():
            for dep in deps:
                dependents[dep].append(code)

        def key(code: str) -> tuple[int, str]:
            return (nodes[code].component.component_type.rank, code)

        ready = [key(code) for code, degree in indegree.items() if degree == 0]
        heapq.heapify(ready)
        order: list[str] = []
        while ready:
            _, code = heapq.heappop(ready)
            order.append(code)
            for dependent in dependents[code]:
                indegree[dependent] -= 1
                if indegree[dependent] == 0:
                    heapq.heappush(ready, key(dependent))

        if len(order) != len(nodes):
            remaining = sorted(code for code in nodes if code not in order)
            raise ComponentCycleError(remaining, "circular percentage basis")
        return order

    def _resolve_one(
        self,
        assignment: AssignmentSpec,
        period: PeriodWindow,
        attendance: AttendanceSummary | None,
        resolved: dict[str, ResolvedComponent],
        warnings: list[str],
    ) -> ResolvedComponent:
        component = assignment.component

        if assignment.requires_attendance and attendance is None:
            warnings.append(f"{component.code}: attendance unavailable, resolved to zero")
            return ResolvedComponent(
                component=component,
                amount=ZERO,
                explanation=f"{component.name} (no attendance)",
            )

        basis: Decimal | None = None
        rate: Decimal | None = None
        quantity: Decimal | None = None

        if assignment.percentage is not None:
            basis_code = assignment.basis_code or GROSS
            if basis_code == GROSS:
                basis = sum(
                    (
                        rc.amount or ZERO
                        for rc in resolved.values()
                        if rc.component_type.is_gross
                    ),
                    ZERO,
                )
            elif basis_code in resolved:
                basis = resolved[basis_code].amount or ZERO
            else:
                warnings.append(f"{component.code}: basis {basis_code} not assigned, using zero")
                basis = ZERO
            rate = assignment.percentage
            amount = basis * assignment.percentage / HUNDRED
            explanation = f"{component.name}: {assignment.percentage}% of {basis_code}"

        elif assignment.units is not None:
            if component.default_amount is None:
                raise ResolutionError(
                    f"Component '{component.code}' is unit-based but has no unit rate",
                    {"component": component.code},
                )
            rate = component.default_amount
            quantity = assignment.units
            if assignment.requires_attendance and attendance is not None:
                quantity = attendance.figure(component.unit_basis) * assignment.units
            amount = quantity * rate
            explanation = f"{component.name}: {quantity} @ {rate}"

        else:
            amount = self._per_period_amount(assignment, period)
            explanation = component.name

        if assignment.is_prorated:
            factor = self._proration_factor(assignment, period, attendance)
            if factor < 1:
                amount = amount * factor
                explanation = f"{explanation} (prorated {factor:.4f})"

        return ResolvedComponent(
            component=component,
            amount=self._round(amount),
            basis=basis,
            rate=rate,
            quantity=quantity,
            explanation=explanation,
        )

    @staticmethod
    def _per_period_amount(assignment: AssignmentSpec, period: PeriodWindow) -> Decimal:
        amount = assignment.amount or ZERO
        if assignment.frequency == "monthly":
            return amount * 12 / period.periods_per_year
        if assignment.frequency == "annual":
            return amount / period.periods_per_year
        return amount

    @staticmethod
    def _proration_factor(
        assignment: AssignmentSpec,
        period: PeriodWindow,
        attendance: AttendanceSummary | None,
    ) -> Decimal:
        """days_worked / standard_days, capped at 1."""
        standard_days = period.standard_days
        if standard_days == 0:
            return Decimal(1)

        if attendance is not None:
            days_worked = attendance.days_worked
        else:
            # applicable assignments run at least to the pay date, after the period end
            window_start = max(period.start_date, assignment.effective_date)
            days_worked = Decimal(count_weekdays(window_start, period.end_date))

        factor = days_worked / Decimal(standard_days)
        return min(max(factor, ZERO), Decimal(1))


def needs_attendance(assignments: list[AssignmentSpec]) -> bool:
    return any(a.requires_attendance or a.is_prorated for a in assignments)

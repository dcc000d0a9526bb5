"""Salary component catalog and employee assignments."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_lifecycle.calculators.types import GROSS, ComponentType
from payroll_lifecycle.exceptions import (
    ComponentImmutable,
    ComponentNotFound,
    NotFoundError,
    OverlappingAssignment,
    PeriodLocked,
    ValidationError,
)
from payroll_lifecycle.models import (
    CalculationLineItem,
    CalculationRun,
    EmployeeComponentAssignment,
    PayrollPeriod,
    SalaryComponent,
)
from payroll_lifecycle.services.audit_service import AuditTrail
from payroll_lifecycle.services.state_machine import PeriodStatus

logger = logging.getLogger(__name__)

FREQUENCIES = ("per_period", "monthly", "annual", "one_time")
UNIT_BASES = ("days", "hours", "overtime_hours")

# Fields a revision may change; code and type identify the component
REVISABLE_FIELDS = (
    "name",
    "is_taxable",
    "is_deminimis",
    "deminimis_limit",
    "default_amount",
    "agency",
    "rate_table_key",
    "unit_basis",
)


@dataclass
class AssignmentRequest:
    """One assignment to write."""

    employee_id: UUID
    component_code: str
    effective_date: date
    amount: Decimal | None = None
    percentage: Decimal | None = None
    units: Decimal | None = None
    basis_code: str | None = None
    frequency: str = "per_period"
    end_date: date | None = None
    is_prorated: bool = False
    requires_attendance: bool = False

    def overlaps(self, other: AssignmentRequest) -> bool:
        return (
            self.employee_id == other.employee_id
            and self.component_code == other.component_code
            and (other.end_date is None or self.effective_date <= other.end_date)
            and (self.end_date is None or other.effective_date <= self.end_date)
        )


class ComponentCatalog:
    """Defines salary components and binds them to employees.

    Every write is validated in full before anything is added to the
    session, so a refused write (single or batch) leaves no rows behind.
    """

    COMPONENT = "salary_component"
    ASSIGNMENT = "component_assignment"

    def __init__(self, session: AsyncSession, audit: AuditTrail | None = None):
        self.session = session
        self.audit = audit or AuditTrail(session)

    # === Components ===

    async def define_component(
        self,
        code: str,
        name: str,
        component_type: str,
        *,
        is_taxable: bool = True,
        is_deminimis: bool = False,
        deminimis_limit: Decimal | None = None,
        default_amount: Decimal | None = None,
        agency: str | None = None,
        rate_table_key: str | None = None,
        unit_basis: str | None = None,
        actor_id: UUID | None = None,
    ) -> SalaryComponent:
        """Create a component.

        Raises:
            ValidationError: Bad code or type, or the code is already taken
        """
        code = (code or "").strip().upper()
        if not code:
            raise ValidationError("Component code is required", field="code")
        if code == GROSS:
            raise ValidationError(f"'{GROSS}' is reserved", field="code")
        if not name or not name.strip():
            raise ValidationError("Component name is required", field="name")

        fields = {
            "name": name.strip(),
            "is_taxable": is_taxable,
            "is_deminimis": is_deminimis,
            "deminimis_limit": deminimis_limit,
            "default_amount": default_amount,
            "agency": agency.upper() if agency else None,
            "rate_table_key": rate_table_key,
            "unit_basis": unit_basis,
        }
        self._validate_component(component_type, fields)

        existing = await self._find_component(code)
        if existing is not None:
            raise ValidationError(f"Component '{code}' already exists", field="code")

        component = SalaryComponent(code=code, component_type=component_type, **fields)
        self.session.add(component)
        await self.session.flush()

        self.audit.record(
            self.COMPONENT,
            component.component_id,
            "defined",
            actor_id,
            None,
            {"code": code, "component_type": component_type, **fields},
        )
        logger.info("Defined %s component %s", component_type, code)
        return component

    async def get_component(self, code: str) -> SalaryComponent:
        component = await self._find_component(code.strip().upper())
        if component is None:
            raise ComponentNotFound(code)
        return component

    async def list_components(self) -> list[SalaryComponent]:
        result = await self.session.execute(select(SalaryComponent).order_by(SalaryComponent.code))
        return list(result.scalars().all())

    async def revise_component(
        self, code: str, actor_id: UUID | None = None, **changes: Any
    ) -> SalaryComponent:
        """Change a component's definition.

        Raises:
            ComponentNotFound: No such component
            ComponentImmutable: A finalized period's calculation references it
            ValidationError: Unknown field or invalid value
        """
        component = await self.get_component(code)

        unknown = set(changes) - set(REVISABLE_FIELDS)
        if unknown:
            raise ValidationError(
                f"Cannot revise {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )
        if "agency" in changes and changes["agency"]:
            changes["agency"] = changes["agency"].upper()

        merged = {f: getattr(component, f) for f in REVISABLE_FIELDS}
        merged.update(changes)
        self._validate_component(component.component_type, merged)

        if await self._referenced_by_finalized(component.code):
            raise ComponentImmutable(component.code)

        old_values = {f: getattr(component, f) for f in changes}
        for f, value in changes.items():
            setattr(component, f, value)
        await self.session.flush()

        self.audit.record(
            self.COMPONENT, component.component_id, "revised", actor_id, old_values, changes
        )
        return component

    # === Assignments ===

    async def assign(
        self,
        employee_id: UUID,
        component_code: str,
        effective_date: date,
        *,
        amount: Decimal | None = None,
        percentage: Decimal | None = None,
        units: Decimal | None = None,
        basis_code: str | None = None,
        frequency: str = "per_period",
        end_date: date | None = None,
        is_prorated: bool = False,
        requires_attendance: bool = False,
        actor_id: UUID | None = None,
    ) -> EmployeeComponentAssignment:
        """Bind a component to an employee for an effective window.

        Raises:
            ValidationError: Invalid value or window
            OverlappingAssignment: Same employee and component overlap
            PeriodLocked: The window covers a finalized period's pay date
        """
        request = AssignmentRequest(
            employee_id=employee_id,
            component_code=component_code,
            effective_date=effective_date,
            amount=amount,
            percentage=percentage,
            units=units,
            basis_code=basis_code,
            frequency=frequency,
            end_date=end_date,
            is_prorated=is_prorated,
            requires_attendance=requires_attendance,
        )
        (assignment,) = await self.assign_many([request], actor_id=actor_id)
        return assignment

    async def assign_many(
        self, requests: list[AssignmentRequest], actor_id: UUID | None = None
    ) -> list[EmployeeComponentAssignment]:
        """Write a batch of assignments; all of them or none."""
        if not requests:
            return []

        components: dict[str, SalaryComponent] = {}
        for request in requests:
            request.component_code = request.component_code.strip().upper()
            if request.component_code not in components:
                components[request.component_code] = await self.get_component(
                    request.component_code
                )
            self._validate_request(request, components[request.component_code])

        for i, request in enumerate(requests):
            for other in requests[:i]:
                if request.overlaps(other):
                    raise OverlappingAssignment(request.employee_id, request.component_code)

        for request in requests:
            component = components[request.component_code]
            existing = await self._assignments(request.employee_id, component.component_id)
            if any(a.overlaps(request.effective_date, request.end_date) for a in existing):
                raise OverlappingAssignment(request.employee_id, request.component_code)
            await self._guard_finalized(request.effective_date, request.end_date, request.frequency)

        created: list[EmployeeComponentAssignment] = []
        for request in requests:
            component = components[request.component_code]
            values = asdict(request)
            del values["component_code"]
            assignment = EmployeeComponentAssignment(
                component_id=component.component_id, created_by=actor_id, **values
            )
            assignment.component = component
            self.session.add(assignment)
            created.append(assignment)
        await self.session.flush()

        for assignment, request in zip(created, requests):
            self.audit.record(
                self.ASSIGNMENT, assignment.assignment_id, "assigned", actor_id, None, asdict(request)
            )
        logger.info("Wrote %d component assignments", len(created))
        return created

    async def end_assignment(
        self, assignment_id: UUID, end_date: date, actor_id: UUID | None = None
    ) -> EmployeeComponentAssignment:
        """Close an assignment's window on ``end_date`` (inclusive)."""
        assignment = await self.session.get(EmployeeComponentAssignment, assignment_id)
        if assignment is None:
            raise NotFoundError("Component assignment", assignment_id)
        if end_date <= assignment.effective_date:
            raise ValidationError("end_date must be after effective_date", field="end_date")
        if assignment.end_date is not None and end_date >= assignment.end_date:
            raise ValidationError(
                "end_date can only shorten an assignment", field="end_date"
            )

        # Pay dates between the new and old end would lose this component
        await self._guard_finalized(
            date.fromordinal(end_date.toordinal() + 1),
            assignment.end_date,
            assignment.frequency,
        )

        old_end = assignment.end_date
        assignment.end_date = end_date
        await self.session.flush()

        self.audit.record(
            self.ASSIGNMENT,
            assignment_id,
            "ended",
            actor_id,
            {"end_date": old_end},
            {"end_date": end_date},
        )
        return assignment

    async def assignments_for(
        self, employee_id: UUID, as_of: date | None = None
    ) -> list[EmployeeComponentAssignment]:
        """An employee's assignments, optionally only those active on a date."""
        result = await self.session.execute(
            select(EmployeeComponentAssignment)
            .where(EmployeeComponentAssignment.employee_id == employee_id)
            .order_by(EmployeeComponentAssignment.effective_date)
        )
        assignments = list(result.unique().scalars().all())
        if as_of is not None:
            assignments = [a for a in assignments if a.is_active_on(as_of)]
        return assignments

    # === Validation ===

    @staticmethod
    def _validate_component(component_type: str, fields: dict[str, Any]) -> None:
        try:
            ctype = ComponentType(component_type)
        except ValueError:
            raise ValidationError(
                f"component_type must be one of {', '.join(t.value for t in ComponentType)}",
                field="component_type",
            ) from None

        if fields.get("unit_basis") is not None and fields["unit_basis"] not in UNIT_BASES:
            raise ValidationError(
                f"unit_basis must be one of {', '.join(UNIT_BASES)}", field="unit_basis"
            )
        if fields.get("rate_table_key") and ctype not in (
            ComponentType.CONTRIBUTION,
            ComponentType.TAX,
        ):
            raise ValidationError(
                "Only contributions and taxes can use a rate table", field="rate_table_key"
            )
        for name in ("deminimis_limit", "default_amount"):
            value = fields.get(name)
            if value is not None and value < 0:
                raise ValidationError(f"{name} cannot be negative", field=name)
        if fields.get("deminimis_limit") is not None and not fields.get("is_deminimis"):
            raise ValidationError(
                "deminimis_limit requires is_deminimis", field="deminimis_limit"
            )

    @staticmethod
    def _validate_request(request: AssignmentRequest, component: SalaryComponent) -> None:
        values = [request.amount, request.percentage, request.units]
        if sum(v is not None for v in values) != 1:
            raise ValidationError(
                "Exactly one of amount, percentage or units is required", field="amount"
            )
        for name, value in zip(("amount", "percentage", "units"), values):
            if value is not None and value < 0:
                raise ValidationError(f"{name} cannot be negative", field=name)

        if request.frequency not in FREQUENCIES:
            raise ValidationError(
                f"frequency must be one of {', '.join(FREQUENCIES)}", field="frequency"
            )
        if request.end_date is not None and request.end_date <= request.effective_date:
            raise ValidationError("end_date must be after effective_date", field="end_date")

        if request.percentage is not None and not request.basis_code:
            raise ValidationError("Percentage assignments need a basis_code", field="basis_code")
        if request.percentage is None and request.basis_code:
            raise ValidationError(
                "basis_code only applies to percentage assignments", field="basis_code"
            )
        if request.units is not None and component.default_amount is None:
            raise ValidationError(
                f"Component '{component.code}' has no unit rate (default_amount)",
                field="units",
            )
        if component.is_statutory and (request.amount or request.percentage or request.units):
            raise ValidationError(
                f"Component '{component.code}' is computed from its rate table; assign it with amount 0",
                field="amount",
            )

    # === Queries ===

    async def _find_component(self, code: str) -> SalaryComponent | None:
        result = await self.session.execute(
            select(SalaryComponent).where(SalaryComponent.code == code)
        )
        return result.scalar_one_or_none()

    async def _assignments(
        self, employee_id: UUID, component_id: UUID
    ) -> list[EmployeeComponentAssignment]:
        result = await self.session.execute(
            select(EmployeeComponentAssignment).where(
                EmployeeComponentAssignment.employee_id == employee_id,
                EmployeeComponentAssignment.component_id == component_id,
            )
        )
        return list(result.unique().scalars().all())

    async def _guard_finalized(
        self, start: date, end: date | None, frequency: str
    ) -> None:
        """Refuse writes that would change what a finalized period paid."""
        query = select(PayrollPeriod).where(PayrollPeriod.status == PeriodStatus.FINALIZED.value)
        if frequency == "one_time":
            query = query.where(PayrollPeriod.start_date <= start, PayrollPeriod.end_date >= start)
        else:
            query = query.where(PayrollPeriod.pay_date >= start)
            if end is not None:
                query = query.where(PayrollPeriod.pay_date <= end)
        result = await self.session.execute(query.limit(1))
        period = result.scalar_one_or_none()
        if period is not None:
            raise PeriodLocked(period.period_id, "change component assignments for")

    async def _referenced_by_finalized(self, code: str) -> bool:
        result = await self.session.execute(
            select(CalculationLineItem.line_id)
            .join(CalculationRun, CalculationLineItem.run_id == CalculationRun.run_id)
            .join(PayrollPeriod, CalculationRun.period_id == PayrollPeriod.period_id)
            .where(
                CalculationLineItem.component_code == code,
                PayrollPeriod.status == PeriodStatus.FINALIZED.value,
            )
            .limit(1)
        )
        return result.first() is not None

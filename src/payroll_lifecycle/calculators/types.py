"""Type definitions for calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any
from uuid import UUID

if TYPE_CHECKING:
    from payroll_lifecycle.models import (
        EmployeeComponentAssignment,
        PayrollPeriod,
        SalaryComponent,
    )

ZERO = Decimal("0")

# Pseudo basis code: sum of earnings, allowances and benefits
GROSS = "GROSS"

PERIODS_PER_YEAR: dict[str, int] = {
    "weekly": 52,
    "bi_weekly": 26,
    "semi_monthly": 24,
    "monthly": 12,
}


class ComponentType(str, Enum):
    """Salary component categories."""

    EARNING = "earning"
    ALLOWANCE = "allowance"
    BENEFIT = "benefit"
    CONTRIBUTION = "contribution"
    TAX = "tax"
    DEDUCTION = "deduction"

    @property
    def rank(self) -> int:
        """Evaluation stage; a percentage basis must come from the same or an earlier stage."""
        return EVALUATION_RANK[self]

    @property
    def is_gross(self) -> bool:
        return self.rank <= 1


EVALUATION_RANK: dict[ComponentType, int] = {
    ComponentType.EARNING: 0,
    ComponentType.ALLOWANCE: 1,
    ComponentType.BENEFIT: 1,
    ComponentType.CONTRIBUTION: 2,
    ComponentType.TAX: 3,
    ComponentType.DEDUCTION: 4,
}


class LineType(str, Enum):
    """Pay line item types."""

    EARNING = "EARNING"
    ALLOWANCE = "ALLOWANCE"
    BENEFIT = "BENEFIT"
    DEDUCTION = "DEDUCTION"
    CONTRIBUTION = "CONTRIBUTION"
    EMPLOYER_CONTRIBUTION = "EMPLOYER_CONTRIBUTION"
    TAX = "TAX"


@dataclass
class LineCandidate:
    """A candidate line item before persistence."""

    line_type: LineType
    amount: Decimal  # Final amount (signed per conventions)
    component_code: str
    component_type: ComponentType
    agency: str | None = None

    basis: Decimal | None = None
    rate: Decimal | None = None
    quantity: Decimal | None = None

    is_taxable: bool = True
    explanation: str | None = None

    def to_canonical_dict(self) -> dict[str, Any]:
        """Return canonical dict for hashing (deterministic ordering)."""
        return {
            "line_type": self.line_type.value,
            "component_code": self.component_code,
            "agency": self.agency,
            "basis": str(self.basis) if self.basis is not None else None,
            "rate": str(self.rate) if self.rate is not None else None,
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "amount": str(self.amount),
        }


# ===== Detached snapshots of persisted rows =====
# Workers never touch ORM instances; they operate on these.


@dataclass(frozen=True)
class ComponentSpec:
    component_id: UUID | None
    code: str
    name: str
    component_type: ComponentType
    is_taxable: bool = True
    is_deminimis: bool = False
    deminimis_limit: Decimal | None = None
    default_amount: Decimal | None = None
    agency: str | None = None
    rate_table_key: str | None = None
    unit_basis: str | None = None

    @property
    def is_statutory(self) -> bool:
        return self.rate_table_key is not None

    @classmethod
    def from_model(cls, component: SalaryComponent) -> ComponentSpec:
        return cls(
            component_id=component.component_id,
            code=component.code,
            name=component.name,
            component_type=ComponentType(component.component_type),
            is_taxable=component.is_taxable,
            is_deminimis=component.is_deminimis,
            deminimis_limit=component.deminimis_limit,
            default_amount=component.default_amount,
            agency=component.agency,
            rate_table_key=component.rate_table_key,
            unit_basis=component.unit_basis,
        )


@dataclass(frozen=True)
class AssignmentSpec:
    assignment_id: UUID | None
    employee_id: UUID
    component: ComponentSpec
    amount: Decimal | None = None
    percentage: Decimal | None = None
    units: Decimal | None = None
    basis_code: str | None = None
    frequency: str = "per_period"
    effective_date: date = date.min
    end_date: date | None = None
    is_prorated: bool = False
    requires_attendance: bool = False

    @classmethod
    def from_model(cls, assignment: EmployeeComponentAssignment) -> AssignmentSpec:
        return cls(
            assignment_id=assignment.assignment_id,
            employee_id=assignment.employee_id,
            component=ComponentSpec.from_model(assignment.component),
            amount=assignment.amount,
            percentage=assignment.percentage,
            units=assignment.units,
            basis_code=assignment.basis_code,
            frequency=assignment.frequency,
            effective_date=assignment.effective_date,
            end_date=assignment.end_date,
            is_prorated=assignment.is_prorated,
            requires_attendance=assignment.requires_attendance,
        )

    def to_canonical_dict(self) -> dict[str, Any]:
        return {
            "component": self.component.code,
            "amount": str(self.amount) if self.amount is not None else None,
            "percentage": str(self.percentage) if self.percentage is not None else None,
            "units": str(self.units) if self.units is not None else None,
            "basis_code": self.basis_code,
            "frequency": self.frequency,
            "effective_date": self.effective_date.isoformat(),
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "is_prorated": self.is_prorated,
            "requires_attendance": self.requires_attendance,
        }


@dataclass(frozen=True)
class PeriodWindow:
    """Dates and cadence of a payroll period."""

    period_id: UUID
    period_type: str
    start_date: date
    end_date: date
    pay_date: date

    @classmethod
    def from_model(cls, period: PayrollPeriod) -> PeriodWindow:
        return cls(
            period_id=period.period_id,
            period_type=period.period_type,
            start_date=period.start_date,
            end_date=period.end_date,
            pay_date=period.pay_date,
        )

    @property
    def periods_per_year(self) -> int:
        return PERIODS_PER_YEAR[self.period_type]

    @property
    def standard_days(self) -> int:
        """Weekdays in the period."""
        return count_weekdays(self.start_date, self.end_date)

    def contains(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date


def count_weekdays(start: date, end: date) -> int:
    """Count Monday-Friday days in [start, end]."""
    if end < start:
        return 0
    total_days = (end - start).days + 1
    full_weeks, extra = divmod(total_days, 7)
    count = full_weeks * 5
    for offset in range(extra):
        if (start + timedelta(days=full_weeks * 7 + offset)).weekday() < 5:
            count += 1
    return count


@dataclass(frozen=True)
class ResolvedRateTable:
    """One rate table version, as effective on a date."""

    table_key: str
    agency: str
    kind: str
    version: int
    effective_from: date
    effective_to: date | None
    payload: dict[str, Any]


# ===== Resolution results =====


@dataclass
class ResolvedComponent:
    """A component's per-period amount for one employee.

    ``amount`` is None for statutory components, which the engine computes
    from their rate table.
    """

    component: ComponentSpec
    amount: Decimal | None
    basis: Decimal | None = None
    rate: Decimal | None = None
    quantity: Decimal | None = None
    explanation: str | None = None
    overridden: bool = False

    @property
    def code(self) -> str:
        return self.component.code

    @property
    def component_type(self) -> ComponentType:
        return self.component.component_type

    @property
    def is_statutory(self) -> bool:
        return self.component.is_statutory and not self.overridden


@dataclass
class ResolutionResult:
    """Everything the resolver produced for one employee."""

    components: list[ResolvedComponent] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def amount_of(self, code: str) -> Decimal | None:
        for rc in self.components:
            if rc.code == code:
                return rc.amount
        return None


# ===== Statutory =====


@dataclass
class TaxBracket:
    """Tax bracket for progressive taxation."""

    min_amount: Decimal
    max_amount: Decimal | None  # None = no upper limit
    rate: Decimal  # As decimal, e.g., 0.20 for 20%
    flat_amount: Decimal = ZERO  # Tax due at bracket start


@dataclass(frozen=True)
class ContributionSchedule:
    """Parsed contribution rate table payload."""

    employee_rate: Decimal
    employer_rate: Decimal
    employer_fixed: Decimal = ZERO
    basis_floor: Decimal | None = None
    basis_ceiling: Decimal | None = None
    employee_cap: Decimal | None = None
    employer_cap: Decimal | None = None
    basis: str = GROSS


@dataclass(frozen=True)
class ContributionShares:
    basis: Decimal
    employee: Decimal
    employer: Decimal


# ===== Per-employee context =====


@dataclass
class EmployeeCalculationContext:
    """Context for calculating a single employee's pay."""

    employee_id: UUID
    period: PeriodWindow

    # Will be populated during calculation
    gross: Decimal = ZERO
    taxable_income: Decimal = ZERO
    employee_contributions: Decimal = ZERO
    employer_contributions: Decimal = ZERO
    net: Decimal = ZERO
    lines: list[LineCandidate] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    rate_versions: list[str] = field(default_factory=list)

    @property
    def has_errors(self) -> bool:
        return len(self.errors) > 0


@dataclass
class CalculationSummary:
    """Outcome of one calculation run over a period's roster."""

    period_id: UUID
    run_number: int
    total: int = 0
    succeeded: int = 0
    failed: int = 0
    total_gross: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net: Decimal = ZERO
    total_employer_contributions: Decimal = ZERO
    errors: dict[UUID, str] = field(default_factory=dict)

    @property
    def complete(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "period_id": str(self.period_id),
            "run_number": self.run_number,
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "total_gross": str(self.total_gross),
            "total_deductions": str(self.total_deductions),
            "total_net": str(self.total_net),
            "total_employer_contributions": str(self.total_employer_contributions),
            "errors": {str(k): v for k, v in self.errors.items()},
        }

"""Salary component definitions and employee assignments."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_lifecycle.models.base import Base, MoneyType, RateType, TimestampMixin, UpdatedAtMixin


class SalaryComponent(Base, UpdatedAtMixin):
    """A named earning, allowance, benefit, deduction, tax or contribution."""

    __tablename__ = "salary_component"

    component_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    component_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_taxable: Mapped[bool] = mapped_column(nullable=False, default=True)
    is_deminimis: Mapped[bool] = mapped_column(nullable=False, default=False)
    deminimis_limit: Mapped[Decimal | None] = mapped_column(MoneyType(), nullable=True)
    default_amount: Mapped[Decimal | None] = mapped_column(MoneyType(), nullable=True)
    agency: Mapped[str | None] = mapped_column(String(20), nullable=True)
    rate_table_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    unit_basis: Mapped[str | None] = mapped_column(String(20), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "component_type IN ('earning', 'allowance', 'benefit', 'deduction', "
            "'tax', 'contribution')",
            name="salary_component_type_check",
        ),
        CheckConstraint(
            "unit_basis IS NULL OR unit_basis IN ('days', 'hours', 'overtime_hours')",
            name="salary_component_unit_basis_check",
        ),
    )

    @property
    def is_statutory(self) -> bool:
        """Computed from a versioned rate table rather than an assignment value."""
        return self.rate_table_key is not None


class EmployeeComponentAssignment(Base, TimestampMixin):
    """Binds a salary component to an employee for an effective window."""

    __tablename__ = "employee_component_assignment"

    assignment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    component_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_component.component_id", ondelete="RESTRICT"),
        nullable=False,
    )

    # Exactly one of amount / percentage / units
    amount: Mapped[Decimal | None] = mapped_column(MoneyType(), nullable=True)
    percentage: Mapped[Decimal | None] = mapped_column(RateType(), nullable=True)
    units: Mapped[Decimal | None] = mapped_column(RateType(), nullable=True)
    basis_code: Mapped[str | None] = mapped_column(String(50), nullable=True)

    frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="per_period")
    effective_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_prorated: Mapped[bool] = mapped_column(nullable=False, default=False)
    requires_attendance: Mapped[bool] = mapped_column(nullable=False, default=False)
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "(CASE WHEN amount IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN percentage IS NOT NULL THEN 1 ELSE 0 END"
            " + CASE WHEN units IS NOT NULL THEN 1 ELSE 0 END) = 1",
            name="assignment_value_exclusive_check",
        ),
        CheckConstraint(
            "end_date IS NULL OR end_date > effective_date",
            name="assignment_dates_check",
        ),
        CheckConstraint(
            "frequency IN ('per_period', 'monthly', 'annual', 'one_time')",
            name="assignment_frequency_check",
        ),
        Index("ix_assignment_employee_component", "employee_id", "component_id"),
    )

    component: Mapped[SalaryComponent] = relationship(lazy="joined")

    def is_active_on(self, as_of_date: date) -> bool:
        """Check if assignment is effective on a date (end date inclusive)."""
        if self.effective_date > as_of_date:
            return False
        if self.end_date is not None and self.end_date < as_of_date:
            return False
        return True

    def overlaps(self, effective_date: date, end_date: date | None) -> bool:
        """Check if this assignment's window intersects another window."""
        starts_before_other_ends = end_date is None or self.effective_date <= end_date
        other_starts_before_this_ends = self.end_date is None or effective_date <= self.end_date
        return starts_before_other_ends and other_starts_before_this_ends

"""Payroll period, calculation run, and line item models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_lifecycle.models.base import (
    Base,
    JSONType,
    MoneyType,
    RateType,
    TimestampMixin,
    UpdatedAtMixin,
    append_only,
)


# ===== Periods =====


class PayrollPeriod(Base, UpdatedAtMixin):
    """A pay cycle with a single pay date.

    ``status`` is written only by PeriodLifecycleController.
    """

    __tablename__ = "payroll_period"

    period_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    period_type: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    pay_date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")

    # Aggregates (null until the first calculation run)
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross: Mapped[Decimal | None] = mapped_column(MoneyType(), nullable=True)
    total_deductions: Mapped[Decimal | None] = mapped_column(MoneyType(), nullable=True)
    total_net: Mapped[Decimal | None] = mapped_column(MoneyType(), nullable=True)
    total_employer_contributions: Mapped[Decimal | None] = mapped_column(
        MoneyType(), nullable=True
    )

    # Actors and lifecycle stamps
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    prepared_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(nullable=True)
    finalized_by: Mapped[UUID | None] = mapped_column(nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    reopen_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint(
            "period_type IN ('weekly', 'bi_weekly', 'semi_monthly', 'monthly')",
            name="payroll_period_type_check",
        ),
        CheckConstraint(
            "status IN ('draft', 'calculating', 'calculated', 'reviewing', "
            "'approved', 'finalized', 'cancelled')",
            name="payroll_period_status_check",
        ),
        CheckConstraint(
            "start_date < end_date AND end_date < pay_date",
            name="payroll_period_dates_check",
        ),
    )

    @property
    def is_locked(self) -> bool:
        return self.locked_at is not None

    def __repr__(self) -> str:
        return f"<PayrollPeriod {self.period_id} {self.start_date}..{self.end_date} {self.status}>"


# ===== Calculation runs =====


@append_only
class CalculationRun(Base, TimestampMixin):
    """One employee's result within one execution attempt for a period.

    Immutable after creation; recalculation writes a new run_number.
    """

    __tablename__ = "calculation_run"

    run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="RESTRICT"),
        nullable=False,
    )
    run_number: Mapped[int] = mapped_column(Integer, nullable=False)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    error_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    gross_pay: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)
    employer_contributions: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)
    taxable_income: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)

    warnings: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)
    applied_adjustments: Mapped[list[Any]] = mapped_column(
        JSONType, nullable=False, default=list
    )
    inputs_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    engine_version: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    created_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "period_id", "run_number", "employee_id", name="calculation_run_unique"
        ),
        CheckConstraint(
            "status IN ('pending', 'success', 'error')",
            name="calculation_run_status_check",
        ),
        CheckConstraint("run_number > 0", name="calculation_run_number_check"),
        Index("ix_calculation_run_period_run", "period_id", "run_number"),
    )

    period: Mapped[PayrollPeriod] = relationship()
    line_items: Mapped[list[CalculationLineItem]] = relationship(
        back_populates="run",
        order_by="CalculationLineItem.sequence",
        cascade="save-update, merge",
    )

    @property
    def succeeded(self) -> bool:
        return self.status == "success"


@append_only
class CalculationLineItem(Base):
    """One component line of a calculation run."""

    __tablename__ = "calculation_line_item"

    line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    run_id: Mapped[UUID] = mapped_column(
        ForeignKey("calculation_run.run_id", ondelete="RESTRICT"),
        nullable=False,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    component_code: Mapped[str] = mapped_column(String(50), nullable=False)
    component_type: Mapped[str] = mapped_column(String(20), nullable=False)
    line_type: Mapped[str] = mapped_column(String(30), nullable=False)
    agency: Mapped[str | None] = mapped_column(String(20), nullable=True)
    amount: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)
    basis: Mapped[Decimal | None] = mapped_column(MoneyType(), nullable=True)
    rate: Mapped[Decimal | None] = mapped_column(RateType(), nullable=True)
    quantity: Mapped[Decimal | None] = mapped_column(RateType(), nullable=True)
    is_taxable: Mapped[bool] = mapped_column(nullable=False, default=True)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint("run_id", "sequence", name="calculation_line_item_seq_unique"),
    )

    run: Mapped[CalculationRun] = relationship(back_populates="line_items")

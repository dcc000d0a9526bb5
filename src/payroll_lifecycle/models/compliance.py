"""Government remittance reports."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from payroll_lifecycle.models.base import Base, JSONType, MoneyType, UpdatedAtMixin

# agency -> form
REPORT_TYPES: dict[str, str] = {
    "SSS": "R3",
    "PHILHEALTH": "RF1",
    "PAGIBIG": "MCRF",
    "BIR": "1601C",
}


class ComplianceReport(Base, UpdatedAtMixin):
    """Per-agency remittance summary for one period."""

    __tablename__ = "compliance_report"

    report_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="RESTRICT"),
        nullable=False,
    )
    report_type: Mapped[str] = mapped_column(String(20), nullable=False)
    agency: Mapped[str] = mapped_column(String(20), nullable=False)
    run_number: Mapped[int] = mapped_column(Integer, nullable=False)

    employee_share: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)
    employer_share: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)
    total_contribution: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    detail: Mapped[list[Any]] = mapped_column(JSONType, nullable=False, default=list)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")
    due_date: Mapped[date] = mapped_column(Date, nullable=False)
    submission_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    accepted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    generated_by: Mapped[UUID | None] = mapped_column(nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'ready', 'submitted', 'accepted', 'superseded')",
            name="compliance_report_status_check",
        ),
        CheckConstraint(
            "agency IN ('SSS', 'PHILHEALTH', 'PAGIBIG', 'BIR')",
            name="compliance_report_agency_check",
        ),
        Index("ix_compliance_report_period_agency", "period_id", "agency"),
    )

    @property
    def is_locked(self) -> bool:
        return self.status in ("submitted", "accepted")

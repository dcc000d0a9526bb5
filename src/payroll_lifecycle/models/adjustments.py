"""Manual corrections to a calculated period."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from payroll_lifecycle.models.base import Base, MoneyType, UpdatedAtMixin


class Adjustment(Base, UpdatedAtMixin):
    """A requested override of one component amount for one employee.

    Decided exactly once: pending -> approved | rejected.
    """

    __tablename__ = "adjustment"

    adjustment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_period.period_id", ondelete="RESTRICT"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    adjustment_type: Mapped[str] = mapped_column(String(20), nullable=False, default="correction")
    field: Mapped[str] = mapped_column(String(50), nullable=False)
    old_value: Mapped[Decimal | None] = mapped_column(MoneyType(), nullable=True)
    new_value: Mapped[Decimal] = mapped_column(MoneyType(), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    approval_status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    created_by: Mapped[UUID] = mapped_column(nullable=False)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    decided_at: Mapped[datetime | None] = mapped_column(nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "adjustment_type IN ('earning', 'deduction', 'correction', 'backpay', 'refund')",
            name="adjustment_type_check",
        ),
        CheckConstraint(
            "approval_status IN ('pending', 'approved', 'rejected')",
            name="adjustment_status_check",
        ),
        Index("ix_adjustment_period_employee", "period_id", "employee_id"),
    )

    @property
    def is_decided(self) -> bool:
        return self.approval_status != "pending"

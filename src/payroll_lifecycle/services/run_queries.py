"""Read-only views of calculation results."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payroll_lifecycle.calculators.types import ZERO, LineType
from payroll_lifecycle.models import CalculationRun


@dataclass(frozen=True)
class PayLine:
    component_code: str
    line_type: str
    amount: Decimal
    agency: str | None
    explanation: str | None


@dataclass(frozen=True)
class EmployeePay:
    """What payslip and bank-file renderers read for one employee."""

    employee_id: UUID
    run_number: int
    line_items: tuple[PayLine, ...]
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "run_number": self.run_number,
            "line_items": [
                {
                    "component_code": line.component_code,
                    "line_type": line.line_type,
                    "amount": str(line.amount),
                    "agency": line.agency,
                    "explanation": line.explanation,
                }
                for line in self.line_items
            ],
            "gross_pay": str(self.gross_pay),
            "total_deductions": str(self.total_deductions),
            "net_pay": str(self.net_pay),
        }


class CalculationRunQueries:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def latest_run_number(self, period_id: UUID) -> int | None:
        result = await self.session.execute(
            select(func.max(CalculationRun.run_number)).where(
                CalculationRun.period_id == period_id
            )
        )
        return result.scalar()

    async def runs_for(
        self, period_id: UUID, run_number: int | None = None
    ) -> list[CalculationRun]:
        """Rows of one run (default: the latest), with line items, by employee."""
        if run_number is None:
            run_number = await self.latest_run_number(period_id)
            if run_number is None:
                return []
        result = await self.session.execute(
            select(CalculationRun)
            .where(
                CalculationRun.period_id == period_id,
                CalculationRun.run_number == run_number,
            )
            .options(selectinload(CalculationRun.line_items))
            .order_by(CalculationRun.employee_id)
        )
        return list(result.scalars().all())

    async def successful_rows(self, period_id: UUID) -> list[CalculationRun]:
        return [r for r in await self.runs_for(period_id) if r.succeeded]

    async def latest_results(self, period_id: UUID) -> list[EmployeePay]:
        """Successful results of the latest run."""
        return [
            EmployeePay(
                employee_id=run.employee_id,
                run_number=run.run_number,
                line_items=tuple(
                    PayLine(
                        component_code=line.component_code,
                        line_type=line.line_type,
                        amount=line.amount,
                        agency=line.agency,
                        explanation=line.explanation,
                    )
                    for line in sorted(run.line_items, key=lambda li: li.sequence)
                ),
                gross_pay=run.gross_pay,
                total_deductions=run.total_deductions,
                net_pay=run.net_pay,
            )
            for run in await self.successful_rows(period_id)
        ]

    async def component_amount(
        self, period_id: UUID, employee_id: UUID, component_code: str
    ) -> Decimal | None:
        """Employee-side amount of a component in the latest successful run."""
        for run in await self.successful_rows(period_id):
            if run.employee_id != employee_id:
                continue
            lines = [
                li
                for li in run.line_items
                if li.component_code == component_code
                and li.line_type != LineType.EMPLOYER_CONTRIBUTION
            ]
            if not lines:
                return None
            return abs(sum((li.amount for li in lines), ZERO))
        return None

"""Line item builder with sign conventions and deterministic hashing."""

from __future__ import annotations

import hashlib
import json
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING

from payroll_lifecycle.calculators.types import (
    ZERO,
    ComponentType,
    LineCandidate,
    LineType,
    ResolvedComponent,
)

if TYPE_CHECKING:
    from payroll_lifecycle.config import Settings

_LINE_TYPE_FOR_COMPONENT: dict[ComponentType, LineType] = {
    ComponentType.EARNING: LineType.EARNING,
    ComponentType.ALLOWANCE: LineType.ALLOWANCE,
    ComponentType.BENEFIT: LineType.BENEFIT,
    ComponentType.DEDUCTION: LineType.DEDUCTION,
    ComponentType.CONTRIBUTION: LineType.CONTRIBUTION,
    ComponentType.TAX: LineType.TAX,
}

GROSS_LINE_TYPES = (LineType.EARNING, LineType.ALLOWANCE, LineType.BENEFIT)
EMPLOYEE_DEDUCTION_LINE_TYPES = (LineType.DEDUCTION, LineType.CONTRIBUTION, LineType.TAX)


class LineItemBuilder:
    """Builds line items with fixed sign conventions.

    Sign conventions (non-negotiable):
    - EARNING, ALLOWANCE, BENEFIT: positive
    - DEDUCTION, CONTRIBUTION (employee share), TAX: negative
    - EMPLOYER_CONTRIBUTION: positive (liability, excluded from net)

    Rounding: every line is quantized to the currency unit when built, so
    sums over lines are exact.
    """

    def __init__(self, quantum: Decimal = Decimal("0.01"), rounding: str = ROUND_HALF_UP):
        self.quantum = quantum
        self.rounding = rounding

    @classmethod
    def from_settings(cls, settings: Settings) -> LineItemBuilder:
        return cls(quantum=settings.money_quantum, rounding=settings.rounding_mode)

    def round_money(self, amount: Decimal) -> Decimal:
        """Round amount to the currency unit."""
        return amount.quantize(self.quantum, rounding=self.rounding)

    @staticmethod
    def compute_line_hash(line: LineCandidate) -> str:
        """Compute deterministic hash for a line item."""
        canonical = line.to_canonical_dict()
        json_str = json.dumps(canonical, sort_keys=True)
        return hashlib.sha256(json_str.encode()).hexdigest()[:32]

    def create_component_line(self, resolved: ResolvedComponent) -> LineCandidate:
        """Create a line for a resolved (non-statutory) component."""
        component = resolved.component
        line_type = _LINE_TYPE_FOR_COMPONENT[component.component_type]
        magnitude = self.round_money(abs(resolved.amount or ZERO))
        amount = magnitude if line_type in GROSS_LINE_TYPES else -magnitude
        return LineCandidate(
            line_type=line_type,
            amount=amount,
            component_code=component.code,
            component_type=component.component_type,
            agency=component.agency,
            basis=resolved.basis,
            rate=resolved.rate,
            quantity=resolved.quantity,
            is_taxable=component.is_taxable,
            explanation=resolved.explanation or component.name,
        )

    def create_contribution_lines(
        self,
        resolved: ResolvedComponent,
        basis: Decimal,
        employee_share: Decimal,
        employer_share: Decimal,
        employee_rate: Decimal | None = None,
        employer_rate: Decimal | None = None,
    ) -> list[LineCandidate]:
        """Create the employee (negative) and employer (positive) contribution lines."""
        component = resolved.component
        lines: list[LineCandidate] = []
        if employee_share:
            lines.append(
                LineCandidate(
                    line_type=LineType.CONTRIBUTION,
                    amount=-self.round_money(abs(employee_share)),
                    component_code=component.code,
                    component_type=component.component_type,
                    agency=component.agency,
                    basis=basis,
                    rate=employee_rate,
                    is_taxable=False,
                    explanation=f"{component.name} (employee share)",
                )
            )
        if employer_share:
            lines.append(
                LineCandidate(
                    line_type=LineType.EMPLOYER_CONTRIBUTION,
                    amount=self.round_money(abs(employer_share)),
                    component_code=component.code,
                    component_type=component.component_type,
                    agency=component.agency,
                    basis=basis,
                    rate=employer_rate,
                    is_taxable=False,
                    explanation=f"{component.name} (employer share)",
                )
            )
        return lines

    def create_tax_line(
        self,
        resolved: ResolvedComponent,
        amount: Decimal,
        taxable: Decimal,
        explanation: str | None = None,
    ) -> LineCandidate:
        """Create an employee tax line item (negative amount)."""
        component = resolved.component
        return LineCandidate(
            line_type=LineType.TAX,
            amount=-self.round_money(abs(amount)),
            component_code=component.code,
            component_type=component.component_type,
            agency=component.agency,
            basis=taxable,
            is_taxable=False,
            explanation=explanation or component.name,
        )

    @staticmethod
    def calculate_gross_from_lines(lines: list[LineCandidate]) -> Decimal:
        """GROSS = Σ(EARNING) + Σ(ALLOWANCE) + Σ(BENEFIT)"""
        return sum((l.amount for l in lines if l.line_type in GROSS_LINE_TYPES), ZERO)

    @staticmethod
    def calculate_deductions_from_lines(lines: list[LineCandidate]) -> Decimal:
        """Total employee deductions as a positive amount."""
        return -sum(
            (l.amount for l in lines if l.line_type in EMPLOYEE_DEDUCTION_LINE_TYPES), ZERO
        )

    @staticmethod
    def calculate_net_from_lines(lines: list[LineCandidate]) -> Decimal:
        """Calculate net pay from line items.

        Note: EMPLOYER_CONTRIBUTION is excluded from net calculation (it's a liability).
        """
        return sum(
            (l.amount for l in lines if l.line_type != LineType.EMPLOYER_CONTRIBUTION), ZERO
        )

    @staticmethod
    def validate_line_signs(lines: list[LineCandidate]) -> list[str]:
        """Validate that all line items have correct signs.

        Returns list of error messages (empty if all valid).
        """
        errors: list[str] = []

        for i, line in enumerate(lines):
            if line.line_type in (*GROSS_LINE_TYPES, LineType.EMPLOYER_CONTRIBUTION):
                if line.amount < 0:
                    errors.append(
                        f"Line {i} ({line.line_type.value}) has negative amount {line.amount}, expected positive"
                    )
            elif line.amount > 0:
                errors.append(
                    f"Line {i} ({line.line_type.value}) has positive amount {line.amount}, expected negative"
                )

        return errors

    @staticmethod
    def sum_by_type(lines: list[LineCandidate]) -> dict[LineType, Decimal]:
        """Sum line amounts by type."""
        totals: dict[LineType, Decimal] = {lt: ZERO for lt in LineType}
        for line in lines:
            totals[line.line_type] += line.amount
        return totals

    @staticmethod
    def sum_by_agency(lines: list[LineCandidate]) -> dict[str, dict[str, Decimal]]:
        """Employee and employer totals per agency.

        Employee share includes withheld taxes; amounts are positive.
        """
        totals: dict[str, dict[str, Decimal]] = {}
        for line in lines:
            if line.agency is None:
                continue
            bucket = totals.setdefault(line.agency, {"employee": ZERO, "employer": ZERO})
            if line.line_type == LineType.EMPLOYER_CONTRIBUTION:
                bucket["employer"] += line.amount
            elif line.line_type in (LineType.CONTRIBUTION, LineType.TAX):
                bucket["employee"] += -line.amount
        return totals

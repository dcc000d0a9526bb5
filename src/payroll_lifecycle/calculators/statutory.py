"""Statutory contribution and withholding calculations from rate table payloads."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any

from payroll_lifecycle.calculators.types import (
    GROSS,
    ZERO,
    ContributionSchedule,
    ContributionShares,
    TaxBracket,
)
from payroll_lifecycle.exceptions import ValidationError


def _decimal(value: Any, name: str) -> Decimal:
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"'{name}' must be a number, got {value!r}", field=name) from e
    if not result.is_finite():
        raise ValidationError(f"'{name}' must be finite", field=name)
    return result


def _optional_decimal(payload: dict[str, Any], name: str) -> Decimal | None:
    value = payload.get(name)
    if value is None:
        return None
    return _decimal(value, name)


class StatutoryCalculator:
    """Computes contributions and withholding tax from rate table payloads.

    Contribution payload::

        {
            "employee_rate": 0.045,
            "employer_rate": 0.095,
            "employer_fixed": 10,        // optional, e.g. EC
            "basis_floor": 4000,         // optional
            "basis_ceiling": 30000,      // optional
            "employee_cap": 1800,        // optional
            "employer_cap": 2850,        // optional
            "basis": "GROSS"             // or a component code
        }

    Tax payload::

        {
            "brackets": [
                {"min": 0, "max": 10417, "rate": 0, "flat": 0},
                {"min": 10417, "max": 16667, "rate": 0.15, "flat": 0},
                ...
            ]
        }

    ``brackets`` may also be a mapping of period type to such a list.
    """

    def __init__(
        self,
        quantum: Decimal = Decimal("0.01"),
        rounding: str = ROUND_HALF_UP,
    ):
        self.quantum = quantum
        self.rounding = rounding

    def _round(self, amount: Decimal) -> Decimal:
        return amount.quantize(self.quantum, rounding=self.rounding)

    # ===== Payload parsing =====

    @staticmethod
    def validate_payload(kind: str, payload: dict[str, Any]) -> None:
        """Raise ValidationError if a payload is malformed for its kind."""
        if not isinstance(payload, dict):
            raise ValidationError("Rate table payload must be an object", field="payload")
        if kind == "contribution":
            StatutoryCalculator.parse_contribution_schedule(payload)
        elif kind == "tax":
            brackets = payload.get("brackets")
            if isinstance(brackets, dict):
                if not brackets:
                    raise ValidationError("'brackets' mapping is empty", field="brackets")
                for period_type, entries in brackets.items():
                    StatutoryCalculator._parse_bracket_list(entries, f"brackets.{period_type}")
            else:
                StatutoryCalculator._parse_bracket_list(brackets, "brackets")
        else:
            raise ValidationError(f"Unknown rate table kind '{kind}'", field="kind")

    @staticmethod
    def parse_contribution_schedule(payload: dict[str, Any]) -> ContributionSchedule:
        for required in ("employee_rate", "employer_rate"):
            if required not in payload:
                raise ValidationError(f"Contribution payload requires '{required}'", field=required)

        schedule = ContributionSchedule(
            employee_rate=_decimal(payload["employee_rate"], "employee_rate"),
            employer_rate=_decimal(payload["employer_rate"], "employer_rate"),
            employer_fixed=_decimal(payload.get("employer_fixed", 0), "employer_fixed"),
            basis_floor=_optional_decimal(payload, "basis_floor"),
            basis_ceiling=_optional_decimal(payload, "basis_ceiling"),
            employee_cap=_optional_decimal(payload, "employee_cap"),
            employer_cap=_optional_decimal(payload, "employer_cap"),
            basis=str(payload.get("basis", GROSS)),
        )

        for name in ("employee_rate", "employer_rate"):
            rate = getattr(schedule, name)
            if rate < 0 or rate > 1:
                raise ValidationError(f"'{name}' must be between 0 and 1", field=name)
        if (
            schedule.basis_floor is not None
            and schedule.basis_ceiling is not None
            and schedule.basis_floor > schedule.basis_ceiling
        ):
            raise ValidationError("basis_floor exceeds basis_ceiling", field="basis_floor")
        return schedule

    @staticmethod
    def _parse_bracket_list(entries: Any, name: str) -> list[TaxBracket]:
        if not isinstance(entries, list) or not entries:
            raise ValidationError(f"'{name}' must be a non-empty list", field=name)

        brackets: list[TaxBracket] = []
        for b in entries:
            if not isinstance(b, dict) or "min" not in b or "rate" not in b:
                raise ValidationError(f"Each entry of '{name}' needs 'min' and 'rate'", field=name)
            brackets.append(
                TaxBracket(
                    min_amount=_decimal(b["min"], f"{name}.min"),
                    max_amount=(
                        _decimal(b["max"], f"{name}.max") if b.get("max") is not None else None
                    ),
                    rate=_decimal(b["rate"], f"{name}.rate"),
                    flat_amount=_decimal(b.get("flat", 0), f"{name}.flat"),
                )
            )
        return sorted(brackets, key=lambda b: b.min_amount)

    @staticmethod
    def parse_brackets(payload: dict[str, Any], period_type: str) -> list[TaxBracket]:
        """Return the bracket list for a period type."""
        brackets = payload.get("brackets")
        if isinstance(brackets, dict):
            if period_type not in brackets:
                raise ValidationError(
                    f"Tax table has no brackets for period type '{period_type}'",
                    field="brackets",
                )
            return StatutoryCalculator._parse_bracket_list(brackets[period_type], "brackets")
        return StatutoryCalculator._parse_bracket_list(brackets, "brackets")

    # ===== Calculations =====

    def calculate_contribution(
        self, basis: Decimal, schedule: ContributionSchedule
    ) -> ContributionShares:
        """Employee and employer shares for a basis amount.

        The basis is clamped to [floor, ceiling] before rates apply; caps
        apply to each share afterwards.
        """
        if basis <= 0:
            return ContributionShares(basis=ZERO, employee=ZERO, employer=ZERO)

        clamped = basis
        if schedule.basis_floor is not None and clamped < schedule.basis_floor:
            clamped = schedule.basis_floor
        if schedule.basis_ceiling is not None and clamped > schedule.basis_ceiling:
            clamped = schedule.basis_ceiling

        employee = clamped * schedule.employee_rate
        employer = clamped * schedule.employer_rate + schedule.employer_fixed

        if schedule.employee_cap is not None:
            employee = min(employee, schedule.employee_cap)
        if schedule.employer_cap is not None:
            employer = min(employer, schedule.employer_cap)

        return ContributionShares(
            basis=self._round(clamped),
            employee=self._round(employee),
            employer=self._round(employer),
        )

    def calculate_progressive_tax(self, taxable: Decimal, brackets: list[TaxBracket]) -> Decimal:
        """Calculate tax using progressive brackets.

        The bracket containing ``taxable`` determines the tax:
        ``flat + (taxable - min) * rate``.
        """
        if taxable <= 0 or not brackets:
            return ZERO

        ordered = sorted(brackets, key=lambda b: b.min_amount)
        selected: TaxBracket | None = None
        for bracket in ordered:
            if taxable < bracket.min_amount:
                break
            selected = bracket
            if bracket.max_amount is None or taxable < bracket.max_amount:
                break

        if selected is None:
            return ZERO

        tax = selected.flat_amount + (taxable - selected.min_amount) * selected.rate
        return self._round(max(tax, ZERO))

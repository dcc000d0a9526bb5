"""Tests for component resolution (no database)."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payroll_lifecycle.calculators.component_resolver import (
    ComponentResolver,
    is_applicable,
    needs_attendance,
)
from payroll_lifecycle.calculators.types import (
    AssignmentSpec,
    ComponentSpec,
    ComponentType,
    PeriodWindow,
)
from payroll_lifecycle.collaborators import AttendanceSummary
from payroll_lifecycle.exceptions import ComponentCycleError, ResolutionError

EMPLOYEE_ID = uuid4()

# Nov 1 2025 is a Saturday; the window has 10 weekdays
PERIOD = PeriodWindow(
    period_id=uuid4(),
    period_type="semi_monthly",
    start_date=date(2025, 11, 1),
    end_date=date(2025, 11, 15),
    pay_date=date(2025, 11, 17),
)


def component(code, component_type="earning", **kwargs) -> ComponentSpec:
    return ComponentSpec(
        component_id=None,
        code=code,
        name=code.title(),
        component_type=ComponentType(component_type),
        **kwargs,
    )


def assignment(spec: ComponentSpec, **kwargs) -> AssignmentSpec:
    kwargs.setdefault("effective_date", date(2025, 1, 1))
    return AssignmentSpec(assignment_id=uuid4(), employee_id=EMPLOYEE_ID, component=spec, **kwargs)


BASIC = component("BASIC")


@pytest.fixture
def resolver() -> ComponentResolver:
    return ComponentResolver(None)


class TestApplicability:
    def test_recurring_active_on_pay_date(self):
        assert is_applicable(assignment(BASIC, amount=Decimal("1")), PERIOD)
        assert not is_applicable(
            assignment(BASIC, amount=Decimal("1"), effective_date=date(2025, 11, 18)), PERIOD
        )

    def test_end_date_is_inclusive(self):
        assert is_applicable(
            assignment(BASIC, amount=Decimal("1"), end_date=date(2025, 11, 17)), PERIOD
        )
        assert not is_applicable(
            assignment(BASIC, amount=Decimal("1"), end_date=date(2025, 11, 16)), PERIOD
        )

    def test_one_time_applies_to_its_own_period(self):
        inside = assignment(
            BASIC, amount=Decimal("1"), frequency="one_time", effective_date=date(2025, 11, 5)
        )
        before = assignment(
            BASIC, amount=Decimal("1"), frequency="one_time", effective_date=date(2025, 10, 31)
        )
        assert is_applicable(inside, PERIOD)
        assert not is_applicable(before, PERIOD)

    def test_needs_attendance(self):
        assert not needs_attendance([assignment(BASIC, amount=Decimal("1"))])
        assert needs_attendance([assignment(BASIC, amount=Decimal("1"), is_prorated=True)])


class TestAmounts:
    """Fixed amounts, frequency conversion and proration."""

    def test_per_period_amount(self, resolver):
        result = resolver.resolve_assignments(
            [assignment(BASIC, amount=Decimal("30000"))], PERIOD
        )
        assert result.amount_of("BASIC") == Decimal("30000.00")
        assert result.warnings == []

    def test_monthly_amount_converted_to_period(self, resolver):
        result = resolver.resolve_assignments(
            [assignment(BASIC, amount=Decimal("60000"), frequency="monthly")], PERIOD
        )
        assert result.amount_of("BASIC") == Decimal("30000.00")

    def test_annual_amount_converted_to_period(self, resolver):
        result = resolver.resolve_assignments(
            [assignment(BASIC, amount=Decimal("240000"), frequency="annual")], PERIOD
        )
        assert result.amount_of("BASIC") == Decimal("10000.00")

    def test_proration_by_assignment_window(self, resolver):
        """Hired on Nov 10: 5 of 10 weekdays."""
        hired = assignment(
            BASIC,
            amount=Decimal("30000"),
            effective_date=date(2025, 11, 10),
            is_prorated=True,
        )
        result = resolver.resolve_assignments([hired], PERIOD)
        assert result.amount_of("BASIC") == Decimal("15000.00")

    def test_assignment_ending_on_pay_date_covers_the_whole_window(self, resolver):
        leaving = assignment(
            BASIC,
            amount=Decimal("30000"),
            end_date=date(2025, 11, 17),
            is_prorated=True,
        )
        ended_mid_period = assignment(BASIC, amount=Decimal("1"), end_date=date(2025, 11, 12))

        assert not is_applicable(ended_mid_period, PERIOD)
        result = resolver.resolve_assignments([leaving], PERIOD)
        assert result.amount_of("BASIC") == Decimal("30000.00")

    def test_proration_by_attendance(self, resolver):
        attendance = AttendanceSummary(employee_id=EMPLOYEE_ID, days_worked=Decimal("8"))
        result = resolver.resolve_assignments(
            [assignment(BASIC, amount=Decimal("30000"), is_prorated=True)], PERIOD, attendance
        )
        assert result.amount_of("BASIC") == Decimal("24000.00")

    def test_proration_never_exceeds_full_amount(self, resolver):
        attendance = AttendanceSummary(employee_id=EMPLOYEE_ID, days_worked=Decimal("14"))
        result = resolver.resolve_assignments(
            [assignment(BASIC, amount=Decimal("30000"), is_prorated=True)], PERIOD, attendance
        )
        assert result.amount_of("BASIC") == Decimal("30000.00")

    def test_unit_rate_times_attendance(self, resolver):
        overtime = component("OT", default_amount=Decimal("250"), unit_basis="overtime_hours")
        attendance = AttendanceSummary(
            employee_id=EMPLOYEE_ID, days_worked=Decimal("10"), overtime_hours=Decimal("6")
        )
        result = resolver.resolve_assignments(
            [assignment(overtime, units=Decimal("1.25"), requires_attendance=True)],
            PERIOD,
            attendance,
        )
        resolved = result.components[0]
        assert resolved.quantity == Decimal("7.50")
        assert resolved.amount == Decimal("1875.00")

    def test_unit_component_without_rate(self, resolver):
        with pytest.raises(ResolutionError):
            resolver.resolve_assignments(
                [assignment(component("OT"), units=Decimal("2"))], PERIOD
            )

    def test_missing_attendance_resolves_to_zero(self, resolver):
        overtime = component("OT", default_amount=Decimal("250"), unit_basis="overtime_hours")
        result = resolver.resolve_assignments(
            [assignment(overtime, units=Decimal("1"), requires_attendance=True)], PERIOD
        )
        assert result.amount_of("OT") == Decimal("0")
        assert any("attendance unavailable" in w for w in result.warnings)

    def test_statutory_component_left_for_engine(self, resolver):
        sss = component("SSS", "contribution", agency="SSS", rate_table_key="SSS_2025")
        result = resolver.resolve_assignments([assignment(sss, amount=Decimal("0"))], PERIOD)
        assert result.components[0].amount is None
        assert result.components[0].is_statutory

    def test_latest_duplicate_assignment_wins(self, resolver):
        older = assignment(BASIC, amount=Decimal("20000"))
        newer = assignment(BASIC, amount=Decimal("25000"), effective_date=date(2025, 6, 1))
        result = resolver.resolve_assignments([newer, older], PERIOD)
        assert result.amount_of("BASIC") == Decimal("25000.00")
        assert len(result.warnings) == 1


class TestPercentageOrdering:
    def test_percentage_of_another_component(self, resolver):
        bonus = component("BONUS")
        result = resolver.resolve_assignments(
            [
                assignment(bonus, percentage=Decimal("10"), basis_code="BASIC"),
                assignment(BASIC, amount=Decimal("30000")),
            ],
            PERIOD,
        )
        assert [c.code for c in result.components] == ["BASIC", "BONUS"]
        assert result.amount_of("BONUS") == Decimal("3000.00")

    def test_chained_percentages(self, resolver):
        """A basis named later alphabetically still resolves first."""
        a = component("A_TOPUP")
        z = component("Z_BASE")
        result = resolver.resolve_assignments(
            [
                assignment(a, percentage=Decimal("50"), basis_code="Z_BASE"),
                assignment(z, percentage=Decimal("10"), basis_code="BASIC"),
                assignment(BASIC, amount=Decimal("20000")),
            ],
            PERIOD,
        )
        assert [c.code for c in result.components] == ["BASIC", "Z_BASE", "A_TOPUP"]
        assert result.amount_of("A_TOPUP") == Decimal("1000.00")

    def test_deduction_on_gross(self, resolver):
        rice = component("RICE", "allowance")
        union = component("UNION", "deduction")
        result = resolver.resolve_assignments(
            [
                assignment(union, percentage=Decimal("1"), basis_code="GROSS"),
                assignment(BASIC, amount=Decimal("30000")),
                assignment(rice, amount=Decimal("2000")),
            ],
            PERIOD,
        )
        assert result.components[-1].code == "UNION"
        assert result.amount_of("UNION") == Decimal("320.00")

    def test_unassigned_basis_is_zero_with_warning(self, resolver):
        bonus = component("BONUS")
        result = resolver.resolve_assignments(
            [assignment(bonus, percentage=Decimal("10"), basis_code="COMMISSION")], PERIOD
        )
        assert result.amount_of("BONUS") == Decimal("0.00")
        assert any("COMMISSION" in w for w in result.warnings)

    def test_cycle_detected(self, resolver):
        a = component("A")
        b = component("B")
        with pytest.raises(ComponentCycleError) as exc_info:
            resolver.resolve_assignments(
                [
                    assignment(a, percentage=Decimal("10"), basis_code="B"),
                    assignment(b, percentage=Decimal("10"), basis_code="A"),
                ],
                PERIOD,
            )
        assert exc_info.value.component_codes == ["A", "B"]

    def test_self_basis(self, resolver):
        with pytest.raises(ComponentCycleError):
            resolver.resolve_assignments(
                [assignment(component("A"), percentage=Decimal("10"), basis_code="A")], PERIOD
            )

    def test_gross_basis_not_allowed_for_earnings(self, resolver):
        with pytest.raises(ComponentCycleError):
            resolver.resolve_assignments(
                [
                    assignment(BASIC, amount=Decimal("30000")),
                    assignment(component("BONUS"), percentage=Decimal("10"), basis_code="GROSS"),
                ],
                PERIOD,
            )

    def test_basis_from_later_stage(self, resolver):
        loan = component("LOAN", "deduction")
        with pytest.raises(ComponentCycleError):
            resolver.resolve_assignments(
                [
                    assignment(loan, amount=Decimal("500")),
                    assignment(component("BONUS"), percentage=Decimal("10"), basis_code="LOAN"),
                ],
                PERIOD,
            )


class TestOverrides:
    def test_override_replaces_assigned_amount(self, resolver):
        result = resolver.resolve_assignments(
            [assignment(BASIC, amount=Decimal("30000"))],
            PERIOD,
            overrides={"BASIC": Decimal("28000")},
        )
        resolved = result.components[0]
        assert resolved.amount == Decimal("28000.00")
        assert resolved.overridden

    def test_override_of_unassigned_catalog_component(self, resolver):
        bonus = component("BONUS")
        result = resolver.resolve_assignments(
            [assignment(BASIC, amount=Decimal("30000"))],
            PERIOD,
            overrides={"BONUS": Decimal("1500")},
            catalog={"BONUS": bonus},
        )
        assert result.amount_of("BONUS") == Decimal("1500.00")

    def test_override_of_unknown_component(self, resolver):
        result = resolver.resolve_assignments(
            [assignment(BASIC, amount=Decimal("30000"))],
            PERIOD,
            overrides={"MYSTERY": Decimal("1")},
        )
        assert result.amount_of("MYSTERY") is None
        assert len(result.warnings) == 1

    def test_overridden_statutory_component_is_fixed(self, resolver):
        sss = component("SSS", "contribution", agency="SSS", rate_table_key="SSS_2025")
        result = resolver.resolve_assignments(
            [assignment(sss, amount=Decimal("0"))],
            PERIOD,
            overrides={"SSS": Decimal("900")},
        )
        assert result.components[0].amount == Decimal("900.00")
        assert not result.components[0].is_statutory

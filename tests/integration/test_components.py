"""Component catalog and assignment integration tests."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from conftest import APPROVER_ID
from payroll_lifecycle.calculators.component_resolver import ComponentResolver
from payroll_lifecycle.exceptions import (
    ComponentImmutable,
    ComponentNotFound,
    OverlappingAssignment,
    PeriodLocked,
    PeriodNotFound,
    ValidationError,
)
from payroll_lifecycle.models import EmployeeComponentAssignment
from payroll_lifecycle.services import AssignmentRequest

pytestmark = pytest.mark.asyncio


async def _assignment_count(session, employee_id) -> int:
    await session.flush()
    return await session.scalar(
        select(func.count())
        .select_from(EmployeeComponentAssignment)
        .where(EmployeeComponentAssignment.employee_id == employee_id)
    )


class TestDefineComponent:
    async def test_code_is_normalized(self, world):
        component = await world.catalog.define_component(" ot ", "Overtime", "earning")

        assert component.code == "OT"
        assert (await world.catalog.get_component("ot")).component_id == component.component_id

    @pytest.mark.parametrize(
        ("kwargs", "field"),
        [
            ({"code": "GROSS"}, "code"),
            ({"code": "BASIC"}, "code"),
            ({"component_type": "perk"}, "component_type"),
            ({"rate_table_key": "SSS_2025"}, "rate_table_key"),
            ({"unit_basis": "weeks"}, "unit_basis"),
            ({"default_amount": Decimal("-1")}, "default_amount"),
            ({"deminimis_limit": Decimal("100")}, "deminimis_limit"),
        ],
    )
    async def test_invalid_definitions(self, world, kwargs, field):
        args = {"code": "MEAL", "name": "Meal allowance", "component_type": "allowance", **kwargs}

        with pytest.raises(ValidationError) as exc_info:
            await world.catalog.define_component(**args)
        assert exc_info.value.field == field

    async def test_unknown_component(self, world):
        with pytest.raises(ComponentNotFound):
            await world.catalog.get_component("NOPE")

    async def test_listed_by_code(self, world):
        codes = [c.code for c in await world.catalog.list_components()]
        assert codes == ["BASIC", "RICE", "SSS", "WTAX"]


class TestAssign:
    async def test_exactly_one_value(self, world):
        with pytest.raises(ValidationError):
            await world.catalog.assign(
                uuid4(), "BASIC", date(2025, 1, 1), amount=Decimal("1"), units=Decimal("2")
            )
        with pytest.raises(ValidationError):
            await world.catalog.assign(uuid4(), "BASIC", date(2025, 1, 1))

    async def test_percentage_needs_basis(self, world):
        with pytest.raises(ValidationError) as exc_info:
            await world.catalog.assign(uuid4(), "RICE", date(2025, 1, 1), percentage=Decimal("5"))
        assert exc_info.value.field == "basis_code"

    async def test_statutory_components_take_zero(self, world):
        with pytest.raises(ValidationError):
            await world.catalog.assign(uuid4(), "SSS", date(2025, 1, 1), amount=Decimal("500"))

    async def test_overlap_refused(self, world, session):
        employee_id = await world.employee()

        with pytest.raises(OverlappingAssignment):
            await world.catalog.assign(
                employee_id, "BASIC", date(2025, 6, 1), amount=Decimal("35000")
            )
        assert await _assignment_count(session, employee_id) == 4

    async def test_back_to_back_windows(self, world):
        employee_id = uuid4()
        catalog = world.catalog
        await catalog.assign(
            employee_id, "BASIC", date(2025, 1, 1), amount=Decimal("30000"), end_date=date(2025, 6, 30)
        )
        await catalog.assign(employee_id, "BASIC", date(2025, 7, 1), amount=Decimal("32000"))

        active = await catalog.assignments_for(employee_id, as_of=date(2025, 7, 1))
        assert [a.amount for a in active] == [Decimal("32000")]

    async def test_batch_is_all_or_nothing(self, world, session):
        employee_id = uuid4()
        requests = [
            AssignmentRequest(employee_id, "BASIC", date(2025, 1, 1), amount=Decimal("30000")),
            AssignmentRequest(employee_id, "RICE", date(2025, 1, 1), amount=Decimal("-5")),
        ]

        with pytest.raises(ValidationError):
            await world.catalog.assign_many(requests)
        assert await _assignment_count(session, employee_id) == 0

    async def test_batch_overlap_within_itself(self, world, session):
        employee_id = uuid4()
        requests = [
            AssignmentRequest(employee_id, "BASIC", date(2025, 1, 1), amount=Decimal("30000")),
            AssignmentRequest(employee_id, "basic", date(2025, 3, 1), amount=Decimal("31000")),
        ]

        with pytest.raises(OverlappingAssignment):
            await world.catalog.assign_many(requests)
        assert await _assignment_count(session, employee_id) == 0


class TestFinalizedPeriods:
    async def _finalize(self, world):
        await world.employee()
        period = await world.approved_period()
        await world.lifecycle.finalize(period.period_id, APPROVER_ID)
        return period

    async def test_assignment_covering_finalized_pay_date(self, world):
        await self._finalize(world)

        with pytest.raises(PeriodLocked):
            await world.catalog.assign(uuid4(), "BASIC", date(2025, 11, 1), amount=Decimal("1"))

        later = await world.catalog.assign(
            uuid4(), "BASIC", date(2025, 11, 18), amount=Decimal("1")
        )
        assert later.effective_date == date(2025, 11, 18)

    async def test_component_in_finalized_run_is_immutable(self, world):
        await self._finalize(world)

        with pytest.raises(ComponentImmutable):
            await world.catalog.revise_component("BASIC", name="Base pay")

    async def test_unused_component_can_be_revised(self, world):
        await self._finalize(world)
        await world.catalog.define_component("MEAL", "Meal", "allowance")

        revised = await world.catalog.revise_component("MEAL", is_taxable=False)
        assert revised.is_taxable is False

    async def test_identity_fields_cannot_be_revised(self, world):
        with pytest.raises(ValidationError):
            await world.catalog.revise_component("RICE", component_type="earning")


class TestEndAssignment:
    async def test_shortens_window(self, world):
        assignment = await world.catalog.assign(
            uuid4(), "BASIC", date(2025, 1, 1), amount=Decimal("30000")
        )

        ended = await world.catalog.end_assignment(assignment.assignment_id, date(2025, 10, 31))

        assert ended.end_date == date(2025, 10, 31)
        assert ended.is_active_on(date(2025, 10, 31))
        assert not ended.is_active_on(date(2025, 11, 1))

    async def test_end_must_follow_start(self, world):
        assignment = await world.catalog.assign(
            uuid4(), "BASIC", date(2025, 1, 1), amount=Decimal("30000")
        )

        with pytest.raises(ValidationError):
            await world.catalog.end_assignment(assignment.assignment_id, date(2025, 1, 1))

    async def test_cannot_end_inside_finalized_period(self, world):
        employee_id = await world.employee()
        period = await world.approved_period()
        await world.lifecycle.finalize(period.period_id, APPROVER_ID)
        (basic,) = [
            a
            for a in await world.catalog.assignments_for(employee_id)
            if a.component.code == "BASIC"
        ]

        with pytest.raises(PeriodLocked):
            await world.catalog.end_assignment(basic.assignment_id, date(2025, 11, 10))


class TestResolveForPeriod:
    async def test_resolves_assignments_on_pay_date(self, world, session):
        employee_id = await world.employee()
        await world.catalog.define_component("BONUS", "Year-end bonus", "earning")
        await world.catalog.assign(employee_id, "BONUS", date(2025, 12, 1), amount=Decimal("5000"))
        period = await world.period()

        components = await ComponentResolver(session).resolve(employee_id, period.period_id)

        amounts = {c.code: c.amount for c in components}
        assert amounts == {
            "BASIC": Decimal("30000.00"),
            "RICE": Decimal("2000.00"),
            "SSS": None,
            "WTAX": None,
        }

    async def test_unknown_period(self, session):
        with pytest.raises(PeriodNotFound):
            await ComponentResolver(session).resolve(uuid4(), uuid4())

"""Adjustment integration tests.

Maker-checker approval, period guards, and recalculation of periods
that were already calculated when an adjustment is approved.
"""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from conftest import APPROVER_ID, PREPARER_ID
from payroll_lifecycle.exceptions import (
    AdjustmentAlreadyDecided,
    AdjustmentNotFound,
    PeriodLocked,
    SelfApprovalNotAllowed,
    ValidationError,
)
from payroll_lifecycle.models import Adjustment
from payroll_lifecycle.services import AuditTrail, CalculationRunQueries
from payroll_lifecycle.services.adjustment_service import AdjustmentManager

pytestmark = pytest.mark.asyncio


def manager_for(world) -> AdjustmentManager:
    lifecycle = world.lifecycle
    return AdjustmentManager(
        world.session,
        lifecycle=lifecycle,
        engine=world.engine(lifecycle=lifecycle),
        settings=world.settings,
    )


async def _submit(manager, period, employee_id, value="28000", field="BASIC"):
    return await manager.submit(
        period.period_id,
        employee_id,
        field,
        Decimal(value),
        "Salary correction",
        PREPARER_ID,
    )


class TestSubmit:
    async def test_pending_until_decided(self, world):
        employee_id = await world.employee()
        period = await world.period()
        manager = manager_for(world)

        adjustment_id = await _submit(manager, period, employee_id)

        adjustment = await manager.get(adjustment_id)
        assert adjustment.approval_status == "pending"
        assert adjustment.field == "BASIC"
        assert adjustment.old_value is None

    async def test_old_value_from_latest_run(self, world):
        employee_id = await world.employee()
        period = await world.period()
        await world.engine().run(period.period_id, PREPARER_ID)
        manager = manager_for(world)

        adjustment = await manager.get(await _submit(manager, period, employee_id))
        assert adjustment.old_value == Decimal("30000.00")

    async def test_statutory_components_cannot_be_adjusted(self, world):
        employee_id = await world.employee()
        period = await world.period()

        with pytest.raises(ValidationError):
            await _submit(manager_for(world), period, employee_id, "100", field="SSS")

    async def test_unknown_component(self, world):
        employee_id = await world.employee()
        period = await world.period()

        with pytest.raises(ValidationError):
            await _submit(manager_for(world), period, employee_id, "100", field="BONUS")

    async def test_reason_and_value_validated(self, world):
        employee_id = await world.employee()
        period = await world.period()
        manager = manager_for(world)

        with pytest.raises(ValidationError):
            await manager.submit(
                period.period_id, employee_id, "BASIC", Decimal("1"), " ", PREPARER_ID
            )
        with pytest.raises(ValidationError):
            await _submit(manager, period, employee_id, "-5")

    async def test_finalized_period_refuses_adjustments(self, world, session):
        employee_id = await world.employee()
        period = await world.approved_period()
        await world.lifecycle.finalize(period.period_id, APPROVER_ID)

        with pytest.raises(PeriodLocked):
            await _submit(manager_for(world), period, employee_id)

        await session.flush()
        count = await session.scalar(select(func.count()).select_from(Adjustment))
        assert count == 0
        history = await AuditTrail(session).history("payroll_period", period.period_id)
        assert history[-1].action == "submit_adjustment_rejected"
        assert history[-1].new_values["error_code"] == "PERIOD_LOCKED"

    async def test_employee_without_assignment_is_refused(self, world, session):
        from uuid import uuid4

        await world.employee()
        period = await world.period()
        stranger = uuid4()

        with pytest.raises(ValidationError) as exc:
            await _submit(manager_for(world), period, stranger)
        assert exc.value.field == "employee_id"

        await session.flush()
        count = await session.scalar(select(func.count()).select_from(Adjustment))
        assert count == 0
        history = await AuditTrail(session).history("payroll_period", period.period_id)
        assert history[-1].action == "submit_adjustment_rejected"
        assert history[-1].new_values["error_code"] == "VALIDATION_ERROR"

class TestDecisions:
    async def test_submitter_cannot_approve(self, world, session):
        employee_id = await world.employee()
        period = await world.period()
        manager = manager_for(world)
        adjustment_id = await _submit(manager, period, employee_id)

        with pytest.raises(SelfApprovalNotAllowed):
            await manager.approve(adjustment_id, PREPARER_ID)

        assert (await manager.get(adjustment_id)).approval_status == "pending"
        await session.flush()
        history = await AuditTrail(session).history("adjustment", adjustment_id)
        assert [e.action for e in history] == ["submitted", "approve_rejected"]

    async def test_decided_once(self, world):
        employee_id = await world.employee()
        period = await world.period()
        manager = manager_for(world)
        adjustment_id = await _submit(manager, period, employee_id)
        await manager.reject(adjustment_id, APPROVER_ID, "not supported by payslip")

        with pytest.raises(AdjustmentAlreadyDecided):
            await manager.approve(adjustment_id, APPROVER_ID)

    async def test_reject_requires_reason(self, world, session):
        employee_id = await world.employee()
        period = await world.period()
        manager = manager_for(world)
        adjustment_id = await _submit(manager, period, employee_id)

        with pytest.raises(ValidationError):
            await manager.reject(adjustment_id, APPROVER_ID, "")

        assert (await manager.get(adjustment_id)).approval_status == "pending"
        await session.flush()
        history = await AuditTrail(world.session).history("adjustment", adjustment_id)
        assert [e.action for e in history] == ["submitted", "reject_rejected"]

    async def test_unknown_adjustment(self, world):
        from uuid import uuid4

        with pytest.raises(AdjustmentNotFound):
            await manager_for(world).approve(uuid4(), APPROVER_ID)

    async def test_list_for_period(self, world):
        employee_id = await world.employee()
        period = await world.period()
        manager = manager_for(world)
        first = await _submit(manager, period, employee_id)
        await _submit(manager, period, employee_id, "2500", field="RICE")
        await manager.approve(first, APPROVER_ID)

        assert len(await manager.list_for_period(period.period_id)) == 2
        pending = await manager.list_for_period(period.period_id, status="pending")
        assert [a.field for a in pending] == ["RICE"]


class TestApprovedAdjustmentsApply:
    async def test_draft_period_uses_override_on_next_run(self, world, session):
        employee_id = await world.employee()
        period = await world.period()
        manager = manager_for(world)
        adjustment_id = await _submit(manager, period, employee_id)

        decision = await manager.approve(adjustment_id, APPROVER_ID)
        assert decision.recalculation is None

        await world.engine().run(period.period_id, PREPARER_ID)

        (row,) = await CalculationRunQueries(session).runs_for(period.period_id)
        assert row.gross_pay == Decimal("30000.00")
        # 26,200 taxable: 937.50 + 20% of the excess over 16,667
        assert row.net_pay == Decimal("25355.90")
        (applied,) = row.applied_adjustments
        assert applied["adjustment_id"] == str(adjustment_id)
        assert applied["field"] == "BASIC"
        assert applied["old_value"] is None
        assert Decimal(applied["new_value"]) == Decimal("28000")

    async def test_calculated_period_recalculates(self, world):
        employee_id = await world.employee()
        period = await world.period()
        await world.engine().run(period.period_id, PREPARER_ID)
        manager = manager_for(world)
        adjustment_id = await _submit(manager, period, employee_id)

        decision = await manager.approve(adjustment_id, APPROVER_ID)

        assert decision.recalculation is not None
        assert decision.recalculation.run_number == 2
        assert decision.recalculation.total_gross == Decimal("30000.00")
        period = await world.lifecycle.get_period(period.period_id)
        assert period.status == "calculated"
        assert period.reopen_count == 1

    async def test_approved_period_loses_its_approval(self, world):
        employee_id = await world.employee()
        period = await world.approved_period()
        manager = manager_for(world)
        adjustment_id = await _submit(manager, period, employee_id)

        await manager.approve(adjustment_id, APPROVER_ID)

        period = await world.lifecycle.get_period(period.period_id)
        assert period.status == "calculated"
        assert period.approved_by is None

    async def test_rejected_adjustment_never_applies(self, world, session):
        employee_id = await world.employee()
        period = await world.period()
        manager = manager_for(world)
        adjustment_id = await _submit(manager, period, employee_id)
        await manager.reject(adjustment_id, APPROVER_ID, "duplicate")

        await world.engine().run(period.period_id, PREPARER_ID)

        (row,) = await CalculationRunQueries(session).runs_for(period.period_id)
        assert row.gross_pay == Decimal("32000.00")
        assert row.applied_adjustments == []

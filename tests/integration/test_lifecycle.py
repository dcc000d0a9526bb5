"""Period lifecycle integration tests.

Drives periods through the state machine against a real database and
checks status, approval fields and the audit trail.
"""

from dataclasses import replace
from datetime import date
from uuid import uuid4

import pytest

from conftest import APPROVER_ID, PREPARER_ID
from payroll_lifecycle.exceptions import (
    InvalidPeriodState,
    InvalidTransitionError,
    PeriodLocked,
    PeriodNotFound,
    RunAlreadyInProgress,
    SelfApprovalNotAllowed,
    ValidationError,
)
from payroll_lifecycle.services import AuditTrail, PeriodLifecycleController

pytestmark = pytest.mark.asyncio


async def _actions(session, period_id) -> list[str]:
    await session.flush()
    return [e.action for e in await AuditTrail(session).history("payroll_period", period_id)]


class TestHappyPath:
    async def test_draft_to_finalized(self, world, session):
        await world.employee()
        period = await world.period()
        assert period.status == "draft"

        await world.engine().run(period.period_id, PREPARER_ID)
        lifecycle = world.lifecycle
        reviewing = await lifecycle.submit_for_review(period.period_id, PREPARER_ID)
        assert reviewing.prepared_by == PREPARER_ID

        approved = await lifecycle.approve(period.period_id, APPROVER_ID)
        assert approved.approved_by == APPROVER_ID
        assert approved.approved_at is not None

        finalized = await lifecycle.finalize(period.period_id, APPROVER_ID)
        assert finalized.status == "finalized"
        assert finalized.is_locked

        assert await _actions(session, period.period_id) == [
            "created",
            "calculation_started",
            "calculation_completed",
            "submitted_for_review",
            "approved",
            "finalized",
        ]

    async def test_list_periods_by_status(self, world):
        first = await world.period()
        await world.period(start=date(2025, 11, 16), end=date(2025, 11, 30), pay=date(2025, 12, 1))
        await world.lifecycle.cancel(first.period_id, PREPARER_ID, "created twice")

        drafts = await world.lifecycle.list_periods(status="draft")
        assert len(drafts) == 1
        assert drafts[0].start_date == date(2025, 11, 16)


class TestCreatePeriod:
    @pytest.mark.parametrize(
        ("start", "end", "pay", "field"),
        [
            (date(2025, 11, 15), date(2025, 11, 1), date(2025, 11, 17), "start_date"),
            (date(2025, 11, 1), date(2025, 11, 1), date(2025, 11, 17), "start_date"),
            (date(2025, 11, 1), date(2025, 11, 15), date(2025, 11, 15), "pay_date"),
        ],
    )
    async def test_dates_must_be_ordered(self, world, start, end, pay, field):
        with pytest.raises(ValidationError) as exc_info:
            await world.period(start=start, end=end, pay=pay)
        assert exc_info.value.field == field

    async def test_unknown_period_type(self, world):
        with pytest.raises(ValidationError):
            await world.period(period_type="fortnightly")

    async def test_missing_period(self, world):
        with pytest.raises(PeriodNotFound):
            await world.lifecycle.get_period(uuid4())


class TestApproval:
    async def test_preparer_cannot_approve(self, world, session):
        await world.employee()
        period = await world.period()
        await world.engine().run(period.period_id, PREPARER_ID)
        lifecycle = world.lifecycle
        await lifecycle.submit_for_review(period.period_id, PREPARER_ID)

        with pytest.raises(SelfApprovalNotAllowed):
            await lifecycle.approve(period.period_id, PREPARER_ID)

        period = await lifecycle.get_period(period.period_id)
        assert period.status == "reviewing"
        assert period.approved_by is None
        assert (await _actions(session, period.period_id))[-1] == "approved_rejected"

    async def test_self_approval_allowed_when_disabled(self, world, session, locks, settings):
        await world.employee()
        period = await world.period()
        await world.engine().run(period.period_id, PREPARER_ID)
        lifecycle = PeriodLifecycleController(
            session, locks=locks, settings=replace(settings, enforce_maker_checker=False)
        )
        await lifecycle.submit_for_review(period.period_id, PREPARER_ID)

        approved = await lifecycle.approve(period.period_id, PREPARER_ID)
        assert approved.status == "approved"

    async def test_empty_period_cannot_be_reviewed(self, world):
        period = await world.period()
        await world.engine().run(period.period_id, PREPARER_ID)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await world.lifecycle.submit_for_review(period.period_id, PREPARER_ID)
        assert "no calculated employees" in exc_info.value.message

    async def test_approve_requires_review(self, world):
        await world.employee()
        period = await world.period()
        await world.engine().run(period.period_id, PREPARER_ID)

        with pytest.raises(InvalidTransitionError):
            await world.lifecycle.approve(period.period_id, APPROVER_ID)


class TestRejectAndReopen:
    async def test_reject_sends_back_to_calculating(self, world):
        await world.employee()
        period = await world.period()
        engine = world.engine()
        await engine.run(period.period_id, PREPARER_ID)
        lifecycle = world.lifecycle
        await lifecycle.submit_for_review(period.period_id, PREPARER_ID)

        rejected = await lifecycle.reject(period.period_id, APPROVER_ID, "allowance missing")
        assert rejected.status == "calculating"

        summary = await engine.run(period.period_id, PREPARER_ID)
        assert summary.run_number == 2
        assert (await lifecycle.get_period(period.period_id)).status == "calculated"

    async def test_reject_requires_reason(self, world):
        period = await world.period()
        with pytest.raises(ValidationError):
            await world.lifecycle.reject(period.period_id, APPROVER_ID, "  ")

    async def test_reject_only_under_review(self, world):
        period = await world.period()
        with pytest.raises(InvalidTransitionError):
            await world.lifecycle.reject(period.period_id, APPROVER_ID, "not ready")

    async def test_reopen_clears_approval(self, world):
        await world.employee()
        period = await world.approved_period()

        reopened = await world.lifecycle.reopen_for_recalculation(
            period.period_id, APPROVER_ID, "late overtime"
        )

        assert reopened.status == "calculating"
        assert reopened.approved_by is None
        assert reopened.reopen_count == 1


class TestTerminalStates:
    async def test_finalized_period_is_locked(self, world, session):
        await world.employee()
        period = await world.approved_period()
        lifecycle = world.lifecycle
        await lifecycle.finalize(period.period_id, APPROVER_ID)

        with pytest.raises(PeriodLocked):
            await lifecycle.cancel(period.period_id, APPROVER_ID, "too late")
        with pytest.raises(PeriodLocked):
            await lifecycle.reopen_for_recalculation(period.period_id, APPROVER_ID)

        actions = await _actions(session, period.period_id)
        assert actions[-2:] == ["cancelled_rejected", "reopened_rejected"]

    async def test_cancel_requires_reason(self, world, session):
        period = await world.period()
        with pytest.raises(ValidationError):
            await world.lifecycle.cancel(period.period_id, PREPARER_ID, "")

        assert (await world.lifecycle.get_period(period.period_id)).status == "draft"
        actions = await _actions(session, period.period_id)
        assert actions[-1] == "cancelled_rejected"

    async def test_review_rejection_requires_reason(self, world, session):
        await world.employee()
        period = await world.period()
        await world.engine().run(period.period_id, PREPARER_ID)
        await world.lifecycle.submit_for_review(period.period_id, PREPARER_ID)

        with pytest.raises(ValidationError):
            await world.lifecycle.reject(period.period_id, APPROVER_ID, "   ")

        assert (await world.lifecycle.get_period(period.period_id)).status == "reviewing"
        actions = await _actions(session, period.period_id)
        assert actions[-1] == "rejected_rejected"

    async def test_cancelled_period_is_terminal(self, world):
        period = await world.period()
        lifecycle = world.lifecycle
        cancelled = await lifecycle.cancel(period.period_id, PREPARER_ID, "wrong dates")
        assert cancelled.cancel_reason == "wrong dates"

        with pytest.raises(InvalidPeriodState):
            await lifecycle.begin_calculation(period.period_id, PREPARER_ID)

    async def test_cancel_signals_running_calculation(self, world, locks):
        period = await world.period()

        async with locks.run_lock(period.period_id) as token:
            result = await world.lifecycle.cancel(period.period_id, PREPARER_ID, "stop")
            assert result is None
            assert token.cancelled
            assert token.reason == "stop"
            assert token.requested_by == PREPARER_ID

        # the run rolls back first; its command then cancels the period
        assert (await world.lifecycle.get_period(period.period_id)).status == "draft"

    async def test_cancel_after_final_check_is_refused(self, world, locks):
        period = await world.period()

        async with locks.run_lock(period.period_id) as token:
            token.seal()
            with pytest.raises(RunAlreadyInProgress):
                await world.lifecycle.cancel(period.period_id, PREPARER_ID, "stop")
            assert not token.cancelled

    async def test_other_writers_fail_fast_during_a_run(self, world, locks):
        await world.employee()
        period = await world.period()
        await world.engine().run(period.period_id, PREPARER_ID)

        async with locks.run_lock(period.period_id):
            with pytest.raises(RunAlreadyInProgress):
                await world.lifecycle.submit_for_review(period.period_id, PREPARER_ID)

        reviewing = await world.lifecycle.submit_for_review(period.period_id, PREPARER_ID)
        assert reviewing.status == "reviewing"

"""Tests for the period lock registry."""

import asyncio
from uuid import uuid4

import pytest

from payroll_lifecycle.exceptions import PeriodBusy, RunAlreadyInProgress
from payroll_lifecycle.services import locking_service
from payroll_lifecycle.services.locking_service import PeriodLockRegistry


class RecordingSession:
    """Stands in for a PostgreSQL session; records the SQL it is given."""

    def __init__(self, granted=True):
        self.granted = granted
        self.statements = []

    async def execute(self, statement, params=None):
        self.statements.append((str(statement), params))
        granted = self.granted

        class Result:
            def scalar(self):
                return granted

        return Result()


@pytest.fixture
def postgres_locks(monkeypatch):
    monkeypatch.setattr(locking_service, "supports_advisory_locks", lambda session: True)
    return PeriodLockRegistry()


class TestAdvisoryRunLock:
    async def test_lock_is_scoped_to_the_transaction(self, postgres_locks):
        session = RecordingSession()
        period_id = uuid4()

        with pytest.raises(RuntimeError):
            async with postgres_locks.run_lock(period_id, session=session):
                raise RuntimeError("statement failed; transaction aborted")

        # nothing runs after the failure; rollback releases the lock
        (statement, params) = session.statements[0]
        assert "pg_try_advisory_xact_lock" in statement
        assert params == {"key": f"payroll_run:{period_id}"}
        assert len(session.statements) == 1
        assert not postgres_locks.is_running(period_id)

        async with postgres_locks.run_lock(period_id, session=RecordingSession()):
            assert postgres_locks.is_running(period_id)

    async def test_lock_held_by_another_process(self, postgres_locks):
        period_id = uuid4()

        with pytest.raises(RunAlreadyInProgress):
            async with postgres_locks.run_lock(period_id, session=RecordingSession(False)):
                pass

        assert not postgres_locks.is_running(period_id)


class TestTransitionLock:
    async def test_bounded_wait(self):
        locks = PeriodLockRegistry()
        period_id = uuid4()

        async with locks.transition_lock(period_id):
            with pytest.raises(PeriodBusy):
                async with locks.transition_lock(period_id, timeout=0.05):
                    pass

        async with locks.transition_lock(period_id, timeout=0.05):
            pass

    async def test_waiter_proceeds_once_released(self):
        locks = PeriodLockRegistry()
        period_id = uuid4()
        order = []

        async def writer(name, hold):
            async with locks.transition_lock(period_id, timeout=1.0):
                order.append(name)
                await asyncio.sleep(hold)

        await asyncio.gather(writer("first", 0.05), writer("second", 0))
        assert order == ["first", "second"]

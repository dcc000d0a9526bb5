"""Per-period run locks, transition locks and cooperative cancellation."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING
from uuid import UUID

from payroll_lifecycle.database import supports_advisory_locks, try_advisory_xact_lock
from payroll_lifecycle.exceptions import PeriodBusy, RunAlreadyInProgress

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag checked by calculation workers.

    A run seals its token once it stops checking it; a sealed token can
    no longer be cancelled.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._sealed = False
        self.reason: str | None = None
        self.requested_by: UUID | None = None

    def cancel(self, reason: str | None = None, requested_by: UUID | None = None) -> bool:
        if self._sealed:
            return False
        self.reason = reason
        self.requested_by = requested_by
        self._event.set()
        return True

    def seal(self) -> None:
        self._sealed = True

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class PeriodLockRegistry:
    """In-process lock registry keyed by period.

    - Run lock: at most one calculation run per period. A second caller
      fails immediately with RunAlreadyInProgress, before touching the
      database. On PostgreSQL a transaction advisory lock extends this
      across processes.
    - Transition lock: serializes status changes of one period. Callers
      that only need to observe a settled status (report builds) wait a
      bounded time for it.
    - Cancellation: the token of an in-flight run can be signalled by
      period id.
    """

    def __init__(self) -> None:
        self._running: dict[UUID, CancellationToken] = {}
        self._transition_locks: dict[UUID, asyncio.Lock] = {}

    def is_running(self, period_id: UUID) -> bool:
        return period_id in self._running

    @asynccontextmanager
    async def run_lock(
        self,
        period_id: UUID,
        session: AsyncSession | None = None,
        token: CancellationToken | None = None,
    ) -> AsyncIterator[CancellationToken]:
        """Hold the run lock for a period; yields the run's cancellation token.

        Raises:
            RunAlreadyInProgress: Another run holds the lock
        """
        if period_id in self._running:
            raise RunAlreadyInProgress(period_id)
        token = token or CancellationToken()
        self._running[period_id] = token

        try:
            if session is not None and supports_advisory_locks(session):
                # Held until the run's transaction commits or rolls back
                if not await try_advisory_xact_lock(session, f"payroll_run:{period_id}"):
                    raise RunAlreadyInProgress(period_id)
            yield token
        finally:
            self._running.pop(period_id, None)

    def request_cancel(
        self,
        period_id: UUID,
        reason: str | None = None,
        requested_by: UUID | None = None,
    ) -> bool:
        """Signal the in-flight run of a period.

        Returns False when no run is in flight or the run is already
        writing its results.
        """
        token = self._running.get(period_id)
        if token is None or not token.cancel(reason, requested_by):
            return False
        logger.info("Cancellation requested for run of period %s", period_id)
        return True

    def _transition_lock(self, period_id: UUID) -> asyncio.Lock:
        lock = self._transition_locks.get(period_id)
        if lock is None:
            lock = asyncio.Lock()
            self._transition_locks[period_id] = lock
        return lock

    @asynccontextmanager
    async def transition_lock(
        self, period_id: UUID, timeout: float | None = None
    ) -> AsyncIterator[None]:
        """Serialize status changes of a period.

        Raises:
            PeriodBusy: The lock was not acquired within ``timeout`` seconds
        """
        lock = self._transition_lock(period_id)
        if timeout is None:
            await lock.acquire()
        else:
            try:
                await asyncio.wait_for(lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError:
                raise PeriodBusy(period_id, timeout) from None
        try:
            yield
        finally:
            lock.release()


_default_registry = PeriodLockRegistry()


def get_lock_registry() -> PeriodLockRegistry:
    """Process-wide registry shared by every service instance."""
    return _default_registry

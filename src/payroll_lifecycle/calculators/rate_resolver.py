"""Effective-dated rate table resolution."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_lifecycle.calculators.statutory import StatutoryCalculator
from payroll_lifecycle.calculators.types import ResolvedRateTable
from payroll_lifecycle.exceptions import (
    NotFoundError,
    RateTableNotFound,
    ResolutionError,
    ResolutionTimeout,
    ValidationError,
)
from payroll_lifecycle.models import RateTable, RateTableVersion

logger = logging.getLogger(__name__)


def _snapshot(table: RateTable, version: RateTableVersion) -> ResolvedRateTable:
    return ResolvedRateTable(
        table_key=table.table_key,
        agency=table.agency,
        kind=table.kind,
        version=version.version,
        effective_from=version.effective_from,
        effective_to=version.effective_to,
        payload=dict(version.payload),
    )


class RateTableProvider:
    """Resolves statutory rate tables by effective date.

    Version selection:
    1. Greatest ``effective_from <= effective_date``
    2. ``effective_to`` (exclusive) must be after the date, if set
    3. A later version's ``effective_from`` closes earlier versions

    Lookups are cached per provider instance (one provider per calculation
    run), including failed ones. Queries on the shared session run one at a
    time and are never cancelled: a lookup that outlives ``timeout`` is
    reported as ResolutionTimeout while its query finishes in the
    background. Call ``settle`` before using the session for anything else.
    """

    def __init__(self, session: AsyncSession, timeout: float | None = None):
        self.session = session
        self.timeout = timeout
        self._cache: dict[tuple[str, date], ResolvedRateTable] = {}
        self._failures: dict[tuple[str, date], ResolutionError] = {}
        self._last_query: asyncio.Future[ResolvedRateTable] | None = None

    async def resolve(self, table_key: str, effective_date: date) -> ResolvedRateTable:
        """Return the version of a table effective on a date.

        Raises:
            RateTableNotFound: No version covers the date
            ResolutionTimeout: The lookup exceeded the configured timeout
        """
        cache_key = (table_key, effective_date)
        if cache_key in self._cache:
            return self._cache[cache_key]
        if cache_key in self._failures:
            raise self._failures[cache_key]

        query = asyncio.ensure_future(self._queued_load(self._last_query, table_key, effective_date))
        self._last_query = query
        try:
            resolved = await asyncio.wait_for(asyncio.shield(query), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Rate table lookup %s@%s timed out", table_key, effective_date)
            error = ResolutionTimeout(f"Rate table '{table_key}'", self.timeout or 0)
            self._failures[cache_key] = error
            raise error from None
        except ResolutionError as e:
            self._failures[cache_key] = e
            raise
        self._cache[cache_key] = resolved
        return resolved

    async def preload(self, table_keys: Iterable[str], effective_date: date) -> None:
        """Resolve every table a run needs before its workers start.

        Failures are remembered and raised again by ``resolve``.
        """
        for table_key in sorted(set(table_keys)):
            try:
                await self.resolve(table_key, effective_date)
            except ResolutionError:
                continue

    async def settle(self) -> None:
        """Wait until no lookup is still running on the session."""
        if self._last_query is not None:
            await asyncio.gather(self._last_query, return_exceptions=True)

    async def _queued_load(
        self,
        previous: asyncio.Future[ResolvedRateTable] | None,
        table_key: str,
        effective_date: date,
    ) -> ResolvedRateTable:
        if previous is not None:
            await asyncio.gather(previous, return_exceptions=True)
        return await self._load(table_key, effective_date)

    async def _load(self, table_key: str, effective_date: date) -> ResolvedRateTable:
        result = await self.session.execute(
            select(RateTable, RateTableVersion)
            .join(RateTableVersion, RateTable.rate_table_id == RateTableVersion.rate_table_id)
            .where(
                RateTable.table_key == table_key,
                RateTableVersion.effective_from <= effective_date,
            )
            .order_by(RateTableVersion.effective_from.desc())
            .limit(1)
        )
        row = result.first()
        if row is None:
            raise RateTableNotFound(table_key, effective_date)

        table, version = row
        if not version.is_active_on(effective_date):
            raise RateTableNotFound(table_key, effective_date)
        return _snapshot(table, version)

    async def publish(
        self,
        table_key: str,
        effective_from: date,
        payload: dict[str, Any],
        *,
        agency: str,
        kind: str,
        effective_to: date | None = None,
        published_by: UUID | None = None,
    ) -> ResolvedRateTable:
        """Append a new version of a rate table.

        Creates the table on first publish. Prior versions are never
        modified; the new version must start after every existing one.
        """
        StatutoryCalculator.validate_payload(kind, payload)
        if effective_to is not None and effective_to <= effective_from:
            raise ValidationError("effective_to must be after effective_from", field="effective_to")

        table = await self._get_table(table_key)
        if table is None:
            table = RateTable(table_key=table_key, agency=agency.upper(), kind=kind)
            self.session.add(table)
            await self.session.flush()
        elif table.kind != kind or table.agency != agency.upper():
            raise ValidationError(
                f"Rate table '{table_key}' is a {table.agency} {table.kind} table",
                field="table_key",
            )

        latest = await self.session.execute(
            select(
                func.max(RateTableVersion.version),
                func.max(RateTableVersion.effective_from),
            ).where(RateTableVersion.rate_table_id == table.rate_table_id)
        )
        max_version, max_effective_from = latest.one()
        if max_effective_from is not None and effective_from <= max_effective_from:
            raise ValidationError(
                f"Rate table '{table_key}' already has a version effective "
                f"{max_effective_from}; new versions must start later",
                field="effective_from",
            )

        version = RateTableVersion(
            rate_table_id=table.rate_table_id,
            version=(max_version or 0) + 1,
            effective_from=effective_from,
            effective_to=effective_to,
            payload=payload,
            published_by=published_by,
        )
        self.session.add(version)
        await self.session.flush()
        self._cache.clear()
        self._failures.clear()

        logger.info(
            "Published rate table %s v%d effective %s", table_key, version.version, effective_from
        )
        return _snapshot(table, version)

    async def versions(self, table_key: str) -> list[ResolvedRateTable]:
        """All versions of a table, oldest first."""
        table = await self._get_table(table_key)
        if table is None:
            raise NotFoundError("Rate table", table_key)
        result = await self.session.execute(
            select(RateTableVersion)
            .where(RateTableVersion.rate_table_id == table.rate_table_id)
            .order_by(RateTableVersion.effective_from)
        )
        return [_snapshot(table, v) for v in result.scalars().all()]

    async def _get_table(self, table_key: str) -> RateTable | None:
        result = await self.session.execute(
            select(RateTable).where(RateTable.table_key == table_key)
        )
        return result.scalar_one_or_none()

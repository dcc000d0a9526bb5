"""External collaborators: attendance totals and employee eligibility.

The engine does not own time tracking or identity. It receives validated
totals through these protocols. Static implementations back the CLI and
tests.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable
from uuid import UUID

if TYPE_CHECKING:
    from payroll_lifecycle.calculators.types import PeriodWindow


@dataclass(frozen=True)
class AttendanceSummary:
    """Validated attendance totals for one employee and period."""

    employee_id: UUID
    days_worked: Decimal
    hours_worked: Decimal = Decimal("0")
    overtime_hours: Decimal = Decimal("0")

    def figure(self, unit_basis: str | None) -> Decimal:
        """Quantity named by a component's unit basis."""
        if unit_basis == "hours":
            return self.hours_worked
        if unit_basis == "overtime_hours":
            return self.overtime_hours
        return self.days_worked

    @classmethod
    def from_dict(cls, employee_id: UUID, data: dict[str, Any]) -> AttendanceSummary:
        return cls(
            employee_id=employee_id,
            days_worked=Decimal(str(data.get("days_worked", 0))),
            hours_worked=Decimal(str(data.get("hours_worked", 0))),
            overtime_hours=Decimal(str(data.get("overtime_hours", 0))),
        )


@dataclass(frozen=True)
class EmployeeProfile:
    employee_id: UUID
    name: str | None = None
    employment_status: str = "active"

    @property
    def is_eligible(self) -> bool:
        return self.employment_status == "active"


@runtime_checkable
class AttendanceProvider(Protocol):
    async def get_attendance(
        self, employee_id: UUID, period: PeriodWindow
    ) -> AttendanceSummary | None: ...


@runtime_checkable
class IdentityProvider(Protocol):
    async def get_profile(self, employee_id: UUID) -> EmployeeProfile | None: ...


class StaticAttendanceProvider:
    """Attendance keyed by employee (same totals for any period)."""

    def __init__(self, summaries: dict[UUID, AttendanceSummary] | None = None):
        self._summaries = dict(summaries or {})

    def set(self, summary: AttendanceSummary) -> None:
        self._summaries[summary.employee_id] = summary

    async def get_attendance(
        self, employee_id: UUID, period: PeriodWindow
    ) -> AttendanceSummary | None:
        return self._summaries.get(employee_id)

    @classmethod
    def from_json(cls, path: str | Path) -> StaticAttendanceProvider:
        """Load ``{"<employee uuid>": {"days_worked": 10, ...}, ...}``."""
        raw = json.loads(Path(path).read_text())
        return cls(
            {
                UUID(key): AttendanceSummary.from_dict(UUID(key), value)
                for key, value in raw.items()
            }
        )


class StaticIdentityProvider:
    """Employee profiles keyed by id.

    With ``default_active`` set, unknown employees are treated as active
    (useful when no identity source is configured).
    """

    def __init__(
        self,
        profiles: dict[UUID, EmployeeProfile] | None = None,
        default_active: bool = False,
    ):
        self._profiles = dict(profiles or {})
        self.default_active = default_active

    def set(self, profile: EmployeeProfile) -> None:
        self._profiles[profile.employee_id] = profile

    async def get_profile(self, employee_id: UUID) -> EmployeeProfile | None:
        profile = self._profiles.get(employee_id)
        if profile is None and self.default_active:
            return EmployeeProfile(employee_id=employee_id)
        return profile

    @classmethod
    def from_json(cls, path: str | Path) -> StaticIdentityProvider:
        """Load ``{"<employee uuid>": {"name": "...", "employment_status": "active"}}``."""
        raw = json.loads(Path(path).read_text())
        return cls(
            {
                UUID(key): EmployeeProfile(
                    employee_id=UUID(key),
                    name=value.get("name"),
                    employment_status=value.get("employment_status", "active"),
                )
                for key, value in raw.items()
            }
        )

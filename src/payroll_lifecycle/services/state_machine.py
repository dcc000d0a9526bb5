"""Payroll period state machine with transition validation."""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from payroll_lifecycle.exceptions import InvalidTransitionError

if TYPE_CHECKING:
    from payroll_lifecycle.models import PayrollPeriod


class PeriodStatus(str, Enum):
    """Payroll period status values."""

    DRAFT = "draft"
    CALCULATING = "calculating"
    CALCULATED = "calculated"
    REVIEWING = "reviewing"
    APPROVED = "approved"
    FINALIZED = "finalized"
    CANCELLED = "cancelled"


class PeriodStateMachine:
    """State machine for payroll period status transitions.

    Allowed transitions:
    - draft → calculating
    - calculating → calculating (re-run)
    - calculating → calculated
    - calculated → reviewing
    - reviewing → approved
    - approved → finalized
    - calculated / reviewing / approved → calculating (reject, recalculate)
    - any non-terminal status → cancelled
    """

    # Define valid transitions: {from_status: [allowed_to_statuses]}
    VALID_TRANSITIONS: dict[str, list[str]] = {
        PeriodStatus.DRAFT: [PeriodStatus.CALCULATING, PeriodStatus.CANCELLED],
        PeriodStatus.CALCULATING: [
            PeriodStatus.CALCULATING,
            PeriodStatus.CALCULATED,
            PeriodStatus.CANCELLED,
        ],
        PeriodStatus.CALCULATED: [
            PeriodStatus.REVIEWING,
            PeriodStatus.CALCULATING,
            PeriodStatus.CANCELLED,
        ],
        PeriodStatus.REVIEWING: [
            PeriodStatus.APPROVED,
            PeriodStatus.CALCULATING,
            PeriodStatus.CANCELLED,
        ],
        PeriodStatus.APPROVED: [
            PeriodStatus.FINALIZED,
            PeriodStatus.CALCULATING,
            PeriodStatus.CANCELLED,
        ],
        PeriodStatus.FINALIZED: [],  # Terminal state
        PeriodStatus.CANCELLED: [],  # Terminal state
    }

    # Statuses where a calculation run may start
    CALCULATION_ALLOWED = {
        PeriodStatus.DRAFT,
        PeriodStatus.CALCULATING,
    }

    # Statuses that can be reopened for recalculation
    REOPENABLE = {
        PeriodStatus.CALCULATED,
        PeriodStatus.REVIEWING,
        PeriodStatus.APPROVED,
    }

    # Statuses compliance reports may be built from
    REPORTABLE = {
        PeriodStatus.APPROVED,
        PeriodStatus.FINALIZED,
    }

    TERMINAL = {
        PeriodStatus.FINALIZED,
        PeriodStatus.CANCELLED,
    }

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if not cls.can_transition(from_status, to_status):
            reason = None
            if from_status in cls.TERMINAL:
                reason = f"'{from_status}' is terminal"
            raise InvalidTransitionError(from_status, to_status, reason)

    @classmethod
    def can_calculate(cls, status: str) -> bool:
        """Check if a calculation run may start in this status."""
        return status in cls.CALCULATION_ALLOWED

    @classmethod
    def can_report(cls, status: str) -> bool:
        return status in cls.REPORTABLE

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in cls.TERMINAL

    @classmethod
    def is_reopen(cls, from_status: str, to_status: str) -> bool:
        """Check if this transition sends a calculated period back to calculating."""
        return from_status in cls.REOPENABLE and to_status == PeriodStatus.CALCULATING

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return cls.VALID_TRANSITIONS.get(current_status, [])

    @classmethod
    def validate_period_for_transition(
        cls, period: PayrollPeriod, to_status: str
    ) -> list[str]:
        """Validate a period for a specific transition, returning any errors.

        Returns list of error messages (empty if valid).
        """
        errors: list[str] = []
        from_status = period.status

        # Basic transition check
        if not cls.can_transition(from_status, to_status):
            errors.append(f"Cannot transition from '{from_status}' to '{to_status}'")
            return errors

        # Transition-specific validations
        if to_status == PeriodStatus.REVIEWING:
            if not period.employee_count:
                errors.append("Period has no calculated employees")

        elif to_status == PeriodStatus.FINALIZED:
            if period.approved_by is None:
                errors.append("Period has no recorded approver")

        return errors

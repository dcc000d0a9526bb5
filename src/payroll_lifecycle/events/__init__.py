"""Payroll domain events."""

from payroll_lifecycle.events.emitter import EventEmitter, EventHandler
from payroll_lifecycle.events.types import (
    AdjustmentDecided,
    AdjustmentSubmitted,
    CalculationRunCompleted,
    ComplianceReportGenerated,
    ComplianceReportStatusChanged,
    DomainEvent,
    EmployeeCalculationFailed,
    EventCategory,
    EventMetadata,
    PeriodTransitioned,
    TransitionRejected,
    serialize,
)

__all__ = [
    "AdjustmentDecided",
    "AdjustmentSubmitted",
    "CalculationRunCompleted",
    "ComplianceReportGenerated",
    "ComplianceReportStatusChanged",
    "DomainEvent",
    "EmployeeCalculationFailed",
    "EventCategory",
    "EventEmitter",
    "EventHandler",
    "EventMetadata",
    "PeriodTransitioned",
    "TransitionRejected",
    "serialize",
]

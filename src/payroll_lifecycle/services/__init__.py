"""Payroll lifecycle services.

Services that drive calculation runs (adjustments and the command layer)
depend on ``payroll_lifecycle.calculators.engine`` and are imported from
their own modules.
"""

from payroll_lifecycle.services.audit_service import AuditTrail
from payroll_lifecycle.services.compliance_service import ComplianceReportBuilder
from payroll_lifecycle.services.component_service import AssignmentRequest, ComponentCatalog
from payroll_lifecycle.services.lifecycle_service import PeriodLifecycleController
from payroll_lifecycle.services.locking_service import CancellationToken, PeriodLockRegistry
from payroll_lifecycle.services.run_queries import CalculationRunQueries
from payroll_lifecycle.services.state_machine import PeriodStateMachine, PeriodStatus

__all__ = [
    "AssignmentRequest",
    "AuditTrail",
    "CalculationRunQueries",
    "CancellationToken",
    "ComplianceReportBuilder",
    "ComponentCatalog",
    "PeriodLifecycleController",
    "PeriodLockRegistry",
    "PeriodStateMachine",
    "PeriodStatus",
]

"""ORM models."""

from payroll_lifecycle.models.adjustments import Adjustment
from payroll_lifecycle.models.audit import AuditEntry
from payroll_lifecycle.models.base import Base
from payroll_lifecycle.models.compliance import REPORT_TYPES, ComplianceReport
from payroll_lifecycle.models.components import EmployeeComponentAssignment, SalaryComponent
from payroll_lifecycle.models.payroll import CalculationLineItem, CalculationRun, PayrollPeriod
from payroll_lifecycle.models.rate_tables import RateTable, RateTableVersion

__all__ = [
    "Adjustment",
    "AuditEntry",
    "Base",
    "CalculationLineItem",
    "CalculationRun",
    "ComplianceReport",
    "EmployeeComponentAssignment",
    "PayrollPeriod",
    "RateTable",
    "RateTableVersion",
    "REPORT_TYPES",
    "SalaryComponent",
]

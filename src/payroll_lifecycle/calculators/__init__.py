"""Payroll calculation pipeline.

The orchestrating engine lives in ``payroll_lifecycle.calculators.engine``;
it depends on the lifecycle service and is imported from there directly.
"""

from payroll_lifecycle.calculators.component_resolver import ComponentResolver
from payroll_lifecycle.calculators.line_builder import LineItemBuilder
from payroll_lifecycle.calculators.rate_resolver import RateTableProvider
from payroll_lifecycle.calculators.statutory import StatutoryCalculator
from payroll_lifecycle.calculators.types import ComponentType, LineType, PeriodWindow

__all__ = [
    "ComponentResolver",
    "ComponentType",
    "LineItemBuilder",
    "LineType",
    "PeriodWindow",
    "RateTableProvider",
    "StatutoryCalculator",
]

"""Payroll period lifecycle engine.

Period state machine, statutory calculation runs, maker-checker
adjustments and government compliance reports.
"""

__version__ = "0.1.0"

"""API routes."""

from payroll_lifecycle.api.routes.adjustments import router as adjustments_router
from payroll_lifecycle.api.routes.components import router as components_router
from payroll_lifecycle.api.routes.health import router as health_router
from payroll_lifecycle.api.routes.periods import router as periods_router
from payroll_lifecycle.api.routes.reports import router as reports_router

__all__ = [
    "adjustments_router",
    "components_router",
    "health_router",
    "periods_router",
    "reports_router",
]

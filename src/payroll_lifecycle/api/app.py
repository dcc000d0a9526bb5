"""FastAPI application factory."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from payroll_lifecycle.api.routes import (
    adjustments_router,
    components_router,
    health_router,
    periods_router,
    reports_router,
)
from payroll_lifecycle.config import get_settings
from payroll_lifecycle.database import dispose_db, init_db
from payroll_lifecycle.services.payroll_service import PayrollCommands

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    owns_database = app.state.commands is None
    if owns_database:
        _, factory = init_db()
        app.state.commands = PayrollCommands(factory, settings=get_settings())
    yield
    if owns_database:
        await dispose_db()


def create_app(commands: PayrollCommands | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        commands: Command layer to serve; built from the configured
            database on startup when omitted
    """
    app = FastAPI(
        title="Payroll Lifecycle API",
        description="Payroll period lifecycle, statutory calculation and compliance reporting",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.commands = commands

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Exception handlers
    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle unexpected exceptions."""
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={
                "success": False,
                "message": "An unexpected error occurred",
                "error_code": "INTERNAL_ERROR",
            },
        )

    # Include routers
    app.include_router(health_router)
    app.include_router(periods_router, prefix="/api/v1")
    app.include_router(adjustments_router, prefix="/api/v1")
    app.include_router(reports_router, prefix="/api/v1")
    app.include_router(components_router, prefix="/api/v1")

    return app

"""Payroll period API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import func, select

from payroll_lifecycle.api.dependencies import ActorId, Commands, DbSession, command_response
from payroll_lifecycle.api.presentation import present_status
from payroll_lifecycle.api.schemas import (
    AuditEntryResponse,
    CommandResponse,
    EmployeePayResponse,
    ErrorResponse,
    PeriodCreate,
    PeriodDetailResponse,
    PeriodListResponse,
    PeriodResponse,
    ReasonRequest,
    StatusView,
)
from payroll_lifecycle.models import PayrollPeriod
from payroll_lifecycle.services.audit_service import AuditTrail
from payroll_lifecycle.services.lifecycle_service import ENTITY as PERIOD_ENTITY
from payroll_lifecycle.services.run_queries import CalculationRunQueries
from payroll_lifecycle.services.state_machine import PeriodStateMachine, PeriodStatus

router = APIRouter(prefix="/periods", tags=["periods"])

COMMAND_RESPONSES = {
    404: {"model": ErrorResponse},
    409: {"model": ErrorResponse},
    422: {"model": ErrorResponse},
}


# ============================================================================
# Queries
# ============================================================================


@router.get("", response_model=PeriodListResponse)
async def list_periods(
    db: DbSession,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 100,
) -> PeriodListResponse:
    """List periods, newest first."""
    query = select(PayrollPeriod)
    if status_filter:
        query = query.where(PayrollPeriod.status == status_filter)

    total = await db.scalar(select(func.count()).select_from(query.subquery())) or 0
    result = await db.execute(query.order_by(PayrollPeriod.start_date.desc()).limit(limit))
    return PeriodListResponse(
        items=[PeriodResponse.model_validate(p) for p in result.scalars().all()],
        total=total,
    )


@router.get(
    "/{period_id}",
    response_model=PeriodDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_period(db: DbSession, period_id: Annotated[UUID, Path()]) -> PeriodDetailResponse:
    period = await db.get(PayrollPeriod, period_id)
    if period is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Period not found")
    presentation = present_status("period", period.status)
    return PeriodDetailResponse(
        **PeriodResponse.model_validate(period).model_dump(),
        presentation=StatusView(
            status=presentation.status, label=presentation.label, color=presentation.color
        ),
        next_statuses=[
            PeriodStatus(s).value for s in PeriodStateMachine.get_next_statuses(period.status)
        ],
    )


@router.get("/{period_id}/results", response_model=list[EmployeePayResponse])
async def get_results(
    db: DbSession, period_id: Annotated[UUID, Path()]
) -> list[EmployeePayResponse]:
    """Successful results of the latest calculation run."""
    results = await CalculationRunQueries(db).latest_results(period_id)
    return [
        EmployeePayResponse(
            employee_id=r.employee_id,
            run_number=r.run_number,
            line_items=[
                {
                    "component_code": line.component_code,
                    "line_type": line.line_type,
                    "amount": line.amount,
                    "agency": line.agency,
                    "explanation": line.explanation,
                }
                for line in r.line_items
            ],
            gross_pay=r.gross_pay,
            total_deductions=r.total_deductions,
            net_pay=r.net_pay,
        )
        for r in results
    ]


@router.get("/{period_id}/audit", response_model=list[AuditEntryResponse])
async def get_audit(
    db: DbSession, period_id: Annotated[UUID, Path()]
) -> list[AuditEntryResponse]:
    entries = await AuditTrail(db).history(PERIOD_ENTITY, period_id)
    return [AuditEntryResponse.model_validate(e) for e in entries]


# ============================================================================
# Commands
# ============================================================================


@router.post(
    "",
    response_model=CommandResponse,
    status_code=status.HTTP_201_CREATED,
    responses=COMMAND_RESPONSES,
)
async def create_period(commands: Commands, actor_id: ActorId, payload: PeriodCreate) -> JSONResponse:
    """Create a new period in draft status."""
    result = await commands.create_period(
        payload.period_type,
        payload.start_date,
        payload.end_date,
        payload.pay_date,
        name=payload.name,
        actor_id=actor_id,
    )
    return command_response(result, status.HTTP_201_CREATED)


@router.post("/{period_id}/calculate", response_model=CommandResponse, responses=COMMAND_RESPONSES)
async def calculate(
    commands: Commands, actor_id: ActorId, period_id: Annotated[UUID, Path()]
) -> JSONResponse:
    return command_response(await commands.calculate(period_id, actor_id))


@router.post("/{period_id}/submit", response_model=CommandResponse, responses=COMMAND_RESPONSES)
async def submit_for_review(
    commands: Commands, actor_id: ActorId, period_id: Annotated[UUID, Path()]
) -> JSONResponse:
    return command_response(await commands.submit_for_review(period_id, actor_id))


@router.post("/{period_id}/approve", response_model=CommandResponse, responses=COMMAND_RESPONSES)
async def approve(
    commands: Commands, actor_id: ActorId, period_id: Annotated[UUID, Path()]
) -> JSONResponse:
    return command_response(await commands.approve_period(period_id, actor_id))


@router.post("/{period_id}/reject", response_model=CommandResponse, responses=COMMAND_RESPONSES)
async def reject(
    commands: Commands,
    actor_id: ActorId,
    period_id: Annotated[UUID, Path()],
    payload: ReasonRequest,
) -> JSONResponse:
    return command_response(await commands.reject_period(period_id, actor_id, payload.reason))


@router.post("/{period_id}/finalize", response_model=CommandResponse, responses=COMMAND_RESPONSES)
async def finalize(
    commands: Commands, actor_id: ActorId, period_id: Annotated[UUID, Path()]
) -> JSONResponse:
    return command_response(await commands.finalize_period(period_id, actor_id))


@router.post("/{period_id}/cancel", response_model=CommandResponse, responses=COMMAND_RESPONSES)
async def cancel(
    commands: Commands,
    actor_id: ActorId,
    period_id: Annotated[UUID, Path()],
    payload: ReasonRequest,
) -> JSONResponse:
    return command_response(await commands.cancel_period(period_id, actor_id, payload.reason))

"""Adjustment API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import select

from payroll_lifecycle.api.dependencies import ActorId, Commands, DbSession, command_response
from payroll_lifecycle.api.routes.periods import COMMAND_RESPONSES
from payroll_lifecycle.api.schemas import (
    AdjustmentCreate,
    AdjustmentResponse,
    CommandResponse,
    ReasonRequest,
)
from payroll_lifecycle.models import Adjustment

router = APIRouter(tags=["adjustments"])


@router.get("/periods/{period_id}/adjustments", response_model=list[AdjustmentResponse])
async def list_adjustments(
    db: DbSession,
    period_id: Annotated[UUID, Path()],
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[AdjustmentResponse]:
    query = select(Adjustment).where(Adjustment.period_id == period_id)
    if status_filter:
        query = query.where(Adjustment.approval_status == status_filter)
    result = await db.execute(query.order_by(Adjustment.created_at))
    return [AdjustmentResponse.model_validate(a) for a in result.scalars().all()]


@router.post(
    "/periods/{period_id}/adjustments",
    response_model=CommandResponse,
    status_code=status.HTTP_201_CREATED,
    responses=COMMAND_RESPONSES,
)
async def submit_adjustment(
    commands: Commands,
    actor_id: ActorId,
    period_id: Annotated[UUID, Path()],
    payload: AdjustmentCreate,
) -> JSONResponse:
    result = await commands.submit_adjustment(
        period_id,
        payload.employee_id,
        payload.field,
        payload.new_value,
        payload.reason,
        actor_id,
        adjustment_type=payload.adjustment_type,
        old_value=payload.old_value,
    )
    return command_response(result, status.HTTP_201_CREATED)


@router.post(
    "/adjustments/{adjustment_id}/approve",
    response_model=CommandResponse,
    responses=COMMAND_RESPONSES,
)
async def approve_adjustment(
    commands: Commands, actor_id: ActorId, adjustment_id: Annotated[UUID, Path()]
) -> JSONResponse:
    return command_response(await commands.approve_adjustment(adjustment_id, actor_id))


@router.post(
    "/adjustments/{adjustment_id}/reject",
    response_model=CommandResponse,
    responses=COMMAND_RESPONSES,
)
async def reject_adjustment(
    commands: Commands,
    actor_id: ActorId,
    adjustment_id: Annotated[UUID, Path()],
    payload: ReasonRequest,
) -> JSONResponse:
    return command_response(
        await commands.reject_adjustment(adjustment_id, actor_id, payload.reason)
    )

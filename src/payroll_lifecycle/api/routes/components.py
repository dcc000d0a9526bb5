"""Salary component API endpoints."""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import select

from payroll_lifecycle.api.dependencies import ActorId, Commands, DbSession, command_response
from payroll_lifecycle.api.routes.periods import COMMAND_RESPONSES
from payroll_lifecycle.api.schemas import (
    AssignmentCreate,
    CommandResponse,
    ComponentCreate,
    ComponentResponse,
)
from payroll_lifecycle.models import SalaryComponent

router = APIRouter(prefix="/components", tags=["components"])


@router.get("", response_model=list[ComponentResponse])
async def list_components(db: DbSession) -> list[ComponentResponse]:
    result = await db.execute(select(SalaryComponent).order_by(SalaryComponent.code))
    return [ComponentResponse.model_validate(c) for c in result.scalars().all()]


@router.post(
    "",
    response_model=CommandResponse,
    status_code=status.HTTP_201_CREATED,
    responses=COMMAND_RESPONSES,
)
async def define_component(
    commands: Commands, actor_id: ActorId, payload: ComponentCreate
) -> JSONResponse:
    options = payload.model_dump(exclude={"code", "name", "component_type"})
    result = await commands.define_component(
        payload.code, payload.name, payload.component_type, actor_id=actor_id, **options
    )
    return command_response(result, status.HTTP_201_CREATED)


@router.post(
    "/assignments",
    response_model=CommandResponse,
    status_code=status.HTTP_201_CREATED,
    responses=COMMAND_RESPONSES,
)
async def assign_component(
    commands: Commands, actor_id: ActorId, payload: AssignmentCreate
) -> JSONResponse:
    options = payload.model_dump(exclude={"employee_id", "component_code", "effective_date"})
    result = await commands.assign_component(
        payload.employee_id,
        payload.component_code,
        payload.effective_date,
        actor_id=actor_id,
        **options,
    )
    return command_response(result, status.HTTP_201_CREATED)

"""Compliance report API endpoints."""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, HTTPException, Path, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy import select

from payroll_lifecycle.api.dependencies import ActorId, Commands, DbSession, command_response
from payroll_lifecycle.api.routes.periods import COMMAND_RESPONSES
from payroll_lifecycle.api.schemas import (
    CommandResponse,
    ErrorResponse,
    PenaltyResponse,
    ReportAcceptRequest,
    ReportResponse,
    ReportSubmitRequest,
)
from payroll_lifecycle.models import ComplianceReport
from payroll_lifecycle.services.compliance_service import ComplianceReportBuilder

router = APIRouter(tags=["reports"])


@router.get("/periods/{period_id}/reports", response_model=list[ReportResponse])
async def list_reports(
    db: DbSession,
    period_id: Annotated[UUID, Path()],
    include_superseded: bool = False,
) -> list[ReportResponse]:
    query = select(ComplianceReport).where(ComplianceReport.period_id == period_id)
    if not include_superseded:
        query = query.where(ComplianceReport.status != "superseded")
    result = await db.execute(query.order_by(ComplianceReport.created_at))
    return [ReportResponse.model_validate(r) for r in result.scalars().all()]


@router.get(
    "/reports/{report_id}/penalty",
    response_model=PenaltyResponse,
    responses={404: {"model": ErrorResponse}},
)
async def assess_penalty(
    db: DbSession,
    commands: Commands,
    report_id: Annotated[UUID, Path()],
    as_of: Annotated[date | None, Query()] = None,
) -> PenaltyResponse:
    report = await db.get(ComplianceReport, report_id)
    if report is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Report not found")
    builder = ComplianceReportBuilder(db, settings=commands.settings)
    assessment = builder.assess_penalty(report, as_of)
    return PenaltyResponse(
        due_date=assessment.due_date,
        days_until_due=assessment.days_until_due,
        is_overdue=assessment.is_overdue,
        months_late=assessment.months_late,
        penalty_rate=assessment.penalty_rate,
        penalty=assessment.penalty,
    )


@router.post(
    "/periods/{period_id}/reports/{agency}",
    response_model=CommandResponse,
    status_code=status.HTTP_201_CREATED,
    responses=COMMAND_RESPONSES,
)
async def generate_report(
    commands: Commands,
    actor_id: ActorId,
    period_id: Annotated[UUID, Path()],
    agency: Annotated[str, Path()],
) -> JSONResponse:
    result = await commands.generate_report(period_id, agency, actor_id)
    return command_response(result, status.HTTP_201_CREATED)


@router.post("/reports/{report_id}/ready", response_model=CommandResponse, responses=COMMAND_RESPONSES)
async def mark_ready(
    commands: Commands, actor_id: ActorId, report_id: Annotated[UUID, Path()]
) -> JSONResponse:
    return command_response(await commands.mark_report_ready(report_id, actor_id))


@router.post("/reports/{report_id}/submit", response_model=CommandResponse, responses=COMMAND_RESPONSES)
async def submit_report(
    commands: Commands,
    actor_id: ActorId,
    report_id: Annotated[UUID, Path()],
    payload: ReportSubmitRequest,
) -> JSONResponse:
    return command_response(
        await commands.submit_report(report_id, actor_id, payload.submission_date)
    )


@router.post("/reports/{report_id}/accept", response_model=CommandResponse, responses=COMMAND_RESPONSES)
async def accept_report(
    commands: Commands,
    actor_id: ActorId,
    report_id: Annotated[UUID, Path()],
    payload: ReportAcceptRequest,
) -> JSONResponse:
    return command_response(
        await commands.accept_report(report_id, payload.reference_number, actor_id)
    )

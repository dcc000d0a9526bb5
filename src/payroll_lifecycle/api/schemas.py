"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


# ============================================================================
# Common
# ============================================================================


class ErrorResponse(BaseModel):
    """Failed command."""

    success: bool = False
    message: str
    data: dict[str, Any] = {}
    error_code: str


class CommandResponse(BaseModel):
    """Result of a state-changing command."""

    success: bool
    message: str
    data: dict[str, Any] = {}
    error_code: str | None = None


class StatusView(BaseModel):
    status: str
    label: str
    color: str


class ReasonRequest(BaseModel):
    reason: str = Field(min_length=1)


# ============================================================================
# Periods
# ============================================================================


class PeriodCreate(BaseModel):
    period_type: str
    start_date: date
    end_date: date
    pay_date: date
    name: str | None = None


class PeriodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    period_id: UUID
    name: str | None = None
    period_type: str
    start_date: date
    end_date: date
    pay_date: date
    status: str
    employee_count: int
    total_gross: Decimal | None = None
    total_deductions: Decimal | None = None
    total_net: Decimal | None = None
    total_employer_contributions: Decimal | None = None
    prepared_by: UUID | None = None
    approved_by: UUID | None = None
    locked_at: datetime | None = None
    reopen_count: int
    created_at: datetime
    updated_at: datetime


class PeriodDetailResponse(PeriodResponse):
    presentation: StatusView
    next_statuses: list[str]


class PeriodListResponse(BaseModel):
    items: list[PeriodResponse]
    total: int


class PayLineResponse(BaseModel):
    component_code: str
    line_type: str
    amount: Decimal
    agency: str | None = None
    explanation: str | None = None


class EmployeePayResponse(BaseModel):
    employee_id: UUID
    run_number: int
    line_items: list[PayLineResponse]
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    audit_id: int
    entity_type: str
    entity_id: str
    action: str
    actor_id: UUID | None = None
    timestamp: datetime
    old_values: dict[str, Any] | None = None
    new_values: dict[str, Any] | None = None


# ============================================================================
# Adjustments
# ============================================================================


class AdjustmentCreate(BaseModel):
    employee_id: UUID
    field: str = Field(min_length=1)
    new_value: Decimal = Field(ge=0)
    reason: str = Field(min_length=1)
    adjustment_type: str = "correction"
    old_value: Decimal | None = None


class AdjustmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    adjustment_id: UUID
    period_id: UUID
    employee_id: UUID
    adjustment_type: str
    field: str
    old_value: Decimal | None = None
    new_value: Decimal
    reason: str
    approval_status: str
    created_by: UUID
    approved_by: UUID | None = None
    decided_at: datetime | None = None
    rejection_reason: str | None = None


# ============================================================================
# Compliance reports
# ============================================================================


class ReportSubmitRequest(BaseModel):
    submission_date: date | None = None


class ReportAcceptRequest(BaseModel):
    reference_number: str = Field(min_length=1)


class ReportResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    report_id: UUID
    period_id: UUID
    report_type: str
    agency: str
    run_number: int
    employee_share: Decimal
    employer_share: Decimal
    total_contribution: Decimal
    employee_count: int
    status: str
    due_date: date
    submission_date: date | None = None
    reference_number: str | None = None


class PenaltyResponse(BaseModel):
    due_date: date
    days_until_due: int
    is_overdue: bool
    months_late: int
    penalty_rate: Decimal
    penalty: Decimal


# ============================================================================
# Components
# ============================================================================


class ComponentCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1)
    component_type: str
    is_taxable: bool = True
    is_deminimis: bool = False
    deminimis_limit: Decimal | None = None
    default_amount: Decimal | None = None
    agency: str | None = None
    rate_table_key: str | None = None
    unit_basis: str | None = None


class ComponentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    component_id: UUID
    code: str
    name: str
    component_type: str
    is_taxable: bool
    is_deminimis: bool
    deminimis_limit: Decimal | None = None
    default_amount: Decimal | None = None
    agency: str | None = None
    rate_table_key: str | None = None
    unit_basis: str | None = None


class AssignmentCreate(BaseModel):
    employee_id: UUID
    component_code: str
    effective_date: date
    amount: Decimal | None = None
    percentage: Decimal | None = None
    units: Decimal | None = None
    basis_code: str | None = None
    frequency: str = "per_period"
    end_date: date | None = None
    is_prorated: bool = False
    requires_attendance: bool = False

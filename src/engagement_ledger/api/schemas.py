"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class ErrorResponse(BaseModel):
    """Error response schema."""

    detail: str
    code: str


# ============================================================================
# Rate card schemas
# ============================================================================


class RateLineCreate(BaseModel):
    role_name: str = Field(min_length=1)
    hourly_rate: Decimal = Field(ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    person_id: UUID | None = None


class RateCardCreate(BaseModel):
    """Schema for creating (and activating) a rate card."""

    name: str = Field(min_length=1)
    effective_date: date
    lines: list[RateLineCreate] = Field(min_length=1)


class RateLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rate_line_id: UUID
    role_name: str
    person_id: UUID | None = None
    hourly_rate: Decimal
    currency: str


class RateCardResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    rate_card_id: UUID
    tenant_id: UUID
    name: str
    version: int
    effective_date: date
    is_active: bool
    lines: list[RateLineResponse] = []


# ============================================================================
# Request / proposal schemas
# ============================================================================


class ClientRequestCreate(BaseModel):
    title: str = Field(min_length=1)
    client_name: str = Field(min_length=1)
    description: str | None = None


class ClientRequestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    request_id: UUID
    tenant_id: UUID
    title: str
    client_name: str
    description: str | None = None
    status: str
    created_at: datetime


class EstimateIn(BaseModel):
    """Estimate priced from the rate card."""

    role_name: str = Field(min_length=1)
    hours: Decimal = Field(ge=0)
    person_id: UUID | None = None


class JobCreate(BaseModel):
    name: str = Field(min_length=1)
    scope: str | None = None
    estimates: list[EstimateIn] = []


class ProposalCreate(BaseModel):
    """Schema for creating the next proposal version for a request."""

    request_id: UUID
    pricing_model: str = "FIXED_PER_JOB"
    notes: str | None = None
    jobs: list[JobCreate] = []


class EstimateCreate(BaseModel):
    """Estimate added to an existing job; hourly_rate overrides the rate card."""

    role_name: str = Field(min_length=1)
    hours: Decimal = Field(ge=0)
    hourly_rate: Decimal | None = Field(default=None, ge=0)
    person_id: UUID | None = None


class EstimateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_estimate_id: UUID
    job_id: UUID
    role_name: str
    person_id: UUID | None = None
    hours: Decimal
    hourly_rate: Decimal
    line_total: Decimal


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: UUID
    proposal_id: UUID
    name: str
    scope: str | None = None
    sort_order: int
    line_total: Decimal
    estimates: list[EstimateResponse] = []


class ApprovalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    approval_id: UUID
    approval_type: str
    status: str
    review_cycle: int
    approved_by: UUID | None = None
    terms_accepted: bool
    notes: str | None = None
    created_at: datetime


class ProposalResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    proposal_id: UUID
    tenant_id: UUID
    request_id: UUID
    version: int
    status: str
    pricing_model: str
    total_amount: Decimal
    rate_card_id: UUID | None = None
    review_cycle: int
    notes: str | None = None
    sent_at: datetime | None = None
    created_at: datetime
    jobs: list[JobResponse] = []
    approvals: list[ApprovalResponse] = []


class DecisionRequest(BaseModel):
    """Internal review or client decision on a proposal."""

    approval_type: Literal["INTERNAL_REVIEW", "CLIENT_APPROVAL"]
    decision: Literal["APPROVED", "REJECTED"]
    notes: str | None = None
    terms_accepted: bool = False


class DecisionResponse(BaseModel):
    proposal: ProposalResponse
    approval: ApprovalResponse
    project_id: UUID | None = None


# ============================================================================
# Project / time schemas
# ============================================================================


class AssignmentCreate(BaseModel):
    user_id: UUID
    assignment_type: Literal["EMPLOYEE", "CONTRACTOR"]


class AssignmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    project_assignment_id: UUID
    project_id: UUID
    user_id: UUID
    assignment_type: str


class TimeEntryCreate(BaseModel):
    project_job_id: UUID
    user_id: UUID
    work_date: date
    hours: Decimal = Field(gt=0)
    notes: str | None = None
    source: Literal["MANUAL", "IMPORT", "API"] = "MANUAL"


class TimeEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    time_entry_id: UUID
    project_job_id: UUID
    user_id: UUID
    work_date: date
    hours: Decimal
    approved: bool
    source: str
    notes: str | None = None


class TimeReviewRequest(BaseModel):
    ids: list[UUID] = Field(min_length=1)
    action: Literal["approve", "reject"]


class TimeReviewResponse(BaseModel):
    action: str
    processed: int


# ============================================================================
# Invoice schemas
# ============================================================================


class InvoiceLineItemIn(BaseModel):
    description: str = Field(min_length=1)
    quantity: Decimal = Field(ge=0)
    unit_price: Decimal = Field(ge=0)


class InvoiceDraftCreate(BaseModel):
    project_id: UUID
    line_items: list[InvoiceLineItemIn] = Field(min_length=1)
    notes: str | None = None


class InvoiceDraftResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    invoice_draft_id: UUID
    tenant_id: UUID
    project_id: UUID
    status: str
    line_items: list[dict[str, Any]]
    total_amount: Decimal
    notes: str | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None


class RejectRequest(BaseModel):
    reason: str | None = None


class VoidRequest(BaseModel):
    reason: str = Field(min_length=1)


class InvoiceResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    invoice_id: UUID
    tenant_id: UUID
    project_id: UUID
    invoice_draft_id: UUID | None = None
    invoice_number: str
    amount: Decimal
    issued_date: datetime
    due_date: datetime
    status: str
    void_reason: str | None = None


# ============================================================================
# Payroll schemas
# ============================================================================


class PayRateCreate(BaseModel):
    user_id: UUID
    hourly_rate: Decimal = Field(ge=0)
    currency: str = Field(min_length=3, max_length=3)
    effective_date: date


class PayRateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    contractor_pay_rate_id: UUID
    user_id: UUID
    hourly_rate: Decimal
    currency: str
    effective_date: date


class PayRunCreate(BaseModel):
    """Schema for creating a contractor pay run."""

    period_start: date
    period_end: date


class PayLineResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pay_line_id: UUID
    user_id: UUID
    hours: Decimal
    rate: Decimal
    currency: str
    fx_rate: Decimal
    fx_source: str
    total_amount: Decimal


class PayRunResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    pay_run_id: UUID
    tenant_id: UUID
    period_start: date
    period_end: date
    base_currency: str
    status: str
    warnings: list[str] = []
    needs_review: bool
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    exported_at: datetime | None = None
    lines: list[PayLineResponse] = []

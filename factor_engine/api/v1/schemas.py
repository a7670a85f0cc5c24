"""Pydantic schemas for API request/response validation"""

import uuid
from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from factor_engine.domain.models import ItemAction, OperationStatus, ResponseStatus


class ORMModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


# Factors


class FactorCreateRequest(BaseModel):
    """Request body for POST /v1/factors"""

    name: str = Field(..., description="Factor display name (at least 2 characters)")
    code: Optional[str] = None
    default_interest_rate: float = 0.0
    default_fee_rate: float = 0.0
    default_iof_rate: float = 0.0
    default_other_cost_rate: float = 0.0
    default_grace_days: int = 0
    is_active: bool = True
    notes: Optional[str] = None


class FactorUpdateRequest(BaseModel):
    """Request body for PATCH /v1/factors/{factor_id}; only sent fields change"""

    name: Optional[str] = None
    code: Optional[str] = None
    default_interest_rate: Optional[float] = None
    default_fee_rate: Optional[float] = None
    default_iof_rate: Optional[float] = None
    default_other_cost_rate: Optional[float] = None
    default_grace_days: Optional[int] = None
    is_active: Optional[bool] = None
    notes: Optional[str] = None


class FactorResponse(ORMModel):
    id: uuid.UUID
    name: str
    code: Optional[str] = None
    default_interest_rate: float
    default_fee_rate: float
    default_iof_rate: float
    default_other_cost_rate: float
    default_grace_days: int
    is_active: bool
    notes: Optional[str] = None


# Operations


class OperationCreateRequest(BaseModel):
    """Request body for POST /v1/operations"""

    factor_id: Optional[uuid.UUID] = None
    reference: Optional[str] = Field(None, max_length=80)
    issue_date: Optional[date] = None
    expected_settlement_date: Optional[date] = None
    notes: Optional[str] = None


class OperationUpdateRequest(BaseModel):
    """Request body for PATCH /v1/operations/{operation_id}"""

    reference: Optional[str] = Field(None, max_length=80)
    expected_settlement_date: Optional[date] = None
    notes: Optional[str] = None


class OperationResponse(ORMModel):
    id: uuid.UUID
    operation_number: int
    factor_id: uuid.UUID
    reference: Optional[str] = None
    issue_date: date
    expected_settlement_date: Optional[date] = None
    settlement_date: Optional[date] = None
    status: OperationStatus
    version_counter: int
    current_version_id: Optional[uuid.UUID] = None
    gross_amount_cents: int
    costs_amount_cents: int
    net_amount_cents: int
    has_unversioned_changes: bool
    sent_at: Optional[datetime] = None
    last_response_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class ConcludeRequest(BaseModel):
    settlement_date: Optional[date] = None
    notes: Optional[str] = None


# Items


class ItemCreateRequest(BaseModel):
    """Request body for POST /v1/operations/{operation_id}/items"""

    action_type: ItemAction
    installment_id: uuid.UUID
    proposed_due_date: Optional[date] = None


class ItemSchema(ORMModel):
    id: uuid.UUID
    line_no: int
    action_type: ItemAction
    installment_id: uuid.UUID
    title_number_snapshot: str
    installment_number_snapshot: int
    due_date_snapshot: date
    amount_snapshot_cents: int
    proposed_due_date: Optional[date] = None
    final_due_date: Optional[date] = None
    final_amount_cents: Optional[int] = None
    status: ResponseStatus


# Versions


class VersionItemSchema(ORMModel):
    operation_item_id: uuid.UUID
    line_no: int
    action_type: ItemAction
    installment_id: uuid.UUID
    title_number_snapshot: str
    installment_number_snapshot: int
    due_date_snapshot: date
    amount_snapshot_cents: int
    proposed_due_date: Optional[date] = None
    status: ResponseStatus


class VersionResponse(ORMModel):
    id: uuid.UUID
    operation_id: uuid.UUID
    version_number: int
    source_status: OperationStatus
    total_items: int
    gross_amount_cents: int
    costs_amount_cents: int
    net_amount_cents: int
    sent_at: Optional[datetime] = None
    items: List[VersionItemSchema]


# Responses


class ItemResponseRequest(BaseModel):
    """Factor determination for one item"""

    item_id: uuid.UUID
    response_status: ResponseStatus
    response_code: Optional[str] = Field(None, max_length=40)
    response_message: Optional[str] = None
    accepted_amount_cents: Optional[int] = None
    adjusted_amount_cents: Optional[int] = None
    adjusted_due_date: Optional[date] = None
    fee_amount_cents: int = 0
    interest_amount_cents: int = 0
    iof_amount_cents: int = 0
    other_cost_amount_cents: int = 0


class ApplyResponsesRequest(BaseModel):
    """Request body for POST /v1/operations/{operation_id}/responses"""

    version_id: uuid.UUID
    responses: List[ItemResponseRequest] = Field(..., min_length=1)


class RecordedResponseSchema(ORMModel):
    operation_item_id: uuid.UUID
    version_id: uuid.UUID
    response_status: ResponseStatus
    response_code: Optional[str] = None
    response_message: Optional[str] = None
    accepted_amount_cents: Optional[int] = None
    adjusted_amount_cents: Optional[int] = None
    adjusted_due_date: Optional[date] = None
    fee_amount_cents: int
    interest_amount_cents: int
    iof_amount_cents: int
    other_cost_amount_cents: int
    total_cost_amount_cents: int


# Settlement


class PostingSchema(ORMModel):
    posting_key: str
    kind: str
    category: str
    amount_cents: int


class SettlementTotalsSchema(ORMModel):
    discount_amount_cents: int
    buyback_amount_cents: int
    fee_amount_cents: int
    interest_amount_cents: int
    iof_amount_cents: int
    other_cost_amount_cents: int
    factor_costs_amount_cents: int


class ConcludeResponse(ORMModel):
    """Response for POST /v1/operations/{operation_id}/conclude"""

    operation: OperationResponse
    idempotent: bool
    postings: List[PostingSchema]
    totals: Optional[SettlementTotalsSchema] = None


class OperationDetailResponse(ORMModel):
    """Response for GET /v1/operations/{operation_id}"""

    operation: OperationResponse
    factor: FactorResponse
    items: List[ItemSchema]
    versions: List[VersionResponse]
    responses: List[RecordedResponseSchema]
    posting_preview: SettlementTotalsSchema
    ready_to_conclude: bool


# Installments


class InstallmentSchema(ORMModel):
    """Receivable installment as exposed by the eligibility provider"""

    id: uuid.UUID
    title_number: str
    installment_number: int
    due_date: date
    status: str
    amount_open_cents: int
    custody_status: str
    factor_id: Optional[uuid.UUID] = None

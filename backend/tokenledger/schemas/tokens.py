"""Request/response schemas for the token ledger API."""

from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class ConsumeRequest(BaseModel):
    action_type: str = Field(..., min_length=1, max_length=50)
    metadata: dict = Field(default_factory=dict)


class ConsumeResponse(BaseModel):
    success: bool = True
    consumed: int
    balance_before: int
    balance_after: int
    transaction_id: uuid.UUID


class RefundRequest(BaseModel):
    # Un-keyed refunds are only available to in-process callers of metering_service.refund
    refund_of: uuid.UUID
    amount: int | None = Field(None, gt=0)
    reason: str = Field("", max_length=500)


class RefundResponse(BaseModel):
    success: bool = True
    refunded: int
    balance_after: int
    transaction_id: uuid.UUID
    duplicate: bool = False


class AllocateRequest(BaseModel):
    target_user_id: uuid.UUID
    amount: int = Field(..., ge=0)
    monthly_quota: int | None = Field(None, ge=0)


class AllocateResponse(BaseModel):
    success: bool = True
    allocated: int
    balance_after: int
    monthly_quota: int


class RevokeRequest(BaseModel):
    target_user_id: uuid.UUID
    amount: int = Field(..., gt=0)
    reason: str | None = Field(None, max_length=500)


class RevokeResponse(BaseModel):
    success: bool = True
    revoked: int
    balance_after: int


class AllocationResponse(BaseModel):
    user_id: uuid.UUID
    organization_id: uuid.UUID
    current_balance: int
    monthly_quota: int
    quota_reset_day: int
    last_reset_at: datetime | None = None

    model_config = {"from_attributes": True}


class WalletResponse(BaseModel):
    organization_id: uuid.UUID
    total_tokens: int
    tokens_purchased: int
    tokens_allocated: int
    tokens_consumed: int
    available_tokens: int
    last_purchase_at: datetime | None = None
    tokens_expire_at: datetime | None = None

    model_config = {"from_attributes": True}


class PurchaseRequest(BaseModel):
    amount: int = Field(..., gt=0)


class PurchaseResponse(BaseModel):
    success: bool = True
    purchased: int
    total_tokens: int
    tokens_expire_at: datetime | None = None


class TokenTransactionResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    user_id: uuid.UUID | None = None
    transaction_type: str
    amount: int
    balance_before: int | None = None
    balance_after: int | None = None
    action_type: str | None = None
    metadata: dict | None = None
    refund_of_id: uuid.UUID | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class ActionCostResponse(BaseModel):
    action_type: str
    cost: int
    enabled: bool
    admin_only: bool
    source: str

    model_config = {"from_attributes": True}


class ActionCostUpdate(BaseModel):
    token_cost: int = Field(..., ge=0)
    is_enabled: bool = True
    admin_only: bool = False


class JoinOrganizationRequest(BaseModel):
    invite_code: str = Field(..., min_length=1, max_length=32)


class JoinOrganizationResponse(BaseModel):
    organization_id: uuid.UUID
    name: str

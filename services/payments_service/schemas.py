"""Pydantic schemas for payments service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from services.payments_service.models import PaymentGateway, PaymentStatus, RefundStatus
from services.store_service.models import PaymentMethod


class PaymentCreate(BaseModel):
    order_id: uuid.UUID
    method: PaymentMethod


class PaymentIntentResponse(BaseModel):
    payment_id: uuid.UUID
    order_id: uuid.UUID
    status: PaymentStatus
    redirect_url: Optional[str] = None
    expires_at: Optional[datetime] = None


class PaymentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_id: uuid.UUID
    method: PaymentGateway
    amount: Decimal
    currency: str
    status: PaymentStatus
    gateway_txn_ref: str
    transaction_no: Optional[str] = None
    attempt_number: int
    paid_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    failure_code: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_at: datetime


class RefundCreate(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0)
    reason: str = Field(..., min_length=1, max_length=1000)


class RefundReject(BaseModel):
    reason: str = Field(..., min_length=1, max_length=1000)


class RefundResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    payment_id: uuid.UUID
    order_id: uuid.UUID
    amount: Decimal
    reason: str
    status: RefundStatus
    requested_by: str
    approved_by: Optional[str] = None
    approved_at: Optional[datetime] = None
    rejected_by: Optional[str] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    gateway_refund_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None
    created_at: datetime

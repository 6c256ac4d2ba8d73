"""Payment intents and payment lookups."""

import uuid

from fastapi import APIRouter, Depends, Request
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.rate_limit import get_client_ip, payment_limit
from libs.db.session import get_async_db
from libs.jobs.queue import JobQueue, get_job_queue
from services.payments_service.schemas import (
    PaymentCreate,
    PaymentIntentResponse,
    PaymentResponse,
    RefundCreate,
    RefundResponse,
)
from services.payments_service.services import payment_ops, refund_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/payments", tags=["payments"])


def intent_response(intent: payment_ops.PaymentIntent) -> PaymentIntentResponse:
    payment = intent.payment
    return PaymentIntentResponse(
        payment_id=payment.id,
        order_id=payment.order_id,
        status=payment.status,
        redirect_url=intent.redirect_url,
        expires_at=payment.expires_at,
    )


@router.post("/create", response_model=PaymentIntentResponse)
@payment_limit
async def create_payment(
    request: Request,
    payload: PaymentCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """Create a payment intent for one of the caller's orders (idempotent per order and method)."""
    intent = await payment_ops.create_payment(
        db,
        order_id=payload.order_id,
        method=payload.method,
        user_id=current_user.user_id,
        client_ip=get_client_ip(request),
        job_queue=job_queue,
    )
    return intent_response(intent)


@router.get("/order/{order_id}", response_model=list[PaymentResponse])
async def list_order_payments(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    user_id = None if current_user.is_admin else current_user.user_id
    return await payment_ops.list_payments_for_order(db, order_id, user_id=user_id)


@router.post("/{payment_id}/refunds", response_model=RefundResponse, status_code=201)
async def request_refund(
    payment_id: uuid.UUID,
    payload: RefundCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await refund_ops.request_refund(
        db,
        payment_id=payment_id,
        amount=payload.amount,
        reason=payload.reason,
        user_id=current_user.user_id,
    )

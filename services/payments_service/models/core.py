import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base, JSONType
from services.payments_service.models.enums import (
    PaymentGateway,
    PaymentStatus,
    RefundStatus,
    WebhookOutcome,
    enum_values,
)
from sqlalchemy import Boolean, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column, relationship


class Payment(Base):
    """One attempt to collect an order's total through a gateway (or COD)."""

    __tablename__ = "payments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("orders.id", ondelete="CASCADE"), index=True, nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(255), index=True, nullable=False)

    method: Mapped[PaymentGateway] = mapped_column(
        SAEnum(
            PaymentGateway,
            name="payment_gateway_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(8), default="VND", nullable=False)

    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="payment_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=PaymentStatus.INITIATED,
        nullable=False,
    )

    # vnp_TxnRef / MoMo orderId; the payment id hex
    gateway_txn_ref: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    idempotency_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    # Gateway-side transaction number from the callback
    transaction_no: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    redirect_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attempt_number: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    failed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    failure_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    expires_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    gateway_response: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    refunds = relationship(
        "Refund", back_populates="payment", order_by="Refund.created_at"
    )

    __table_args__ = (Index("ix_payments_order_method", "order_id", "method"),)

    def __repr__(self):
        return f"<Payment {self.gateway_txn_ref} {self.status.value}>"


class PaymentWebhookLog(Base):
    """Every gateway callback received; processed rows double as the dedup record."""

    __tablename__ = "payment_webhook_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    gateway: Mapped[PaymentGateway] = mapped_column(
        SAEnum(
            PaymentGateway,
            name="payment_gateway_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )
    txn_ref: Mapped[Optional[str]] = mapped_column(String(64), index=True, nullable=True)
    transaction_no: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    payload: Mapped[dict] = mapped_column(JSONType, nullable=False)
    signature_valid: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    # Set once the callback reached a terminal outcome
    processed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    outcome: Mapped[Optional[WebhookOutcome]] = mapped_column(
        SAEnum(
            WebhookOutcome,
            name="webhook_outcome_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        nullable=True,
    )
    response_code: Mapped[int] = mapped_column(Integer, default=200, nullable=False)
    response_body: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        Index(
            "uq_webhook_logs_processed",
            "gateway",
            "txn_ref",
            unique=True,
            postgresql_where=text("processed"),
            sqlite_where=text("processed = 1"),
        ),
    )


class Refund(Base):
    __tablename__ = "refunds"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    payment_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("payments.id", ondelete="CASCADE"), index=True, nullable=False
    )
    order_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    status: Mapped[RefundStatus] = mapped_column(
        SAEnum(
            RefundStatus,
            name="refund_status_enum",
            values_callable=enum_values,
            validate_strings=True,
        ),
        default=RefundStatus.REQUESTED,
        nullable=False,
    )

    requested_by: Mapped[str] = mapped_column(String(255), nullable=False)
    approved_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejected_by: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    gateway_refund_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    gateway_response: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    payment = relationship("Payment", back_populates="refunds")

    def __repr__(self):
        return f"<Refund {self.id} {self.status.value}>"


class PaymentAuditLog(Base):
    """Admin actions on payments and refunds."""

    __tablename__ = "payment_audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    entity_type: Mapped[str] = mapped_column(String(32), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(Uuid, index=True, nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    old_value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

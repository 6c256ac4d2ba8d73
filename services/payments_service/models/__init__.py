"""Payments Service models package."""

from services.payments_service.models.core import (
    Payment,
    PaymentAuditLog,
    PaymentWebhookLog,
    Refund,
)
from services.payments_service.models.enums import (
    PaymentGateway,
    PaymentStatus,
    RefundStatus,
    WebhookOutcome,
)

__all__ = [
    "Payment",
    "PaymentAuditLog",
    "PaymentGateway",
    "PaymentStatus",
    "PaymentWebhookLog",
    "Refund",
    "RefundStatus",
    "WebhookOutcome",
]

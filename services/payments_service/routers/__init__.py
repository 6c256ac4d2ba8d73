"""Payments service routers package."""

from services.payments_service.routers.payments import router as payments_router
from services.payments_service.routers.refunds import router as admin_refunds_router
from services.payments_service.routers.webhooks import router as webhooks_router

__all__ = [
    "admin_refunds_router",
    "payments_router",
    "webhooks_router",
]

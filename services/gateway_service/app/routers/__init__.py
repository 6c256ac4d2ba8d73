"""Gateway routers package."""

from services.gateway_service.app.routers.admin_jobs import router as admin_jobs_router
from services.gateway_service.app.routers.health import router as health_router

__all__ = ["admin_jobs_router", "health_router"]

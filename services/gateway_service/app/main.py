"""FastAPI application entrypoint for the Bookstore API.

A single process serves every domain router under ``/api/v1``; background work
is handed to the arq workers through the job queue opened in the lifespan.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi.errors import RateLimitExceeded

from libs.common.arq_config import create_redis_pool
from libs.common.config import get_settings
from libs.common.error_handler import add_exception_handlers
from libs.common.logging import get_logger
from libs.common.middleware import add_observability_middleware
from libs.common.rate_limit import limiter, rate_limit_exceeded_handler
from libs.db.config import engine
from libs.jobs.queue import JobQueue
from services.communications_service.routers import notifications_router
from services.gateway_service.app.routers import admin_jobs_router, health_router
from services.members_service.routers import members_router
from services.payments_service.routers import (
    admin_refunds_router,
    payments_router,
    webhooks_router,
)
from services.store_service.routers import (
    admin_inventory_router,
    admin_orders_router,
    cart_router,
    inventory_router,
    orders_router,
    warehouses_router,
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the shared Redis pool (job queue + cache) for the app's lifetime.

    Without Redis the API still serves requests; background jobs are not
    scheduled and caches are bypassed until a restart finds it again.
    """
    app.state.redis = None
    app.state.job_queue = None
    try:
        redis = await create_redis_pool()
    except Exception as e:
        logger.error(f"Redis unavailable, starting without job queue: {e}")
    else:
        app.state.redis = redis
        app.state.job_queue = JobQueue(redis)

    yield

    if app.state.redis is not None:
        await app.state.redis.aclose()
    await engine.dispose()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application instance."""
    settings = get_settings()
    app = FastAPI(
        title=settings.APP_NAME,
        version="0.1.0",
        description="Online bookstore: carts, checkout, inventory, payments and refunds.",
        lifespan=lifespan,
    )

    # Add rate limiter state to app
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Add observability (structured logging + request tracing + deadline)
    add_observability_middleware(app)

    # Add global exception handlers for consistent error responses
    add_exception_handlers(app)

    prefix = settings.API_PREFIX
    app.include_router(health_router, prefix=prefix)

    # Store
    app.include_router(cart_router, prefix=prefix)
    app.include_router(orders_router, prefix=prefix)
    app.include_router(inventory_router, prefix=prefix)
    app.include_router(warehouses_router, prefix=prefix)
    app.include_router(admin_orders_router, prefix=prefix)
    app.include_router(admin_inventory_router, prefix=prefix)

    # Payments
    app.include_router(payments_router, prefix=prefix)
    app.include_router(webhooks_router, prefix=prefix)
    app.include_router(admin_refunds_router, prefix=prefix)

    # Members / communications
    app.include_router(members_router, prefix=prefix)
    app.include_router(notifications_router, prefix=prefix)

    # Operations
    app.include_router(admin_jobs_router, prefix=prefix)

    return app


app = create_app()

"""Health endpoint: database and key store reachability plus invariant counters."""

import asyncio

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from libs.common.config import get_settings
from libs.common.errors import invariant_violations
from libs.common.logging import get_logger
from libs.db.config import AsyncSessionLocal
from sqlalchemy import text

logger = get_logger(__name__)
settings = get_settings()

router = APIRouter(tags=["system"])


async def _ping_database() -> None:
    async with AsyncSessionLocal() as session:
        await session.execute(text("SELECT 1"))


async def _check(name: str, probe, timeout: float) -> str:
    try:
        await asyncio.wait_for(probe(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning("Health check: %s timed out after %ss", name, timeout)
        return "timeout"
    except Exception as e:
        logger.warning("Health check: %s unavailable: %s", name, e)
        return "unavailable"
    return "ok"


@router.get("/health")
async def health_check(request: Request):
    """Readiness: 200 when the database answers, 503 otherwise.

    A key store outage only degrades the service (caches are optional).
    """
    database = await _check("database", _ping_database, settings.DB_HEALTH_TIMEOUT_SECONDS)

    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        key_store = "not_configured"
    else:
        key_store = await _check("redis", redis.ping, settings.REDIS_TIMEOUT_SECONDS)

    if database != "ok":
        overall = "unavailable"
    elif key_store != "ok":
        overall = "degraded"
    else:
        overall = "ok"

    return JSONResponse(
        status_code=503 if overall == "unavailable" else 200,
        content={
            "status": overall,
            "database": database,
            "redis": key_store,
            "invariant_violations": dict(invariant_violations),
        },
    )

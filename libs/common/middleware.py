"""Observability middleware for FastAPI.

Provides:
- Request ID generation and propagation
- Request/response timing
- Structured logging for all requests
- A per-request deadline (504 when exceeded)

Usage:
    from libs.common.middleware import add_observability_middleware

    app = FastAPI()
    add_observability_middleware(app)
"""
import asyncio
import time
from typing import Callable

from fastapi import FastAPI, Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from libs.common.config import get_settings
from libs.common.errors import DeadlineExceeded
from libs.common.logging import (
    clear_request_context,
    configure_logging,
    get_logger,
    set_request_context,
)

logger = get_logger(__name__)

_QUIET_PATHS = {"/health", "/api/v1/health"}


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Middleware that sets request context for tracing and logs request lifecycle.

    Features:
    - Generates or propagates X-Request-ID header
    - Logs request start with path/method
    - Logs request completion with status code and duration
    - Clears context after request completes
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID")
        request_id = set_request_context(
            request_id=request_id,
            path=request.url.path,
            method=request.method,
        )

        start_time = time.perf_counter()
        quiet = request.url.path in _QUIET_PATHS

        if not quiet:
            logger.info(
                "Request started",
                extra={"extra_fields": {"query": str(request.url.query) if request.url.query else None}},
            )

        try:
            response = await call_next(request)

            duration_ms = (time.perf_counter() - start_time) * 1000

            if not quiet:
                log_level = "warning" if response.status_code >= 400 else "info"
                getattr(logger, log_level)(
                    "Request completed",
                    extra={"extra_fields": {
                        "status_code": response.status_code,
                        "duration_ms": round(duration_ms, 2),
                    }},
                )

            response.headers["X-Request-ID"] = request_id

            return response

        except Exception as e:
            duration_ms = (time.perf_counter() - start_time) * 1000
            logger.exception(
                "Request failed with unhandled exception",
                extra={"extra_fields": {
                    "error": str(e),
                    "duration_ms": round(duration_ms, 2),
                }},
            )
            raise

        finally:
            clear_request_context()


class RequestDeadlineMiddleware(BaseHTTPMiddleware):
    """
    Abort a request that runs past REQUEST_TIMEOUT_SECONDS.

    Cancellation propagates into the handler, so an open DB transaction is
    rolled back when its session context exits.
    """

    def __init__(self, app, timeout: float):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "Request deadline exceeded",
                extra={"extra_fields": {"timeout_s": self.timeout}},
            )
            error = DeadlineExceeded("The request took too long to complete")
            return JSONResponse(status_code=error.status_code, content=error.to_dict())


def add_observability_middleware(app: FastAPI) -> None:
    """
    Add observability middleware to a FastAPI app.

    Call this after creating the app but before adding routes.
    """
    configure_logging()

    settings = get_settings()
    # Starlette runs the last-added middleware first; the context must wrap the deadline.
    app.add_middleware(RequestDeadlineMiddleware, timeout=settings.REQUEST_TIMEOUT_SECONDS)
    app.add_middleware(RequestContextMiddleware)

    logger.info("Observability middleware initialized")

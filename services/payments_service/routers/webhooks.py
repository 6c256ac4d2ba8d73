"""Gateway callbacks (VNPay IPN, MoMo IPN).

No auth: callbacks are verified by their signatures. Responses are 200 once
the outcome is durable and 400 only for a bad signature, so gateways can
safely re-deliver.
"""

import json
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from libs.jobs.queue import JobQueue, get_job_queue
from services.payments_service.services import payment_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


async def _callback_params(request: Request) -> dict[str, Any]:
    """Query string merged with a JSON or form body, body winning."""
    params: dict[str, Any] = dict(request.query_params)
    if request.method != "POST":
        return params

    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        raw = await request.body()
        if raw:
            try:
                body = json.loads(raw)
            except ValueError:
                logger.warning("Callback body is not valid JSON")
                body = None
            if isinstance(body, dict):
                params.update(body)
    elif content_type.startswith(
        ("application/x-www-form-urlencoded", "multipart/form-data")
    ):
        form = await request.form()
        params.update({key: value for key, value in form.items() if isinstance(value, str)})
    return params


def _respond(result: payment_ops.CallbackResult) -> JSONResponse:
    return JSONResponse(status_code=result.status_code, content=result.body)


@router.api_route("/vnpay", methods=["GET", "POST"])
async def vnpay_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    params = await _callback_params(request)
    result = await payment_ops.handle_vnpay_callback(db, params, job_queue=job_queue)
    return _respond(result)


@router.post("/momo")
async def momo_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    params = await _callback_params(request)
    result = await payment_ops.handle_momo_callback(db, params, job_queue=job_queue)
    return _respond(result)

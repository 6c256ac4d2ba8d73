"""Members router: the caller's own account."""

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.datetime_utils import utc_now
from libs.common.errors import DependencyUnavailable, ValidationFailed
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from libs.jobs import catalog
from libs.jobs.payloads import SendVerificationEmailPayload, UpdateLastLoginPayload
from libs.jobs.queue import JobQueue, get_job_queue
from services.members_service.schemas import (
    UserResponse,
    VerificationRequestResponse,
    VerifyEmailRequest,
)
from services.members_service.services import account_ops
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/members", tags=["members"])


@router.get("/me", response_model=UserResponse)
async def get_my_account(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """Return the caller's account, creating it on first sign-in.

    Session bootstrap calls this once per login; the last-login stamp is
    written by a background job.
    """
    if current_user.email is None:
        raise ValidationFailed("Token carries no email address", code="email_required")
    user = await account_ops.ensure_user(
        db, auth_id=current_user.user_id, email=current_user.email
    )

    if job_queue is not None:
        try:
            await job_queue.enqueue(
                catalog.UPDATE_LAST_LOGIN,
                UpdateLastLoginPayload(
                    user_id=current_user.user_id, logged_in_at=utc_now().isoformat()
                ),
                dedup_key=current_user.user_id,
            )
        except Exception:
            logger.exception("Failed to enqueue last-login update for %s", current_user.user_id)
    return user


@router.post(
    "/me/verification",
    response_model=VerificationRequestResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_email_verification(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """Issue a new verification link; the email goes out from the worker."""
    if current_user.email is None:
        raise ValidationFailed("Token carries no email address", code="email_required")
    if job_queue is None:
        raise DependencyUnavailable(
            "Verification emails are temporarily unavailable", code="queue_unavailable"
        )
    user = await account_ops.ensure_user(
        db, auth_id=current_user.user_id, email=current_user.email
    )
    user = await account_ops.issue_verification_token(db, user)

    # The worker reads the latest token, so a still-pending job covers this request
    await job_queue.enqueue(
        catalog.SEND_VERIFICATION_EMAIL,
        SendVerificationEmailPayload(user_id=user.auth_id, email=user.email),
        dedup_key=user.auth_id,
    )
    return VerificationRequestResponse(
        email=user.email, expires_at=user.verification_token_expires_at
    )


@router.post("/verify-email", response_model=UserResponse)
async def verify_email(
    body: VerifyEmailRequest,
    db: AsyncSession = Depends(get_async_db),
):
    """Redeem a verification link. No auth: the token is the credential."""
    return await account_ops.verify_email(db, body.token)

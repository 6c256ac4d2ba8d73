"""
Account maintenance used by background jobs and the members router.

All datetime operations use timezone-aware UTC datetimes.
"""

import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import as_utc, utc_now
from libs.common.errors import NotEligible, NotFound
from libs.common.logging import get_logger
from services.members_service.models import User
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
settings = get_settings()

# Tokens are kept this long past their own expiry before being cleared
VERIFICATION_TOKEN_GRACE = timedelta(hours=24)
RESET_TOKEN_GRACE = timedelta(hours=1)


async def cleanup_expired_tokens(
    db: AsyncSession, *, now: Optional[datetime] = None
) -> dict[str, int]:
    """
    Null out stale verification and reset tokens.

    Verification tokens are only cleared for users who never verified;
    reset tokens are cleared regardless of verification state.
    Returns counts per token kind.
    """
    now = now or utc_now()

    verification = await db.execute(
        update(User)
        .where(
            User.verification_token.is_not(None),
            User.verification_token_expires_at.is_not(None),
            User.verification_token_expires_at < now - VERIFICATION_TOKEN_GRACE,
            User.is_verified.is_(False),
        )
        .values(
            verification_token=None,
            verification_sent_at=None,
            verification_token_expires_at=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    reset = await db.execute(
        update(User)
        .where(
            User.reset_token.is_not(None),
            User.reset_token_expires_at.is_not(None),
            User.reset_token_expires_at < now - RESET_TOKEN_GRACE,
        )
        .values(reset_token=None, reset_token_expires_at=None, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    counts = {
        "verification_tokens": verification.rowcount or 0,
        "reset_tokens": reset.rowcount or 0,
    }
    logger.info("Cleaned up expired tokens: %s", counts)
    return counts


async def get_by_auth_id(db: AsyncSession, auth_id: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.auth_id == auth_id))
    return result.scalar_one_or_none()


async def ensure_user(db: AsyncSession, *, auth_id: str, email: str) -> User:
    """Return the account for a token subject, creating it on first sight."""
    user = await get_by_auth_id(db, auth_id)
    if user is None:
        user = User(id=uuid.uuid4(), auth_id=auth_id, email=email)
        db.add(user)
        await db.commit()
        logger.info("Created account for %s", auth_id)
    return user


async def update_last_login(
    db: AsyncSession, auth_id: str, logged_in_at: datetime
) -> bool:
    """Record a login; an older timestamp never overwrites a newer one."""
    result = await db.execute(
        update(User)
        .where(
            User.auth_id == auth_id,
            (User.last_login_at.is_(None)) | (User.last_login_at < logged_in_at),
        )
        .values(last_login_at=logged_in_at)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return bool(result.rowcount)


# ============================================================================
# EMAIL VERIFICATION
# ============================================================================


async def issue_verification_token(
    db: AsyncSession, user: User, *, now: Optional[datetime] = None
) -> User:
    """Give an unverified user a fresh verification token.

    A token that is still valid is replaced, so only the latest email works.
    """
    if user.is_verified:
        raise NotEligible("Email address is already verified", code="already_verified")

    now = now or utc_now()
    user.verification_token = secrets.token_urlsafe(32)
    user.verification_sent_at = now
    user.verification_token_expires_at = now + timedelta(
        hours=settings.VERIFICATION_TOKEN_TTL_HOURS
    )
    await db.commit()
    return user


async def verify_email(
    db: AsyncSession, token: str, *, now: Optional[datetime] = None
) -> User:
    now = now or utc_now()
    result = await db.execute(
        select(User)
        .where(User.verification_token == token)
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFound("Verification link is invalid", code="invalid_token")
    if user.verification_token_expires_at is None or as_utc(
        user.verification_token_expires_at
    ) <= now:
        raise NotEligible("Verification link has expired", code="token_expired")

    user.is_verified = True
    user.verification_token = None
    user.verification_sent_at = None
    user.verification_token_expires_at = None
    await db.commit()
    logger.info("Verified email for %s", user.auth_id)
    return user

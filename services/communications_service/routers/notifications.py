"""Notifications router: the caller's in-app inbox."""

import uuid

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.errors import NotFound
from libs.db.session import get_async_db
from services.communications_service.schemas import NotificationResponse
from services.communications_service.services import notification_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationResponse])
async def list_my_notifications(
    unread_only: bool = False,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await notification_ops.list_for_user(
        db, current_user.user_id, unread_only=unread_only, limit=limit, offset=offset
    )


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    notification = await notification_ops.mark_read(
        db, notification_id, current_user.user_id
    )
    if notification is None:
        raise NotFound("Notification not found", code="notification_not_found")
    return notification

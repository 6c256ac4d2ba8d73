"""Pydantic schemas for communications service."""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from services.communications_service.models import NotificationPriority, NotificationType


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: NotificationType
    title: str
    message: str
    data: Optional[dict[str, Any]] = None
    priority: NotificationPriority
    channels: list[str]
    reference_type: Optional[str] = None
    reference_id: Optional[str] = None
    is_read: bool
    read_at: Optional[datetime] = None
    is_sent: bool
    sent_at: Optional[datetime] = None
    created_at: datetime

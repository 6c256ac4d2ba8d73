"""Communications Service models package."""

from services.communications_service.models.core import (
    Notification,
    NotificationDelivery,
)
from services.communications_service.models.enums import (
    DeliveryStatus,
    NotificationChannel,
    NotificationPriority,
    NotificationType,
)

__all__ = [
    "DeliveryStatus",
    "Notification",
    "NotificationChannel",
    "NotificationDelivery",
    "NotificationPriority",
    "NotificationType",
]

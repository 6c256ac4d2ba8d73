"""Enum definitions for communications service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class NotificationType(str, enum.Enum):
    ORDER_STATUS = "order_status"
    PAYMENT = "payment"
    PROMOTION_REMOVED = "promotion_removed"
    SYSTEM_ALERT = "system_alert"


class NotificationChannel(str, enum.Enum):
    IN_APP = "in_app"
    EMAIL = "email"


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"

"""Typed task payloads.

Payloads are by-value snapshots: handlers get a fresh copy decoded from the
queue and must re-read domain state from the database.
"""

from dataclasses import asdict, dataclass, fields
from typing import Any, Optional, TypeVar

T = TypeVar("T", bound="TaskPayload")


@dataclass(frozen=True)
class TaskPayload:
    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls: type[T], data: Optional[dict[str, Any]]) -> T:
        """Build a payload from queue data, ignoring keys this version does not know."""
        data = data or {}
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass(frozen=True)
class AutoReleaseReservationPayload(TaskPayload):
    order_id: str
    order_number: str = ""
    user_id: Optional[str] = None


@dataclass(frozen=True)
class ReleaseExpiredReservationsPayload(TaskPayload):
    limit: int = 0


@dataclass(frozen=True)
class SendOrderConfirmationPayload(TaskPayload):
    order_id: str
    order_number: str = ""
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    total: str = "0"
    payment_method: Optional[str] = None


@dataclass(frozen=True)
class TrackCheckoutPayload(TaskPayload):
    order_id: str
    order_number: str = ""
    user_id: Optional[str] = None
    total: str = "0"
    item_count: int = 0
    payment_method: Optional[str] = None
    promo_code: Optional[str] = None
    discount: str = "0"


@dataclass(frozen=True)
class SyncBookStockPayload(TaskPayload):
    book_id: str


@dataclass(frozen=True)
class RemoveExpiredPromotionsPayload(TaskPayload):
    batch_size: int = 0
    offset: int = 0


@dataclass(frozen=True)
class OrderStatusNotificationPayload(TaskPayload):
    order_id: str
    user_id: str
    status: str
    order_number: str = ""


@dataclass(frozen=True)
class ProcessRefundPayload(TaskPayload):
    refund_id: str


@dataclass(frozen=True)
class UpdateLastLoginPayload(TaskPayload):
    user_id: str
    logged_in_at: str


@dataclass(frozen=True)
class NotificationLimitPayload(TaskPayload):
    limit: int = 0


@dataclass(frozen=True)
class CleanupOldNotificationsPayload(TaskPayload):
    older_than_days: int = 0


@dataclass(frozen=True)
class CleanupExpiredTokensPayload(TaskPayload):
    pass


@dataclass(frozen=True)
class SendVerificationEmailPayload(TaskPayload):
    # The token itself stays in the database
    user_id: str
    email: str = ""

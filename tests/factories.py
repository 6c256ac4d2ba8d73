"""
Model factories for creating valid test data.

Every factory produces a valid, insertable SQLAlchemy model instance.
Override any field via kwargs.

Usage:
    book = BookFactory.create(price=Decimal("120000"))
    db_session.add(book)
    await db_session.commit()
"""

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

# Hanoi and Ho Chi Minh City
HANOI = (21.028511, 105.804817)
HCMC = (10.762622, 106.660172)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _unique_email() -> str:
    return f"reader-{uuid.uuid4().hex[:8]}@example.com"


def _address() -> dict:
    return {
        "recipient_name": "Nguyen Van A",
        "phone": "0901234567",
        "line1": "12 Trang Tien",
        "district": "Hoan Kiem",
        "province": "Ha Noi",
        "latitude": 21.0245,
        "longitude": 105.8412,
    }


# ---------------------------------------------------------------------------
# Store Service
# ---------------------------------------------------------------------------


class BookFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import Book

        defaults = {
            "id": _uuid(),
            "title": "The Tale of Kieu",
            "author": "Nguyen Du",
            "isbn": f"978{uuid.uuid4().int % 10**10:010d}",
            "price": Decimal("100000.00"),
            "is_active": True,
        }
        defaults.update(overrides)
        return Book(**defaults)


class WarehouseFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import Warehouse

        defaults = {
            "id": _uuid(),
            "code": f"WH-{uuid.uuid4().hex[:6].upper()}",
            "name": "Test Warehouse",
            "province": "Ha Noi",
            "latitude": Decimal("21.028511"),
            "longitude": Decimal("105.804817"),
            "is_active": True,
        }
        defaults.update(overrides)
        return Warehouse(**defaults)


class WarehouseInventoryFactory:
    @staticmethod
    def create(warehouse_id=None, book_id=None, **overrides):
        from services.store_service.models import WarehouseInventory

        defaults = {
            "warehouse_id": warehouse_id or _uuid(),
            "book_id": book_id or _uuid(),
            "quantity": 10,
            "reserved": 0,
            "alert_threshold": 2,
            "version": 1,
        }
        defaults.update(overrides)
        return WarehouseInventory(**defaults)


class PromotionFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import DiscountType, Promotion

        defaults = {
            "id": _uuid(),
            "code": f"SALE{uuid.uuid4().hex[:6].upper()}",
            "name": "Test Promotion",
            "discount_type": DiscountType.PERCENTAGE,
            "discount_value": Decimal("10"),
            "max_discount_amount": None,
            "min_order_amount": Decimal("0"),
            "max_uses": None,
            "max_uses_per_user": 1,
            "current_uses": 0,
            "starts_at": _now() - timedelta(days=1),
            "expires_at": _now() + timedelta(days=30),
            "is_active": True,
        }
        defaults.update(overrides)
        return Promotion(**defaults)


class CartFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import Cart, CartStatus

        defaults = {
            "id": _uuid(),
            "user_id": "user-1",
            "status": CartStatus.ACTIVE,
            "created_at": _now(),
        }
        defaults.update(overrides)
        return Cart(**defaults)


class CartItemFactory:
    @staticmethod
    def create(cart_id=None, book_id=None, **overrides):
        from services.store_service.models import CartItem

        defaults = {
            "cart_id": cart_id or _uuid(),
            "book_id": book_id or _uuid(),
            "quantity": 1,
            "unit_price_snapshot": Decimal("100000.00"),
        }
        defaults.update(overrides)
        return CartItem(**defaults)


class OrderFactory:
    @staticmethod
    def create(**overrides):
        from services.store_service.models import Order, OrderStatus, PaymentMethod

        defaults = {
            "id": _uuid(),
            "order_number": f"ORD-{_now():%Y%m%d}-{uuid.uuid4().int % 10**6:06d}",
            "user_id": "user-1",
            "user_email": _unique_email(),
            "status": OrderStatus.PENDING,
            "payment_method": PaymentMethod.VNPAY,
            "subtotal": Decimal("100000.00"),
            "discount": Decimal("0.00"),
            "shipping_fee": Decimal("15000.00"),
            "total": Decimal("115000.00"),
            "shipping_address": _address(),
            "version": 1,
        }
        defaults.update(overrides)
        return Order(**defaults)


class OrderItemFactory:
    @staticmethod
    def create(order_id=None, book_id=None, warehouse_id=None, **overrides):
        from services.store_service.models import OrderItem

        defaults = {
            "order_id": order_id or _uuid(),
            "book_id": book_id or _uuid(),
            "warehouse_id": warehouse_id or _uuid(),
            "title": "The Tale of Kieu",
            "quantity": 1,
            "unit_price": Decimal("100000.00"),
            "line_total": Decimal("100000.00"),
        }
        defaults.update(overrides)
        return OrderItem(**defaults)


# ---------------------------------------------------------------------------
# Payments Service
# ---------------------------------------------------------------------------


class PaymentFactory:
    @staticmethod
    def create(order_id=None, **overrides):
        from services.payments_service.models import Payment, PaymentGateway, PaymentStatus

        payment_id = overrides.pop("id", None) or _uuid()
        order_id = order_id or _uuid()
        method = overrides.get("method", PaymentGateway.VNPAY)
        attempt = overrides.get("attempt_number", 1)
        defaults = {
            "id": payment_id,
            "order_id": order_id,
            "user_id": "user-1",
            "method": method,
            "amount": Decimal("115000.00"),
            "currency": "VND",
            "status": PaymentStatus.PENDING,
            "gateway_txn_ref": payment_id.hex,
            "idempotency_key": f"{order_id}:{method.value}:{attempt}",
            "attempt_number": attempt,
            "expires_at": _now() + timedelta(minutes=15),
        }
        defaults.update(overrides)
        return Payment(**defaults)


class RefundFactory:
    @staticmethod
    def create(payment_id=None, order_id=None, **overrides):
        from services.payments_service.models import Refund, RefundStatus

        defaults = {
            "id": _uuid(),
            "payment_id": payment_id or _uuid(),
            "order_id": order_id or _uuid(),
            "amount": Decimal("115000.00"),
            "reason": "Damaged cover",
            "status": RefundStatus.REQUESTED,
            "requested_by": "user-1",
        }
        defaults.update(overrides)
        return Refund(**defaults)


# ---------------------------------------------------------------------------
# Members Service
# ---------------------------------------------------------------------------


class UserFactory:
    @staticmethod
    def create(**overrides):
        from services.members_service.models import User

        defaults = {
            "id": _uuid(),
            "auth_id": str(_uuid()),
            "email": _unique_email(),
            "full_name": "Test Reader",
            "is_active": True,
            "is_verified": False,
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return User(**defaults)


# ---------------------------------------------------------------------------
# Communications Service
# ---------------------------------------------------------------------------


class NotificationFactory:
    @staticmethod
    def create(**overrides):
        from services.communications_service.models import (
            Notification,
            NotificationChannel,
            NotificationPriority,
            NotificationType,
        )

        defaults = {
            "id": _uuid(),
            "user_id": "user-1",
            "type": NotificationType.ORDER_STATUS,
            "title": "Order update",
            "message": "Your order is on its way.",
            "priority": NotificationPriority.NORMAL,
            "channels": [NotificationChannel.IN_APP.value],
            "idempotency_key": f"test:{uuid.uuid4().hex}",
            "is_read": False,
            "is_sent": False,
            "created_at": _now(),
        }
        defaults.update(overrides)
        return Notification(**defaults)

"""Enum definitions for store service models."""

import enum


def enum_values(enum_cls):
    """Return persistent DB values for SAEnum mappings."""
    return [member.value for member in enum_cls]


class InventoryAction(str, enum.Enum):
    RESTOCK = "restock"
    RESERVE = "reserve"
    RELEASE = "release"
    SALE = "sale"
    ADJUSTMENT = "adjustment"


class CartStatus(str, enum.Enum):
    ACTIVE = "active"
    CONVERTED = "converted"
    ABANDONED = "abandoned"


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PAID = "paid"
    CANCELLED = "cancelled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    REFUNDED = "refunded"


class PaymentMethod(str, enum.Enum):
    VNPAY = "vnpay"
    MOMO = "momo"
    COD = "cod"


class DiscountType(str, enum.Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"
    FREE_SHIPPING = "free_shipping"


class AuditEntityType(str, enum.Enum):
    INVENTORY = "inventory"
    ORDER = "order"
    PROMOTION = "promotion"

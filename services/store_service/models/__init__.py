"""Store Service models package."""

from services.store_service.models.catalog import Book, Warehouse
from services.store_service.models.commerce import (
    Cart,
    CartItem,
    Order,
    OrderItem,
    OrderSequence,
    OrderStatusHistory,
    StoreAuditLog,
)
from services.store_service.models.enums import (
    AuditEntityType,
    CartStatus,
    DiscountType,
    InventoryAction,
    OrderStatus,
    PaymentMethod,
)
from services.store_service.models.inventory import (
    InventoryAuditLog,
    Reservation,
    WarehouseInventory,
)
from services.store_service.models.promotions import Promotion, PromotionUsage

__all__ = [
    "AuditEntityType",
    "Book",
    "Cart",
    "CartItem",
    "CartStatus",
    "DiscountType",
    "InventoryAction",
    "InventoryAuditLog",
    "Order",
    "OrderItem",
    "OrderSequence",
    "OrderStatus",
    "OrderStatusHistory",
    "PaymentMethod",
    "Promotion",
    "PromotionUsage",
    "Reservation",
    "StoreAuditLog",
    "Warehouse",
    "WarehouseInventory",
]

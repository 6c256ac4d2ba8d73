"""Pydantic schemas for store service."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from services.store_service.models import CartStatus, InventoryAction, OrderStatus, PaymentMethod

# ============================================================================
# CART SCHEMAS
# ============================================================================


class CartItemSet(BaseModel):
    book_id: uuid.UUID
    quantity: int = Field(..., ge=0, le=999)


class CartItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    book_id: uuid.UUID
    quantity: int
    unit_price_snapshot: Decimal
    title: Optional[str] = None


class CartResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: CartStatus
    promo_code: Optional[str] = None
    items: list[CartItemResponse] = []
    subtotal: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    shipping_fee: Decimal = Decimal("0")
    total: Decimal = Decimal("0")


class ApplyPromotionRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=50)


# ============================================================================
# CHECKOUT SCHEMAS
# ============================================================================


class ShippingAddress(BaseModel):
    recipient_name: str = Field(..., max_length=255)
    phone: str = Field(..., max_length=20)
    line1: str = Field(..., max_length=500)
    line2: Optional[str] = Field(None, max_length=500)
    ward: Optional[str] = Field(None, max_length=100)
    district: Optional[str] = Field(None, max_length=100)
    province: str = Field(..., max_length=100)
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)


class CheckoutRequest(BaseModel):
    payment_method: PaymentMethod
    shipping_address: ShippingAddress
    customer_note: Optional[str] = Field(None, max_length=1000)


class CheckoutWarning(BaseModel):
    code: str
    message: str
    details: Optional[dict[str, Any]] = None


# ============================================================================
# ORDER SCHEMAS
# ============================================================================


class OrderItemResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    book_id: uuid.UUID
    warehouse_id: uuid.UUID
    title: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class OrderStatusHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    from_status: Optional[str] = None
    to_status: str
    changed_by: Optional[str] = None
    note: Optional[str] = None
    created_at: datetime


class OrderResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    order_number: str
    user_id: str
    status: OrderStatus
    payment_method: PaymentMethod
    subtotal: Decimal
    discount: Decimal
    shipping_fee: Decimal
    total: Decimal
    promo_code: Optional[str] = None
    shipping_address: dict[str, Any]
    customer_note: Optional[str] = None
    version: int
    paid_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: datetime
    items: list[OrderItemResponse] = []


class OrderDetailResponse(OrderResponse):
    history: list[OrderStatusHistoryResponse] = []


class CheckoutResponse(BaseModel):
    order: OrderResponse
    payment_id: uuid.UUID
    redirect_url: Optional[str] = None
    warnings: list[CheckoutWarning] = []


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
    expected_version: Optional[int] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    expected_version: int
    note: Optional[str] = Field(None, max_length=500)


# ============================================================================
# INVENTORY SCHEMAS
# ============================================================================


class ReserveRequest(BaseModel):
    warehouse_id: uuid.UUID
    book_id: uuid.UUID
    quantity: int = Field(..., gt=0)
    order_id: uuid.UUID
    ttl_minutes: Optional[int] = Field(None, gt=0, le=24 * 60)


class ReleaseRequest(BaseModel):
    order_id: uuid.UUID
    reason: Optional[str] = None


class CompleteSaleRequest(BaseModel):
    order_id: uuid.UUID


class InventoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    warehouse_id: uuid.UUID
    book_id: uuid.UUID
    quantity: int
    reserved: int
    available: int
    alert_threshold: int
    version: int


class InventoryMutationResponse(BaseModel):
    order_id: uuid.UUID
    units: int


class InventoryAuditEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action: InventoryAction
    quantity_delta: int
    reserved_delta: int
    old_quantity: Optional[int] = None
    new_quantity: Optional[int] = None
    old_reserved: Optional[int] = None
    new_reserved: Optional[int] = None
    order_id: Optional[uuid.UUID] = None
    performed_by: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime


class RestockRequest(BaseModel):
    warehouse_id: uuid.UUID
    book_id: uuid.UUID
    quantity: int = Field(..., gt=0)
    reason: Optional[str] = None


class AdjustRequest(BaseModel):
    warehouse_id: uuid.UUID
    book_id: uuid.UUID
    new_quantity: int = Field(..., ge=0)
    reason: str = Field(..., min_length=1, max_length=500)


class WarehouseStockResponse(BaseModel):
    warehouse_id: uuid.UUID
    warehouse_code: str
    available: int


class AvailabilityResponse(BaseModel):
    book_id: uuid.UUID
    requested: int
    total_available: int
    can_fulfill: bool
    warehouses: list[WarehouseStockResponse] = []


class NearestWarehouseResponse(BaseModel):
    warehouse_id: uuid.UUID
    warehouse_code: str
    distance_km: float
    available: int

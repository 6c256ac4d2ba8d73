"""Store cart router: cart maintenance, promotion codes and checkout."""

from fastapi import APIRouter, Depends, Request
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.rate_limit import checkout_limit, get_client_ip
from libs.db.session import get_async_db, get_checkout_db
from libs.jobs.queue import JobQueue, get_job_queue
from services.payments_service.services import payment_ops
from services.store_service.models import Cart
from services.store_service.schemas import (
    ApplyPromotionRequest,
    CartItemResponse,
    CartItemSet,
    CartResponse,
    CheckoutRequest,
    CheckoutResponse,
    CheckoutWarning,
    OrderResponse,
)
from services.store_service.services import (
    cart_ops,
    checkout_ops,
    order_ops,
    promotion_ops,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/cart", tags=["cart"])


def cart_response(cart: Cart) -> CartResponse:
    """Cart with totals priced from its snapshots and current promotion."""
    subtotal = promotion_ops.cart_subtotal(cart)
    totals = promotion_ops.calculate_discount(
        cart.promotion, subtotal, checkout_ops.shipping_fee_for(subtotal)
    )
    return CartResponse(
        id=cart.id,
        status=cart.status,
        promo_code=cart.promo_code,
        items=[
            CartItemResponse(
                book_id=item.book_id,
                quantity=item.quantity,
                unit_price_snapshot=item.unit_price_snapshot,
                title=item.book.title if item.book else None,
            )
            for item in cart.items
        ],
        subtotal=totals.subtotal,
        discount=totals.discount,
        shipping_fee=totals.shipping_fee if cart.items else promotion_ops.ZERO,
        total=totals.total if cart.items else promotion_ops.ZERO,
    )


@router.get("", response_model=CartResponse)
async def get_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_ops.get_or_create_cart(db, current_user.user_id)
    return cart_response(cart)


@router.post("/items", response_model=CartResponse)
async def set_cart_item(
    payload: CartItemSet,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Set the quantity of a book in the cart (0 removes it)."""
    cart = await cart_ops.get_or_create_cart(db, current_user.user_id)
    cart = await cart_ops.set_item(
        db, cart, book_id=payload.book_id, quantity=payload.quantity
    )
    return cart_response(cart)


@router.post("/promotion", response_model=CartResponse)
async def apply_promotion(
    payload: ApplyPromotionRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_ops.get_or_create_cart(db, current_user.user_id)
    await promotion_ops.apply_promotion(
        db, cart, code=payload.code, user_id=current_user.user_id
    )
    return cart_response(await cart_ops.get_active_cart(db, current_user.user_id))


@router.delete("/promotion", response_model=CartResponse)
async def remove_promotion(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    cart = await cart_ops.get_or_create_cart(db, current_user.user_id)
    await promotion_ops.remove_promotion(db, cart)
    return cart_response(await cart_ops.get_active_cart(db, current_user.user_id))


@router.post("/checkout", response_model=CheckoutResponse, status_code=201)
@checkout_limit
async def checkout(
    request: Request,
    payload: CheckoutRequest,
    current_user: AuthUser = Depends(get_current_user),
    checkout_db: AsyncSession = Depends(get_checkout_db),
    db: AsyncSession = Depends(get_async_db),
    job_queue: JobQueue = Depends(get_job_queue),
):
    """Turn the cart into a pending order, reserve stock and open a payment."""
    address = payload.shipping_address
    result = await checkout_ops.checkout(
        checkout_db,
        user_id=current_user.user_id,
        user_email=current_user.email,
        shipping_address=address.model_dump(),
        latitude=address.latitude,
        longitude=address.longitude,
        payment_method=payload.payment_method,
        note=payload.customer_note,
        job_queue=job_queue,
    )

    intent = await payment_ops.create_payment(
        db,
        order_id=result.order.id,
        method=payload.payment_method,
        user_id=current_user.user_id,
        client_ip=get_client_ip(request),
        job_queue=job_queue,
    )
    # COD confirmation changes the order inside create_payment
    order = await order_ops.get_order(db, result.order.id)

    return CheckoutResponse(
        order=OrderResponse.model_validate(order),
        payment_id=intent.payment_id,
        redirect_url=intent.redirect_url,
        warnings=[CheckoutWarning(**warning) for warning in result.warnings],
    )


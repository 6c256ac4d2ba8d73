"""
Order and notification email templates.
"""

from decimal import Decimal
from html import escape

from libs.common.email import send_email
from services.communications_service.templates.base import (
    GRADIENT_AMBER,
    GRADIENT_TEAL,
    detail_box,
    info_box,
    sign_off,
    wrap_html,
)

PAYMENT_METHOD_LABELS = {
    "vnpay": "VNPay",
    "momo": "MoMo",
    "cod": "Cash on delivery",
}


def format_vnd(amount) -> str:
    return f"{Decimal(str(amount)):,.0f} ₫"


def _address_line(address: dict) -> str:
    parts = [
        address.get("line1"),
        address.get("line2"),
        address.get("ward"),
        address.get("district"),
        address.get("province"),
    ]
    return ", ".join(part for part in parts if part)


async def send_order_confirmation_email(
    to_email: str,
    *,
    customer_name: str,
    order_number: str,
    items: list[dict],  # [{"title": str, "quantity": int, "line_total": Decimal}]
    subtotal: Decimal,
    discount: Decimal,
    shipping_fee: Decimal,
    total: Decimal,
    payment_method: str,
    shipping_address: dict,
) -> str:
    """
    Send the "order received" email right after checkout.

    Returns the Message-ID of the sent email.
    """
    subject = f"Order received - #{order_number}"
    method_label = PAYMENT_METHOD_LABELS.get(payment_method, payment_method)

    items_text = "\n".join(
        f"  - {item['title']} x{item['quantity']} - {format_vnd(item['line_total'])}"
        for item in items
    )
    body_text = f"""Hi {customer_name},

Thank you for your order #{order_number}.

Items:
{items_text}

Subtotal: {format_vnd(subtotal)}
Discount: -{format_vnd(discount)}
Shipping: {format_vnd(shipping_fee)}
Total: {format_vnd(total)}

Payment method: {method_label}
Ship to: {_address_line(shipping_address)}

The Bookstore Team
"""

    items_html = "".join(
        f"<tr><td style='padding: 8px; border-bottom: 1px solid #e2e8f0;'>{escape(item['title'])}</td>"
        f"<td style='padding: 8px; border-bottom: 1px solid #e2e8f0; text-align: center;'>{item['quantity']}</td>"
        f"<td style='padding: 8px; border-bottom: 1px solid #e2e8f0; text-align: right;'>{format_vnd(item['line_total'])}</td></tr>"
        for item in items
    )
    table_html = (
        '<table style="width: 100%; border-collapse: collapse; margin: 16px 0;">'
        f"<tbody>{items_html}</tbody></table>"
    )
    totals = {
        "Subtotal": format_vnd(subtotal),
        "Discount": f"-{format_vnd(discount)}" if discount else "",
        "Shipping": format_vnd(shipping_fee),
        "Total": format_vnd(total),
        "Payment method": method_label,
    }

    if payment_method == "cod":
        payment_note = info_box("Please have the total ready when your books arrive.")
    else:
        payment_note = info_box(
            "Your books are held for you while we wait for the payment to complete.",
            bg_color="#fffbeb",
            border_color="#f59e0b",
        )

    body_html = (
        f"<p>Hi {escape(customer_name)},</p>"
        f"<p>Thank you for your order <strong>#{escape(order_number)}</strong>.</p>"
        + table_html
        + detail_box(totals)
        + detail_box({"Ship to": _address_line(shipping_address)})
        + payment_note
        + sign_off("Happy reading!")
    )
    html = wrap_html(
        title="Order received",
        subtitle=f"#{order_number}",
        body_html=body_html,
        header_gradient=GRADIENT_TEAL,
        preheader=f"We received your order #{order_number}",
    )
    return await send_email(to_email, subject, html, body_text)


async def send_notification_email(to_email: str, *, title: str, message: str) -> str:
    """Email copy of an in-app notification."""
    body_html = f"<p>{escape(message)}</p>" + sign_off()
    html = wrap_html(
        title=title, body_html=body_html, header_gradient=GRADIENT_AMBER, preheader=message
    )
    return await send_email(to_email, title, html, message)

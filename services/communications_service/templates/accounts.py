"""
Account email templates.
"""

from html import escape

from libs.common.email import send_email
from services.communications_service.templates.base import (
    GRADIENT_GREEN,
    info_box,
    sign_off,
    wrap_html,
)


async def send_verification_email(to_email: str, *, verify_link: str, expires_in: str) -> str:
    """
    Send the "confirm your email address" link.

    Returns the Message-ID of the sent email.
    """
    subject = "Verify your Bookstore account"

    body_text = f"""Hello,

Please confirm your email address by opening this link:
{verify_link}

The link is valid for {expires_in}.

If you did not create a Bookstore account, you can ignore this email.

The Bookstore Team
"""

    body_html = (
        "<p>Hello,</p>"
        "<p>Please confirm your email address to finish setting up your account.</p>"
        f'<p style="text-align: center; margin: 24px 0;"><a href="{escape(verify_link)}" '
        'style="background: #059669; color: #ffffff; padding: 12px 24px; '
        'border-radius: 6px; text-decoration: none; font-weight: 600;">Verify email</a></p>'
        + info_box(f"The link is valid for {escape(expires_in)}.")
        + "<p>If you did not create a Bookstore account, you can ignore this email.</p>"
        + sign_off()
    )
    html = wrap_html(
        title="Verify your email",
        body_html=body_html,
        header_gradient=GRADIENT_GREEN,
        preheader="Confirm your email address",
    )
    return await send_email(to_email, subject, html, body_text)

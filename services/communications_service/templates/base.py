"""
Shared branded email layout for Bookstore.

All email templates use `wrap_html()` so every outgoing email carries the same
header, typography and footer. Small helpers render the common blocks
(detail boxes, info boxes, sign-off).

Usage:
    from services.communications_service.templates.base import wrap_html, detail_box

    html = wrap_html(
        title="Order received",
        subtitle="ORD-20250101-000001",
        body_html="<p>Hi Lan, ...</p>" + detail_box({...}),
    )
"""

from html import escape

# ─── Color presets ────────────────────────────────────────────────────
GRADIENT_TEAL = "linear-gradient(135deg, #0f766e 0%, #115e59 100%)"
GRADIENT_GREEN = "linear-gradient(135deg, #10b981 0%, #059669 100%)"
GRADIENT_AMBER = "linear-gradient(135deg, #f59e0b 0%, #d97706 100%)"


def wrap_html(
    title: str,
    body_html: str,
    subtitle: str = "",
    header_gradient: str = GRADIENT_TEAL,
    preheader: str = "",
) -> str:
    """Wrap inner content in the branded email layout.

    Args:
        title: Bold heading shown in the coloured header banner.
        body_html: The main email content (already-formatted HTML).
        subtitle: Smaller text below the title in the header.
        header_gradient: CSS gradient for the header background.
        preheader: Hidden preview text shown in inbox list view.
    """
    subtitle_html = (
        f'<p style="margin: 8px 0 0 0; opacity: 0.9; font-size: 15px;">{escape(subtitle)}</p>'
        if subtitle
        else ""
    )
    preheader_html = (
        f'<span style="display:none;max-height:0;overflow:hidden;">{escape(preheader)}</span>'
        if preheader
        else ""
    )

    return f"""\
<!DOCTYPE html>
<html lang="vi">
<head>
    <meta charset="utf-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>{escape(title)}</title>
</head>
<body style="margin: 0; padding: 0; background: #f1f5f9; font-family: Arial, Helvetica, sans-serif; color: #334155;">
    {preheader_html}
    <div style="max-width: 600px; margin: 0 auto; padding: 24px 12px;">
        <div style="background: {header_gradient}; color: #ffffff; padding: 28px 32px; border-radius: 12px 12px 0 0;">
            <h1 style="margin: 0; font-size: 22px;">{escape(title)}</h1>
            {subtitle_html}
        </div>
        <div style="background: #ffffff; padding: 28px 32px; line-height: 1.6;">
            {body_html}
        </div>
        <div style="padding: 20px 32px; font-size: 12px; color: #94a3b8; text-align: center;">
            <p style="margin: 0 0 4px 0;"><strong style="color: #64748b;">Bookstore</strong></p>
            <p style="margin: 0;">You receive this email because you placed an order with us.</p>
        </div>
    </div>
</body>
</html>"""


# ─── Helper functions ─────────────────────────────────────────────────

def detail_box(items: dict[str, str], accent_color: str = "#0f766e") -> str:
    """Render a key-value detail box; empty values are skipped."""
    rows = "".join(
        f'<p style="margin: 4px 0;"><strong>{escape(label)}:</strong> {escape(str(value))}</p>'
        for label, value in items.items()
        if value
    )
    return (
        f'<div style="background: #f8fafc; border-left: 4px solid {accent_color}; '
        f'padding: 16px 20px; margin: 20px 0;">{rows}</div>'
    )


def info_box(
    content: str,
    bg_color: str = "#f0fdf4",
    border_color: str = "#22c55e",
    title: str = "",
) -> str:
    title_html = f"<strong>{escape(title)}</strong><br/>" if title else ""
    return (
        f'<div style="background: {bg_color}; border-left: 4px solid {border_color}; '
        f'padding: 16px 20px; border-radius: 0 8px 8px 0; margin: 20px 0;">'
        f"{title_html}{content}</div>"
    )


def sign_off(extra_message: str = "") -> str:
    parts = []
    if extra_message:
        parts.append(f"<p>{escape(extra_message)}</p>")
    parts.append("<p>The Bookstore Team</p>")
    return "\n".join(parts)

"""
Email sending over SMTP.

``send_email`` is the email collaborator used by background jobs. It runs the
blocking smtplib session in a worker thread and raises ``EmailDeliveryError``
so the calling job can decide whether to retry.
"""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import make_msgid
from typing import Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class EmailDeliveryError(Exception):
    def __init__(self, message: str, *, transient: bool = True):
        self.transient = transient
        super().__init__(message)


def _send_sync(msg: MIMEMultipart, sender_email: str, to_email: str) -> None:
    settings = get_settings()
    with smtplib.SMTP(
        settings.SMTP_HOST, settings.SMTP_PORT, timeout=settings.SMTP_TIMEOUT_SECONDS
    ) as server:
        server.starttls()
        server.login(settings.SMTP_USERNAME, settings.SMTP_PASSWORD)
        server.sendmail(sender_email, to_email, msg.as_string())


async def send_email(
    to_email: str,
    subject: str,
    body_html: str,
    body_text: Optional[str] = None,
) -> str:
    """
    Send an email and return its Message-ID.

    When SMTP credentials are not configured the message is only logged,
    which keeps local and test runs free of network access.
    """
    settings = get_settings()
    sender_email = settings.DEFAULT_FROM_EMAIL
    message_id = make_msgid(domain=sender_email.split("@")[-1])

    if not settings.SMTP_USERNAME or not settings.SMTP_PASSWORD:
        logger.info(f"SMTP not configured, would have sent to {to_email}: {subject}")
        return message_id

    msg = MIMEMultipart("alternative")
    msg.attach(MIMEText(body_text or subject, "plain"))
    msg.attach(MIMEText(body_html, "html"))
    msg["Subject"] = subject
    msg["From"] = f"{settings.DEFAULT_FROM_NAME} <{sender_email}>"
    msg["To"] = to_email
    msg["Message-ID"] = message_id

    logger.info(f"Sending email to {to_email}: {subject}")
    try:
        await asyncio.to_thread(_send_sync, msg, sender_email, to_email)
    except smtplib.SMTPAuthenticationError as e:
        logger.error(f"SMTP authentication failed: {e}")
        raise EmailDeliveryError(str(e), transient=False) from e
    except smtplib.SMTPRecipientsRefused as e:
        raise EmailDeliveryError(f"Recipient refused: {to_email}", transient=False) from e
    except (smtplib.SMTPException, OSError) as e:
        logger.warning(f"Transient SMTP error sending to {to_email}: {e}")
        raise EmailDeliveryError(str(e)) from e

    logger.info(f"Email sent successfully to {to_email}")
    return message_id

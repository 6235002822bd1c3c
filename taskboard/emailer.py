import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import make_msgid
from typing import Optional

from taskboard.config import Settings, get_settings

logger = logging.getLogger(__name__)


class EmailNotConfigured(Exception):
    """SMTP credentials are missing; callers fall back to logging."""


def send_email(
    to_email: str,
    subject: str,
    html: str,
    text: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> str:
    """Send one message over SMTP with STARTTLS and return its Message-ID."""

    settings = settings or get_settings()
    if not settings.smtp_configured:
        raise EmailNotConfigured("SMTP_HOST, SMTP_USER and SMTP_PASSWORD must be set")

    msg = EmailMessage()
    msg["From"] = settings.smtp_from or settings.smtp_user
    msg["To"] = to_email
    msg["Subject"] = subject
    msg["Message-ID"] = make_msgid(domain=(settings.smtp_user or "localhost").split("@")[-1])
    msg.set_content(text or "Open in an HTML-capable client.")
    if html:
        msg.add_alternative(html, subtype="html")

    context = ssl.create_default_context()
    with smtplib.SMTP(settings.smtp_host, settings.smtp_port, timeout=30) as s:
        s.starttls(context=context)
        s.login(settings.smtp_user, settings.smtp_password)
        s.send_message(msg)

    logger.info("Email '%s' sent to %s", subject, to_email)
    return msg["Message-ID"]

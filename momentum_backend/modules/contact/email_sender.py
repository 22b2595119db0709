"""
SMTP email sender for contact-form mail
Uses SMTP for universal email delivery (Gmail/Outlook/any host)
"""
import os
import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr
from typing import Optional

logger = logging.getLogger(__name__)


def get_smtp_settings() -> dict:
    user = os.getenv("SMTP_USER", "")
    return {
        "host": os.getenv("SMTP_HOST", ""),
        "port": int(os.getenv("SMTP_PORT", "587")),
        "user": user,
        "password": os.getenv("SMTP_PASS", ""),
        "use_ssl": os.getenv("SMTP_SECURE", "false").lower() in ("1", "true", "yes"),
        "from_email": os.getenv("SMTP_FROM_EMAIL") or user,
        "from_name": os.getenv("SMTP_FROM_NAME", "Momentum AI Contact Form"),
    }


def is_smtp_configured() -> bool:
    settings = get_smtp_settings()
    return bool(settings["host"] and settings["user"] and settings["password"])


def send_email(to_email: str, subject: str, text_content: str, html_content: Optional[str] = None,
               reply_to: Optional[str] = None) -> bool:
    """Send one message; returns False when SMTP is not configured. Delivery errors propagate."""
    settings = get_smtp_settings()
    if not is_smtp_configured():
        logger.warning(f"SMTP not configured, email not sent (subject: {subject})")
        return False

    msg = EmailMessage()
    msg["From"] = formataddr((settings["from_name"], settings["from_email"]))
    msg["To"] = to_email
    msg["Subject"] = subject
    if reply_to:
        msg["Reply-To"] = reply_to

    # Set content (text first, then HTML alternative)
    msg.set_content(text_content)
    if html_content:
        msg.add_alternative(html_content, subtype="html")

    if settings["use_ssl"]:
        context = ssl.create_default_context()
        with smtplib.SMTP_SSL(settings["host"], settings["port"], context=context, timeout=15) as server:
            server.login(settings["user"], settings["password"])
            server.send_message(msg)
    else:
        with smtplib.SMTP(settings["host"], settings["port"], timeout=15) as server:
            server.starttls(context=ssl.create_default_context())
            server.login(settings["user"], settings["password"])
            server.send_message(msg)

    logger.info(f"✅ Email sent successfully to: {to_email}")
    return True

import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formatdate, make_msgid
from urllib.parse import urlencode

from core.config import (
    FRONTEND_RESET_URL,
    MAIL_FROM,
    MAIL_PASSWORD,
    MAIL_PORT,
    MAIL_SERVER,
    MAIL_USE_SSL,
    MAIL_USE_TLS,
    MAIL_USERNAME,
)

logger = logging.getLogger(__name__)


class EmailDeliveryError(RuntimeError):
    pass


def _dispatch_email(recipient: str, subject: str, text_body: str) -> None:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = MAIL_FROM
    msg["To"] = recipient
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg.set_content(text_body)

    try:
        if MAIL_USE_SSL:
            with smtplib.SMTP_SSL(MAIL_SERVER, MAIL_PORT, context=ssl.create_default_context(), timeout=10) as server:
                if MAIL_USERNAME and MAIL_PASSWORD:
                    server.login(MAIL_USERNAME, MAIL_PASSWORD)
                server.send_message(msg)
        else:
            with smtplib.SMTP(MAIL_SERVER, MAIL_PORT, timeout=10) as server:
                server.ehlo()
                if MAIL_USE_TLS:
                    server.starttls(context=ssl.create_default_context())
                if MAIL_USERNAME and MAIL_PASSWORD:
                    server.login(MAIL_USERNAME, MAIL_PASSWORD)
                server.send_message(msg)
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailDeliveryError(str(exc)) from exc


def send_password_reset_email(recipient: str, reset_token: str, user_name: str | None = None) -> bool:
    reset_link = f"{FRONTEND_RESET_URL}?{urlencode({'token': reset_token})}"

    if not MAIL_SERVER:
        logger.warning("Mail server not configured; reset link for %s: %s", recipient, reset_link)
        return False

    body = (
        f"Hello {user_name or 'there'},\n\n"
        "We received a request to reset your password. Use the link below within the next hour:\n\n"
        f"{reset_link}\n\n"
        "If you did not request this, you can ignore this email."
    )
    _dispatch_email(recipient, "Reset your password", body)
    logger.info("Password reset email sent to %s", recipient)
    return True

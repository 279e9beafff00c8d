"""
Outbound notification collaborator.

The auth services only know ``send(kind, address, params) -> bool``. They pass
fully resolved parameters (token, display name, expiry, link) and treat the
result as pass/fail. Template rendering beyond a plain-text body belongs to
the delivery side.
"""
import os
import logging
import smtplib
from email.message import EmailMessage
from enum import Enum
from typing import Any, Dict, Optional, Protocol

from .errors import NotifierError
from ..utils.secrets import get_smtp_password, mask_secret

logger = logging.getLogger(__name__)


class NotificationKind(str, Enum):
    VERIFICATION = "verification"
    RESET = "reset"
    CONFIRMATION = "confirmation"


class Notifier(Protocol):
    """Anything that can deliver a message of a given kind to an address."""

    def send(self, kind: NotificationKind, address: str, params: Dict[str, Any]) -> bool:
        ...


SUBJECTS = {
    NotificationKind.VERIFICATION: "Verify your email address",
    NotificationKind.RESET: "Reset your password",
    NotificationKind.CONFIRMATION: "Your password was changed",
}


def render_body(kind: NotificationKind, params: Dict[str, Any]) -> str:
    """Plain-text body for a notification."""
    name = params.get("display_name") or "there"
    if kind == NotificationKind.VERIFICATION:
        return (
            f"Hello {name},\n\n"
            f"Confirm your email address by opening this link:\n{params.get('link')}\n\n"
            f"The link expires at {params.get('expires_at')}."
        )
    if kind == NotificationKind.RESET:
        return (
            f"Hello {name},\n\n"
            f"Reset your password by opening this link:\n{params.get('link')}\n\n"
            f"The link expires at {params.get('expires_at')}. "
            "If you did not request this, ignore this message."
        )
    return (
        f"Hello {name},\n\n"
        "Your password was changed. If this was not you, contact support immediately."
    )


class SmtpNotifier:
    """Sends notifications synchronously via SMTP (STARTTLS)."""

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        sender: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.host = host or os.getenv("SMTP_HOST", "localhost")
        self.port = port or int(os.getenv("SMTP_PORT", "587"))
        self.username = username if username is not None else os.getenv("SMTP_USERNAME")
        self.password = password if password is not None else get_smtp_password()
        self.sender = sender or os.getenv("SMTP_SENDER") or self.username or "no-reply@localhost"
        self.timeout = timeout or float(os.getenv("SMTP_TIMEOUT", "10"))

    def send(self, kind: NotificationKind, address: str, params: Dict[str, Any]) -> bool:
        msg = EmailMessage()
        msg["Subject"] = SUBJECTS[kind]
        msg["From"] = self.sender
        msg["To"] = address
        msg.set_content(render_body(kind, params))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
                smtp.starttls()
                if self.username:
                    smtp.login(self.username, self.password or "")
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(f"SMTP delivery of {kind.value} message failed: {e}")
            return False

        logger.info(f"Sent {kind.value} message")
        return True


class LoggingNotifier:
    """Development notifier: logs the message instead of delivering it."""

    def send(self, kind: NotificationKind, address: str, params: Dict[str, Any]) -> bool:
        logger.info(
            f"[notifier] {kind.value} message for {address} "
            f"(token {mask_secret(params.get('token'))}, expires {params.get('expires_at')})"
        )
        return True


def dispatch(notifier: Notifier, kind: NotificationKind, address: str, params: Dict[str, Any]) -> None:
    """
    Send through ``notifier`` and normalize failure.

    Raises:
        NotifierError: If the notifier reports failure or raises.
    """
    try:
        delivered = notifier.send(kind, address, params)
    except Exception as e:
        logger.error(f"Notifier raised while sending {kind.value} message: {e}", exc_info=True)
        raise NotifierError(detail=str(e)) from e

    if not delivered:
        raise NotifierError(detail=f"{kind.value} message was not delivered")


def build_link(path: str, token: str) -> str:
    """Absolute link for a token-bearing path."""
    base_url = os.getenv("APP_BASE_URL", "http://localhost:8000").rstrip("/")
    return f"{base_url}{path}/{token}"


# Singleton notifier
_notifier: Optional[Notifier] = None


def get_notifier() -> Notifier:
    """Get singleton notifier (backend chosen by NOTIFIER_BACKEND: smtp or log)."""
    global _notifier
    if _notifier is None:
        backend = os.getenv("NOTIFIER_BACKEND", "log").lower()
        _notifier = SmtpNotifier() if backend == "smtp" else LoggingNotifier()
        logger.info(f"Notifier backend: {backend}")
    return _notifier

from __future__ import annotations

import logging
from typing import Protocol

from admin_gate.core.config import settings
from admin_gate.services.email_service import EmailDeliveryError, send_admin_otp_email
from admin_gate.services.telegram_notify import TelegramDeliveryError, send_admin_otp_telegram

logger = logging.getLogger("admin_gate.notifications")

CHANNEL_EMAIL = "email"
CHANNEL_TELEGRAM = "telegram"
SUPPORTED_CHANNELS = {CHANNEL_EMAIL, CHANNEL_TELEGRAM}


class NotificationDispatcher(Protocol):
    def deliver(self, code: str) -> bool:
        ...


class EmailDispatcher:
    def __init__(self, recipient: str):
        self.recipient = recipient

    def deliver(self, code: str) -> bool:
        try:
            send_admin_otp_email(email=self.recipient, code=code)
        except EmailDeliveryError as exc:
            logger.warning("Admin OTP email delivery failed: %s", exc)
            return False
        except Exception:
            logger.exception("Admin OTP email delivery crashed")
            return False
        return True


class TelegramDispatcher:
    def deliver(self, code: str) -> bool:
        try:
            send_admin_otp_telegram(code)
        except TelegramDeliveryError as exc:
            logger.warning("Admin OTP telegram delivery failed: %s", exc)
            return False
        except Exception:
            logger.exception("Admin OTP telegram delivery crashed")
            return False
        return True


class DevModeDispatcher:
    """Local development escape hatch.

    Wraps a real dispatcher; when delivery fails the code is written to the log
    and the issuance proceeds. Only built by ``build_dispatcher`` outside
    production, see ``Settings._dev_mode_not_in_production``.
    """

    def __init__(self, inner: NotificationDispatcher):
        self.inner = inner

    def deliver(self, code: str) -> bool:
        if self.inner.deliver(code):
            return True
        logger.warning("[ADMIN OTP DEV MODE] delivery failed, code=%s", code)
        return True


def _channel() -> str:
    raw = str(settings.ADMIN_OTP_CHANNEL or "").strip().lower()
    if raw in SUPPORTED_CHANNELS:
        return raw
    return CHANNEL_EMAIL


def build_dispatcher() -> NotificationDispatcher:
    if _channel() == CHANNEL_TELEGRAM:
        dispatcher: NotificationDispatcher = TelegramDispatcher()
    else:
        dispatcher = EmailDispatcher(settings.admin_otp_recipient)
    if settings.ADMIN_OTP_DEV_MODE and not settings.is_production:
        return DevModeDispatcher(dispatcher)
    return dispatcher

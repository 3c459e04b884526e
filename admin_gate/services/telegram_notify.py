from __future__ import annotations

import logging
from typing import Any

import httpx

from admin_gate.core.config import settings

logger = logging.getLogger("admin_gate.telegram")


class TelegramDeliveryError(Exception):
    pass


def _telegram_configured() -> bool:
    token = str(settings.TELEGRAM_BOT_TOKEN or "").strip()
    chat_id = str(settings.TELEGRAM_CHAT_ID or "").strip()
    if not token or token == "change_me":
        return False
    if not chat_id or chat_id == "0":
        return False
    return True


def _build_message(code: str) -> str:
    template = str(settings.OTP_TELEGRAM_TEMPLATE or "").strip() or "Admin panel verification code: {code}"
    try:
        return template.format(code=code)
    except (KeyError, IndexError, ValueError):
        return f"Admin panel verification code: {code}"


def send_admin_otp_telegram(code: str) -> dict[str, Any]:
    if not _telegram_configured():
        raise TelegramDeliveryError("TELEGRAM_BOT_TOKEN/TELEGRAM_CHAT_ID are not configured")

    token = str(settings.TELEGRAM_BOT_TOKEN).strip()
    chat_id = str(settings.TELEGRAM_CHAT_ID).strip()
    url = f"https://api.telegram.org/bot{token}/sendMessage"

    try:
        with httpx.Client(timeout=float(max(settings.ADMIN_OTP_DELIVERY_TIMEOUT_SECONDS, 1.0))) as client:
            response = client.post(
                url,
                json={
                    "chat_id": chat_id,
                    "text": _build_message(code),
                    "disable_web_page_preview": True,
                },
            )
    except httpx.HTTPError as exc:
        raise TelegramDeliveryError(f"Telegram request failed: {exc}") from exc

    try:
        data = response.json() if response.content else {}
    except ValueError:
        data = {}
    if not isinstance(data, dict):
        data = {}
    if response.status_code >= 400 or not bool(data.get("ok")):
        logger.warning("[TELEGRAM ERROR] status=%s description=%s", response.status_code, data.get("description"))
        raise TelegramDeliveryError(f"Telegram API error: HTTP {response.status_code}")
    return {"provider": "telegram", "status": "accepted", "sent": True}

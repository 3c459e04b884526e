from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Callable
import httpx

from admin_gate.core.config import settings


class EmailDeliveryError(Exception):
    pass


logger = logging.getLogger("admin_gate.email")

_MOCK_PROVIDERS = {"", "dummy", "mock", "console"}
_DEFAULT_SUBJECT = "Admin verification code: {code}"
_DEFAULT_BODY = "Your admin panel verification code is {code}."


def _normalize_email(value: str | None) -> str:
    return str(value or "").strip().lower()


def _timeout() -> float:
    return float(max(settings.ADMIN_OTP_DELIVERY_TIMEOUT_SECONDS, 1.0))


def _render(template: str | None, fallback: str, code: str) -> str:
    ttl_minutes = max(int(settings.ADMIN_VERIFY_STEP_TTL_SECONDS) // 60, 1)
    try:
        return (str(template or "").strip() or fallback).format(code=code, ttl_minutes=ttl_minutes)
    except (KeyError, IndexError, ValueError):
        return fallback.format(code=code)


def _compose(*, email: str, code: str) -> EmailMessage:
    msg = EmailMessage()
    msg["From"] = str(settings.SMTP_FROM or "").strip()
    msg["To"] = email
    msg["Subject"] = _render(settings.OTP_EMAIL_SUBJECT_TEMPLATE, _DEFAULT_SUBJECT, code)
    msg.set_content(_render(settings.OTP_EMAIL_TEMPLATE, _DEFAULT_BODY, code))
    return msg


def _mock_send(*, email: str, code: str) -> dict[str, Any]:
    if not settings.ADMIN_OTP_DEV_MODE or settings.is_production:
        raise EmailDeliveryError("Mock email provider requires ADMIN_OTP_DEV_MODE outside production")
    logger.warning("[OTP EMAIL MOCK] email=%s code=%s", email, code)
    return {"provider": "mock_email", "status": "accepted", "sent": False, "mocked": True}


def _open_smtp() -> smtplib.SMTP:
    host = str(settings.SMTP_HOST or "").strip()
    port = int(settings.SMTP_PORT or 0)
    if not host or not port or not str(settings.SMTP_FROM or "").strip():
        raise EmailDeliveryError("SMTP_HOST/SMTP_PORT/SMTP_FROM are not configured")
    if settings.SMTP_USE_TLS and settings.SMTP_USE_SSL:
        raise EmailDeliveryError("SMTP_USE_TLS and SMTP_USE_SSL cannot both be enabled")
    smtp_class = smtplib.SMTP_SSL if settings.SMTP_USE_SSL else smtplib.SMTP
    return smtp_class(host=host, port=port, timeout=_timeout())


def _send_smtp(*, email: str, code: str) -> dict[str, Any]:
    username = str(settings.SMTP_USER or "").strip()
    try:
        with _open_smtp() as client:
            if settings.SMTP_USE_TLS:
                client.starttls()
            if username:
                client.login(username, str(settings.SMTP_PASSWORD or ""))
            client.send_message(_compose(email=email, code=code))
    except (smtplib.SMTPException, OSError) as exc:
        raise EmailDeliveryError(f"SMTP delivery failed: {exc}") from exc
    return {"provider": "smtp", "status": "accepted", "sent": True}


def _error_detail(response: httpx.Response) -> str:
    try:
        payload = response.json() if response.content else {}
    except ValueError:
        payload = {}
    if isinstance(payload, dict):
        detail = payload.get("detail") or payload.get("error")
        if detail:
            return str(detail)
    return f"HTTP {response.status_code}"


def _send_via_email_service(*, email: str, code: str) -> dict[str, Any]:
    base_url = str(settings.EMAIL_SERVICE_URL or "").strip().rstrip("/")
    token = str(settings.INTERNAL_SERVICE_TOKEN or "").strip()
    if not base_url or not token:
        raise EmailDeliveryError("EMAIL_SERVICE_URL/INTERNAL_SERVICE_TOKEN are not configured")
    msg = _compose(email=email, code=code)
    try:
        with httpx.Client(timeout=_timeout()) as client:
            response = client.post(
                f"{base_url}/internal/send-otp",
                headers={"X-Internal-Token": token},
                json={"email": email, "subject": msg["Subject"], "body": msg.get_content()},
            )
    except httpx.HTTPError as exc:
        raise EmailDeliveryError(f"email-service request failed: {exc}") from exc
    if response.status_code >= 400:
        raise EmailDeliveryError(f"email-service error: {_error_detail(response)}")
    return {"provider": "email-service", "status": "accepted", "sent": True}


_PROVIDERS: dict[str, Callable[..., dict[str, Any]]] = {
    "smtp": _send_smtp,
    "service": _send_via_email_service,
    "email_service": _send_via_email_service,
}


def send_admin_otp_email(*, email: str, code: str) -> dict[str, Any]:
    normalized_email = _normalize_email(email)
    if not normalized_email:
        raise EmailDeliveryError("Recipient email is not configured")

    provider = str(settings.EMAIL_PROVIDER or "dummy").strip().lower()
    if provider in _MOCK_PROVIDERS:
        return _mock_send(email=normalized_email, code=code)
    sender = _PROVIDERS.get(provider)
    if sender is None:
        raise EmailDeliveryError(f"Unknown EMAIL_PROVIDER: {provider}")
    return sender(email=normalized_email, code=code)

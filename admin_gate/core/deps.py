from fastapi import Cookie, HTTPException
from jose import JWTError

from admin_gate.core.config import settings
from admin_gate.core.security import ADMIN_SESSION_SCOPE, decode_jwt
from admin_gate.services.admin_verification import AdminVerificationService, build_verification_service

_verification_service: AdminVerificationService | None = None

def get_verification_service() -> AdminVerificationService:
    global _verification_service
    if _verification_service is None:
        _verification_service = build_verification_service()
    return _verification_service

def reset_verification_service_for_tests() -> None:
    global _verification_service
    _verification_service = None

def get_verify_session_key(
    admin_verify: str | None = Cookie(default=None, alias=settings.ADMIN_VERIFY_COOKIE_NAME),
) -> str | None:
    value = str(admin_verify or "").strip()
    return value or None

def get_admin_session(
    admin_session: str | None = Cookie(default=None, alias=settings.ADMIN_SESSION_COOKIE_NAME),
) -> dict:
    if not admin_session:
        raise HTTPException(status_code=401, detail="Admin session is missing")
    try:
        claims = decode_jwt(admin_session, settings.ADMIN_JWT_SECRET)
    except JWTError:
        raise HTTPException(status_code=401, detail="Admin session is invalid or expired")
    if claims.get("scope") != ADMIN_SESSION_SCOPE or claims.get("role") != "ADMIN":
        raise HTTPException(status_code=401, detail="Admin session is invalid or expired")
    return claims

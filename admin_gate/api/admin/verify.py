from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response

from admin_gate.core.config import settings
from admin_gate.core.deps import get_verification_service, get_verify_session_key
from admin_gate.core.security import admin_session_ttl
from admin_gate.schemas.admin import (
    AdminCodeIn,
    AdminCredentialsIn,
    AdminVerifyStatusOut,
    AdminVerifyStepOut,
)
from admin_gate.services.admin_verification import (
    AdminVerificationService,
    VerificationError,
    VerificationResult,
    new_session_key,
)

router = APIRouter()

_FAILURES: dict[VerificationError, tuple[int, str]] = {
    VerificationError.INVALID_CREDENTIALS: (401, "Invalid email or password"),
    VerificationError.INVALID_CODE: (400, "The verification code is incorrect"),
    VerificationError.SESSION_EXPIRED: (401, "Verification session expired, sign in again"),
    VerificationError.DELIVERY_FAILED: (502, "Could not deliver the one-time code, try again"),
    VerificationError.RESEND_THROTTLED: (429, "A new code was sent recently, wait before requesting another"),
    VerificationError.SESSION_BUSY: (503, "Another request for this session is in progress, try again"),
}


def _raise_for_failure(result: VerificationResult) -> None:
    if result.ok or result.error is None:
        return
    status_code, message = _FAILURES[result.error]
    detail: dict = {"error": result.error.value, "message": message}
    headers = None
    if result.error == VerificationError.RESEND_THROTTLED:
        detail["retry_after_seconds"] = result.retry_after_seconds
        headers = {"Retry-After": str(max(result.retry_after_seconds, 1))}
    elif result.error == VerificationError.SESSION_BUSY:
        headers = {"Retry-After": "1"}
    raise HTTPException(status_code=status_code, detail=detail, headers=headers)


def _set_verify_cookie(response: Response, session_key: str) -> None:
    response.set_cookie(
        key=settings.ADMIN_VERIFY_COOKIE_NAME,
        value=session_key,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
        max_age=int(settings.ADMIN_VERIFY_STEP_TTL_SECONDS),
        path="/",
    )


def _set_admin_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.ADMIN_SESSION_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="strict",
        max_age=int(admin_session_ttl().total_seconds()),
        path="/",
    )


def _code_sent(service: AdminVerificationService) -> AdminVerifyStepOut:
    return AdminVerifyStepOut(
        status="code_sent",
        next_step="otp",
        expires_in_seconds=service.step_ttl_seconds,
        resend_after_seconds=service.resend_cooldown_seconds,
    )


@router.post("/credentials", response_model=AdminVerifyStepOut)
def submit_credentials(
    payload: AdminCredentialsIn,
    response: Response,
    current_key: str | None = Depends(get_verify_session_key),
    service: AdminVerificationService = Depends(get_verification_service),
):
    session_key = new_session_key()
    result = service.submit_credentials(session_key, payload.email, payload.password)
    _raise_for_failure(result)
    if current_key and current_key != session_key:
        service.discard(current_key)
    _set_verify_cookie(response, session_key)
    return AdminVerifyStepOut(
        status="credentials_verified",
        next_step="security_code",
        expires_in_seconds=service.step_ttl_seconds,
    )


@router.post("/security-code", response_model=AdminVerifyStepOut)
def submit_security_code(
    payload: AdminCodeIn,
    response: Response,
    session_key: str | None = Depends(get_verify_session_key),
    service: AdminVerificationService = Depends(get_verification_service),
):
    result = service.submit_security_code(session_key, payload.code)
    _raise_for_failure(result)
    _set_verify_cookie(response, str(session_key))
    return _code_sent(service)


@router.post("/otp", response_model=AdminVerifyStepOut)
def submit_one_time_code(
    payload: AdminCodeIn,
    response: Response,
    session_key: str | None = Depends(get_verify_session_key),
    service: AdminVerificationService = Depends(get_verification_service),
):
    result = service.submit_one_time_code(session_key, payload.code)
    _raise_for_failure(result)
    _set_admin_session_cookie(response, str(result.session_token))
    response.delete_cookie(settings.ADMIN_VERIFY_COOKIE_NAME, path="/")
    return AdminVerifyStepOut(status="authenticated")


@router.post("/otp/resend", response_model=AdminVerifyStepOut)
def resend_one_time_code(
    response: Response,
    session_key: str | None = Depends(get_verify_session_key),
    service: AdminVerificationService = Depends(get_verification_service),
):
    result = service.resend_one_time_code(session_key)
    _raise_for_failure(result)
    _set_verify_cookie(response, str(session_key))
    return _code_sent(service)


@router.get("/status", response_model=AdminVerifyStatusOut)
def verification_status(
    session_key: str | None = Depends(get_verify_session_key),
    service: AdminVerificationService = Depends(get_verification_service),
):
    current = service.status(session_key)
    return AdminVerifyStatusOut(phase=current.phase.value, expires_in_seconds=current.expires_in_seconds)

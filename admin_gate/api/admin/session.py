from fastapi import APIRouter, Depends, Response

from admin_gate.core.config import settings
from admin_gate.core.deps import get_admin_session, get_verification_service, get_verify_session_key
from admin_gate.schemas.admin import AdminSessionOut
from admin_gate.services.admin_verification import AdminVerificationService

router = APIRouter()


@router.get("", response_model=AdminSessionOut)
def current_session(admin: dict = Depends(get_admin_session)):
    return AdminSessionOut(
        email=str(admin.get("sub") or ""),
        role=str(admin.get("role") or ""),
        expires_at=int(admin.get("exp") or 0),
    )


@router.post("/logout")
def logout(
    response: Response,
    session_key: str | None = Depends(get_verify_session_key),
    service: AdminVerificationService = Depends(get_verification_service),
):
    service.discard(session_key)
    response.delete_cookie(settings.ADMIN_SESSION_COOKIE_NAME, path="/")
    response.delete_cookie(settings.ADMIN_VERIFY_COOKIE_NAME, path="/")
    return {"status": "logged_out"}

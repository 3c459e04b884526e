from datetime import datetime, timedelta, timezone
from jose import jwt

from admin_gate.core.config import settings

ADMIN_SESSION_SCOPE = "admin_panel"

def create_jwt(payload: dict, secret: str, expires_delta: timedelta) -> str:
    now = datetime.now(timezone.utc)
    data = payload.copy()
    data.update({"iat": int(now.timestamp()), "exp": int((now + expires_delta).timestamp())})
    return jwt.encode(data, secret, algorithm="HS256")

def decode_jwt(token: str, secret: str) -> dict:
    return jwt.decode(token, secret, algorithms=["HS256"])

def admin_session_ttl() -> timedelta:
    return timedelta(hours=max(int(settings.ADMIN_SESSION_TTL_HOURS), 1))

def grant_admin_session() -> str:
    """Issue the long-lived admin panel token after the last verification step."""
    return create_jwt(
        {"sub": settings.ADMIN_EMAIL.strip().lower(), "role": "ADMIN", "scope": ADMIN_SESSION_SCOPE},
        settings.ADMIN_JWT_SECRET,
        admin_session_ttl(),
    )

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from admin_gate.core.config import settings


class SecretStore(Protocol):
    def admin_identity(self) -> str:
        ...

    def admin_secret(self) -> str:
        ...

    def security_code(self) -> str:
        ...

    def otp_salt(self) -> str:
        ...


@dataclass(frozen=True)
class StaticSecretStore:
    identity: str
    secret: str
    code: str
    salt: str

    def admin_identity(self) -> str:
        return self.identity

    def admin_secret(self) -> str:
        return self.secret

    def security_code(self) -> str:
        return self.code

    def otp_salt(self) -> str:
        return self.salt


class SettingsSecretStore:
    """Reads the operator secrets from deployment settings on every access."""

    def admin_identity(self) -> str:
        return str(settings.ADMIN_EMAIL or "")

    def admin_secret(self) -> str:
        return str(settings.ADMIN_PASSWORD or "")

    def security_code(self) -> str:
        return str(settings.ADMIN_SECURITY_CODE or "")

    def otp_salt(self) -> str:
        return str(settings.ADMIN_OTP_SALT or "")

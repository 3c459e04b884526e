from __future__ import annotations

import hashlib
import hmac
import secrets


_OTP_DIGITS = 6


def generate_otp_code() -> str:
    return f"{secrets.randbelow(10**_OTP_DIGITS):0{_OTP_DIGITS}d}"


def _normalize_code(code: str | None) -> str:
    return str(code or "").strip()


def otp_digest(code: str, salt: str) -> str:
    raw = f"{_normalize_code(code)}{salt or ''}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def verify_otp_digest(code: str | None, salt: str, expected_digest: str | None) -> bool:
    expected = str(expected_digest or "")
    if not expected:
        return False
    candidate = otp_digest(_normalize_code(code), salt)
    return hmac.compare_digest(candidate.encode("ascii"), expected.encode("ascii"))


def constant_time_equals(left: str | None, right: str | None) -> bool:
    return hmac.compare_digest(str(left or "").encode("utf-8"), str(right or "").encode("utf-8"))

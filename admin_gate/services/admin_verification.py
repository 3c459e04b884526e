"""Three-factor verification flow gating the admin panel.

Steps: credentials -> security code -> one-time code delivered out of band.
Progress is kept in a server-side ``SessionState`` keyed by an opaque session
key; every operation re-reads and re-validates it under a per-key lock.
"""
from __future__ import annotations

import functools
import hashlib
import logging
import math
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable

from admin_gate.core.config import settings
from admin_gate.core.security import grant_admin_session
from admin_gate.services.notifications import NotificationDispatcher, build_dispatcher
from admin_gate.services.otp_service import (
    constant_time_equals,
    generate_otp_code,
    otp_digest,
    verify_otp_digest,
)
from admin_gate.services.secret_store import SecretStore, SettingsSecretStore
from admin_gate.services.session_store import (
    SessionLockTimeout,
    SessionState,
    SessionStateStore,
    VerificationPhase,
    get_session_store,
)

_LOG = logging.getLogger("admin_gate.verification")

DEFAULT_STEP_TTL_SECONDS = 300
DEFAULT_RESEND_COOLDOWN_SECONDS = 60


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_identity(raw: str | None) -> str:
    return str(raw or "").strip().lower()


def _key_ref(session_key: str) -> str:
    return hashlib.sha256(session_key.encode("utf-8")).hexdigest()[:12]


def new_session_key() -> str:
    return secrets.token_urlsafe(32)


class VerificationError(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    INVALID_CODE = "invalid_code"
    SESSION_EXPIRED = "session_expired"
    DELIVERY_FAILED = "delivery_failed"
    RESEND_THROTTLED = "resend_throttled"
    SESSION_BUSY = "session_busy"


@dataclass(frozen=True)
class VerificationResult:
    ok: bool
    phase: VerificationPhase
    error: VerificationError | None = None
    retry_after_seconds: int = 0
    session_token: str | None = None

    @classmethod
    def success(cls, phase: VerificationPhase, *, session_token: str | None = None) -> "VerificationResult":
        return cls(ok=True, phase=phase, session_token=session_token)

    @classmethod
    def failure(
        cls,
        error: VerificationError,
        phase: VerificationPhase,
        *,
        retry_after_seconds: int = 0,
    ) -> "VerificationResult":
        return cls(ok=False, phase=phase, error=error, retry_after_seconds=retry_after_seconds)


@dataclass(frozen=True)
class VerificationStatus:
    phase: VerificationPhase
    expires_in_seconds: int


def _busy_when_locked(method: Callable[..., VerificationResult]) -> Callable[..., VerificationResult]:
    @functools.wraps(method)
    def wrapper(self: "AdminVerificationService", session_key: str | None, *args, **kwargs) -> VerificationResult:
        try:
            return method(self, session_key, *args, **kwargs)
        except SessionLockTimeout:
            _LOG.warning("admin verification session busy key=%s", _key_ref(session_key or ""))
            return VerificationResult.failure(VerificationError.SESSION_BUSY, self._current_phase(session_key))

    return wrapper


class AdminVerificationService:
    def __init__(
        self,
        *,
        secret_store: SecretStore,
        store: SessionStateStore,
        dispatcher: NotificationDispatcher,
        grant_session: Callable[[], str],
        step_ttl_seconds: int = DEFAULT_STEP_TTL_SECONDS,
        resend_cooldown_seconds: int = DEFAULT_RESEND_COOLDOWN_SECONDS,
        clock: Callable[[], datetime] = _now_utc,
        code_generator: Callable[[], str] = generate_otp_code,
    ):
        self.secret_store = secret_store
        self.store = store
        self.dispatcher = dispatcher
        self.grant_session = grant_session
        self.step_ttl_seconds = max(int(step_ttl_seconds), 1)
        self.resend_cooldown_seconds = max(int(resend_cooldown_seconds), 0)
        self.clock = clock
        self.code_generator = code_generator

    def _load(self, session_key: str | None, required: VerificationPhase) -> SessionState | None:
        if not session_key:
            return None
        state = self.store.get(session_key)
        if state is None or state.phase != required:
            return None
        if state.is_expired(self.clock()):
            return None
        return state

    def _write(self, session_key: str, state: SessionState) -> None:
        self.store.set(session_key, state, self.step_ttl_seconds)

    def _current_phase(self, session_key: str | None) -> VerificationPhase:
        if not session_key:
            return VerificationPhase.NONE
        state = self.store.get(session_key)
        if state is None or state.is_expired(self.clock()):
            return VerificationPhase.NONE
        return state.phase

    def _issue_code(self, session_key: str, from_phase: VerificationPhase) -> VerificationResult:
        code = self.code_generator()
        digest = otp_digest(code, self.secret_store.otp_salt())
        if not self.dispatcher.deliver(code):
            _LOG.warning("admin verification delivery failed key=%s", _key_ref(session_key))
            return VerificationResult.failure(VerificationError.DELIVERY_FAILED, from_phase)
        now = self.clock()
        self._write(
            session_key,
            SessionState(
                phase=VerificationPhase.CODE_VERIFIED,
                expires_at=now + timedelta(seconds=self.step_ttl_seconds),
                otp_digest=digest,
                code_issued_at=now,
            ),
        )
        return VerificationResult.success(VerificationPhase.CODE_VERIFIED)

    @_busy_when_locked
    def submit_credentials(self, session_key: str, identity: str, secret: str) -> VerificationResult:
        identity_ok = constant_time_equals(
            _normalize_identity(identity), _normalize_identity(self.secret_store.admin_identity())
        )
        secret_ok = constant_time_equals(secret, self.secret_store.admin_secret())
        with self.store.lock(session_key):
            if not (identity_ok & secret_ok):
                _LOG.info("admin verification credentials rejected key=%s", _key_ref(session_key))
                return VerificationResult.failure(
                    VerificationError.INVALID_CREDENTIALS, self._current_phase(session_key)
                )
            self._write(
                session_key,
                SessionState(
                    phase=VerificationPhase.CREDENTIALS_VERIFIED,
                    expires_at=self.clock() + timedelta(seconds=self.step_ttl_seconds),
                ),
            )
        _LOG.info("admin verification credentials accepted key=%s", _key_ref(session_key))
        return VerificationResult.success(VerificationPhase.CREDENTIALS_VERIFIED)

    @_busy_when_locked
    def submit_security_code(self, session_key: str | None, code: str) -> VerificationResult:
        if not session_key:
            return VerificationResult.failure(VerificationError.SESSION_EXPIRED, VerificationPhase.NONE)
        with self.store.lock(session_key):
            state = self._load(session_key, VerificationPhase.CREDENTIALS_VERIFIED)
            if state is None:
                return VerificationResult.failure(
                    VerificationError.SESSION_EXPIRED, self._current_phase(session_key)
                )
            # Plain shared-secret comparison; the one-time code is the cryptographic tier.
            if not constant_time_equals(str(code or "").strip(), self.secret_store.security_code().strip()):
                _LOG.info("admin verification security code rejected key=%s", _key_ref(session_key))
                return VerificationResult.failure(VerificationError.INVALID_CODE, state.phase)
            result = self._issue_code(session_key, state.phase)
        _LOG.info(
            "admin verification security code step key=%s ok=%s", _key_ref(session_key), result.ok
        )
        return result

    @_busy_when_locked
    def submit_one_time_code(self, session_key: str | None, code: str) -> VerificationResult:
        if not session_key:
            return VerificationResult.failure(VerificationError.SESSION_EXPIRED, VerificationPhase.NONE)
        with self.store.lock(session_key):
            state = self._load(session_key, VerificationPhase.CODE_VERIFIED)
            if state is None:
                return VerificationResult.failure(
                    VerificationError.SESSION_EXPIRED, self._current_phase(session_key)
                )
            if not verify_otp_digest(code, self.secret_store.otp_salt(), state.otp_digest):
                _LOG.info("admin verification one-time code rejected key=%s", _key_ref(session_key))
                return VerificationResult.failure(VerificationError.INVALID_CODE, state.phase)
            token = self.grant_session()
            self.store.delete(session_key)
        _LOG.info("admin verification completed key=%s", _key_ref(session_key))
        return VerificationResult.success(VerificationPhase.AUTHENTICATED, session_token=token)

    @_busy_when_locked
    def resend_one_time_code(self, session_key: str | None) -> VerificationResult:
        if not session_key:
            return VerificationResult.failure(VerificationError.SESSION_EXPIRED, VerificationPhase.NONE)
        with self.store.lock(session_key):
            state = self._load(session_key, VerificationPhase.CODE_VERIFIED)
            if state is None:
                return VerificationResult.failure(
                    VerificationError.SESSION_EXPIRED, self._current_phase(session_key)
                )
            retry_after = self.resend_retry_after(state)
            if retry_after > 0:
                return VerificationResult.failure(
                    VerificationError.RESEND_THROTTLED, state.phase, retry_after_seconds=retry_after
                )
            result = self._issue_code(session_key, state.phase)
        _LOG.info("admin verification resend key=%s ok=%s", _key_ref(session_key), result.ok)
        return result

    def resend_retry_after(self, state: SessionState) -> int:
        if state.code_issued_at is None or self.resend_cooldown_seconds <= 0:
            return 0
        elapsed = (self.clock() - state.code_issued_at).total_seconds()
        remaining = self.resend_cooldown_seconds - elapsed
        if remaining <= 0:
            return 0
        return int(math.ceil(remaining))

    def status(self, session_key: str | None) -> VerificationStatus:
        if not session_key:
            return VerificationStatus(phase=VerificationPhase.NONE, expires_in_seconds=0)
        state = self.store.get(session_key)
        now = self.clock()
        if state is None or state.is_expired(now):
            return VerificationStatus(phase=VerificationPhase.NONE, expires_in_seconds=0)
        remaining = int((state.expires_at - now).total_seconds())
        return VerificationStatus(phase=state.phase, expires_in_seconds=max(remaining, 0))

    def discard(self, session_key: str | None) -> None:
        if not session_key:
            return
        try:
            with self.store.lock(session_key):
                self.store.delete(session_key)
        except SessionLockTimeout:
            _LOG.warning("admin verification discard without lock key=%s", _key_ref(session_key))
            self.store.delete(session_key)


def build_verification_service() -> AdminVerificationService:
    return AdminVerificationService(
        secret_store=SettingsSecretStore(),
        store=get_session_store(),
        dispatcher=build_dispatcher(),
        grant_session=grant_admin_session,
        step_ttl_seconds=settings.ADMIN_VERIFY_STEP_TTL_SECONDS,
        resend_cooldown_seconds=settings.ADMIN_OTP_RESEND_COOLDOWN_SECONDS,
    )

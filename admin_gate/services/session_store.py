from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from threading import Lock
from typing import Callable, ContextManager, Iterator, Protocol

import redis

from admin_gate.core.config import settings

_LOG = logging.getLogger("admin_gate.session_store")

_KEY_PREFIX = "admin_verify:state:"
_LOCK_PREFIX = "admin_verify:lock:"
_LOCK_TIMEOUT_SECONDS = 30
_LOCK_BLOCKING_TIMEOUT_SECONDS = 20


def _now_utc() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class SessionLockTimeout(Exception):
    pass


class VerificationPhase(str, Enum):
    NONE = "NONE"
    CREDENTIALS_VERIFIED = "CREDENTIALS_VERIFIED"
    CODE_VERIFIED = "CODE_VERIFIED"
    AUTHENTICATED = "AUTHENTICATED"


@dataclass(frozen=True)
class SessionState:
    phase: VerificationPhase
    expires_at: datetime
    otp_digest: str | None = None
    code_issued_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return _as_utc(self.expires_at) <= _as_utc(now)

    def to_dict(self) -> dict:
        return {
            "phase": self.phase.value,
            "expires_at": _as_utc(self.expires_at).isoformat(),
            "otp_digest": self.otp_digest,
            "code_issued_at": _as_utc(self.code_issued_at).isoformat() if self.code_issued_at else None,
        }

    @classmethod
    def from_dict(cls, payload: dict) -> "SessionState":
        issued_raw = payload.get("code_issued_at")
        return cls(
            phase=VerificationPhase(str(payload.get("phase") or VerificationPhase.NONE.value)),
            expires_at=_as_utc(datetime.fromisoformat(str(payload["expires_at"]))),
            otp_digest=payload.get("otp_digest") or None,
            code_issued_at=_as_utc(datetime.fromisoformat(str(issued_raw))) if issued_raw else None,
        )


class SessionStateStore(Protocol):
    def get(self, key: str) -> SessionState | None:
        ...

    def set(self, key: str, state: SessionState, ttl_seconds: int) -> None:
        ...

    def delete(self, key: str) -> None:
        ...

    def lock(self, key: str) -> ContextManager:
        ...


class InMemorySessionStateStore:
    def __init__(self, clock: Callable[[], datetime] = _now_utc):
        self._clock = clock
        self._data: dict[str, tuple[dict, datetime]] = {}
        # key -> [lock, holders and waiters]
        self._key_locks: dict[str, list] = {}
        self._lock = Lock()

    def _sweep(self, now: datetime) -> None:
        expired = [key for key, (_, expires_at) in self._data.items() if expires_at <= now]
        for key in expired:
            self._data.pop(key, None)

    def get(self, key: str) -> SessionState | None:
        now = self._clock()
        with self._lock:
            self._sweep(now)
            entry = self._data.get(key)
        if entry is None:
            return None
        return SessionState.from_dict(entry[0])

    def set(self, key: str, state: SessionState, ttl_seconds: int) -> None:
        expires_at = self._clock() + timedelta(seconds=max(int(ttl_seconds), 1))
        with self._lock:
            self._data[key] = (state.to_dict(), expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        with self._lock:
            entry = self._key_locks.setdefault(key, [Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._lock:
                entry[1] -= 1
                if entry[1] <= 0:
                    self._key_locks.pop(key, None)


class RedisSessionStateStore:
    def __init__(self, client: redis.Redis):
        self.client = client

    def get(self, key: str) -> SessionState | None:
        raw = self.client.get(_KEY_PREFIX + key)
        if not raw:
            return None
        try:
            return SessionState.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError):
            _LOG.warning("Discarding unreadable verification state entry")
            self.client.delete(_KEY_PREFIX + key)
            return None

    def set(self, key: str, state: SessionState, ttl_seconds: int) -> None:
        self.client.set(_KEY_PREFIX + key, json.dumps(state.to_dict()), ex=int(max(ttl_seconds, 1)))

    def delete(self, key: str) -> None:
        self.client.delete(_KEY_PREFIX + key)

    @contextmanager
    def lock(self, key: str) -> Iterator[None]:
        key_lock = self.client.lock(
            _LOCK_PREFIX + key,
            timeout=_LOCK_TIMEOUT_SECONDS,
            blocking_timeout=_LOCK_BLOCKING_TIMEOUT_SECONDS,
        )
        if not key_lock.acquire():
            raise SessionLockTimeout("Verification session is locked by another request")
        try:
            yield
        finally:
            try:
                key_lock.release()
            except redis.exceptions.LockError:
                # lock outlived its timeout and may now belong to another holder
                _LOG.warning("Verification session lock expired before release")


_cached_store: SessionStateStore | None = None


def _build_store() -> SessionStateStore:
    redis_url = str(settings.REDIS_URL or "").strip()
    if not redis_url:
        return InMemorySessionStateStore()
    try:
        client = redis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=0.4,
            socket_connect_timeout=0.4,
        )
        client.ping()
        return RedisSessionStateStore(client)
    except Exception:
        _LOG.warning("Redis session store unavailable; fallback to in-memory store")
        return InMemorySessionStateStore()


def get_session_store() -> SessionStateStore:
    global _cached_store
    if _cached_store is None:
        _cached_store = _build_store()
    return _cached_store


def reset_session_store_for_tests() -> None:
    global _cached_store
    _cached_store = None

"""Server-side session storage and sign-in rate limiting.

Sessions live in process memory; the client only ever holds the random
session id in an HttpOnly cookie.
"""
import asyncio
import logging
import secrets
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from certifychain.auth.principal import Principal

log = logging.getLogger(__name__)


@dataclass
class Session:
    session_id: str
    principal: Principal
    created_at: datetime
    expires_at: datetime

    @property
    def wallet_address(self) -> str:
        return self.principal.wallet_address

    @property
    def is_expired(self) -> bool:
        return datetime.now(timezone.utc) >= self.expires_at

    @property
    def ttl_seconds(self) -> int:
        """Seconds left before expiry (0 once expired)."""
        remaining = (self.expires_at - datetime.now(timezone.utc)).total_seconds()
        return max(0, int(remaining))


class InMemorySessionStore:
    """Dict-backed session store guarded by an asyncio lock."""

    def __init__(self):
        self._sessions: dict[str, Session] = {}
        self._lock = asyncio.Lock()

    @property
    def session_count(self) -> int:
        return len(self._sessions)

    async def create(self, principal: Principal, ttl_seconds: int) -> Session:
        now = datetime.now(timezone.utc)
        session = Session(
            session_id=secrets.token_urlsafe(32),
            principal=principal,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl_seconds),
        )
        async with self._lock:
            self._sessions[session.session_id] = session
        log.debug(f"Session created for {principal.wallet_address}")
        return session

    async def get(self, session_id: str) -> Optional[Session]:
        async with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            if session.is_expired:
                del self._sessions[session_id]
                return None
            return session

    async def delete(self, session_id: str) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def cleanup_expired(self) -> int:
        async with self._lock:
            expired = [sid for sid, s in self._sessions.items() if s.is_expired]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            log.info(f"Removed {len(expired)} expired sessions")
        return len(expired)


@dataclass
class _Attempts:
    failures: list[float] = field(default_factory=list)
    locked_until: float = 0.0


class LoginRateLimiter:
    """Locks out a client after ``max_attempts`` failed sign-ins within the window.

    Clients with no failure inside the window and no active lockout are
    forgotten on the next check or attempt.
    """

    def __init__(
        self,
        max_attempts: int = 5,
        window_seconds: int = 900,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self._clock = clock
        self._attempts: dict[str, _Attempts] = {}
        self._lock = asyncio.Lock()

    @property
    def tracked_clients(self) -> int:
        return len(self._attempts)

    def _prune(self, now: float) -> None:
        stale = [
            client for client, entry in self._attempts.items()
            if entry.locked_until <= now
            and not any(now - t < self.window_seconds for t in entry.failures)
        ]
        for client in stale:
            del self._attempts[client]

    async def check_rate_limit(self, client: str) -> bool:
        """True while the client may still attempt to sign in."""
        return not await self.is_locked_out(client)

    async def is_locked_out(self, client: str) -> bool:
        async with self._lock:
            now = self._clock()
            self._prune(now)
            entry = self._attempts.get(client)
            return entry is not None and entry.locked_until > now

    async def get_lockout_remaining(self, client: str) -> int:
        async with self._lock:
            entry = self._attempts.get(client)
            if entry is None:
                return 0
            return max(0, int(entry.locked_until - self._clock()) + 1)

    async def record_attempt(self, client: str, success: bool) -> None:
        async with self._lock:
            now = self._clock()
            self._prune(now)
            if success:
                self._attempts.pop(client, None)
                return
            entry = self._attempts.setdefault(client, _Attempts())
            entry.failures = [t for t in entry.failures if now - t < self.window_seconds]
            entry.failures.append(now)
            if len(entry.failures) >= self.max_attempts:
                entry.locked_until = now + self.window_seconds
                log.warning(f"Sign-in locked out for {client}")


_session_store: Optional[InMemorySessionStore] = None
_rate_limiter: Optional[LoginRateLimiter] = None


def get_session_store() -> InMemorySessionStore:
    global _session_store
    if _session_store is None:
        _session_store = InMemorySessionStore()
    return _session_store


def reset_session_store() -> None:
    """Drop all sessions (for testing)."""
    global _session_store
    _session_store = None


def get_rate_limiter() -> LoginRateLimiter:
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = LoginRateLimiter()
    return _rate_limiter


def reset_rate_limiter() -> None:
    """Forget all sign-in attempts (for testing)."""
    global _rate_limiter
    _rate_limiter = None

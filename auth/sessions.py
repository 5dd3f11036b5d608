"""
auth/sessions.py -- Session table and session lifecycle.

A session is alive only while BOTH of these hold:
  - the signed token has not passed its absolute expiry (exp claim), and
  - the server-side table still holds the token and it has been used within
    the idle window.

The signed token alone would be unrevocable until it expired; the table is
what makes logout, "log out everywhere" and idle eviction possible.

Per-token states: ABSENT -> ACTIVE -> (EXPIRED | REVOKED). Nothing moves a
token back to ACTIVE. An expired or revoked token is evicted from the table,
so after the first failed validation every later attempt sees ABSENT and
fails with InvalidSessionError.

SessionStore is the seam for where the table lives. InMemorySessionStore is
the single-process implementation; it is created by the application lifespan
and cleared on shutdown. A shared keyed store can implement the same
interface for multi-instance deployments.

Layer rule: no imports from api/ or expenses/.
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from auth.audit import AuditLogger
from auth.models import AuditAction, AuditStatus, RequestContext, Session, User
from auth.store import UserStore
from auth.tokens import create_session_token, decode_session_token, token_fingerprint
from core.errors import (
    AccountDeactivatedError,
    AppError,
    InvalidSessionError,
    NoTokenError,
    SessionExpiredError,
    UserNotFoundError,
)

logger = logging.getLogger("reimburse.sessions")

Clock = Callable[[], datetime]

_DAY = 24 * 60 * 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Session table
# ---------------------------------------------------------------------------


class SessionStore(ABC):
    """Storage interface for the session table.

    Implementations must make each method atomic with respect to the others
    and must hand out copies, never live entries.
    """

    @abstractmethod
    def add(self, session: Session) -> None: ...

    @abstractmethod
    def get(self, token: str) -> Optional[Session]: ...

    @abstractmethod
    def touch(self, token: str, at: datetime) -> bool:
        """Move last_activity forward to `at`. Returns False if the token is gone."""

    @abstractmethod
    def remove(self, token: str) -> Optional[Session]: ...

    @abstractmethod
    def list_for_user(self, user_id: int) -> list[Session]: ...

    @abstractmethod
    def remove_for_user(self, user_id: int) -> int: ...

    @abstractmethod
    def clear(self) -> None: ...


class InMemorySessionStore(SessionStore):
    """Process-local session table: a dict behind one lock.

    FastAPI runs sync handlers on a thread pool, so every access goes through
    the lock. touch() never moves last_activity backwards, which keeps two
    concurrent validations of the same token from losing an update.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()

    def add(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.token] = replace(session)

    def get(self, token: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.get(token)
            return replace(session) if session is not None else None

    def touch(self, token: str, at: datetime) -> bool:
        with self._lock:
            session = self._sessions.get(token)
            if session is None:
                return False
            if at > session.last_activity:
                session.last_activity = at
            return True

    def remove(self, token: str) -> Optional[Session]:
        with self._lock:
            session = self._sessions.pop(token, None)
            return replace(session) if session is not None else None

    def list_for_user(self, user_id: int) -> list[Session]:
        with self._lock:
            return [replace(s) for s in self._sessions.values() if s.user_id == user_id]

    def remove_for_user(self, user_id: int) -> int:
        with self._lock:
            doomed = [t for t, s in self._sessions.items() if s.user_id == user_id]
            for token in doomed:
                del self._sessions[token]
            return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)


# ---------------------------------------------------------------------------
# Session manager
# ---------------------------------------------------------------------------


class SessionManager:
    """Issues, validates and revokes session tokens.

    The manager is the only writer of the session table. On construction it
    subscribes to the user store's password-change notifications so that a
    credential change ends every session of that user.

    Usage:
        manager = SessionManager(InMemorySessionStore(), user_store, audit, secret_key=key)
        token = manager.create_session(user, RequestContext("10.0.0.1", "curl/8"))
        user = manager.validate_session(token)
        manager.end_session(token, user=user, context=ctx)
    """

    def __init__(
        self,
        store: SessionStore,
        users: UserStore,
        audit: AuditLogger,
        secret_key: Optional[str] = None,
        token_ttl_seconds: int = _DAY,
        idle_timeout_seconds: int = _DAY,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.users = users
        self.audit = audit
        self._secret_key = secret_key
        self.token_ttl_seconds = token_ttl_seconds
        self.idle_timeout = timedelta(seconds=idle_timeout_seconds)
        self._clock = clock
        users.add_password_change_listener(self.end_all_user_sessions)

    def create_session(self, user: User, context: RequestContext) -> str:
        """Sign a token for `user`, record it in the table, and audit the login."""
        now = self._clock()
        token = create_session_token(
            user.id,
            user.role.value,
            issued_at=now,
            expire_seconds=self.token_ttl_seconds,
            secret_key=self._secret_key,
        )
        self.store.add(
            Session(
                token=token,
                user_id=user.id,
                last_activity=now,
                created_at=now,
                ip_address=context.ip_address,
                user_agent=context.user_agent,
            )
        )
        self.audit.record(user.id, AuditAction.LOGIN, context, AuditStatus.SUCCESS)
        logger.info("Session created user_id=%s token=...%s", user.id, token_fingerprint(token))
        return token

    def validate_session(self, token: Optional[str]) -> User:
        """Return the live User behind `token`, refreshing its idle window.

        Raises, in check order:
            NoTokenError            -- no token supplied
            InvalidSessionError     -- not in the table, or signature invalid
            SessionExpiredError     -- idle past the window, or signed expiry passed
            UserNotFoundError       -- user record no longer exists
            AccountDeactivatedError -- user is inactive
        Expired and forged tokens are evicted as a side effect.
        """
        if not token:
            raise NoTokenError()

        session = self.store.get(token)
        if session is None:
            raise InvalidSessionError()

        now = self._clock()
        if now - session.last_activity > self.idle_timeout:
            self.store.remove(token)
            logger.info("Session idle-expired user_id=%s token=...%s", session.user_id, token_fingerprint(token))
            raise SessionExpiredError()

        try:
            payload = decode_session_token(token, secret_key=self._secret_key)
        except AppError:
            self.store.remove(token)
            raise
        if payload["user_id"] != session.user_id:
            self.store.remove(token)
            raise InvalidSessionError()

        if not self.store.touch(token, now):
            # Revoked between lookup and refresh.
            raise InvalidSessionError()

        user = self.users.get_by_id(session.user_id)
        if user is None:
            raise UserNotFoundError()
        if not user.is_active:
            raise AccountDeactivatedError()
        return user

    def end_session(
        self,
        token: Optional[str],
        user: Optional[User] = None,
        context: Optional[RequestContext] = None,
    ) -> bool:
        """Remove `token` from the table. Idempotent; returns True if a session was removed."""
        if not token:
            return False
        removed = self.store.remove(token)
        if removed is not None and user is not None:
            self.audit.record(user.id, AuditAction.LOGOUT, context or RequestContext(), AuditStatus.SUCCESS)
        return removed is not None

    def get_user_sessions(self, user_id: int) -> list[Session]:
        """Return the live sessions owned by user_id, most recently active first."""
        sessions = self.store.list_for_user(user_id)
        return sorted(sessions, key=lambda s: s.last_activity, reverse=True)

    def end_all_user_sessions(self, user_id: int) -> int:
        """Revoke every session owned by user_id. Returns how many were removed."""
        count = self.store.remove_for_user(user_id)
        logger.info("Ended %d session(s) for user_id=%s", count, user_id)
        return count

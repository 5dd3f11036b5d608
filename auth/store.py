"""
auth/store.py -- SQLAlchemy Core persistence layer for user credentials.

Pattern: Repository + Data Mapper (same as expenses/store.py).
UserStore is the repository; _row_to_user is the mapper. Route and session
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Plaintext passwords enter through create_user() / update_password() and are
  hashed before they reach the database. No method returns or logs them.

Email uniqueness is enforced twice: a lookup before insert gives the normal
DuplicateEmailError path, and the UNIQUE index catches the race where two
registrations for the same email pass the lookup concurrently.

Password-change listeners: update_password() notifies every callable
registered through add_password_change_listener(). The session manager
registers itself so a credential change always revokes the user's sessions.

Layer rule: no imports from api/ or expenses/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import Role, User
from auth.tokens import hash_password
from auth.tokens import verify_password as _check_hash
from core.config import get_settings
from core.db import make_engine, now_iso
from core.errors import DuplicateEmailError

logger = logging.getLogger("reimburse.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("email", String(255), nullable=False, unique=True),  # stored lower-cased
    Column("hashed_password", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="employee"),
    Column("department", String(255), nullable=False, server_default=""),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_password_change", String(32), nullable=False),
    Column("created_at", String(32), nullable=False),
)

PasswordChangeListener = Callable[[int], object]


def _normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records (the credential store).

    Usage:
        store = UserStore()
        user = store.create_user("Alice", "alice@x.com", "Str0ng!Pass", "Finance")
        store.verify_password(user, "Str0ng!Pass")  # True
        store.close()
    """

    # Fields update_user() accepts. Everything else (password, email) has a
    # dedicated method or is immutable.
    _UPDATABLE_FIELDS: frozenset = frozenset({"name", "role", "department", "is_active"})

    def __init__(self, db_url: Optional[str] = None, timeout: Optional[float] = None) -> None:
        settings = get_settings()
        self.engine: Engine = make_engine(
            db_url or settings.database_url,
            timeout=timeout if timeout is not None else settings.db_timeout_seconds,
        )
        _metadata.create_all(self.engine)
        self._password_listeners: list[PasswordChangeListener] = []

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def add_password_change_listener(self, listener: PasswordChangeListener) -> None:
        """Register a callable invoked with user_id after every password change."""
        self._password_listeners.append(listener)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_user(
        self,
        name: str,
        email: str,
        raw_password: str,
        department: str,
        role: Role = Role.employee,
    ) -> User:
        """Insert a new active user and return it.

        Raises DuplicateEmailError if the email is already registered.
        """
        email = _normalize_email(email)
        if self.get_by_email(email) is not None:
            raise DuplicateEmailError()
        now = now_iso()
        try:
            with self.engine.connect() as conn:
                result = conn.execute(
                    _users.insert().values(
                        name=name,
                        email=email,
                        hashed_password=hash_password(raw_password),
                        role=Role(role).value,
                        department=department,
                        is_active=1,
                        last_password_change=now,
                        created_at=now,
                    )
                )
                conn.commit()
        except IntegrityError as exc:
            raise DuplicateEmailError() from exc
        user_id = result.inserted_primary_key[0]
        logger.info("User created id=%s role=%s", user_id, Role(role).value)
        return self.get_by_id(user_id)

    def update_password(self, user_id: int, new_raw_password: str) -> bool:
        """Replace the password hash and refresh last_password_change.

        Returns False if user_id does not exist. On success every registered
        password-change listener runs before this method returns.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(hashed_password=hash_password(new_raw_password), last_password_change=now_iso())
            )
            conn.commit()
        if result.rowcount == 0:
            return False
        for listener in self._password_listeners:
            listener(user_id)
        return True

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable profile fields on an existing user.

        Accepted fields: name, role, department, is_active. Unknown fields
        raise ValueError rather than being silently ignored.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def verify_password(self, user: User, raw_password: str) -> bool:
        """Constant-time check of raw_password against the user's stored hash."""
        if not user.hashed_password:
            return False
        return _check_hash(raw_password, user.hashed_password)

    def get_by_email(self, email: str) -> Optional[User]:
        """Look up a user by email (case-insensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == _normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> Optional[User]:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users ordered by name. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.name, _users.c.id)).fetchall()
        return [_row_to_user(r) for r in rows]

    def ping(self) -> bool:
        """Return True if the database answers a trivial query. Used by /health."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        hashed_password=row.hashed_password,
        role=Role(row.role),
        department=row.department,
        is_active=bool(row.is_active),
        last_password_change=row.last_password_change,
        created_at=row.created_at,
    )

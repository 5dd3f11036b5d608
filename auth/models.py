"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores, the session
manager and routes do the work; these types only own the domain shape.

Layer rule: no imports from api/ or expenses/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class Role(str, Enum):
    """Closed set of roles. Stored and transmitted as the lower-case value."""

    employee = "employee"
    manager = "manager"
    admin = "admin"


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILED = "LOGIN_FAILED"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    EXPENSE_CREATE = "EXPENSE_CREATE"
    EXPENSE_UPDATE = "EXPENSE_UPDATE"
    EXPENSE_DELETE = "EXPENSE_DELETE"
    EXPENSE_APPROVE = "EXPENSE_APPROVE"
    EXPENSE_REJECT = "EXPENSE_REJECT"
    USER_CREATE = "USER_CREATE"
    USER_UPDATE = "USER_UPDATE"
    USER_DELETE = "USER_DELETE"
    ROLE_CHANGE = "ROLE_CHANGE"


class AuditStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILURE = "FAILURE"


@dataclass
class User:
    """A registered person who can log in.

    email is stored lower-cased and is globally unique. hashed_password is a
    bcrypt hash; the plaintext is never kept anywhere after create_user().

    id is None before the record is written to the database.
    """

    name: str
    email: str
    role: Role
    department: str
    hashed_password: str = field(default="", repr=False)
    id: Optional[int] = None
    is_active: bool = True
    last_password_change: str = ""  # ISO 8601
    created_at: str = ""  # ISO 8601


@dataclass(frozen=True)
class AuthenticatedIdentity:
    """The caller as seen by downstream layers: who, what role, which department.

    This is what the expense layer receives. It never sees the User record
    (and therefore never sees the password hash).
    """

    id: int
    role: Role
    department: str

    @classmethod
    def from_user(cls, user: User) -> AuthenticatedIdentity:
        return cls(id=user.id, role=user.role, department=user.department)


@dataclass(frozen=True)
class RequestContext:
    """Client metadata recorded with sessions and audit entries."""

    ip_address: str = "unknown"
    user_agent: str = "unknown"


@dataclass
class Session:
    """One row of the server-side session table.

    last_activity moves forward on every validated request. The entry is
    owned by the session store; callers only ever get copies.
    """

    token: str
    user_id: int
    last_activity: datetime
    created_at: datetime
    ip_address: str = "unknown"
    user_agent: str = "unknown"


@dataclass(frozen=True)
class AuditEntry:
    """Immutable record of a security-relevant event.

    user_id is None when the actor is unknown (e.g. login with an unregistered
    email). Entries are never updated or deleted -- only inserted.
    """

    action: AuditAction
    status: AuditStatus
    ip_address: str
    user_agent: str
    timestamp: str  # ISO 8601
    user_id: Optional[int] = None
    details: Optional[dict[str, Any]] = None
    id: Optional[int] = None

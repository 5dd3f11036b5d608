"""
auth/access.py -- Role, capability and ownership decisions.

Every check is a pure function of an AuthenticatedIdentity and the thing
being asked for. Nothing here reads a store, writes the audit log, or touches
the request -- callers decide what to log. auth/dependencies.py adapts these
functions to FastAPI Depends().

Capabilities are the unit of permission. ROLE_CAPABILITIES is the single
allow-list; adding an operation means adding a Capability and listing which
roles hold it, not sprinkling role-name comparisons through route code.
require_role() is kept for views that belong to a role as such, like the
admin-only audit log.

Layer rule: no imports from api/ or expenses/.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum
from typing import Optional

from auth.models import AuthenticatedIdentity, Role
from core.errors import ForbiddenError, NotFoundError


class Capability(str, Enum):
    EXPENSE_SUBMIT = "expense:submit"
    EXPENSE_READ_OWN = "expense:read_own"
    EXPENSE_READ_ALL = "expense:read_all"
    EXPENSE_REVIEW = "expense:review"
    EXPENSE_DELETE_OWN = "expense:delete_own"
    SESSION_MANAGE_OWN = "session:manage_own"
    USER_MANAGE = "user:manage"


_BASE: frozenset[Capability] = frozenset(
    {
        Capability.EXPENSE_SUBMIT,
        Capability.EXPENSE_READ_OWN,
        Capability.EXPENSE_DELETE_OWN,
        Capability.SESSION_MANAGE_OWN,
    }
)

ROLE_CAPABILITIES: dict[Role, frozenset[Capability]] = {
    Role.employee: _BASE,
    Role.manager: _BASE | {Capability.EXPENSE_READ_ALL, Capability.EXPENSE_REVIEW},
    Role.admin: frozenset(Capability),
}

# Roles that may act on any expense regardless of who submitted it.
EXPENSE_PRIVILEGED_ROLES: frozenset[Role] = frozenset({Role.manager, Role.admin})


def has_capability(identity: AuthenticatedIdentity, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(identity.role, frozenset())


def authorize(identity: AuthenticatedIdentity, capability: Capability) -> None:
    """Raise ForbiddenError unless the identity's role holds `capability`."""
    if not has_capability(identity, capability):
        raise ForbiddenError()


def require_role(identity: AuthenticatedIdentity, allowed_roles: Iterable[Role | str]) -> None:
    """Raise ForbiddenError unless the identity's role is one of allowed_roles."""
    allowed = {Role(r) for r in allowed_roles}
    if identity.role not in allowed:
        raise ForbiddenError()


def require_ownership_or_role(
    identity: AuthenticatedIdentity,
    resource_owner_id: Optional[int],
    privileged_roles: Iterable[Role | str],
) -> None:
    """Allow the resource's owner or any privileged role.

    resource_owner_id is None when the caller's lookup found no resource;
    that is reported as NotFoundError, distinct from "exists but not yours"
    (ForbiddenError).
    """
    if resource_owner_id is None:
        raise NotFoundError()
    if identity.role in {Role(r) for r in privileged_roles}:
        return
    if identity.id != resource_owner_id:
        raise ForbiddenError("You do not have permission to access this resource")

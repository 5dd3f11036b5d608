"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Token transport, checked in order:
  1. Authorization: Bearer <token> header -- API clients.
  2. "token" cookie -- set by login/register for browser clients.

get_current_user() validates through the SessionManager on app.state and
raises the typed AuthenticationError subclasses from core/errors.py. The
AppError handler in api/main.py turns those into 401 responses, so nothing
here builds HTTP responses itself.

get_identity() narrows the User to the AuthenticatedIdentity that downstream
layers (expense routes) consume. require_roles() and require_capability()
wrap the pure checks in auth/access.py.

Layer rule: no imports from api/ or expenses/.
  This module may import from fastapi because it is part of the FastAPI
  dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Optional

from fastapi import Depends, Request

from auth.access import Capability, authorize, require_role
from auth.models import AuthenticatedIdentity, RequestContext, Role, User
from auth.sessions import SessionManager
from auth.tokens import TOKEN_COOKIE


def extract_token(request: Request) -> Optional[str]:
    """Return the session token from the Bearer header or the token cookie, or None."""
    auth_header = request.headers.get("Authorization", "")
    if auth_header.startswith("Bearer "):
        token = auth_header[7:].strip()
        if token:
            return token
    return request.cookies.get(TOKEN_COOKIE) or None


def request_context(request: Request) -> RequestContext:
    """Client IP and User-Agent for session records and audit entries."""
    return RequestContext(
        ip_address=request.client.host if request.client else "unknown",
        user_agent=request.headers.get("User-Agent", "unknown"),
    )


def get_current_user(request: Request) -> User:
    """Require a live session. Raises an AuthenticationError subclass otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...

    The validated token is kept on request.state.session_token so logout can
    end exactly the session that made the request.
    """
    sessions: SessionManager = request.app.state.sessions
    token = extract_token(request)
    user = sessions.validate_session(token)
    request.state.session_token = token
    return user


def get_identity(user: User = Depends(get_current_user)) -> AuthenticatedIdentity:
    return AuthenticatedIdentity.from_user(user)


def require_roles(*roles: Role) -> Callable[..., AuthenticatedIdentity]:
    """Dependency factory: authenticated identity whose role is one of `roles`.

        router = APIRouter(dependencies=[Depends(require_roles(Role.admin))])
    """

    def dependency(identity: AuthenticatedIdentity = Depends(get_identity)) -> AuthenticatedIdentity:
        require_role(identity, roles)
        return identity

    return dependency


def require_capability(capability: Capability) -> Callable[..., AuthenticatedIdentity]:
    """Dependency factory: authenticated identity whose role holds `capability`."""

    def dependency(identity: AuthenticatedIdentity = Depends(get_identity)) -> AuthenticatedIdentity:
        authorize(identity, capability)
        return identity

    return dependency

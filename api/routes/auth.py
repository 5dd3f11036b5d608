"""
api/routes/auth.py -- Authentication, session and user management endpoints.

Routes:
  POST  /api/auth/register              -- create account + first session
  POST  /api/auth/login                 -- password login; new session
  POST  /api/auth/logout                -- end the calling session
  GET   /api/auth/me                    -- current user
  GET   /api/auth/sessions              -- caller's live sessions
  POST  /api/auth/sessions/end-all      -- revoke every session of the caller
  POST  /api/auth/change-password       -- verify, re-hash, revoke all sessions
  GET   /api/auth/users                 -- list users (admin)
  PATCH /api/auth/users/{id}            -- role / department / active (admin)

Security:
  POST /login and /register are rate-limited per IP (LOGIN_RATE_LIMIT).
  authenticate_user() provides timing equalization -- use it, never inline.
  Login answers unknown email and wrong password identically.
  Cache-Control: no-store on every response that carries a token.
  PATCH /users/{id} blocks self-deactivation and self-demotion.

Errors are raised as core.errors types and rendered by the AppError handler
in api/main.py. Audit writes never change the response.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthResponse,
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    SessionInfo,
    UserAdminView,
    UserPatch,
    UserPublic,
)
from auth.access import Capability
from auth.audit import AuditLogger
from auth.dependencies import get_current_user, request_context, require_capability
from auth.models import AuditAction, AuditStatus, AuthenticatedIdentity, Role, User
from auth.password_policy import enforce_password_policy
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import authenticate_user, clear_auth_cookie, set_auth_cookie
from core.config import get_settings
from core.errors import (
    AccountDeactivatedError,
    DuplicateEmailError,
    InvalidCredentialsError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
    Violation,
)

logger = logging.getLogger("reimburse.api")

_settings = get_settings()

# Auth policy:
# - POST  /auth/register:          public, rate limited
# - POST  /auth/login:             public, rate limited
# - POST  /auth/logout:            requires Capability.SESSION_MANAGE_OWN
# - GET   /auth/me:                requires session
# - GET   /auth/sessions:          requires Capability.SESSION_MANAGE_OWN
# - POST  /auth/sessions/end-all:  requires Capability.SESSION_MANAGE_OWN
# - POST  /auth/change-password:   requires session
# - GET   /auth/users:             requires Capability.USER_MANAGE
# - PATCH /auth/users/{id}:        requires Capability.USER_MANAGE
router = APIRouter()

_manage_own_sessions = Depends(require_capability(Capability.SESSION_MANAGE_OWN))


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account, open its first session, and return the token.

    The password policy runs before anything is written and reports every
    violation. A duplicate email is audited against the existing account.
    """
    users: UserStore = request.app.state.user_store
    sessions: SessionManager = request.app.state.sessions
    audit: AuditLogger = request.app.state.audit
    ctx = request_context(request)

    enforce_password_policy(body.password, body.confirm_password, name=body.name, email=body.email)

    try:
        user = users.create_user(body.name, body.email, body.password, body.department, role=body.role)
    except DuplicateEmailError:
        existing = users.get_by_email(body.email)
        audit.record(
            existing.id if existing else None,
            AuditAction.USER_CREATE,
            ctx,
            AuditStatus.FAILURE,
            details={"reason": "Email already exists"},
        )
        raise

    token = sessions.create_session(user, ctx)
    audit.record(user.id, AuditAction.USER_CREATE, ctx, AuditStatus.SUCCESS)

    resp = JSONResponse(
        status_code=201,
        content=AuthResponse(token=token, user=_public(user)).model_dump(mode="json"),
    )
    set_auth_cookie(resp, token, sessions.token_ttl_seconds)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password and open a new session.

    Uses authenticate_user() which includes timing equalization. Unknown
    email and wrong password both produce the same "Invalid credentials"
    400; the distinction only reaches the audit log.
    """
    users: UserStore = request.app.state.user_store
    sessions: SessionManager = request.app.state.sessions
    audit: AuditLogger = request.app.state.audit
    ctx = request_context(request)

    result = authenticate_user(users, body.email, body.password)
    if not result.ok:
        audit.record(
            result.user.id if result.user else None,
            AuditAction.LOGIN_FAILED,
            ctx,
            AuditStatus.FAILURE,
            details={"reason": result.failure},
        )
        logger.info("Login failed reason=%s ip=%s", result.failure, ctx.ip_address)
        if result.failure == "deactivated":
            raise AccountDeactivatedError()
        raise InvalidCredentialsError()

    token = sessions.create_session(result.user, ctx)
    resp = JSONResponse(
        status_code=200,
        content=AuthResponse(token=token, user=_public(result.user)).model_dump(mode="json"),
    )
    set_auth_cookie(resp, token, sessions.token_ttl_seconds)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout", response_model=MessageResponse, dependencies=[_manage_own_sessions])
def logout(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """End the session that made this request and clear the cookie."""
    sessions: SessionManager = request.app.state.sessions
    sessions.end_session(request.state.session_token, user=current_user, context=request_context(request))
    resp = JSONResponse(content={"message": "Logged out successfully"})
    clear_auth_cookie(resp)
    return resp


@router.get("/auth/me", response_model=UserPublic)
def me(current_user: User = Depends(get_current_user)) -> UserPublic:
    """Return identity information for the currently authenticated user."""
    return _public(current_user)


@router.get("/auth/sessions", response_model=list[SessionInfo], dependencies=[_manage_own_sessions])
def list_sessions(request: Request, current_user: User = Depends(get_current_user)) -> list[SessionInfo]:
    """Return the caller's live sessions. Other users' sessions are never included."""
    sessions: SessionManager = request.app.state.sessions
    current_token = request.state.session_token
    return [
        SessionInfo(
            token=s.token,
            lastActivity=s.last_activity.isoformat(),
            ipAddress=s.ip_address,
            userAgent=s.user_agent,
            current=s.token == current_token,
        )
        for s in sessions.get_user_sessions(current_user.id)
    ]


@router.post("/auth/sessions/end-all", response_model=MessageResponse, dependencies=[_manage_own_sessions])
def end_all_sessions(request: Request, current_user: User = Depends(get_current_user)) -> JSONResponse:
    """Log the caller out everywhere, including this session."""
    sessions: SessionManager = request.app.state.sessions
    audit: AuditLogger = request.app.state.audit
    ended = sessions.end_all_user_sessions(current_user.id)
    audit.record(
        current_user.id,
        AuditAction.LOGOUT,
        request_context(request),
        AuditStatus.SUCCESS,
        details={"scope": "all", "sessions_ended": ended},
    )
    resp = JSONResponse(content={"message": "All sessions ended successfully"})
    clear_auth_cookie(resp)
    return resp


@router.post("/auth/change-password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Replace the caller's password.

    The current password must verify, and the new one must pass the policy
    checked against the stored name and email. Changing the password revokes
    every session of the user (the store notifies the session manager), so
    the caller must log in again.
    """
    users: UserStore = request.app.state.user_store
    audit: AuditLogger = request.app.state.audit
    ctx = request_context(request)

    if not users.verify_password(current_user, body.current_password):
        audit.record(
            current_user.id,
            AuditAction.PASSWORD_CHANGE,
            ctx,
            AuditStatus.FAILURE,
            details={"reason": "Current password incorrect"},
        )
        raise ValidationError(
            [Violation(field="currentPassword", message="Current password is incorrect")],
            message="Current password is incorrect",
        )

    enforce_password_policy(
        body.new_password,
        body.confirm_password,
        name=current_user.name,
        email=current_user.email,
        field="newPassword",
    )

    users.update_password(current_user.id, body.new_password)
    audit.record(current_user.id, AuditAction.PASSWORD_CHANGE, ctx, AuditStatus.SUCCESS)

    resp = JSONResponse(content={"message": "Password changed successfully. Please log in again."})
    clear_auth_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserAdminView])
def list_users(
    request: Request,
    identity: AuthenticatedIdentity = Depends(require_capability(Capability.USER_MANAGE)),
) -> list[UserAdminView]:
    """List all user accounts. Admin only."""
    users: UserStore = request.app.state.user_store
    return [_admin_view(u) for u in users.list_users()]


@router.patch("/auth/users/{user_id}", response_model=UserAdminView)
def update_user(
    request: Request,
    user_id: int,
    body: UserPatch,
    identity: AuthenticatedIdentity = Depends(require_capability(Capability.USER_MANAGE)),
) -> UserAdminView:
    """Update a user's role, department or active status. Admin only.

    Role changes are audited as ROLE_CHANGE, everything else as USER_UPDATE.
    Deactivating a user ends all of their sessions immediately.
    """
    users: UserStore = request.app.state.user_store
    sessions: SessionManager = request.app.state.sessions
    audit: AuditLogger = request.app.state.audit
    ctx = request_context(request)

    target = users.get_by_id(user_id)
    if target is None:
        raise NotFoundError("User not found.")

    if target.id == identity.id:
        if body.is_active is False:
            raise InvalidStateError("You cannot deactivate your own account.")
        if body.role is not None and body.role is not Role.admin:
            raise InvalidStateError("You cannot remove your own admin role.")

    updates: dict = body.model_dump(exclude_none=True)
    if not updates:
        raise ValidationError([Violation(field="body", message="No fields to update.")], message="No fields to update.")

    users.update_user(user_id, **updates)

    if "role" in updates and updates["role"] is not target.role:
        audit.record(
            identity.id,
            AuditAction.ROLE_CHANGE,
            ctx,
            AuditStatus.SUCCESS,
            details={"target_user_id": user_id, "from": target.role.value, "to": updates["role"].value},
        )
    other = {k: v for k, v in updates.items() if k != "role"}
    if other:
        audit.record(
            identity.id,
            AuditAction.USER_UPDATE,
            ctx,
            AuditStatus.SUCCESS,
            details={"target_user_id": user_id, "fields": sorted(other)},
        )
    if updates.get("is_active") is False:
        ended = sessions.end_all_user_sessions(user_id)
        logger.info("User %s deactivated by %s; %d session(s) ended", user_id, identity.id, ended)

    return _admin_view(users.get_by_id(user_id))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _public(user: User) -> UserPublic:
    return UserPublic(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        department=user.department,
    )


def _admin_view(user: User) -> UserAdminView:
    return UserAdminView(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        department=user.department,
        is_active=user.is_active,
        last_password_change=user.last_password_change,
        created_at=user.created_at,
    )

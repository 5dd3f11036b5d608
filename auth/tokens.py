"""
auth/tokens.py -- Session token signing, password hashing, and login checks.

Security design decisions:
  Tokens: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       user_id, role, a random jti, iat and exp. The jti makes two logins by
       the same user in the same second produce different tokens, so each can
       be revoked independently. Signature and expiry failures raise distinct
       errors -- the session manager needs to tell "expired" from "forged".

  Passwords: bcrypt directly (no passlib wrapper). Bcrypt's cost factor makes
       brute-force expensive. _DUMMY_HASH enables timing equalization in
       authenticate_user() so response time does not reveal whether an email
       is registered.

  SECRET_KEY: sourced from core.config.get_settings(), which validates length
       and refuses to start in production without one.

Layer rule: no imports from api/ or expenses/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, NamedTuple, Optional

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import get_settings
from core.errors import InvalidSessionError, SessionExpiredError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("reimburse.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"

TOKEN_COOKIE = "token"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes. The API layer caps password
    fields at 128 characters and the policy only admits ASCII, which keeps
    real inputs under that limit.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. A malformed stored hash is a
    mismatch, not a crash.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("reimburse_timing_dummy")


# ---------------------------------------------------------------------------
# Token encode / decode
# ---------------------------------------------------------------------------


def create_session_token(
    user_id: int,
    role: str,
    issued_at: Optional[datetime] = None,
    expire_seconds: int = 0,
    secret_key: Optional[str] = None,
) -> str:
    """Encode a signed token for a new session.

    Args:
        user_id:        Numeric user ID stored in the DB.
        role:           Role at issue time (informational; the session
                        manager always re-reads the user on validation).
        issued_at:      Issue time. Defaults to now; the session manager
                        passes its own clock so tests can move time.
        expire_seconds: Absolute lifetime. 0 means Settings.token_expire_seconds.
        secret_key:     Signing key. None means Settings.secret_key.
    """
    now = issued_at or datetime.now(timezone.utc)
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    payload = {
        "sub": str(user_id),
        "user_id": user_id,
        "role": role,
        "jti": secrets.token_urlsafe(16),
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, secret_key or _settings.secret_key, algorithm=_ALGORITHM)


def decode_session_token(token: str, secret_key: Optional[str] = None) -> dict:
    """Verify a token's signature and expiry and return its payload.

    Raises SessionExpiredError when the signed expiry has passed and
    InvalidSessionError for any other failure (bad signature, malformed
    token, missing claims).
    """
    try:
        payload = jwt.decode(token, secret_key or _settings.secret_key, algorithms=[_ALGORITHM])
    except ExpiredSignatureError as exc:
        raise SessionExpiredError() from exc
    except JWTError as exc:
        logger.warning("Rejected session token fp=%s: %s", token_fingerprint(token), exc)
        raise InvalidSessionError() from exc
    if "user_id" not in payload:
        raise InvalidSessionError()
    return payload


def token_fingerprint(token: str) -> str:
    """Short, log-safe handle for a token. Never log the full value."""
    return f"{token[-8:]}" if len(token) > 8 else "****"


# ---------------------------------------------------------------------------
# User authentication (constant-time)
# ---------------------------------------------------------------------------


class AuthResult(NamedTuple):
    """Outcome of a password login attempt.

    failure is None on success, otherwise one of "unknown_email",
    "bad_password", "deactivated". user is set whenever the email matched,
    so the caller can attribute audit entries.
    """

    user: Optional[User]
    failure: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


def authenticate_user(store: UserStore, email: str, password: str) -> AuthResult:
    """Authenticate an email/password login with timing equalization.

    Always runs bcrypt whether or not the email exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    The active flag is checked only after the password matched, so a
    deactivated account is not disclosed to someone without its password.
    """
    user = store.get_by_email(email)
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return AuthResult(user=None, failure="unknown_email")
    if not verify_password(password, user.hashed_password):
        return AuthResult(user=user, failure="bad_password")
    if not user.is_active:
        return AuthResult(user=user, failure="deactivated")
    return AuthResult(user=user)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST (CSRF mitigation).
    secure: only sent over HTTPS when SECURE_COOKIES=true.
    max_age: matches the token's signed lifetime.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        TOKEN_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(TOKEN_COOKIE)

"""
auth/password_policy.py -- Password composition and context rules.

Applied at registration and at password change, before anything is written.
Every rule is evaluated on every call: a caller gets the complete list of
violations so a form can show them all at once.

Rules:
  - at least MIN_LENGTH characters (the one authoritative minimum)
  - at least one lowercase letter, one uppercase letter, one digit
  - at least one symbol from ALLOWED_SYMBOLS
  - no characters outside letters, digits and ALLOWED_SYMBOLS
  - must not contain the user's name (case-insensitive)
  - must not contain the local part of the user's email (case-insensitive)
  - confirmation must match exactly

Layer rule: no imports from api/ or expenses/.
"""

from __future__ import annotations

import re
from typing import Optional

from core.errors import ValidationError, Violation

MIN_LENGTH = 8
ALLOWED_SYMBOLS = "@$!%*?&"

_LOWER_RE = re.compile(r"[a-z]")
_UPPER_RE = re.compile(r"[A-Z]")
_DIGIT_RE = re.compile(r"\d")
_SYMBOL_RE = re.compile(f"[{re.escape(ALLOWED_SYMBOLS)}]")
_ALLOWED_RE = re.compile(f"[A-Za-z0-9{re.escape(ALLOWED_SYMBOLS)}]*")


def check_password(
    password: str,
    confirm_password: Optional[str],
    name: Optional[str] = None,
    email: Optional[str] = None,
    field: str = "password",
) -> list[Violation]:
    """Return every rule the password breaks. Empty list means acceptable.

    `field` names the request field the password came from ("password" at
    registration, "newPassword" at password change) so errors line up with
    the form.
    """
    violations: list[Violation] = []

    def fail(message: str, where: str = field) -> None:
        violations.append(Violation(field=where, message=message))

    if len(password) < MIN_LENGTH:
        fail(f"Password must be at least {MIN_LENGTH} characters long")
    if not _LOWER_RE.search(password):
        fail("Password must contain at least one lowercase letter")
    if not _UPPER_RE.search(password):
        fail("Password must contain at least one uppercase letter")
    if not _DIGIT_RE.search(password):
        fail("Password must contain at least one number")
    if not _SYMBOL_RE.search(password):
        fail(f"Password must contain at least one special character ({ALLOWED_SYMBOLS})")
    if not _ALLOWED_RE.fullmatch(password):
        fail(f"Password may only contain letters, numbers and {ALLOWED_SYMBOLS}")

    lowered = password.lower()
    if name and name.strip() and name.strip().lower() in lowered:
        fail("Password cannot contain your name")
    if email and "@" in email:
        local_part = email.split("@", 1)[0].strip().lower()
        if local_part and local_part in lowered:
            fail("Password cannot contain your email username")

    if confirm_password != password:
        fail("Passwords do not match", where="confirmPassword")

    return violations


def enforce_password_policy(
    password: str,
    confirm_password: Optional[str],
    name: Optional[str] = None,
    email: Optional[str] = None,
    field: str = "password",
) -> None:
    """Raise ValidationError listing every violation, or return None if the password passes."""
    violations = check_password(password, confirm_password, name=name, email=email, field=field)
    if violations:
        raise ValidationError(violations, message="Password does not meet the password policy.")

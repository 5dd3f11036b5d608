"""Unit tests for auth/password_policy.py.

Covers:
- every violated rule is reported, not just the first
- contextual rejection: name and email local part, case-insensitive
- confirmation mismatch is addressed to confirmPassword
- enforce_password_policy raises ValidationError carrying the full list
"""

import pytest

from auth.password_policy import MIN_LENGTH, check_password, enforce_password_policy
from core.errors import ValidationError

ALICE = {"name": "Alice", "email": "alice@x.com"}


def _messages(violations) -> list[str]:
    return [v.message for v in violations]


def test_strong_password_accepted():
    assert check_password("Str0ng!Pass", "Str0ng!Pass", **ALICE) == []


def test_weak_password_reports_multiple_violations():
    violations = check_password("password123", "password123", **ALICE)
    messages = _messages(violations)
    assert len(violations) >= 2
    assert any("uppercase" in m for m in messages)
    assert any("special character" in m for m in messages)
    assert all(v.field == "password" for v in violations)


def test_password_containing_name_rejected():
    violations = check_password("Alice2024!", "Alice2024!", **ALICE)
    # "alice" is both the name and the email local part
    assert set(_messages(violations)) == {
        "Password cannot contain your name",
        "Password cannot contain your email username",
    }


def test_name_check_is_case_insensitive():
    violations = check_password("xALICEx9!", "xALICEx9!", name="alice", email="someone@x.com")
    assert "Password cannot contain your name" in _messages(violations)


def test_password_containing_email_local_part_rejected():
    violations = check_password("Bob.smith", "Bob.smith", name="Robert", email="bob.smith@corp.com")
    assert "Password cannot contain your email username" in _messages(violations)
    # the dot is outside the allowed character set as well
    assert any("may only contain" in m for m in _messages(violations))


def test_short_password_rejected():
    violations = check_password("Ab1!", "Ab1!", **ALICE)
    assert f"Password must be at least {MIN_LENGTH} characters long" in _messages(violations)


def test_seven_characters_is_too_short():
    assert any("at least 8" in m for m in _messages(check_password("Abcde1!", "Abcde1!")))


def test_eight_characters_is_enough():
    assert check_password("Abcde12!", "Abcde12!") == []


def test_confirmation_mismatch_reported_on_confirm_field():
    violations = check_password("Str0ng!Pass", "Str0ng!Pasz", **ALICE)
    assert len(violations) == 1
    assert violations[0].field == "confirmPassword"
    assert violations[0].message == "Passwords do not match"


def test_missing_context_skips_contextual_rules():
    assert check_password("Str0ng!Pass", "Str0ng!Pass", name=None, email=None) == []


def test_field_name_is_configurable():
    violations = check_password("weak", "weak", field="newPassword")
    assert violations
    assert {v.field for v in violations} == {"newPassword"}


def test_enforce_raises_with_every_violation():
    with pytest.raises(ValidationError) as excinfo:
        enforce_password_policy("password123", "different", **ALICE)
    fields = [v.field for v in excinfo.value.violations]
    assert "confirmPassword" in fields
    assert fields.count("password") >= 2
    assert excinfo.value.status_code == 400


def test_enforce_passes_silently_for_valid_password():
    assert enforce_password_policy("Str0ng!Pass", "Str0ng!Pass", **ALICE) is None


@pytest.mark.parametrize("password", ["N3w!Passw0rd\n", "  Str0ng!Pass  ", "Str0ng!\tPass"])
def test_whitespace_anywhere_is_outside_the_allowed_set(password):
    messages = _messages(check_password(password, password))
    assert "Password may only contain letters, numbers and @$!%*?&" in messages

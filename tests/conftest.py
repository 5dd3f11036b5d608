"""
tests/conftest.py -- Shared test fixtures for the reimbursement service.

This module provides:
  - FakeClock: a settable clock for driving session idle timeouts
  - user_store / audit / expense_store: isolated in-memory stores for unit tests
  - clock / session_manager: a SessionManager wired to those stores
  - client: TestClient over the real app with a patched lifespan
  - register_user(): helper that registers through the API and returns (token, user)

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient fixtures because route handlers run in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format shares one in-memory instance across all
connections in the same process; a uuid in the name isolates each test.

DEBUG and RATE_LIMIT_ENABLED must be set before any app import so
get_settings() auto-generates SECRET_KEY and the login limiter stays off.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_state
from auth.audit import AuditLogger
from auth.sessions import InMemorySessionStore, SessionManager
from auth.store import UserStore
from expenses.store import ExpenseStore

STRONG_PASSWORD = "Str0ng!Pass"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=_memory_url("users"))
    yield store
    store.close()


@pytest.fixture
def audit() -> Generator[AuditLogger, None, None]:
    logger = AuditLogger(db_url=_memory_url("audit"))
    yield logger
    logger.close()


@pytest.fixture
def expense_store() -> Generator[ExpenseStore, None, None]:
    store = ExpenseStore(db_url=_memory_url("expenses"))
    yield store
    store.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_manager(user_store: UserStore, audit: AuditLogger, clock: FakeClock) -> SessionManager:
    return SessionManager(InMemorySessionStore(), user_store, audit, clock=clock)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(user_store: UserStore, audit: AuditLogger, expenses: ExpenseStore, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores into app.state through the same build_state() the
    real lifespan uses, with the fake clock injected into the session manager.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_state(app, user_store, audit, expenses, clock=clock)
        yield
        app.state.sessions.store.clear()

    return test_lifespan


@pytest.fixture
def client(
    user_store: UserStore,
    audit: AuditLogger,
    expense_store: ExpenseStore,
    clock: FakeClock,
) -> Generator[TestClient, None, None]:
    """TestClient over the real app with isolated stores and a fake clock."""
    app.router.lifespan_context = _patch_lifespan(user_store, audit, expense_store, clock)
    with TestClient(app, raise_server_exceptions=True) as test_client:
        yield test_client


def register_user(
    client: TestClient,
    name: str,
    email: str,
    role: str = "employee",
    password: str = STRONG_PASSWORD,
    department: str = "Finance",
) -> tuple[str, dict]:
    """Register through the API and return (token, user payload). Fails the test on non-201."""
    resp = client.post(
        "/api/auth/register",
        json={
            "name": name,
            "email": email,
            "password": password,
            "confirmPassword": password,
            "department": department,
            "role": role,
        },
    )
    assert resp.status_code == 201, f"register failed: {resp.status_code} {resp.text}"
    data = resp.json()
    # Drop the cookie so each request authenticates only through the header it sends.
    client.cookies.clear()
    return data["token"], data["user"]


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}

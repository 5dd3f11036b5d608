"""
tests/test_health.py -- Integration tests for GET /api/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' when the user store answers, 'error' otherwise
  - No authentication required
  - Security headers are present on every response
"""

from __future__ import annotations


def test_health_returns_200_with_components(client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"] == {"app": "ok", "database": "ok"}
    assert data["audit_write_failures"] == 0


def test_health_no_auth_required(client):
    resp = client.get("/api/health", headers={})
    assert resp.status_code == 200


def test_health_degraded_when_database_unreachable(client, user_store, monkeypatch):
    def boom():
        raise RuntimeError("database is locked")

    monkeypatch.setattr(user_store, "ping", boom)
    data = client.get("/api/health").json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_security_headers(client):
    resp = client.get("/api/health")
    assert resp.headers["x-content-type-options"] == "nosniff"
    assert resp.headers["x-frame-options"] == "DENY"

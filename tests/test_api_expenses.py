"""
tests/test_api_expenses.py -- Integration tests for /api/expenses.

Covers:
  - every route requires a session
  - ownership: employee B cannot read employee A's expense; manager and owner can
  - absent expense is 404 for everyone
  - review is manager/admin only, pending-only, and audited
  - stats count approved expenses only
  - delete: owner or admin, pending only
"""

from __future__ import annotations

import pytest
from conftest import bearer, register_user


@pytest.fixture
def people(client):
    alice, _ = register_user(client, "Alice", "alice@acme.com")
    bob, _ = register_user(client, "Bob", "bob@acme.com", department="Sales")
    manager, _ = register_user(client, "Mara", "mara@acme.com", role="manager")
    admin, _ = register_user(client, "Root", "root@acme.com", role="admin")
    return {"alice": alice, "bob": bob, "manager": manager, "admin": admin}


def _submit(client, token, amount=120.0, category="Travel", date="2026-02-14"):
    resp = client.post(
        "/api/expenses",
        headers=bearer(token),
        json={
            "title": "Client visit",
            "description": "Train tickets to Lyon",
            "amount": amount,
            "category": category,
            "date": date,
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


def _review(client, token, expense_id, status):
    return client.patch(f"/api/expenses/{expense_id}/status", headers=bearer(token), json={"status": status})


def test_routes_require_a_session(client):
    assert client.get("/api/expenses/mine").status_code == 401
    assert client.post("/api/expenses", json={}).status_code == 401


def test_submit_starts_pending_and_is_owned_by_caller(client, people, audit):
    expense = _submit(client, people["alice"])
    assert expense["status"] == "pending"
    mine = client.get("/api/expenses/mine", headers=bearer(people["alice"])).json()
    assert [e["id"] for e in mine] == [expense["id"]]
    assert client.get("/api/expenses/mine", headers=bearer(people["bob"])).json() == []
    assert len(audit.list_entries(action="EXPENSE_CREATE")) == 1


def test_submit_validates_body(client, people):
    resp = client.post(
        "/api/expenses",
        headers=bearer(people["alice"]),
        json={"title": "x", "description": "bad", "amount": -5, "category": "Yachts", "date": "soon"},
    )
    assert resp.status_code == 422
    fields = {e["field"] for e in resp.json()["errors"]}
    assert {"description", "amount", "category", "date"} <= fields


def test_ownership_rules_on_read(client, people):
    expense = _submit(client, people["alice"])
    url = f"/api/expenses/{expense['id']}"

    assert client.get(url, headers=bearer(people["alice"])).status_code == 200
    assert client.get(url, headers=bearer(people["manager"])).status_code == 200
    assert client.get(url, headers=bearer(people["admin"])).status_code == 200

    resp = client.get(url, headers=bearer(people["bob"]))
    assert resp.status_code == 403
    assert resp.json()["message"] == "You do not have permission to access this resource"


def test_missing_expense_is_404_for_everyone(client, people):
    for who in ("bob", "manager"):
        resp = client.get("/api/expenses/9999", headers=bearer(people[who]))
        assert resp.status_code == 404


def test_list_all_is_manager_or_admin(client, people):
    _submit(client, people["alice"])
    _submit(client, people["bob"])
    assert client.get("/api/expenses", headers=bearer(people["alice"])).status_code == 403
    assert len(client.get("/api/expenses", headers=bearer(people["manager"])).json()) == 2
    resp = client.get("/api/expenses", headers=bearer(people["admin"]), params={"status": "approved"})
    assert resp.json() == []


def test_review_flow(client, people, audit):
    expense = _submit(client, people["alice"])

    assert _review(client, people["alice"], expense["id"], "approved").status_code == 403

    resp = _review(client, people["manager"], expense["id"], "approved")
    assert resp.status_code == 200
    assert resp.json()["status"] == "approved"
    assert resp.json()["reviewed_by"] is not None

    again = _review(client, people["manager"], expense["id"], "rejected")
    assert again.status_code == 409
    assert again.json()["code"] == "invalid_state"

    [ok] = [e for e in audit.list_entries(action="EXPENSE_APPROVE") if e.status.value == "SUCCESS"]
    assert ok.details == {"expense_id": expense["id"]}
    assert _review(client, people["manager"], 9999, "approved").status_code == 404


def test_review_cannot_set_pending(client, people):
    expense = _submit(client, people["alice"])
    assert _review(client, people["manager"], expense["id"], "pending").status_code == 409


def test_stats_only_count_approved(client, people):
    approved = _submit(client, people["alice"], amount=100, category="Travel", date="2026-01-10")
    rejected = _submit(client, people["alice"], amount=40, category="Meals", date="2026-01-11")
    _submit(client, people["alice"], amount=999, category="Equipment", date="2026-02-01")
    _review(client, people["manager"], approved["id"], "approved")
    _review(client, people["manager"], rejected["id"], "rejected")

    stats = client.get("/api/expenses/stats", headers=bearer(people["alice"])).json()
    assert stats["categoryStats"] == [{"category": "Travel", "total": 100.0, "count": 1}]
    assert stats["monthlyStats"] == [{"month": "2026-01", "total": 100.0}]


def test_delete_rules(client, people, audit):
    mine = _submit(client, people["alice"])
    url = f"/api/expenses/{mine['id']}"

    assert client.delete(url, headers=bearer(people["bob"])).status_code == 403
    assert client.delete(url, headers=bearer(people["manager"])).status_code == 403
    assert client.delete(url, headers=bearer(people["alice"])).status_code == 204
    assert client.get(url, headers=bearer(people["alice"])).status_code == 404

    other = _submit(client, people["alice"])
    assert client.delete(f"/api/expenses/{other['id']}", headers=bearer(people["admin"])).status_code == 204
    assert len(audit.list_entries(action="EXPENSE_DELETE")) == 2


def test_reviewed_expense_cannot_be_deleted(client, people):
    expense = _submit(client, people["alice"])
    _review(client, people["manager"], expense["id"], "rejected")
    resp = client.delete(f"/api/expenses/{expense['id']}", headers=bearer(people["alice"]))
    assert resp.status_code == 409

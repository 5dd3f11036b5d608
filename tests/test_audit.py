"""Unit tests for auth/audit.py -- append-only audit log.

Covers:
- entries round-trip with nullable user_id and JSON details
- filtering by user and action, newest first
- a failing write is swallowed, counted, and logged -- never raised
"""

import logging
from unittest.mock import MagicMock

from auth.models import AuditAction, AuditStatus, RequestContext

CTX = RequestContext(ip_address="192.0.2.1", user_agent="agent/1.0")


def test_record_and_list(audit):
    assert audit.record(7, AuditAction.LOGIN, CTX, AuditStatus.SUCCESS) is True
    [entry] = audit.list_entries()
    assert entry.user_id == 7
    assert entry.action is AuditAction.LOGIN
    assert entry.status is AuditStatus.SUCCESS
    assert entry.ip_address == "192.0.2.1"
    assert entry.user_agent == "agent/1.0"
    assert entry.details is None
    assert entry.timestamp


def test_unknown_actor_and_details(audit):
    audit.record(None, AuditAction.LOGIN_FAILED, CTX, AuditStatus.FAILURE, details={"reason": "unknown_email"})
    [entry] = audit.list_entries(action=AuditAction.LOGIN_FAILED)
    assert entry.user_id is None
    assert entry.details == {"reason": "unknown_email"}


def test_filters_and_ordering(audit):
    audit.record(1, AuditAction.LOGIN, CTX, AuditStatus.SUCCESS)
    audit.record(2, AuditAction.LOGIN, CTX, AuditStatus.SUCCESS)
    audit.record(1, AuditAction.LOGOUT, CTX, AuditStatus.SUCCESS)

    user_one = audit.list_entries(user_id=1)
    assert [e.action for e in user_one] == [AuditAction.LOGOUT, AuditAction.LOGIN]

    logins = audit.list_entries(action=AuditAction.LOGIN)
    assert {e.user_id for e in logins} == {1, 2}

    assert len(audit.list_entries(limit=2)) == 2


def test_no_mutation_api(audit):
    assert not hasattr(audit, "update")
    assert not hasattr(audit, "delete")


def test_write_failure_is_swallowed_and_counted(audit, caplog):
    real_engine = audit.engine
    broken = MagicMock()
    broken.connect.side_effect = RuntimeError("database is gone")
    audit.engine = broken
    try:
        with caplog.at_level(logging.ERROR, logger="reimburse.audit"):
            assert audit.record(1, AuditAction.LOGIN, CTX, AuditStatus.SUCCESS) is False
    finally:
        audit.engine = real_engine

    assert audit.failed_writes == 1
    assert any("Audit write failed" in r.getMessage() for r in caplog.records)
    assert audit.list_entries() == []

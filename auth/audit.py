"""
auth/audit.py -- Append-only audit log for security-relevant events.

Pattern: Repository + Data Mapper, insert-only. There is deliberately no
update or delete method; the table is written by record() and read by
list_entries() and nothing else.

Failure policy:
  An audit write must never decide the outcome of the operation it
  describes. record() catches storage errors, writes the full traceback to
  the "reimburse.audit" logger and increments failed_writes, which /health
  reports. The login, logout or expense action that triggered the write
  carries on unchanged.

Layer rule: no imports from api/ or expenses/.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Optional

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.models import AuditAction, AuditEntry, AuditStatus, RequestContext
from core.config import get_settings
from core.db import make_engine, now_iso

logger = logging.getLogger("reimburse.audit")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),  # NULL when the actor is unknown
    Column("action", String(30), nullable=False),
    Column("ip_address", String(64), nullable=False),
    Column("user_agent", Text, nullable=False),
    Column("status", String(10), nullable=False),
    Column("details", Text),  # JSON object serialized as text
    Column("timestamp", String(32), nullable=False),
    Index("ix_audit_user_action_ts", "user_id", "action", "timestamp"),
    Index("ix_audit_ip_ts", "ip_address", "timestamp"),
)


class AuditLogger:
    """Insert-only store of AuditEntry records.

    Usage:
        audit = AuditLogger()
        audit.record(user.id, AuditAction.LOGIN, ctx, AuditStatus.SUCCESS)
        audit.list_entries(user_id=user.id)
    """

    def __init__(self, db_url: Optional[str] = None, timeout: Optional[float] = None) -> None:
        settings = get_settings()
        self.engine: Engine = make_engine(
            db_url or settings.database_url,
            timeout=timeout if timeout is not None else settings.db_timeout_seconds,
        )
        _metadata.create_all(self.engine)
        self._failures_lock = threading.Lock()
        self.failed_writes = 0

    def record(
        self,
        user_id: Optional[int],
        action: AuditAction,
        context: RequestContext,
        status: AuditStatus,
        details: Optional[dict[str, Any]] = None,
    ) -> bool:
        """Append one entry. Returns False (and logs) if the write failed; never raises."""
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _audit_log.insert().values(
                        user_id=user_id,
                        action=AuditAction(action).value,
                        ip_address=context.ip_address,
                        user_agent=context.user_agent,
                        status=AuditStatus(status).value,
                        details=json.dumps(details) if details is not None else None,
                        timestamp=now_iso(),
                    )
                )
                conn.commit()
        except Exception:
            with self._failures_lock:
                self.failed_writes += 1
            logger.exception(
                "Audit write failed action=%s status=%s user_id=%s",
                getattr(action, "value", action),
                getattr(status, "value", status),
                user_id,
            )
            return False
        return True

    def list_entries(
        self,
        user_id: Optional[int] = None,
        action: Optional[AuditAction] = None,
        limit: int = 100,
    ) -> list[AuditEntry]:
        """Return entries newest first, optionally filtered by user and action."""
        query = _audit_log.select()
        if user_id is not None:
            query = query.where(_audit_log.c.user_id == user_id)
        if action is not None:
            query = query.where(_audit_log.c.action == AuditAction(action).value)
        query = query.order_by(_audit_log.c.id.desc()).limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        user_id=row.user_id,
        action=AuditAction(row.action),
        status=AuditStatus(row.status),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        details=json.loads(row.details) if row.details else None,
        timestamp=row.timestamp,
    )

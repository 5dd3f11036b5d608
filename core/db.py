"""
core/db.py -- Engine construction shared by every SQLAlchemy-backed store.

Each store (auth/store.py, auth/audit.py, expenses/store.py) owns its own
tables and engine; this module only centralizes how an engine is built so the
SQLite tuning is identical everywhere.

Layer rule: core/ is the kernel. No imports from api/, auth/, or expenses/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, timeout: float = 5.0) -> Engine:
    """Create an engine for db_url.

    SQLite connections are shareable across the FastAPI thread pool
    (check_same_thread=False) and wait at most `timeout` seconds for a lock
    before raising, so a stuck writer cannot hang a request indefinitely.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = timeout
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

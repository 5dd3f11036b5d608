"""
expenses/store.py -- SQLAlchemy-backed persistence for expense records.

Uses SQLAlchemy Core (not ORM) so the dataclasses in expenses/models.py stay
the authoritative domain representation.

Pattern: Repository + Data Mapper. ExpenseStore is the repository; the
_row_to_expense function is the mapper. Route handlers never touch SQL.

Review transitions are guarded in the UPDATE itself (WHERE status='pending'),
so two managers reviewing the same expense at once cannot both succeed.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = ExpenseStore()
    expense_id = store.create_expense(expense)
    store.review(expense_id, ExpenseStatus.approved, reviewer_id=7)
    store.category_totals(user_id=3)
    store.close()
"""

from typing import Optional

from sqlalchemy import Column, Float, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.db import make_engine, now_iso
from expenses.models import Expense, ExpenseCategory, ExpenseStatus

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_expenses = Table(
    "expenses",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("title", String(200), nullable=False),
    Column("description", Text, nullable=False),
    Column("amount", Float, nullable=False),
    Column("category", String(50), nullable=False),
    Column("date", String(10), nullable=False),  # YYYY-MM-DD
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("receipt", Text),
    Column("reviewed_by", Integer),
    Column("reviewed_at", String(32)),
    Column("created_at", String(32), nullable=False),
)


class ExpenseStore:
    """Repository for Expense records."""

    def __init__(self, db_url: Optional[str] = None, timeout: Optional[float] = None) -> None:
        settings = get_settings()
        self.engine: Engine = make_engine(
            db_url or settings.database_url,
            timeout=timeout if timeout is not None else settings.db_timeout_seconds,
        )
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def create_expense(self, expense: Expense) -> int:
        """Insert a new pending expense and return its ID."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _expenses.insert().values(
                    user_id=expense.user_id,
                    title=expense.title,
                    description=expense.description,
                    amount=expense.amount,
                    category=ExpenseCategory(expense.category).value,
                    date=expense.date,
                    status=ExpenseStatus.pending.value,
                    receipt=expense.receipt,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def review(self, expense_id: int, status: ExpenseStatus, reviewer_id: int) -> bool:
        """Move a pending expense to approved or rejected.

        Returns False if the expense does not exist or is no longer pending.
        """
        status = ExpenseStatus(status)
        if status is ExpenseStatus.pending:
            raise ValueError("review() only moves expenses out of pending")
        with self.engine.connect() as conn:
            result = conn.execute(
                _expenses.update()
                .where((_expenses.c.id == expense_id) & (_expenses.c.status == ExpenseStatus.pending.value))
                .values(status=status.value, reviewed_by=reviewer_id, reviewed_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def delete_pending(self, expense_id: int) -> bool:
        """Delete an expense that has not been reviewed yet. Returns False otherwise."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _expenses.delete().where(
                    (_expenses.c.id == expense_id) & (_expenses.c.status == ExpenseStatus.pending.value)
                )
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_expense(self, expense_id: int) -> Optional[Expense]:
        with self.engine.connect() as conn:
            row = conn.execute(_expenses.select().where(_expenses.c.id == expense_id)).fetchone()
        return _row_to_expense(row) if row is not None else None

    def list_for_user(self, user_id: int) -> list[Expense]:
        """Return a user's expenses, newest expense date first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _expenses.select()
                .where(_expenses.c.user_id == user_id)
                .order_by(_expenses.c.date.desc(), _expenses.c.id.desc())
            ).fetchall()
        return [_row_to_expense(r) for r in rows]

    def list_all(self, status: Optional[ExpenseStatus] = None) -> list[Expense]:
        """Return every expense (optionally one status), newest expense date first."""
        query = _expenses.select()
        if status is not None:
            query = query.where(_expenses.c.status == ExpenseStatus(status).value)
        with self.engine.connect() as conn:
            rows = conn.execute(query.order_by(_expenses.c.date.desc(), _expenses.c.id.desc())).fetchall()
        return [_row_to_expense(r) for r in rows]

    def category_totals(self, user_id: int) -> list[dict]:
        """Approved totals per category for one user: [{category, total, count}]."""
        query = (
            select(
                _expenses.c.category,
                func.sum(_expenses.c.amount).label("total"),
                func.count().label("count"),
            )
            .where((_expenses.c.user_id == user_id) & (_expenses.c.status == ExpenseStatus.approved.value))
            .group_by(_expenses.c.category)
            .order_by(_expenses.c.category)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [{"category": r.category, "total": round(r.total or 0.0, 2), "count": r.count} for r in rows]

    def monthly_totals(self, user_id: int) -> list[dict]:
        """Approved totals per calendar month for one user, newest month first: [{month, total}]."""
        month = func.substr(_expenses.c.date, 1, 7)
        query = (
            select(month.label("month"), func.sum(_expenses.c.amount).label("total"))
            .where((_expenses.c.user_id == user_id) & (_expenses.c.status == ExpenseStatus.approved.value))
            .group_by(month)
            .order_by(month.desc())
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [{"month": r.month, "total": round(r.total or 0.0, 2)} for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_expense(row) -> Expense:
    return Expense(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        description=row.description,
        amount=row.amount,
        category=ExpenseCategory(row.category),
        date=row.date,
        status=ExpenseStatus(row.status),
        receipt=row.receipt,
        reviewed_by=row.reviewed_by,
        reviewed_at=row.reviewed_at,
        created_at=row.created_at,
    )

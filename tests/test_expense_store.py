"""Unit tests for expenses/store.py.

Covers:
- review only moves pending expenses, and only once
- delete_pending refuses reviewed expenses
- approved-only category and monthly totals
"""

import pytest

from expenses.models import Expense, ExpenseCategory, ExpenseStatus


def _expense(user_id: int, amount: float, category=ExpenseCategory.travel, date="2026-03-10") -> Expense:
    return Expense(
        user_id=user_id,
        title="Trip",
        description="Client visit",
        amount=amount,
        category=category,
        date=date,
    )


def test_create_starts_pending(expense_store):
    expense_id = expense_store.create_expense(_expense(1, 42.5))
    expense = expense_store.get_expense(expense_id)
    assert expense.status is ExpenseStatus.pending
    assert expense.user_id == 1
    assert expense.created_at


def test_review_moves_pending_once(expense_store):
    expense_id = expense_store.create_expense(_expense(1, 10))
    assert expense_store.review(expense_id, ExpenseStatus.approved, reviewer_id=9) is True
    assert expense_store.review(expense_id, ExpenseStatus.rejected, reviewer_id=9) is False
    expense = expense_store.get_expense(expense_id)
    assert expense.status is ExpenseStatus.approved
    assert expense.reviewed_by == 9
    assert expense.reviewed_at


def test_review_to_pending_is_rejected(expense_store):
    expense_id = expense_store.create_expense(_expense(1, 10))
    with pytest.raises(ValueError):
        expense_store.review(expense_id, ExpenseStatus.pending, reviewer_id=9)


def test_delete_only_pending(expense_store):
    pending = expense_store.create_expense(_expense(1, 10))
    reviewed = expense_store.create_expense(_expense(1, 20))
    expense_store.review(reviewed, ExpenseStatus.rejected, reviewer_id=9)

    assert expense_store.delete_pending(pending) is True
    assert expense_store.get_expense(pending) is None
    assert expense_store.delete_pending(reviewed) is False


def test_list_scopes(expense_store):
    expense_store.create_expense(_expense(1, 10, date="2026-01-01"))
    expense_store.create_expense(_expense(1, 20, date="2026-02-01"))
    expense_store.create_expense(_expense(2, 30))
    mine = expense_store.list_for_user(1)
    assert [e.date for e in mine] == ["2026-02-01", "2026-01-01"]
    assert len(expense_store.list_all()) == 3
    assert len(expense_store.list_all(ExpenseStatus.approved)) == 0


def test_totals_count_approved_only(expense_store):
    rows = [
        (_expense(1, 100, ExpenseCategory.travel, "2026-01-05"), ExpenseStatus.approved),
        (_expense(1, 50, ExpenseCategory.travel, "2026-02-05"), ExpenseStatus.approved),
        (_expense(1, 25.25, ExpenseCategory.meals, "2026-02-10"), ExpenseStatus.approved),
        (_expense(1, 999, ExpenseCategory.meals, "2026-02-11"), ExpenseStatus.rejected),
        (_expense(2, 70, ExpenseCategory.travel, "2026-02-05"), ExpenseStatus.approved),
    ]
    for expense, status in rows:
        expense_id = expense_store.create_expense(expense)
        expense_store.review(expense_id, status, reviewer_id=9)
    expense_store.create_expense(_expense(1, 5000, ExpenseCategory.other))  # still pending

    assert expense_store.category_totals(1) == [
        {"category": "Meals", "total": 25.25, "count": 1},
        {"category": "Travel", "total": 150.0, "count": 2},
    ]
    assert expense_store.monthly_totals(1) == [
        {"month": "2026-02", "total": 75.25},
        {"month": "2026-01", "total": 100.0},
    ]

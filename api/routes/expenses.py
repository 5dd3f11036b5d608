"""
api/routes/expenses.py -- Expense submission and review routes.

Routes (in registration order to avoid FastAPI path capture conflicts):
  POST   /expenses                -- submit (any authenticated role)
  GET    /expenses/mine           -- caller's own expenses
  GET    /expenses/stats          -- caller's approved totals by category / month
  GET    /expenses                -- every expense (manager, admin)
  GET    /expenses/{id}           -- one expense (owner, manager, admin)
  PATCH  /expenses/{id}/status    -- approve / reject a pending expense (manager, admin)
  DELETE /expenses/{id}           -- withdraw a pending expense (owner, admin)

These handlers only ever see an AuthenticatedIdentity, never the User record.
Capabilities come from auth.access.ROLE_CAPABILITIES; ownership checks use
require_ownership_or_role() after the handler has looked the expense up.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from api.models import (
    CategoryStat,
    ExpenseCreate,
    ExpenseResponse,
    ExpenseStatsResponse,
    ExpenseStatusUpdate,
    MonthlyStat,
)
from auth.access import EXPENSE_PRIVILEGED_ROLES, Capability, require_ownership_or_role
from auth.audit import AuditLogger
from auth.dependencies import get_identity, request_context, require_capability
from auth.models import AuditAction, AuditStatus, AuthenticatedIdentity, Role
from core.errors import InvalidStateError
from expenses.models import Expense, ExpenseStatus
from expenses.store import ExpenseStore

logger = logging.getLogger("reimburse.expenses")

# Every expense route requires a live session; individual routes add
# capability checks on top.
router = APIRouter(dependencies=[Depends(get_identity)])

_REVIEW_ACTIONS = {
    ExpenseStatus.approved: AuditAction.EXPENSE_APPROVE,
    ExpenseStatus.rejected: AuditAction.EXPENSE_REJECT,
}


@router.post("/expenses", response_model=ExpenseResponse, status_code=201)
def submit_expense(
    request: Request,
    body: ExpenseCreate,
    identity: AuthenticatedIdentity = Depends(require_capability(Capability.EXPENSE_SUBMIT)),
) -> ExpenseResponse:
    """Submit a new expense owned by the caller. It starts in pending."""
    store: ExpenseStore = request.app.state.expenses
    audit: AuditLogger = request.app.state.audit
    expense_id = store.create_expense(
        Expense(
            user_id=identity.id,
            title=body.title,
            description=body.description,
            amount=body.amount,
            category=body.category,
            date=body.date.isoformat(),
            receipt=body.receipt,
        )
    )
    audit.record(
        identity.id,
        AuditAction.EXPENSE_CREATE,
        request_context(request),
        AuditStatus.SUCCESS,
        details={"expense_id": expense_id, "amount": body.amount, "category": body.category.value},
    )
    return _to_response(store.get_expense(expense_id))


@router.get("/expenses/mine", response_model=list[ExpenseResponse])
def my_expenses(
    request: Request,
    identity: AuthenticatedIdentity = Depends(require_capability(Capability.EXPENSE_READ_OWN)),
) -> list[ExpenseResponse]:
    store: ExpenseStore = request.app.state.expenses
    return [_to_response(e) for e in store.list_for_user(identity.id)]


@router.get("/expenses/stats", response_model=ExpenseStatsResponse)
def expense_stats(
    request: Request,
    identity: AuthenticatedIdentity = Depends(require_capability(Capability.EXPENSE_READ_OWN)),
) -> ExpenseStatsResponse:
    """Approved totals for the caller, per category and per month."""
    store: ExpenseStore = request.app.state.expenses
    return ExpenseStatsResponse(
        categoryStats=[CategoryStat(**row) for row in store.category_totals(identity.id)],
        monthlyStats=[MonthlyStat(**row) for row in store.monthly_totals(identity.id)],
    )


@router.get("/expenses", response_model=list[ExpenseResponse])
def all_expenses(
    request: Request,
    status: Optional[ExpenseStatus] = None,
    identity: AuthenticatedIdentity = Depends(require_capability(Capability.EXPENSE_READ_ALL)),
) -> list[ExpenseResponse]:
    """Every expense in the system, optionally filtered by status. Manager/admin only."""
    store: ExpenseStore = request.app.state.expenses
    return [_to_response(e) for e in store.list_all(status)]


@router.get("/expenses/{expense_id}", response_model=ExpenseResponse)
def get_expense(
    request: Request,
    expense_id: int,
    identity: AuthenticatedIdentity = Depends(get_identity),
) -> ExpenseResponse:
    """One expense. Visible to its submitter and to managers/admins."""
    store: ExpenseStore = request.app.state.expenses
    expense = store.get_expense(expense_id)
    require_ownership_or_role(identity, expense.user_id if expense else None, EXPENSE_PRIVILEGED_ROLES)
    return _to_response(expense)


@router.patch("/expenses/{expense_id}/status", response_model=ExpenseResponse)
def review_expense(
    request: Request,
    expense_id: int,
    body: ExpenseStatusUpdate,
    identity: AuthenticatedIdentity = Depends(require_capability(Capability.EXPENSE_REVIEW)),
) -> ExpenseResponse:
    """Approve or reject a pending expense. Manager/admin only."""
    store: ExpenseStore = request.app.state.expenses
    audit: AuditLogger = request.app.state.audit
    ctx = request_context(request)

    expense = store.get_expense(expense_id)
    require_ownership_or_role(identity, expense.user_id if expense else None, EXPENSE_PRIVILEGED_ROLES)
    if body.status is ExpenseStatus.pending:
        raise InvalidStateError("Status must be approved or rejected.")
    action = _REVIEW_ACTIONS[body.status]
    if not store.review(expense_id, body.status, reviewer_id=identity.id):
        audit.record(
            identity.id,
            action,
            ctx,
            AuditStatus.FAILURE,
            details={"expense_id": expense_id, "reason": "not pending"},
        )
        raise InvalidStateError("Only pending expenses can be reviewed.")
    audit.record(identity.id, action, ctx, AuditStatus.SUCCESS, details={"expense_id": expense_id})
    logger.info("Expense %s %s by user_id=%s", expense_id, body.status.value, identity.id)
    return _to_response(store.get_expense(expense_id))


@router.delete("/expenses/{expense_id}", status_code=204)
def delete_expense(
    request: Request,
    expense_id: int,
    identity: AuthenticatedIdentity = Depends(require_capability(Capability.EXPENSE_DELETE_OWN)),
) -> Response:
    """Withdraw a pending expense. The submitter or an admin may do this."""
    store: ExpenseStore = request.app.state.expenses
    audit: AuditLogger = request.app.state.audit

    expense = store.get_expense(expense_id)
    require_ownership_or_role(identity, expense.user_id if expense else None, {Role.admin})
    if not store.delete_pending(expense_id):
        raise InvalidStateError("Only pending expenses can be deleted.")
    audit.record(
        identity.id,
        AuditAction.EXPENSE_DELETE,
        request_context(request),
        AuditStatus.SUCCESS,
        details={"expense_id": expense_id, "owner_id": expense.user_id},
    )
    return Response(status_code=204)


def _to_response(expense: Expense) -> ExpenseResponse:
    return ExpenseResponse(
        id=expense.id,
        user_id=expense.user_id,
        title=expense.title,
        description=expense.description,
        amount=expense.amount,
        category=expense.category,
        date=expense.date,
        status=expense.status,
        receipt=expense.receipt,
        reviewed_by=expense.reviewed_by,
        reviewed_at=expense.reviewed_at,
        created_at=expense.created_at,
    )

"""
api/routes/audit.py -- Read-only view of the audit log.

Routes:
  GET /audit  -- newest entries first; filter by user_id and action (admin role only)

There is no write or delete route. Entries are only ever created by the
operations they describe.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditEntryResponse
from auth.audit import AuditLogger
from auth.dependencies import require_roles
from auth.models import AuditAction, Role

router = APIRouter(dependencies=[Depends(require_roles(Role.admin))])


@router.get("/audit", response_model=list[AuditEntryResponse])
def list_audit_entries(
    request: Request,
    user_id: Optional[int] = None,
    action: Optional[AuditAction] = None,
    limit: int = Query(default=100, ge=1, le=1000),
) -> list[AuditEntryResponse]:
    audit: AuditLogger = request.app.state.audit
    return [
        AuditEntryResponse(
            id=e.id,
            user_id=e.user_id,
            action=e.action,
            status=e.status,
            ip_address=e.ip_address,
            user_agent=e.user_agent,
            details=e.details,
            timestamp=e.timestamp,
        )
        for e in audit.list_entries(user_id=user_id, action=action, limit=limit)
    ]

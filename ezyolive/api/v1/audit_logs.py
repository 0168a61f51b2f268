from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional

from ...api.deps import get_admin_user
from ...core.database import get_db
from ...models.audit_log import AuditLog
from ...models.user import User
from ...schemas.audit_log import AuditLogListResponse, AuditLogResponse
from ...schemas.common import Pagination

router = APIRouter(prefix="/audit-logs", tags=["Audit"])

@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    user_id: Optional[int] = None,
    resource_type: Optional[str] = None,
    action: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: User = Depends(get_admin_user)
):
    """Browse the compliance log, newest first (admin only)."""
    query = db.query(AuditLog)
    if user_id is not None:
        query = query.filter(AuditLog.user_id == user_id)
    if resource_type:
        query = query.filter(AuditLog.resource_type == resource_type)
    if action:
        query = query.filter(AuditLog.action == action)

    total = query.count()
    logs = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).offset(
        (page - 1) * limit
    ).limit(limit).all()

    return AuditLogListResponse(
        results=len(logs),
        total=total,
        pagination=Pagination.build(page, limit, total),
        logs=[AuditLogResponse.model_validate(log) for log in logs],
    )

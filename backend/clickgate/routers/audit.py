import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.enforcement import require_permission
from ..auth.rbac_contract import Permission
from ..crud.audit_log import AuditLogRepository
from ..dependencies import get_db
from ..domain.access import Principal
from ..schemas.audit_log import AuditLogListResponse, AuditLogResponse

router = APIRouter(prefix="/rbac/audit", tags=["rbac-audit"])


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    user_id: uuid.UUID | None = None,
    action: str | None = None,
    resource_type: str | None = None,
    resource_id: str | None = None,
    status: str | None = Query(None, pattern="^(success|failure)$"),
    from_date: datetime | None = None,
    to_date: datetime | None = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    _: Principal = Depends(require_permission(Permission.AUDIT_VIEW)),
    db: AsyncSession = Depends(get_db),
) -> AuditLogListResponse:
    rows, total = await AuditLogRepository(db).list_by_filters(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        status=status,
        from_date=from_date,
        to_date=to_date,
        limit=limit,
        offset=offset,
    )
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(row) for row in rows],
        total=total,
        limit=limit,
        offset=offset,
    )

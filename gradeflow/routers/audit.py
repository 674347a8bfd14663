"""
Audit router — Read-only access to the audit trail (admin only).
"""

from typing import Optional

from dateutil import parser  # isoparse handles trailing Z safely
from fastapi import APIRouter, Depends, HTTPException, Query

from gradeflow.core.config import settings
from gradeflow.core.dependencies import get_store
from gradeflow.core.security import require_role
from gradeflow.core.storage import MarksStore
from gradeflow.schemas.audit import AuditAction, AuditEntity, AuditQuery
from gradeflow.utils.response import paginated_response, success_response

router = APIRouter(prefix="/api/audit-logs", tags=["Audit"])


def _parse_date(value: Optional[str], name: str):
    if not value:
        return None
    try:
        return parser.isoparse(value)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid {name}: {value}")


@router.get("")
async def list_audit_logs(
    action: Optional[AuditAction] = None,
    entity_type: Optional[AuditEntity] = None,
    user_id: Optional[str] = None,
    start_date: Optional[str] = None,
    end_date: Optional[str] = None,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1, le=500),
    user: dict = Depends(require_role(["admin"])),
    store: MarksStore = Depends(get_store),
):
    limit = limit or settings.AUDIT_PAGE_SIZE
    query = AuditQuery(
        action=action,
        entity_type=entity_type,
        user_id=user_id,
        start_date=_parse_date(start_date, "start_date"),
        end_date=_parse_date(end_date, "end_date"),
    )
    entries, total = await store.list_audit_logs(query, page=page, limit=limit)
    return paginated_response([e.model_dump(mode="json") for e in entries], total, page, limit)


@router.get("/entity/{entity_type}/{entity_id}")
async def entity_audit_logs(
    entity_type: AuditEntity,
    entity_id: str,
    user: dict = Depends(require_role(["admin"])),
    store: MarksStore = Depends(get_store),
):
    entries, _ = await store.list_audit_logs(
        AuditQuery(entity_type=entity_type, entity_id=entity_id), page=1, limit=500
    )
    return success_response(data=[e.model_dump(mode="json") for e in entries])

"""
Audit trail writer. Every mutating route records who did what to which entity.
"""

from typing import Any, Optional

from starlette.requests import Request

from gradeflow.core.storage import MarksStore
from gradeflow.schemas.audit import AuditAction, AuditEntity, AuditLogEntry


async def record_audit(
    store: MarksStore,
    user: dict,
    action: AuditAction,
    entity_type: AuditEntity,
    entity_id: Optional[str] = None,
    old_value: Any = None,
    new_value: Any = None,
    description: Optional[str] = None,
    request: Optional[Request] = None,
) -> AuditLogEntry:
    entry = AuditLogEntry(
        user_id=user.get("user_id", user.get("uid")),
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_value=old_value,
        new_value=new_value,
        description=description,
        ip_address=getattr(request.state, "client_ip", None) if request else None,
        user_agent=getattr(request.state, "user_agent", None) if request else None,
    )
    await store.add_audit_log(entry)
    return entry

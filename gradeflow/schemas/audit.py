"""
Pydantic schemas for the audit trail.
"""

import uuid
from datetime import datetime, timezone
from pydantic import BaseModel, Field
from typing import Any, Literal, Optional

AuditAction = Literal["CREATE", "READ", "UPDATE", "DELETE", "LOGIN", "LOGOUT", "UPLOAD", "DOWNLOAD"]
AuditEntity = Literal["USER", "EVALUATION_SCHEME", "STUDENT_MARKS", "ATTENDANCE", "AUTH", "SYSTEM"]


class AuditLogEntry(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    user_id: str
    action: AuditAction
    entity_type: AuditEntity
    entity_id: Optional[str] = None
    old_value: Optional[Any] = None
    new_value: Optional[Any] = None
    description: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AuditQuery(BaseModel):
    action: Optional[AuditAction] = None
    entity_type: Optional[AuditEntity] = None
    entity_id: Optional[str] = None
    user_id: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None

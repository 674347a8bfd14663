"""
Storage collaborator for the calculation engine and the routers.

Everything that crosses the storage boundary goes through ``MarksStore`` so the
engine can be handed an explicit store instead of reaching for a global
client. ``SupabaseMarksStore`` is the production implementation; every call is
an ``await`` point and every client failure surfaces as ``DependencyError``.
"""

import logging
from typing import Any, Optional, Protocol

from starlette.concurrency import run_in_threadpool
from supabase import Client

from gradeflow.core.errors import DependencyError, NotFoundError
from gradeflow.schemas.attendance import AttendanceRecord
from gradeflow.schemas.audit import AuditLogEntry, AuditQuery
from gradeflow.schemas.marks import MarksRecord
from gradeflow.schemas.scheme import EvaluationScheme

logger = logging.getLogger(__name__)

SCHEMES = "evaluation_schemes"
MARKS = "student_marks"
ATTENDANCE = "attendance"
AUDIT = "audit_logs"
USERS = "users"


class MarksStore(Protocol):
    # ---- schemes ----
    async def get_scheme(self, subject_id: str) -> EvaluationScheme: ...

    async def find_scheme_by_code(
        self, department: str, semester: int, subject_code: str
    ) -> Optional[EvaluationScheme]: ...

    async def list_schemes(self, filters: dict[str, Any]) -> list[EvaluationScheme]: ...

    async def save_scheme(self, scheme: EvaluationScheme) -> EvaluationScheme: ...

    # ---- attendance ----
    async def get_attendance_percentages(self, student_id: str, subject_id: str) -> list[float]: ...

    async def find_attendance(
        self, student_id: str, subject_id: str, month: int, year: int
    ) -> Optional[AttendanceRecord]: ...

    async def list_attendance(self, filters: dict[str, Any]) -> list[AttendanceRecord]: ...

    async def save_attendance(self, record: AttendanceRecord) -> AttendanceRecord: ...

    # ---- marks ----
    async def find_marks_records(self, subject_id: str, exclude_draft: bool = False) -> list[dict]: ...

    async def get_marks_record(self, record_id: str) -> MarksRecord: ...

    async def find_marks_record(self, student_id: str, subject_id: str) -> Optional[MarksRecord]: ...

    async def list_marks(self, filters: dict[str, Any]) -> list[MarksRecord]: ...

    async def persist_marks(self, record: MarksRecord) -> MarksRecord: ...

    async def delete_marks(self, record_id: str) -> None: ...

    # ---- users ----
    async def get_user(self, user_id: str) -> Optional[dict]: ...

    async def get_user_by_email(self, email: str) -> Optional[dict]: ...

    async def find_students(
        self, department: str, semester: int, section: Optional[str] = None
    ) -> list[dict]: ...

    # ---- audit ----
    async def add_audit_log(self, entry: AuditLogEntry) -> None: ...

    async def list_audit_logs(
        self, query: AuditQuery, page: int = 1, limit: int = 50
    ) -> tuple[list[AuditLogEntry], int]: ...


def _apply_filters(query, filters: dict[str, Any]):
    for column, value in filters.items():
        if value is None:
            continue
        query = query.eq(column, value)
    return query


class SupabaseMarksStore:
    def __init__(self, client: Client):
        self.db = client

    async def _execute(self, operation: str, query):
        try:
            return await run_in_threadpool(query.execute)
        except Exception as exc:
            logger.error("Storage operation '%s' failed: %s", operation, exc)
            raise DependencyError(f"Storage failure during {operation}") from exc

    async def _first(self, operation: str, query) -> Optional[dict]:
        result = await self._execute(operation, query.limit(1))
        return result.data[0] if result.data else None

    # ---- schemes ----
    async def get_scheme(self, subject_id: str) -> EvaluationScheme:
        row = await self._first("get_scheme", self.db.table(SCHEMES).select("*").eq("id", subject_id))
        if not row:
            raise NotFoundError("Evaluation scheme not found", {"subject_id": subject_id})
        return EvaluationScheme.model_validate(row)

    async def find_scheme_by_code(self, department, semester, subject_code):
        query = (
            self.db.table(SCHEMES)
            .select("*")
            .eq("department", department)
            .eq("semester", semester)
            .eq("subject_code", subject_code.strip().upper())
        )
        row = await self._first("find_scheme_by_code", query)
        return EvaluationScheme.model_validate(row) if row else None

    async def list_schemes(self, filters):
        filters = dict(filters)
        code = filters.pop("subject_code", None)
        query = _apply_filters(self.db.table(SCHEMES).select("*"), filters)
        if code:
            query = query.ilike("subject_code", f"%{code}%")
        result = await self._execute("list_schemes", query.order("semester").order("subject_code"))
        return [EvaluationScheme.model_validate(row) for row in result.data]

    async def save_scheme(self, scheme):
        query = self.db.table(SCHEMES).upsert(scheme.model_dump(mode="json"), on_conflict="id")
        result = await self._execute("save_scheme", query)
        return EvaluationScheme.model_validate(result.data[0]) if result.data else scheme

    # ---- attendance ----
    async def get_attendance_percentages(self, student_id, subject_id):
        query = (
            self.db.table(ATTENDANCE)
            .select("percentage")
            .eq("student_id", student_id)
            .eq("subject_id", subject_id)
        )
        result = await self._execute("get_attendance_percentages", query)
        return [float(row["percentage"] or 0) for row in result.data]

    async def find_attendance(self, student_id, subject_id, month, year):
        query = (
            self.db.table(ATTENDANCE)
            .select("*")
            .eq("student_id", student_id)
            .eq("subject_id", subject_id)
            .eq("month", month)
            .eq("year", year)
        )
        row = await self._first("find_attendance", query)
        return AttendanceRecord.model_validate(row) if row else None

    async def list_attendance(self, filters):
        query = _apply_filters(self.db.table(ATTENDANCE).select("*"), filters)
        result = await self._execute("list_attendance", query.order("year", desc=True).order("month", desc=True))
        return [AttendanceRecord.model_validate(row) for row in result.data]

    async def save_attendance(self, record):
        query = self.db.table(ATTENDANCE).upsert(
            record.model_dump(mode="json"),
            on_conflict="student_id,subject_id,month,year",
        )
        await self._execute("save_attendance", query)
        return record

    # ---- marks ----
    async def find_marks_records(self, subject_id, exclude_draft=False):
        query = self.db.table(MARKS).select("*").eq("subject_id", subject_id)
        if exclude_draft:
            query = query.neq("status", "draft")
        result = await self._execute("find_marks_records", query)
        return result.data or []

    async def get_marks_record(self, record_id):
        row = await self._first("get_marks_record", self.db.table(MARKS).select("*").eq("id", record_id))
        if not row:
            raise NotFoundError("Marks record not found", {"id": record_id})
        return MarksRecord.model_validate(row)

    async def find_marks_record(self, student_id, subject_id):
        query = self.db.table(MARKS).select("*").eq("student_id", student_id).eq("subject_id", subject_id)
        row = await self._first("find_marks_record", query)
        return MarksRecord.model_validate(row) if row else None

    async def list_marks(self, filters):
        filters = dict(filters)
        exclude_draft = filters.pop("exclude_draft", False)
        query = _apply_filters(self.db.table(MARKS).select("*"), filters)
        if exclude_draft:
            query = query.neq("status", "draft")
        result = await self._execute("list_marks", query)
        return [MarksRecord.model_validate(row) for row in result.data]

    async def persist_marks(self, record):
        # A single upsert keeps the derived fields of one record in step
        query = self.db.table(MARKS).upsert(
            record.model_dump(mode="json"),
            on_conflict="student_id,subject_id",
        )
        await self._execute("persist_marks", query)
        return record

    async def delete_marks(self, record_id):
        await self._execute("delete_marks", self.db.table(MARKS).delete().eq("id", record_id))

    # ---- users ----
    async def get_user(self, user_id):
        return await self._first("get_user", self.db.table(USERS).select("*").eq("id", user_id))

    async def get_user_by_email(self, email):
        query = self.db.table(USERS).select("*").eq("email", email.strip().lower()).eq("is_active", True)
        return await self._first("get_user_by_email", query)

    async def find_students(self, department, semester, section=None):
        query = (
            self.db.table(USERS)
            .select("*")
            .eq("role", "student")
            .eq("department", department)
            .eq("semester", semester)
            .eq("is_active", True)
        )
        if section:
            query = query.eq("section", section)
        result = await self._execute("find_students", query)
        return result.data or []

    # ---- audit ----
    async def add_audit_log(self, entry):
        await self._execute("add_audit_log", self.db.table(AUDIT).insert(entry.model_dump(mode="json")))

    async def list_audit_logs(self, query, page=1, limit=50):
        q = self.db.table(AUDIT).select("*", count="exact")
        q = _apply_filters(q, query.model_dump(include={"action", "entity_type", "entity_id", "user_id"}))
        if query.start_date:
            q = q.gte("timestamp", query.start_date.isoformat())
        if query.end_date:
            q = q.lte("timestamp", query.end_date.isoformat())
        start = (page - 1) * limit
        result = await self._execute(
            "list_audit_logs",
            q.order("timestamp", desc=True).range(start, start + limit - 1),
        )
        entries = [AuditLogEntry.model_validate(row) for row in result.data]
        return entries, result.count if result.count is not None else len(entries)

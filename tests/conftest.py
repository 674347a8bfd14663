"""Shared fixtures: an in-memory store and a sample evaluation scheme."""

import pytest
from fastapi.testclient import TestClient

from gradeflow.core.dependencies import get_store
from gradeflow.core.errors import DependencyError, NotFoundError
from gradeflow.main import app
from gradeflow.schemas.attendance import AttendanceRecord
from gradeflow.schemas.marks import ComponentMark, MarksRecord
from gradeflow.schemas.scheme import (
    AttendanceThresholdPolicy,
    Component,
    EvaluationScheme,
    GraceMarksPolicy,
)


class InMemoryStore:
    """Dict-backed stand-in for SupabaseMarksStore."""

    def __init__(self):
        self.schemes = {}
        self.marks = {}
        self.attendance = {}
        self.users = {}
        self.audit = []
        self.fail_attendance = False
        self.fail_persist_for = set()

    # ---- schemes ----
    async def get_scheme(self, subject_id):
        if subject_id not in self.schemes:
            raise NotFoundError("Evaluation scheme not found", {"subject_id": subject_id})
        return self.schemes[subject_id]

    async def find_scheme_by_code(self, department, semester, subject_code):
        for s in self.schemes.values():
            if (s.department, s.semester, s.subject_code) == (department, semester, subject_code.strip().upper()):
                return s
        return None

    async def list_schemes(self, filters):
        filters = dict(filters)
        code = filters.pop("subject_code", None)
        result = [s for s in self.schemes.values() if _matches(s, filters)]
        if code:
            result = [s for s in result if code.upper() in s.subject_code]
        return result

    async def save_scheme(self, scheme):
        self.schemes[scheme.id] = scheme
        return scheme

    # ---- attendance ----
    async def get_attendance_percentages(self, student_id, subject_id):
        if self.fail_attendance:
            raise DependencyError("Storage failure during get_attendance_percentages")
        return [
            a.percentage for a in self.attendance.values()
            if a.student_id == student_id and a.subject_id == subject_id
        ]

    async def find_attendance(self, student_id, subject_id, month, year):
        for a in self.attendance.values():
            if (a.student_id, a.subject_id, a.month, a.year) == (student_id, subject_id, month, year):
                return a
        return None

    async def list_attendance(self, filters):
        return [a for a in self.attendance.values() if _matches(a, filters)]

    async def save_attendance(self, record):
        self.attendance[record.id] = record
        return record

    # ---- marks ----
    async def find_marks_records(self, subject_id, exclude_draft=False):
        rows = []
        for r in self.marks.values():
            row = r if isinstance(r, dict) else r.model_dump()
            if row["subject_id"] != subject_id:
                continue
            if exclude_draft and row.get("status") == "draft":
                continue
            rows.append(row)
        return rows

    async def get_marks_record(self, record_id):
        if record_id not in self.marks:
            raise NotFoundError("Marks record not found", {"id": record_id})
        return self.marks[record_id]

    async def find_marks_record(self, student_id, subject_id):
        for r in self.marks.values():
            if isinstance(r, MarksRecord) and r.student_id == student_id and r.subject_id == subject_id:
                return r
        return None

    async def list_marks(self, filters):
        filters = dict(filters)
        exclude_draft = filters.pop("exclude_draft", False)
        records = [r for r in self.marks.values() if isinstance(r, MarksRecord) and _matches(r, filters)]
        if exclude_draft:
            records = [r for r in records if r.status != "draft"]
        return records

    async def persist_marks(self, record):
        if record.student_id in self.fail_persist_for:
            raise DependencyError("Storage failure during persist_marks")
        for key, existing in list(self.marks.items()):
            if (
                isinstance(existing, MarksRecord)
                and (existing.student_id, existing.subject_id) == (record.student_id, record.subject_id)
                and key != record.id
            ):
                del self.marks[key]
        self.marks[record.id] = record
        return record

    async def delete_marks(self, record_id):
        self.marks.pop(record_id, None)

    # ---- users ----
    async def get_user(self, user_id):
        return self.users.get(user_id)

    async def get_user_by_email(self, email):
        for u in self.users.values():
            if u["email"] == email.strip().lower() and u.get("is_active", True):
                return u
        return None

    async def find_students(self, department, semester, section=None):
        return [
            u for u in self.users.values()
            if u["role"] == "student"
            and u.get("department") == department
            and u.get("semester") == semester
            and (not section or u.get("section") == section)
        ]

    # ---- audit ----
    async def add_audit_log(self, entry):
        self.audit.append(entry)

    async def list_audit_logs(self, query, page=1, limit=50):
        entries = [
            e for e in self.audit
            if _matches(e, query.model_dump(include={"action", "entity_type", "entity_id", "user_id"}))
        ]
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        start = (page - 1) * limit
        return entries[start:start + limit], len(entries)


def _matches(obj, filters):
    return all(getattr(obj, k) == v for k, v in filters.items() if v is not None)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def scheme():
    """Quiz 10%, Midterm 30%, Lab 60%; bonus 5 at 75% attendance; grace max 5."""
    return EvaluationScheme(
        id="sub-cs301",
        department="CSE",
        semester=3,
        subject_code="cs301",
        subject_name="Data Structures",
        components=[
            Component(id="c-quiz", name="Quiz", max_marks=10, weightage=10),
            Component(id="c-mid", name="Midterm", max_marks=30, weightage=30),
            Component(id="c-lab", name="Lab", max_marks=60, weightage=60),
        ],
        grace_marks=GraceMarksPolicy(max_grace_marks=5),
        attendance_threshold=AttendanceThresholdPolicy(min_attendance_percentage=75, marks_applicable=5),
    )


def make_record(student_id="stu-1", subject_id="sub-cs301", quiz=8, mid=24, lab=54, grace=0, **kwargs):
    return MarksRecord(
        id=f"m-{student_id}",
        student_id=student_id,
        subject_id=subject_id,
        department="CSE",
        semester=3,
        marks=[
            ComponentMark(component_name="Quiz", component_id="c-quiz", marks_obtained=quiz, max_marks=10),
            ComponentMark(component_name="Midterm", component_id="c-mid", marks_obtained=mid, max_marks=30),
            ComponentMark(component_name="Lab", component_id="c-lab", marks_obtained=lab, max_marks=60),
        ],
        grace_marks_applied=grace,
        **kwargs,
    )


def add_attendance(store, student_id, subject_id, attended, total=100, month=1):
    record = AttendanceRecord(
        student_id=student_id,
        subject_id=subject_id,
        total_classes=total,
        attended_classes=attended,
        month=month,
        year=2025,
    )
    store.attendance[record.id] = record
    return record


@pytest.fixture
def store(scheme):
    s = InMemoryStore()
    s.schemes[scheme.id] = scheme
    return s


@pytest.fixture
def client(store):
    app.dependency_overrides[get_store] = lambda: store
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    return {"Authorization": "Bearer admin-token"}


@pytest.fixture
def faculty_headers():
    return {"Authorization": "Bearer faculty-token"}

"""
Analytics router — Class statistics, grade / attendance distributions, student
progress, marks sheet exports (CSV, PDF) and report cards.
"""

import io
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse

from gradeflow.core.config import settings
from gradeflow.core.dependencies import get_store
from gradeflow.core.errors import NotFoundError
from gradeflow.core.security import ALL_ROLES, STAFF_ROLES, require_role
from gradeflow.core.statistics import (
    attendance_distribution,
    compute_class_statistics,
    grade_distribution,
    student_progress,
)
from gradeflow.core.storage import MarksStore
from gradeflow.utils.reports import marks_sheet_csv, marks_sheet_pdf, report_card_pdf
from gradeflow.utils.response import success_response

router = APIRouter(prefix="/api/analytics", tags=["Analytics"])


async def _subject_roster(store: MarksStore, subject_id: str):
    scheme = await store.get_scheme(subject_id)
    records = await store.list_marks({"subject_id": subject_id, "exclude_draft": True})
    students = await store.find_students(scheme.department, scheme.semester, scheme.section)
    return scheme, records, {s["id"]: s for s in students}


@router.get("/class-statistics/{subject_id}")
async def class_statistics(
    subject_id: str,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
):
    await store.get_scheme(subject_id)
    records = await store.list_marks({"subject_id": subject_id, "exclude_draft": True})
    stats = compute_class_statistics(records, pass_marks=settings.PASS_MARKS)
    return success_response(data=stats.model_dump())


@router.get("/grade-distribution")
async def get_grade_distribution(
    subject_id: Optional[str] = None,
    department: Optional[str] = None,
    semester: Optional[int] = None,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
):
    if not department and user["role"] == "hod":
        department = user.get("department")

    records = await store.list_marks({
        "subject_id": subject_id,
        "department": department,
        "semester": semester,
        "exclude_draft": True,
    })
    return success_response(data=[b.model_dump() for b in grade_distribution(records)])


@router.get("/attendance-distribution")
async def get_attendance_distribution(
    subject_id: Optional[str] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
):
    records = await store.list_attendance({"subject_id": subject_id, "month": month, "year": year})
    return success_response(data=[b.model_dump() for b in attendance_distribution(records)])


@router.get("/export/{subject_id}/csv")
async def export_csv(
    subject_id: str,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
):
    scheme, records, students = await _subject_roster(store, subject_id)
    return StreamingResponse(
        iter([marks_sheet_csv(scheme, records, students)]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={scheme.subject_code}_marks.csv"},
    )


@router.get("/export/{subject_id}/pdf")
async def export_pdf(
    subject_id: str,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
):
    scheme, records, students = await _subject_roster(store, subject_id)
    stats = compute_class_statistics(records, pass_marks=settings.PASS_MARKS)
    pdf = marks_sheet_pdf(scheme, records, students, stats)
    return StreamingResponse(
        io.BytesIO(pdf),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename={scheme.subject_code}_marks.pdf"},
    )


async def _progress(store: MarksStore, student_id: str, semester: Optional[int]):
    records = await store.list_marks({"student_id": student_id, "semester": semester})
    schemes = {}
    for subject_id in {r.subject_id for r in records}:
        try:
            schemes[subject_id] = await store.get_scheme(subject_id)
        except NotFoundError:
            continue
    return student_progress(records, schemes)


def _ensure_own_progress(user: dict, student_id: str) -> None:
    if user["role"] == "student" and student_id != user["user_id"]:
        raise HTTPException(status_code=403, detail="Not authorized to view this student progress")


@router.get("/student-progress/{student_id}")
async def get_student_progress(
    student_id: str,
    semester: Optional[int] = Query(None, ge=1, le=8),
    user: dict = Depends(require_role(ALL_ROLES)),
    store: MarksStore = Depends(get_store),
):
    _ensure_own_progress(user, student_id)
    progress = await _progress(store, student_id, semester)
    return success_response(data=progress.model_dump())


@router.get("/report-card/{student_id}")
async def download_report_card(
    student_id: str,
    semester: int = Query(..., ge=1, le=8),
    user: dict = Depends(require_role(ALL_ROLES)),
    store: MarksStore = Depends(get_store),
):
    _ensure_own_progress(user, student_id)
    student = await store.get_user(student_id)
    if not student or student.get("role") != "student":
        raise NotFoundError("Student not found", {"student_id": student_id})

    progress = await _progress(store, student_id, semester)
    if not progress.subject_wise:
        raise NotFoundError("No marks found for this semester", {"student_id": student_id, "semester": semester})

    pdf = report_card_pdf(student, semester, progress.subject_wise)
    number = student.get("enrollment_number") or student_id
    return StreamingResponse(
        io.BytesIO(pdf),
        media_type="application/pdf",
        headers={"Content-Disposition": f"attachment; filename=report_card_{number}_sem{semester}.pdf"},
    )

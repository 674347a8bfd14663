"""
Attendance router — Monthly attendance totals per student and subject.
These records feed the attendance bonus in the marks calculation.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request

from gradeflow.core.audit import record_audit
from gradeflow.core.dependencies import get_store
from gradeflow.core.errors import GradeflowError
from gradeflow.core.security import ALL_ROLES, STAFF_ROLES, require_role
from gradeflow.core.statistics import summarize_attendance
from gradeflow.core.storage import MarksStore
from gradeflow.schemas.attendance import AttendanceBulkCreate, AttendanceCreate, AttendanceRecord
from gradeflow.utils.response import success_response

router = APIRouter(prefix="/api/attendance", tags=["Attendance"])


async def _upsert(store: MarksStore, body: AttendanceCreate, marked_by: str) -> tuple[AttendanceRecord, bool]:
    existing = await store.find_attendance(body.student_id, body.subject_id, body.month, body.year)
    record = AttendanceRecord(**body.model_dump(), marked_by=marked_by)
    if existing:
        record = record.model_copy(update={"id": existing.id})
    return await store.save_attendance(record), existing is not None


@router.get("")
async def list_attendance(
    student_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    month: Optional[int] = None,
    year: Optional[int] = None,
    user: dict = Depends(require_role(ALL_ROLES)),
    store: MarksStore = Depends(get_store),
):
    # Students can only see their own attendance
    if user["role"] == "student":
        student_id = user["user_id"]

    records = await store.list_attendance({
        "student_id": student_id,
        "subject_id": subject_id,
        "month": month,
        "year": year,
    })
    return success_response(data=[r.model_dump(mode="json") for r in records])


@router.post("")
async def create_attendance(
    body: AttendanceCreate,
    request: Request,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
):
    if body.attended_classes > body.total_classes:
        raise HTTPException(status_code=400, detail="Attended classes cannot exceed total classes")

    record, updated = await _upsert(store, body, user["user_id"])
    await record_audit(
        store, user, "UPDATE" if updated else "CREATE", "ATTENDANCE",
        entity_id=record.id,
        description=f"{'Updated' if updated else 'Created'} attendance for month {body.month}/{body.year}",
        request=request,
    )
    return success_response(data=record.model_dump(mode="json"), message="Attendance saved")


@router.post("/bulk")
async def bulk_create_attendance(
    body: AttendanceBulkCreate,
    request: Request,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
):
    results = {"success": [], "errors": []}

    for entry in body.records:
        if entry.attended_classes > entry.total_classes:
            results["errors"].append({
                "student_id": entry.student_id,
                "error": "Attended classes cannot exceed total classes",
            })
            continue
        try:
            record, _ = await _upsert(
                store,
                AttendanceCreate(subject_id=body.subject_id, month=body.month, year=body.year, **entry.model_dump()),
                user["user_id"],
            )
        except GradeflowError as exc:
            results["errors"].append({"student_id": entry.student_id, "error": exc.message})
            continue
        results["success"].append({"student_id": entry.student_id, "attendance_id": record.id})

    await record_audit(
        store, user, "CREATE", "ATTENDANCE",
        entity_id=body.subject_id,
        description=f"Bulk created attendance: {len(results['success'])} successful",
        request=request,
    )
    return success_response(data=results, message="Bulk attendance processed")


@router.get("/summary/{student_id}")
async def attendance_summary(
    student_id: str,
    subject_id: Optional[str] = None,
    user: dict = Depends(require_role(ALL_ROLES)),
    store: MarksStore = Depends(get_store),
):
    if user["role"] == "student" and student_id != user["user_id"]:
        raise HTTPException(status_code=403, detail="Not authorized to view this attendance")

    records = await store.list_attendance({"student_id": student_id, "subject_id": subject_id})
    summaries = summarize_attendance(records)
    return success_response(data=[s.model_dump(mode="json") for s in summaries])

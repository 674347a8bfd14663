"""
Marks router — Marks entry, bulk CSV upload, recalculation and approval.
Every write goes through the calculation engine so derived fields stay current.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, HTTPException, Request, UploadFile

from gradeflow.core.audit import record_audit
from gradeflow.core.calculation import MarksCalculator
from gradeflow.core.dependencies import get_calculator, get_store
from gradeflow.core.errors import NotFoundError
from gradeflow.core.ingestion import process_bulk_marks_upload
from gradeflow.core.security import ALL_ROLES, STAFF_ROLES, require_role
from gradeflow.core.storage import MarksStore
from gradeflow.schemas.marks import MarksCreate, MarksRecord, MarksStatus, MarksUpdate
from gradeflow.utils.csv_marks import parse_csv
from gradeflow.utils.response import success_response

router = APIRouter(prefix="/api/marks", tags=["Marks"])

CSV_CONTENT_TYPES = {"text/csv", "application/vnd.ms-excel", "application/csv"}


def _ensure_own_record(user: dict, record: MarksRecord) -> None:
    if user["role"] == "student" and record.student_id != user["user_id"]:
        raise HTTPException(status_code=403, detail="Not authorized to view this record")


@router.get("")
async def list_marks(
    student_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    department: Optional[str] = None,
    semester: Optional[int] = None,
    section: Optional[str] = None,
    status: Optional[MarksStatus] = None,
    user: dict = Depends(require_role(ALL_ROLES)),
    store: MarksStore = Depends(get_store),
):
    # Students can only see their own marks
    if user["role"] == "student":
        student_id = user["user_id"]
    if not department and user["role"] == "hod":
        department = user.get("department")

    records = await store.list_marks({
        "student_id": student_id,
        "subject_id": subject_id,
        "department": department,
        "semester": semester,
        "section": section.upper() if section else None,
        "status": status,
    })
    return success_response(data=[r.model_dump(mode="json") for r in records])


@router.get("/{record_id}")
async def get_marks(
    record_id: str,
    user: dict = Depends(require_role(ALL_ROLES)),
    store: MarksStore = Depends(get_store),
):
    record = await store.get_marks_record(record_id)
    _ensure_own_record(user, record)
    return success_response(data=record.model_dump(mode="json"))


@router.post("", status_code=201)
async def create_marks(
    body: MarksCreate,
    request: Request,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
    calculator: MarksCalculator = Depends(get_calculator),
):
    scheme = await store.get_scheme(body.subject_id)

    student = await store.get_user(body.student_id)
    if not student or student.get("role") != "student":
        raise NotFoundError("Student not found", {"student_id": body.student_id})

    def apply(existing: Optional[MarksRecord]) -> MarksRecord:
        if existing:
            changes = {"marks": body.marks, "entered_by": user["user_id"]}
            if body.grace_marks_applied is not None:
                changes["grace_marks_applied"] = body.grace_marks_applied
            return existing.revise(**changes)
        return MarksRecord(
            student_id=body.student_id,
            subject_id=body.subject_id,
            department=student.get("department") or scheme.department,
            semester=student.get("semester") or scheme.semester,
            section=student.get("section"),
            marks=body.marks,
            grace_marks_applied=body.grace_marks_applied or 0,
            entered_by=user["user_id"],
        )

    existing, saved = await calculator.save_for_student(body.student_id, body.subject_id, apply, scheme)
    old_value = existing.model_dump(mode="json") if existing else None

    await record_audit(
        store, user, "UPDATE" if existing else "CREATE", "STUDENT_MARKS",
        entity_id=saved.id,
        old_value=old_value,
        new_value=saved.model_dump(mode="json"),
        description=(
            f"{'Updated' if existing else 'Created'} marks for student "
            f"{student.get('enrollment_number', body.student_id)} in {scheme.subject_code}"
        ),
        request=request,
    )
    return success_response(data=saved.model_dump(mode="json"), message="Marks saved")


@router.put("/{record_id}")
async def update_marks(
    record_id: str,
    body: MarksUpdate,
    request: Request,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
    calculator: MarksCalculator = Depends(get_calculator),
):
    changes = {}
    if body.marks is not None:
        changes["marks"] = body.marks
    if body.grace_marks_applied is not None:
        changes["grace_marks_applied"] = body.grace_marks_applied

    previous, saved = await calculator.update_record(
        record_id,
        lambda record: record.revise(**changes) if changes else record,
        status=body.status or "calculated",
    )

    await record_audit(
        store, user, "UPDATE", "STUDENT_MARKS",
        entity_id=record_id,
        old_value=previous.model_dump(mode="json"),
        new_value=saved.model_dump(mode="json"),
        description="Updated marks for student",
        request=request,
    )
    return success_response(data=saved.model_dump(mode="json"), message="Marks updated")


@router.delete("/{record_id}")
async def delete_marks(
    record_id: str,
    request: Request,
    user: dict = Depends(require_role(["admin"])),
    store: MarksStore = Depends(get_store),
):
    await store.get_marks_record(record_id)
    await store.delete_marks(record_id)
    await record_audit(store, user, "DELETE", "STUDENT_MARKS", entity_id=record_id,
                       description="Deleted marks record", request=request)
    return success_response(message="Marks deleted successfully")


@router.post("/bulk")
async def bulk_upload_marks(
    request: Request,
    subject_id: str = Form(...),
    file: UploadFile = File(...),
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
    calculator: MarksCalculator = Depends(get_calculator),
):
    if file.content_type not in CSV_CONTENT_TYPES and not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only CSV files are allowed")

    rows = parse_csv(await file.read())
    if not rows:
        raise HTTPException(status_code=400, detail="CSV file is empty")

    results = await process_bulk_marks_upload(rows, subject_id, user["user_id"], calculator)

    await record_audit(
        store, user, "UPLOAD", "STUDENT_MARKS",
        entity_id=subject_id,
        description=f"Bulk uploaded marks: {len(results.success)} successful, {len(results.errors)} errors",
        request=request,
    )
    return success_response(data=results.model_dump(mode="json"), message="Bulk upload processed")


@router.post("/recalculate/{subject_id}")
async def recalculate_marks(
    subject_id: str,
    request: Request,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
    calculator: MarksCalculator = Depends(get_calculator),
):
    outcome = await calculator.recalculate_subject(subject_id)

    await record_audit(
        store, user, "UPDATE", "STUDENT_MARKS",
        entity_id=subject_id,
        description=f"Recalculated marks for subject: {len(outcome.results)} ok, {len(outcome.errors)} failed",
        request=request,
    )
    return success_response(data=outcome.model_dump(mode="json"), message="Marks recalculated")


async def _set_status(
    record_id: str,
    status: MarksStatus,
    user: dict,
    request: Request,
    store: MarksStore,
    calculator: MarksCalculator,
) -> dict:
    changes = {"status": status}
    if status == "approved":
        changes["approved_by"] = user["user_id"]

    previous, saved = await calculator.update_record(
        record_id, lambda record: record.model_copy(update=changes), recalculate=False
    )

    await record_audit(
        store, user, "UPDATE", "STUDENT_MARKS",
        entity_id=record_id,
        old_value=previous.model_dump(mode="json"),
        new_value=saved.model_dump(mode="json"),
        description=f"Marks {status}",
        request=request,
    )
    return saved.model_dump(mode="json")


@router.put("/submit/{record_id}")
async def submit_marks(
    record_id: str,
    request: Request,
    user: dict = Depends(require_role(STAFF_ROLES)),
    store: MarksStore = Depends(get_store),
    calculator: MarksCalculator = Depends(get_calculator),
):
    data = await _set_status(record_id, "submitted", user, request, store, calculator)
    return success_response(data=data, message="Marks submitted")


@router.put("/approve/{record_id}")
async def approve_marks(
    record_id: str,
    request: Request,
    user: dict = Depends(require_role(["admin", "hod"])),
    store: MarksStore = Depends(get_store),
    calculator: MarksCalculator = Depends(get_calculator),
):
    data = await _set_status(record_id, "approved", user, request, store, calculator)
    return success_response(data=data, message="Marks approved")

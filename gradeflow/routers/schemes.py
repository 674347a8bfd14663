"""
Schemes router — Evaluation scheme CRUD and the bulk-upload CSV template.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import StreamingResponse

from gradeflow.core.audit import record_audit
from gradeflow.core.dependencies import get_store
from gradeflow.core.security import ALL_ROLES, require_role
from gradeflow.core.storage import MarksStore
from gradeflow.schemas.scheme import EvaluationScheme, SchemeCreate, SchemeUpdate
from gradeflow.utils.csv_marks import generate_csv_template
from gradeflow.utils.response import success_response

router = APIRouter(prefix="/api/schemes", tags=["Evaluation Schemes"])


@router.get("")
async def list_schemes(
    department: Optional[str] = None,
    semester: Optional[int] = None,
    subject_code: Optional[str] = None,
    is_active: Optional[bool] = None,
    user: dict = Depends(require_role(ALL_ROLES)),
    store: MarksStore = Depends(get_store),
):
    if not department and user["role"] == "hod":
        department = user.get("department")

    schemes = await store.list_schemes({
        "department": department,
        "semester": semester,
        "subject_code": subject_code,
        "is_active": is_active,
    })
    return success_response(data=[s.model_dump(mode="json") for s in schemes])


@router.get("/{scheme_id}")
async def get_scheme(
    scheme_id: str,
    user: dict = Depends(require_role(ALL_ROLES)),
    store: MarksStore = Depends(get_store),
):
    scheme = await store.get_scheme(scheme_id)
    return success_response(data=scheme.model_dump(mode="json"))


@router.post("", status_code=201)
async def create_scheme(
    body: SchemeCreate,
    request: Request,
    user: dict = Depends(require_role(["admin", "hod"])),
    store: MarksStore = Depends(get_store),
):
    existing = await store.find_scheme_by_code(body.department, body.semester, body.subject_code)
    if existing:
        raise HTTPException(status_code=400, detail="Evaluation scheme already exists for this subject")

    scheme = EvaluationScheme(**body.model_dump(), created_by=user.get("user_id"))
    scheme = await store.save_scheme(scheme)

    await record_audit(
        store, user, "CREATE", "EVALUATION_SCHEME",
        entity_id=scheme.id,
        new_value=scheme.model_dump(mode="json"),
        description=f"Created evaluation scheme: {scheme.subject_code}",
        request=request,
    )
    return success_response(data=scheme.model_dump(mode="json"), message="Evaluation scheme created")


@router.put("/{scheme_id}")
async def update_scheme(
    scheme_id: str,
    body: SchemeUpdate,
    request: Request,
    user: dict = Depends(require_role(["admin", "hod"])),
    store: MarksStore = Depends(get_store),
):
    scheme = await store.get_scheme(scheme_id)
    old_value = scheme.model_dump(mode="json")

    changes = body.model_dump(exclude_none=True)
    updated = EvaluationScheme.model_validate({**old_value, **changes})
    updated = await store.save_scheme(updated)

    await record_audit(
        store, user, "UPDATE", "EVALUATION_SCHEME",
        entity_id=scheme_id,
        old_value=old_value,
        new_value=updated.model_dump(mode="json"),
        description=f"Updated evaluation scheme: {updated.subject_code}",
        request=request,
    )
    return success_response(data=updated.model_dump(mode="json"), message="Evaluation scheme updated")


@router.delete("/{scheme_id}")
async def delete_scheme(
    scheme_id: str,
    request: Request,
    user: dict = Depends(require_role(["admin"])),
    store: MarksStore = Depends(get_store),
):
    # Marks keep referencing the scheme, so it is deactivated rather than removed
    scheme = await store.get_scheme(scheme_id)
    scheme = await store.save_scheme(scheme.model_copy(update={"is_active": False}))

    await record_audit(
        store, user, "DELETE", "EVALUATION_SCHEME",
        entity_id=scheme_id,
        description=f"Deactivated evaluation scheme: {scheme.subject_code}",
        request=request,
    )
    return success_response(message="Evaluation scheme deactivated")


@router.get("/{scheme_id}/template")
async def download_template(
    scheme_id: str,
    user: dict = Depends(require_role(["admin", "hod", "faculty"])),
    store: MarksStore = Depends(get_store),
):
    scheme = await store.get_scheme(scheme_id)
    return StreamingResponse(
        iter([generate_csv_template(scheme)]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={scheme.subject_code}_marks_template.csv"},
    )

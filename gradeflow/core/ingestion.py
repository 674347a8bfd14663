"""
Bulk marks upload: CSV rows -> marks records -> calculated and saved.

Each row stands alone; a bad row is reported next to the good ones and never
stops the upload.
"""

import logging

from pydantic import ValidationError as PydanticValidationError

from gradeflow.core.calculation import MarksCalculator
from gradeflow.core.errors import GradeflowError
from gradeflow.schemas.marks import BulkUploadResult, MarksRecord, UploadRowError, UploadRowSuccess
from gradeflow.utils.csv_marks import build_component_marks, enrollment_number

logger = logging.getLogger(__name__)


async def process_bulk_marks_upload(
    rows: list[dict],
    subject_id: str,
    entered_by: str,
    calculator: MarksCalculator,
) -> BulkUploadResult:
    store = calculator.store
    scheme = await store.get_scheme(subject_id)

    students = await store.find_students(scheme.department, scheme.semester, scheme.section)
    by_enrollment = {s["enrollment_number"]: s for s in students if s.get("enrollment_number")}

    result = BulkUploadResult()
    for row in rows:
        result.total_processed += 1
        row_number = result.total_processed
        number = enrollment_number(row)

        if not number:
            result.errors.append(UploadRowError(row=row_number, error="Enrollment number not found"))
            continue

        student = by_enrollment.get(number)
        if not student:
            result.errors.append(UploadRowError(row=row_number, enrollment_number=number, error="Student not found"))
            continue

        try:
            marks = build_component_marks(row, scheme)

            def apply(existing, student_id=student["id"], marks=marks):
                if existing:
                    return existing.revise(marks=marks, entered_by=entered_by)
                return MarksRecord(
                    student_id=student_id,
                    subject_id=subject_id,
                    department=scheme.department,
                    semester=scheme.semester,
                    section=scheme.section,
                    marks=marks,
                    entered_by=entered_by,
                )

            _, saved = await calculator.save_for_student(student["id"], subject_id, apply, scheme)
        except GradeflowError as exc:
            result.errors.append(UploadRowError(row=row_number, enrollment_number=number, error=exc.message))
            continue
        except PydanticValidationError as exc:
            result.errors.append(UploadRowError(
                row=row_number, enrollment_number=number, error=f"Invalid row: {exc.error_count()} invalid field(s)"
            ))
            continue

        result.success.append(UploadRowSuccess(
            row=row_number,
            enrollment_number=number,
            student_name=student.get("name", ""),
            final_marks=saved.final_marks,
        ))

    logger.info(
        "Bulk upload for subject %s: %d saved, %d rejected",
        subject_id, len(result.success), len(result.errors),
    )
    return result

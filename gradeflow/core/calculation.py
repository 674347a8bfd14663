"""
Marks calculation engine.

Turns a student's raw component marks plus the subject's evaluation scheme
into weighted / final marks:

    raw marks -> best-of-two flags -> weighted marks
              + attendance bonus (step function on mean attendance)
              + grace marks (capped by the scheme)
              = final marks (capped at 100)

The numeric helpers are pure and never raise. Only the steps that touch the
store (scheme lookup, attendance read, persistence) can fail.
"""

import asyncio
import logging
from collections import Counter
from contextlib import asynccontextmanager
from typing import Callable, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from gradeflow.core.errors import DependencyError, GradeflowError, ValidationError
from gradeflow.core.storage import MarksStore
from gradeflow.schemas.marks import (
    CalculatedMarks,
    ComponentMark,
    MarksRecord,
    MarksStatus,
    RecalculationResult,
    RecordError,
    StudentResult,
)
from gradeflow.schemas.scheme import (
    AttendanceThresholdPolicy,
    BestOfTwoPolicy,
    Component,
    EvaluationScheme,
)
from gradeflow.utils.rounding import round2

logger = logging.getLogger(__name__)

FINAL_MARKS_CAP = 100.0


# ---------------------------------------------------------------------------
# Pure steps
# ---------------------------------------------------------------------------
def apply_best_of_two(marks: List[ComponentMark], policy: Optional[BestOfTwoPolicy]) -> List[ComponentMark]:
    """
    Flag the higher of the configured exam marks with ``is_best_of_two``.

    The first mark holding the strict maximum wins; every exam mark equal to
    the winning value is flagged, so tied exams are all flagged. Flags are
    informational only: the losing exam still counts in the weighted sum.
    Returns the input unchanged when the policy is inactive or fewer than two
    configured exams are present.
    """
    if not policy or not policy.enabled or len(policy.exams) < 2:
        return marks

    exam_marks = [m for m in marks if m.component_name in policy.exams]
    if len(exam_marks) < 2:
        return marks

    best = exam_marks[0]
    for mark in exam_marks:
        if mark.marks_obtained > best.marks_obtained:
            best = mark

    return [
        mark.model_copy(update={"is_best_of_two": mark.marks_obtained == best.marks_obtained})
        if mark.component_name in policy.exams
        else mark
        for mark in marks
    ]


def calculate_weighted_marks(marks: Iterable[ComponentMark], components: Iterable[Component]) -> float:
    """
    Weighted percentage (0-100 scale) of the marks against the scheme components.

    Marks with no matching component, absent marks and marks out of zero are
    skipped rather than rejected, so partially entered records still compute.
    """
    by_id = {c.id: c for c in components}
    weighted = 0.0
    for mark in marks:
        component = by_id.get(mark.component_id)
        if component is None or mark.is_absent or mark.max_marks <= 0:
            continue
        percentage = mark.marks_obtained / mark.max_marks * 100
        weighted += percentage * component.weightage / 100
    return round2(weighted)


def attendance_bonus(percentages: List[float], policy: Optional[AttendanceThresholdPolicy]) -> float:
    """Full ``marks_applicable`` when mean attendance clears the threshold, else 0."""
    if not policy or not policy.min_attendance_percentage:
        return 0.0
    average = sum(percentages) / len(percentages) if percentages else 0.0
    if average >= policy.min_attendance_percentage:
        return float(policy.marks_applicable or 0)
    return 0.0


def apply_grace_marks(requested: Optional[float], max_grace: float) -> float:
    requested = max(requested or 0.0, 0.0)
    return min(requested, max_grace)


# ---------------------------------------------------------------------------
# Storage-backed steps
# ---------------------------------------------------------------------------
async def resolve_attendance_bonus(
    store: MarksStore,
    student_id: str,
    subject_id: str,
    policy: Optional[AttendanceThresholdPolicy],
) -> float:
    if not policy or not policy.min_attendance_percentage:
        return 0.0
    try:
        percentages = await store.get_attendance_percentages(student_id, subject_id)
    except GradeflowError:
        raise
    except Exception as exc:
        raise DependencyError("Attendance lookup failed", {"student_id": student_id}) from exc
    return attendance_bonus(percentages, policy)


class RecordLocks:
    """
    Per (student_id, subject_id) locks serializing read-modify-write of one
    record in one process. An entry lives only while a task holds or waits
    for it.
    """

    def __init__(self):
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._users: Counter = Counter()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def __call__(self, student_id: str, subject_id: str):
        key = (student_id, subject_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class MarksCalculator:
    def __init__(self, store: MarksStore, locks: Optional[RecordLocks] = None):
        self.store = store
        self.locks = locks if locks is not None else RecordLocks()

    async def _load_scheme(self, subject_id: str) -> EvaluationScheme:
        try:
            return await self.store.get_scheme(subject_id)
        except GradeflowError:
            raise
        except Exception as exc:
            raise DependencyError("Scheme lookup failed", {"subject_id": subject_id}) from exc

    async def compute_marks(self, record: MarksRecord, scheme: Optional[EvaluationScheme] = None) -> CalculatedMarks:
        """
        Compute the derived marks for one record.

        Pure apart from the attendance read, so two calls with unchanged
        attendance data return identical results. Nothing is written.
        """
        if scheme is None:
            scheme = await self._load_scheme(record.subject_id)

        marks = list(record.marks)
        if scheme.best_of_two.enabled:
            marks = apply_best_of_two(marks, scheme.best_of_two)

        weighted_marks = calculate_weighted_marks(marks, scheme.components)
        bonus = await resolve_attendance_bonus(
            self.store, record.student_id, record.subject_id, scheme.attendance_threshold
        )
        grace = apply_grace_marks(record.grace_marks_applied, scheme.grace_marks.max_grace_marks)
        final_marks = min(weighted_marks + bonus + grace, FINAL_MARKS_CAP)

        return CalculatedMarks(
            total_marks=record.total_marks,
            weighted_marks=weighted_marks,
            attendance_bonus=bonus,
            grace_marks_applied=grace,
            final_marks=round2(final_marks),
            total_weightage=scheme.total_weightage,
        )

    async def calculate_and_save(
        self,
        record: MarksRecord,
        scheme: Optional[EvaluationScheme] = None,
        status: MarksStatus = "calculated",
    ) -> MarksRecord:
        """Compute and persist the derived fields of one record in a single write."""
        async with self.locks(record.student_id, record.subject_id):
            return await self._compute_and_persist(record, scheme, status)

    async def save_for_student(
        self,
        student_id: str,
        subject_id: str,
        apply: Callable[[Optional[MarksRecord]], MarksRecord],
        scheme: Optional[EvaluationScheme] = None,
        status: MarksStatus = "calculated",
    ) -> Tuple[Optional[MarksRecord], MarksRecord]:
        """
        Read-modify-write of the (student, subject) record under its lock.

        ``apply`` gets the stored record, or None when there is none yet, and
        returns the record to compute and persist. Returns ``(previous, saved)``.
        """
        async with self.locks(student_id, subject_id):
            previous = await self.store.find_marks_record(student_id, subject_id)
            saved = await self._compute_and_persist(apply(previous), scheme, status)
        return previous, saved

    async def update_record(
        self,
        record_id: str,
        apply: Callable[[MarksRecord], MarksRecord],
        status: MarksStatus = "calculated",
        recalculate: bool = True,
    ) -> Tuple[MarksRecord, MarksRecord]:
        """
        Read-modify-write of a stored record by id under its lock.

        The record is read again once the lock is held, so ``apply`` always
        sees the latest write. With ``recalculate=False`` the result of
        ``apply`` is persisted as is and ``status`` is ignored.
        """
        current = await self.store.get_marks_record(record_id)
        async with self.locks(current.student_id, current.subject_id):
            previous = await self.store.get_marks_record(record_id)
            record = apply(previous)
            if recalculate:
                saved = await self._compute_and_persist(record, None, status)
            else:
                saved = await self.store.persist_marks(record)
        return previous, saved

    async def _compute_and_persist(
        self, record: MarksRecord, scheme: Optional[EvaluationScheme], status: MarksStatus
    ) -> MarksRecord:
        # Caller holds the record lock
        calculated = await self.compute_marks(record, scheme)
        updated = record.model_copy(update={
            "total_marks": calculated.total_marks,
            "weighted_marks": calculated.weighted_marks,
            "attendance_bonus": calculated.attendance_bonus,
            "grace_marks_applied": calculated.grace_marks_applied,
            "final_marks": calculated.final_marks,
            "status": status,
        })
        return await self.store.persist_marks(updated)

    async def recalculate_subject(self, subject_id: str) -> RecalculationResult:
        """
        Recalculate every marks record of a subject.

        The scheme is loaded once; a missing scheme aborts the whole call.
        Each record is then processed on its own: a malformed record or a
        storage failure is reported in ``errors`` and the rest carry on.
        """
        scheme = await self._load_scheme(subject_id)
        try:
            rows = await self.store.find_marks_records(subject_id)
        except GradeflowError:
            raise
        except Exception as exc:
            raise DependencyError("Marks lookup failed", {"subject_id": subject_id}) from exc

        logger.info("Recalculating %d marks records for subject %s", len(rows), subject_id)
        outcome = RecalculationResult()
        for row in rows:
            student_id = row.get("student_id") if isinstance(row, dict) else getattr(row, "student_id", None)
            try:
                record = _as_record(row)
                _, saved = await self.save_for_student(
                    record.student_id, subject_id, lambda current, record=record: current or record, scheme
                )
            except Exception as exc:
                logger.exception("Recalculation failed for student %s in subject %s", student_id, subject_id)
                message = exc.message if isinstance(exc, GradeflowError) else str(exc)
                outcome.errors.append(RecordError(student_id=student_id, error=message))
                continue

            outcome.results.append(StudentResult(
                student_id=saved.student_id,
                total_marks=saved.total_marks,
                weighted_marks=saved.weighted_marks,
                attendance_bonus=saved.attendance_bonus,
                grace_marks_applied=saved.grace_marks_applied,
                final_marks=saved.final_marks,
                total_weightage=scheme.total_weightage,
            ))

        logger.info(
            "Recalculated subject %s: %d ok, %d failed",
            subject_id, len(outcome.results), len(outcome.errors),
        )
        return outcome


def _as_record(row) -> MarksRecord:
    if isinstance(row, MarksRecord):
        return row
    try:
        return MarksRecord.model_validate(row)
    except PydanticValidationError as exc:
        raise ValidationError(
            f"Malformed marks record: {exc.error_count()} invalid field(s)",
            exc.errors(include_url=False, include_context=False),
        ) from exc

"""
Roster-level and per-student views derived from computed marks and
attendance records.
"""

from collections import OrderedDict
from typing import Dict, Iterable, List, Sequence

from gradeflow.schemas.attendance import AttendanceRecord, AttendanceSummary, MonthPercentage
from gradeflow.schemas.marks import (
    ClassStatistics,
    DistributionBucket,
    MarksRecord,
    SemesterTotal,
    StudentProgress,
    SubjectProgress,
)
from gradeflow.schemas.scheme import EvaluationScheme
from gradeflow.utils.rounding import round2, round_int

PASS_MARKS = 35.0

GRADE_BANDS = [
    (0, 35, "Below 35 (F)"),
    (35, 50, "35-49 (P)"),
    (50, 60, "50-59 (B)"),
    (60, 70, "60-69 (B+)"),
    (70, 80, "70-79 (A)"),
    (80, 90, "80-89 (A+)"),
    (90, 101, "90-100 (O)"),
]

ATTENDANCE_BANDS = [
    (0, 60, "Below 60%"),
    (60, 75, "60-74%"),
    (75, 85, "75-84%"),
    (85, 90, "85-89%"),
    (90, 101, "90-100%"),
]


def compute_class_statistics(records: Sequence[MarksRecord], pass_marks: float = PASS_MARKS) -> ClassStatistics:
    """Average / high / low / pass-rate over the final marks of a roster."""
    if not records:
        return ClassStatistics()

    final_marks = [r.final_marks for r in records]
    total = len(final_marks)
    pass_count = sum(1 for m in final_marks if m >= pass_marks)

    return ClassStatistics(
        total_students=total,
        average_marks=round2(sum(final_marks) / total),
        highest_marks=max(final_marks),
        lowest_marks=min(final_marks),
        pass_count=pass_count,
        fail_count=total - pass_count,
        pass_percentage=round_int(pass_count / total * 100),
    )


def _bucketize(values: Iterable[float], bands) -> List[DistributionBucket]:
    counts: "OrderedDict[str, int]" = OrderedDict((label, 0) for _, _, label in bands)
    counts["Other"] = 0
    for value in values:
        for low, high, label in bands:
            if low <= value < high:
                counts[label] += 1
                break
        else:
            counts["Other"] += 1
    return [DistributionBucket(label=label, count=count) for label, count in counts.items() if count]


def grade_distribution(records: Iterable[MarksRecord]) -> List[DistributionBucket]:
    return _bucketize((r.final_marks for r in records), GRADE_BANDS)


def attendance_distribution(records: Iterable[AttendanceRecord]) -> List[DistributionBucket]:
    return _bucketize((r.percentage for r in records), ATTENDANCE_BANDS)


def summarize_attendance(records: Iterable[AttendanceRecord]) -> List[AttendanceSummary]:
    """Group a student's monthly attendance by subject."""
    grouped: "OrderedDict[str, List[AttendanceRecord]]" = OrderedDict()
    for record in records:
        grouped.setdefault(record.subject_id, []).append(record)

    summaries = []
    for subject_id, rows in grouped.items():
        total = sum(r.total_classes for r in rows)
        attended = sum(r.attended_classes for r in rows)
        summaries.append(AttendanceSummary(
            subject_id=subject_id,
            total_classes=total,
            attended_classes=attended,
            overall_percentage=round_int(attended / total * 100) if total > 0 else 0,
            avg_percentage=round_int(sum(r.percentage for r in rows) / len(rows)),
            months=[MonthPercentage(month=r.month, year=r.year, percentage=r.percentage) for r in rows],
        ))
    return summaries


REPORT_CARD_GRADES = [(90, "O"), (80, "A+"), (70, "A"), (60, "B+"), (50, "B"), (40, "C"), (35, "P")]


def letter_grade(final_marks: float) -> str:
    for floor, grade in REPORT_CARD_GRADES:
        if final_marks >= floor:
            return grade
    return "F"


def student_progress(records: Iterable[MarksRecord], schemes: Dict[str, EvaluationScheme]) -> StudentProgress:
    """
    Subject-wise marks and semester-wise totals for one student.

    Records whose scheme is gone are left out of the subject list but still
    count towards their semester total.
    """
    records = list(records)
    subject_wise = [
        SubjectProgress(
            subject_id=r.subject_id,
            semester=r.semester,
            subject_code=schemes[r.subject_id].subject_code,
            subject_name=schemes[r.subject_id].subject_name,
            total_marks=r.total_marks,
            weighted_marks=r.weighted_marks,
            final_marks=r.final_marks,
            status=r.status,
        )
        for r in records
        if r.subject_id in schemes
    ]
    subject_wise.sort(key=lambda s: (s.semester, s.subject_code))

    totals: Dict[int, List[float]] = {}
    for r in records:
        totals.setdefault(r.semester, []).append(r.final_marks)
    semester_wise = [
        SemesterTotal(semester=semester, total_final_marks=round2(sum(marks)), subject_count=len(marks))
        for semester, marks in sorted(totals.items())
    ]
    return StudentProgress(subject_wise=subject_wise, semester_wise=semester_wise)

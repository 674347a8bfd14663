"""
Marks sheet exports (CSV and PDF) for one subject and per-student report cards.
"""

import csv
import io
from datetime import date

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from gradeflow.core.statistics import letter_grade
from gradeflow.schemas.marks import ClassStatistics, MarksRecord, SubjectProgress
from gradeflow.schemas.scheme import EvaluationScheme
from gradeflow.utils.rounding import round2

HEADER = ["Enrollment", "Student", "Weighted", "Attendance Bonus", "Grace", "Final", "Status"]


def _rows(records: list[MarksRecord], students: dict[str, dict]) -> list[list[str]]:
    rows = []
    for r in sorted(records, key=lambda rec: students.get(rec.student_id, {}).get("enrollment_number") or ""):
        student = students.get(r.student_id, {})
        rows.append([
            student.get("enrollment_number", ""),
            student.get("name", r.student_id),
            f"{r.weighted_marks:.2f}",
            f"{r.attendance_bonus:g}",
            f"{r.grace_marks_applied:g}",
            f"{r.final_marks:.2f}",
            r.status,
        ])
    return rows


def marks_sheet_csv(scheme: EvaluationScheme, records: list[MarksRecord], students: dict[str, dict]) -> str:
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(HEADER)
    writer.writerows(_rows(records, students))
    return output.getvalue()


def marks_sheet_pdf(
    scheme: EvaluationScheme,
    records: list[MarksRecord],
    students: dict[str, dict],
    stats: ClassStatistics,
) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4)
    styles = getSampleStyleSheet()
    elements = [
        Paragraph(f"{scheme.subject_code} — {scheme.subject_name}", styles["Title"]),
        Paragraph(f"{scheme.department}, Semester {scheme.semester}", styles["Normal"]),
        Spacer(1, 12),
        Paragraph(
            f"Students: {stats.total_students} | Average: {stats.average_marks:.2f} | "
            f"Highest: {stats.highest_marks:.2f} | Lowest: {stats.lowest_marks:.2f} | "
            f"Pass: {stats.pass_percentage}%",
            styles["Normal"],
        ),
        Spacer(1, 20),
    ]

    table = Table([HEADER] + _rows(records, students))
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#142B34")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, 0), 9),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("ALIGN", (2, 1), (5, -1), "CENTER"),
    ]))
    elements.append(table)

    doc.build(elements)
    return buffer.getvalue()


REPORT_CARD_HEADER = ["Subject", "Component", "Max", "Obtained", "Grade"]


def report_card_rows(subjects: list[SubjectProgress]) -> list[list[str]]:
    """Table rows for a report card, one per subject plus a closing total row."""
    rows = [
        [f"{s.subject_code} - {s.subject_name}", "Total", "100", f"{s.final_marks:.2f}", letter_grade(s.final_marks)]
        for s in subjects
    ]
    obtained = sum(s.final_marks for s in subjects)
    maximum = 100 * len(subjects)
    percentage = round2(obtained / maximum * 100) if maximum else 0
    rows.append(["Total", "", str(maximum), f"{round2(obtained):.2f}", f"{percentage:.2f}%"])
    return rows


def report_card_pdf(student: dict, semester: int, subjects: list[SubjectProgress]) -> bytes:
    buffer = io.BytesIO()
    doc = SimpleDocTemplate(buffer, pagesize=A4)
    styles = getSampleStyleSheet()
    elements = [
        Paragraph("INTERNAL MARKS REPORT CARD", styles["Title"]),
        Spacer(1, 12),
        Paragraph(f"Name: {student.get('name', '')}", styles["Normal"]),
        Paragraph(f"Enrollment Number: {student.get('enrollment_number') or 'N/A'}", styles["Normal"]),
        Paragraph(f"Department: {student.get('department') or 'N/A'}", styles["Normal"]),
        Paragraph(f"Semester: {semester}", styles["Normal"]),
        Paragraph(f"Section: {student.get('section') or 'N/A'}", styles["Normal"]),
        Spacer(1, 20),
    ]

    table = Table([REPORT_CARD_HEADER] + report_card_rows(subjects))
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#142B34")),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.grey),
        ("ALIGN", (2, 1), (-1, -1), "CENTER"),
    ]))
    elements.append(table)
    elements.append(Spacer(1, 30))
    elements.append(Paragraph(f"Generated on: {date.today().isoformat()}", styles["Normal"]))

    doc.build(elements)
    return buffer.getvalue()

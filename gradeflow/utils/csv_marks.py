"""
CSV helpers for bulk marks upload: parsing, row validation and turning a row
into component marks for a scheme.
"""

import csv
import math
import io
from typing import Optional

from gradeflow.core.errors import ValidationError
from gradeflow.schemas.marks import ComponentMark
from gradeflow.schemas.scheme import EvaluationScheme

ENROLLMENT_COLUMNS = ("enrollmentNumber", "enrollment", "Enrollment Number")


def parse_csv(data: bytes | str) -> list[dict]:
    if isinstance(data, bytes):
        data = data.decode("utf-8-sig")
    reader = csv.DictReader(io.StringIO(data))
    rows = []
    for row in reader:
        rows.append({
            (key or "").strip(): (value.strip() if isinstance(value, str) else value)
            for key, value in row.items()
        })
    return rows


def validate_csv_rows(rows: list[dict], required_columns: list[str]) -> tuple[list[dict], list[dict]]:
    """Split rows into valid ones and per-row errors. Row numbers count the header as row 1."""
    valid_rows, errors = [], []
    for index, row in enumerate(rows):
        missing = [
            f"Missing required column: {col}"
            for col in required_columns
            if not row.get(col) and row.get(col) != "0"
        ]
        if missing:
            errors.append({"row": index + 2, "errors": missing})
        else:
            valid_rows.append(row)
    return valid_rows, errors


def enrollment_number(row: dict) -> Optional[str]:
    for column in ENROLLMENT_COLUMNS:
        if row.get(column):
            return row[column]
    return None


def _cell(row: dict, name: str) -> Optional[str]:
    for key in (name, name.lower().replace(" ", ""), name.upper()):
        value = row.get(key)
        if value is not None and value != "":
            return value
    return None


def build_component_marks(row: dict, scheme: EvaluationScheme) -> list[ComponentMark]:
    """
    Read one CSV row into marks for every scheme component present in it.

    A negative value or a ``<component>_absent`` column set to ``yes`` marks
    the component absent.
    """
    marks = []
    for component in scheme.components:
        raw = _cell(row, component.name)
        if raw is None:
            continue
        try:
            value = float(raw)
        except (TypeError, ValueError):
            value = math.nan
        if not math.isfinite(value):
            raise ValidationError(f"Invalid marks for {component.name}: {raw}")

        absent_flag = str(row.get(f"{component.name}_absent") or "").lower() == "yes"
        is_absent = value < 0 or absent_flag
        marks.append(ComponentMark(
            component_name=component.name,
            component_id=component.id,
            marks_obtained=0 if value < 0 else value,
            max_marks=component.max_marks,
            is_absent=is_absent,
        ))
    return marks


def generate_csv_template(scheme: EvaluationScheme) -> str:
    headers = ["enrollmentNumber", "Enrollment Number"] + [c.name for c in scheme.components]
    return ",".join(headers) + "\n"

"""
Pydantic schemas for evaluation schemes.

An evaluation scheme describes how one subject (department + semester +
subject code) is graded: its weighted components plus the grace-mark,
attendance-bonus and best-of-two policies.
"""

import uuid
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal, Optional, List

from gradeflow.core.config import settings

ComponentName = Literal[
    "Attendance", "Quiz", "Midterm", "Assignment", "Lab", "Internal Exam", "Project"
]


def _new_id() -> str:
    return str(uuid.uuid4())


# ---- Scheme parts ----
class Component(BaseModel):
    id: str = Field(default_factory=_new_id)
    name: ComponentName
    max_marks: float = Field(ge=0)
    weightage: float = Field(ge=0, le=100)
    is_optional: bool = False


class GraceMarksPolicy(BaseModel):
    max_grace_marks: float = Field(default_factory=lambda: settings.DEFAULT_MAX_GRACE_MARKS, ge=0)
    allow_carry_over: bool = False


class AttendanceThresholdPolicy(BaseModel):
    min_attendance_percentage: Optional[float] = Field(default=75, ge=0, le=100)
    marks_applicable: float = Field(default=5, ge=0)


class BestOfTwoPolicy(BaseModel):
    enabled: bool = False
    exams: List[str] = Field(default_factory=list)


# ---- Scheme ----
class EvaluationScheme(BaseModel):
    id: str = Field(default_factory=_new_id)
    department: str
    semester: int = Field(ge=1, le=8)
    subject_code: str
    subject_name: str
    section: Optional[str] = None
    components: List[Component] = Field(default_factory=list)
    grace_marks: GraceMarksPolicy = Field(default_factory=GraceMarksPolicy)
    attendance_threshold: AttendanceThresholdPolicy = Field(default_factory=AttendanceThresholdPolicy)
    best_of_two: BestOfTwoPolicy = Field(default_factory=BestOfTwoPolicy)
    created_by: Optional[str] = None
    is_active: bool = True

    @field_validator("subject_code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        return value.strip().upper()

    @field_validator("department", "subject_name")
    @classmethod
    def _strip(cls, value: str) -> str:
        return value.strip()

    @field_validator("section")
    @classmethod
    def _upper_section(cls, value: Optional[str]) -> Optional[str]:
        return value.strip().upper() if value else value

    @property
    def total_weightage(self) -> float:
        return sum(c.weightage for c in self.components)

    def component(self, component_id: str) -> Optional[Component]:
        for c in self.components:
            if c.id == component_id:
                return c
        return None


def _check_total_weightage(components: Optional[List[Component]]) -> None:
    if components is None:
        return
    total = sum(c.weightage for c in components)
    if total > 100:
        raise ValueError(f"Total weightage cannot exceed 100% (got {total:g}%)")


# ---- Request bodies ----
class SchemeCreate(BaseModel):
    department: str
    semester: int = Field(ge=1, le=8)
    subject_code: str = Field(min_length=1)
    subject_name: str = Field(min_length=1)
    section: Optional[str] = None
    components: List[Component] = Field(min_length=1)
    grace_marks: GraceMarksPolicy = Field(default_factory=GraceMarksPolicy)
    attendance_threshold: AttendanceThresholdPolicy = Field(default_factory=AttendanceThresholdPolicy)
    best_of_two: BestOfTwoPolicy = Field(default_factory=BestOfTwoPolicy)

    @model_validator(mode="after")
    def _weightage_limit(self):
        _check_total_weightage(self.components)
        return self


class SchemeUpdate(BaseModel):
    department: Optional[str] = None
    semester: Optional[int] = Field(default=None, ge=1, le=8)
    subject_code: Optional[str] = None
    subject_name: Optional[str] = None
    section: Optional[str] = None
    components: Optional[List[Component]] = Field(default=None, min_length=1)
    grace_marks: Optional[GraceMarksPolicy] = None
    attendance_threshold: Optional[AttendanceThresholdPolicy] = None
    best_of_two: Optional[BestOfTwoPolicy] = None
    is_active: Optional[bool] = None

    @model_validator(mode="after")
    def _weightage_limit(self):
        _check_total_weightage(self.components)
        return self

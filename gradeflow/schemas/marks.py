"""
Pydantic schemas for student marks and calculation results.
"""

import uuid
from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Literal, Optional, List

MarksStatus = Literal["draft", "calculated", "submitted", "approved"]


# ---- Stored marks ----
class ComponentMark(BaseModel):
    component_name: str
    component_id: str
    marks_obtained: float = Field(default=0, ge=0)
    max_marks: float = Field(ge=0)
    is_absent: bool = False
    is_grace_applied: bool = False
    is_best_of_two: bool = False


class MarksRecord(BaseModel):
    """One student's marks in one subject. Unique per (student_id, subject_id)."""

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    student_id: str
    subject_id: str
    department: str
    semester: int = Field(ge=1, le=8)
    section: Optional[str] = None
    marks: List[ComponentMark] = Field(default_factory=list)
    total_marks: float = 0
    weighted_marks: float = 0
    attendance_bonus: float = 0
    grace_marks_applied: float = 0
    final_marks: float = 0
    status: MarksStatus = "draft"
    entered_by: Optional[str] = None
    approved_by: Optional[str] = None

    @field_validator("section")
    @classmethod
    def _upper_section(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @model_validator(mode="after")
    def _raw_total(self):
        # Raw sum of non-absent obtained marks
        if self.marks:
            self.total_marks = sum(m.marks_obtained for m in self.marks if not m.is_absent)
        return self

    def revise(self, **changes) -> "MarksRecord":
        """Copy with changes applied and validators re-run (raw total included)."""
        return MarksRecord.model_validate({**self.model_dump(), **changes})


# ---- Engine output ----
class CalculatedMarks(BaseModel):
    total_marks: float
    weighted_marks: float
    attendance_bonus: float
    grace_marks_applied: float
    final_marks: float
    total_weightage: float


class StudentResult(CalculatedMarks):
    student_id: str


class RecordError(BaseModel):
    student_id: Optional[str] = None
    error: str


class RecalculationResult(BaseModel):
    results: List[StudentResult] = Field(default_factory=list)
    errors: List[RecordError] = Field(default_factory=list)


class ClassStatistics(BaseModel):
    total_students: int = 0
    average_marks: float = 0
    highest_marks: float = 0
    lowest_marks: float = 0
    pass_count: int = 0
    fail_count: int = 0
    pass_percentage: int = 0


class DistributionBucket(BaseModel):
    label: str
    count: int


# ---- Student progress ----
class SubjectProgress(BaseModel):
    subject_id: str
    semester: int
    subject_code: str
    subject_name: str
    total_marks: float
    weighted_marks: float
    final_marks: float
    status: MarksStatus


class SemesterTotal(BaseModel):
    semester: int
    total_final_marks: float
    subject_count: int


class StudentProgress(BaseModel):
    subject_wise: List[SubjectProgress] = Field(default_factory=list)
    semester_wise: List[SemesterTotal] = Field(default_factory=list)


# ---- Bulk upload ----
class UploadRowSuccess(BaseModel):
    row: int
    enrollment_number: str
    student_name: str
    final_marks: float


class UploadRowError(BaseModel):
    row: int
    enrollment_number: str = "Unknown"
    error: str


class BulkUploadResult(BaseModel):
    success: List[UploadRowSuccess] = Field(default_factory=list)
    errors: List[UploadRowError] = Field(default_factory=list)
    total_processed: int = 0


# ---- Request bodies ----
class MarksCreate(BaseModel):
    student_id: str
    subject_id: str
    marks: List[ComponentMark]
    grace_marks_applied: Optional[float] = Field(default=None, ge=0)


class MarksUpdate(BaseModel):
    marks: Optional[List[ComponentMark]] = None
    grace_marks_applied: Optional[float] = Field(default=None, ge=0)
    status: Optional[MarksStatus] = None

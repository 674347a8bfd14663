"""
Pydantic schemas for monthly attendance totals.
"""

import uuid
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List

from gradeflow.utils.rounding import round_int


class AttendanceRecord(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    student_id: str
    subject_id: str
    total_classes: int = Field(default=0, ge=0)
    attended_classes: int = Field(default=0, ge=0)
    month: int = Field(ge=1, le=12)
    year: int
    percentage: float = Field(default=0, ge=0, le=100)
    marked_by: Optional[str] = None

    @model_validator(mode="after")
    def _percentage(self):
        if self.total_classes > 0:
            self.percentage = round_int(self.attended_classes / self.total_classes * 100)
        else:
            self.percentage = 0
        return self


# ---- Request bodies ----
class AttendanceCreate(BaseModel):
    student_id: str
    subject_id: str
    total_classes: int = Field(ge=0)
    attended_classes: int = Field(ge=0)
    month: int = Field(ge=1, le=12)
    year: int


class AttendanceEntry(BaseModel):
    student_id: str
    total_classes: int = Field(ge=0)
    attended_classes: int = Field(ge=0)


class AttendanceBulkCreate(BaseModel):
    subject_id: str
    month: int = Field(ge=1, le=12)
    year: int
    records: List[AttendanceEntry]


# ---- Summary ----
class MonthPercentage(BaseModel):
    month: int
    year: int
    percentage: float


class AttendanceSummary(BaseModel):
    subject_id: str
    total_classes: int
    attended_classes: int
    overall_percentage: int
    avg_percentage: int
    months: List[MonthPercentage]

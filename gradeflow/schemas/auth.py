"""
Pydantic schemas for authentication.
"""

from pydantic import BaseModel
from typing import Literal, Optional

Role = Literal["admin", "hod", "faculty", "student"]


class UserLogin(BaseModel):
    email: str
    password: str


class UserProfile(BaseModel):
    user_id: str
    uid: str
    email: str
    name: str
    role: Role
    department: Optional[str] = None
    semester: Optional[int] = None
    section: Optional[str] = None
    enrollment_number: Optional[str] = None

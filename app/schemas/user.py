from pydantic import BaseModel, EmailStr
from typing import Optional

class MeStudent(BaseModel):
    id: int
    student_number: str
    program: Optional[str] = None
    academic_year: Optional[str] = None
    advisor_id: Optional[int] = None

class MeLecturer(BaseModel):
    id: int
    lecturer_number: str
    department: Optional[str] = None

class MeOut(BaseModel):
    id: int
    email: EmailStr
    full_name: str | None
    role: str | None
    roles: list[str]
    permissions: list[str]
    student: MeStudent | None = None
    lecturer: MeLecturer | None = None

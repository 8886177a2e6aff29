from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from registry.core.enums import StudentStatus


class CamelModel(BaseModel):
    """API field names are camelCase (idNumber, lastName, ...); snake_case is accepted on input too."""

    class Config:
        populate_by_name = True
        from_attributes = True


# ----- Student -----
class StudentWrite(CamelModel):
    """Full student state sent on create and on replace (PUT). Blank grade means no grade."""

    id_number: str = Field(..., max_length=20, alias="idNumber")
    last_name: str = Field(..., max_length=100, alias="lastName")
    first_name: str = Field(..., max_length=100, alias="firstName")
    grade: Optional[str] = Field(None, max_length=10)
    stream: str = Field(..., max_length=10)
    gender: str = Field(..., max_length=20, description="male or female")
    track: str = Field(..., max_length=100)
    status: str = Field(StudentStatus.studying.value, description="studying, completed or discontinued")
    cycle: str = Field(..., description="4-digit year the student's first grade began")


class StudentCreate(StudentWrite):
    pass


class StudentUpdate(StudentWrite):
    pass


class StudentResponse(CamelModel):
    id: UUID
    id_number: str = Field(..., alias="idNumber")
    last_name: str = Field(..., alias="lastName")
    first_name: str = Field(..., alias="firstName")
    grade: Optional[str] = None
    stream: str
    gender: str
    track: str
    status: str
    cycle: str
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: datetime = Field(..., alias="updatedAt")


class StudentPaginatedResponse(CamelModel):
    """Paginated response for GET /api/v1/students."""

    items: List[StudentResponse] = Field(..., description="List of students")
    total: int = Field(..., ge=0, description="Total count matching the query")
    page: int = Field(..., ge=1, description="Current page")
    page_size: int = Field(..., ge=1, le=500, alias="pageSize", description="Page size")
    total_pages: int = Field(..., ge=0, alias="totalPages", description="Total pages")


class StudentDeleteResponse(CamelModel):
    id: UUID
    message: str


# ----- History -----
class LocationChange(CamelModel):
    location: str = Field(..., max_length=255)


class HistoryEventResponse(CamelModel):
    id: int
    student_id: UUID = Field(..., alias="studentId")
    change_type: str = Field(..., alias="changeType")
    field_name: Optional[str] = Field(None, alias="fieldName")
    old_value: Optional[str] = Field(None, alias="oldValue")
    new_value: Optional[str] = Field(None, alias="newValue")
    location: Optional[str] = None
    changed_by: Optional[str] = Field(None, alias="changedBy")
    change_description: Optional[str] = Field(None, alias="changeDescription")
    created_at: datetime = Field(..., alias="createdAt")


# ----- Roster import -----
class RawRow(CamelModel):
    """One roster row as received from the external source. Nothing is validated here."""

    class Config:
        coerce_numbers_to_str = True

    id_number: Optional[str] = Field(None, alias="idNumber")
    last_name: Optional[str] = Field(None, alias="lastName")
    first_name: Optional[str] = Field(None, alias="firstName")
    grade: Optional[str] = None
    stream: Optional[str] = None
    gender: Optional[str] = None
    track: Optional[str] = None
    row_number: Optional[int] = Field(None, alias="rowNumber", description="Position in the source sheet, for error reports")


class StudentImportRequest(CamelModel):
    """Request body for POST /api/v1/students/import (JSON)."""

    rows: List[RawRow] = Field(..., min_length=1)
    source_label: Optional[str] = Field(None, alias="sourceLabel", max_length=255)


class RowErrorResponse(CamelModel):
    row_index: int = Field(..., alias="rowIndex")
    id_number: Optional[str] = Field(None, alias="idNumber")
    message: str


class ReconciliationResultResponse(CamelModel):
    """created + updated + skipped + len(errors) == processed."""

    processed: int
    created: int
    updated: int
    skipped: int
    errors: List[str] = Field(default_factory=list)
    row_errors: List[RowErrorResponse] = Field(default_factory=list, alias="rowErrors")


class GradeSyncResponse(CamelModel):
    """Result of recomputing every student's grade for the current academic year."""

    academic_year: int = Field(..., alias="academicYear")
    examined: int
    updated: int
    completed: int = Field(..., description="Students moved from studying to completed because their cycle ended")
    errors: List[str] = Field(default_factory=list)

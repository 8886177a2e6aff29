from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from registry.auth.dependencies import get_current_actor
from registry.auth.schemas import CurrentActor
from registry.core.config import settings
from registry.core.exceptions import ServiceError
from registry.db.session import get_db

from .schemas import (
    GradeSyncResponse,
    HistoryEventResponse,
    LocationChange,
    ReconciliationResultResponse,
    StudentCreate,
    StudentDeleteResponse,
    StudentImportRequest,
    StudentPaginatedResponse,
    StudentResponse,
    StudentUpdate,
)
from . import excel, import_service, service

router = APIRouter(prefix="/api/v1/students", tags=["students"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


@router.get("", response_model=StudentPaginatedResponse)
async def list_students(
    status_filter: Optional[str] = Query(None, alias="status", description="studying, completed or discontinued"),
    cycle: Optional[str] = Query(None),
    grade: Optional[str] = Query(None),
    gender: Optional[str] = Query(None),
    track: Optional[str] = Query(None),
    search: Optional[str] = Query(None, description="Matches ID number, last name, first name or track"),
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500, alias="pageSize"),
    db: AsyncSession = Depends(get_db),
    current_actor: CurrentActor = Depends(get_current_actor),
) -> StudentPaginatedResponse:
    return await service.list_students(
        db,
        status_filter=status_filter,
        cycle=cycle,
        grade=grade,
        gender=gender,
        track=track,
        search=search,
        page=page,
        page_size=page_size,
    )


@router.post("", response_model=StudentResponse, status_code=status.HTTP_201_CREATED)
async def create_student(
    payload: StudentCreate,
    location: Optional[str] = Query(None, description="Where the change was made, recorded in history"),
    db: AsyncSession = Depends(get_db),
    current_actor: CurrentActor = Depends(get_current_actor),
) -> StudentResponse:
    try:
        return await service.create_student(db, payload, changed_by=current_actor.changed_by, location=location)
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/import", response_model=ReconciliationResultResponse)
async def import_students(
    payload: StudentImportRequest,
    db: AsyncSession = Depends(get_db),
    current_actor: CurrentActor = Depends(get_current_actor),
) -> ReconciliationResultResponse:
    """Reconcile roster rows: new ID numbers are created, changed rows updated, unchanged rows skipped."""
    if len(payload.rows) > settings.import_max_rows:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum {settings.import_max_rows} rows allowed",
        )
    result = await import_service.reconcile_students(
        db,
        payload.rows,
        changed_by=current_actor.changed_by,
        source_label=payload.source_label,
    )
    return result.to_response()


@router.get("/import-excel/template")
async def download_roster_template(
    current_actor: CurrentActor = Depends(get_current_actor),
) -> Response:
    """Download an Excel roster template with grade and gender dropdowns."""
    content = excel.build_roster_template(settings.import_max_rows)
    return Response(
        content=content,
        media_type=XLSX_MEDIA_TYPE,
        headers={"Content-Disposition": "attachment; filename=student_roster_template.xlsx"},
    )


@router.post("/import-excel", response_model=ReconciliationResultResponse)
async def import_students_excel(
    file: UploadFile = File(
        ...,
        description="Excel roster with columns id_number, last_name, first_name, grade, stream, gender, track (Hebrew headers accepted)",
    ),
    db: AsyncSession = Depends(get_db),
    current_actor: CurrentActor = Depends(get_current_actor),
) -> ReconciliationResultResponse:
    if not file.filename or not file.filename.lower().endswith(".xlsx"):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="File must be an Excel file (.xlsx)")
    try:
        rows = excel.parse_roster_workbook(await file.read(), settings.import_max_rows)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    if not rows:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Excel file has no data rows")
    result = await import_service.reconcile_students(
        db,
        rows,
        changed_by=current_actor.changed_by,
        source_label=file.filename,
    )
    return result.to_response()


@router.post("/sync-grades", response_model=GradeSyncResponse)
async def sync_grades(
    db: AsyncSession = Depends(get_db),
    current_actor: CurrentActor = Depends(get_current_actor),
) -> GradeSyncResponse:
    """Recompute every student's grade for the current academic year (run after the September rollover)."""
    return await service.sync_grades_with_cycle(db, changed_by=current_actor.changed_by)


@router.get("/{student_id}", response_model=StudentResponse)
async def get_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_actor: CurrentActor = Depends(get_current_actor),
) -> StudentResponse:
    student = await service.get_student(db, student_id)
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return student


@router.put("/{student_id}", response_model=StudentResponse)
async def update_student(
    student_id: UUID,
    payload: StudentUpdate,
    location: Optional[str] = Query(None, description="Where the change was made, recorded in history"),
    db: AsyncSession = Depends(get_db),
    current_actor: CurrentActor = Depends(get_current_actor),
) -> StudentResponse:
    try:
        student = await service.update_student(
            db, student_id, payload, changed_by=current_actor.changed_by, location=location
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not student:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return student


@router.delete("/{student_id}", response_model=StudentDeleteResponse)
async def delete_student(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_actor: CurrentActor = Depends(get_current_actor),
) -> StudentDeleteResponse:
    deleted = await service.delete_student(db, student_id, changed_by=current_actor.changed_by)
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return StudentDeleteResponse(id=deleted.id, message="Student deleted successfully")


@router.post("/{student_id}/location", status_code=status.HTTP_204_NO_CONTENT)
async def record_location_change(
    student_id: UUID,
    payload: LocationChange,
    db: AsyncSession = Depends(get_db),
    current_actor: CurrentActor = Depends(get_current_actor),
) -> Response:
    try:
        found = await service.record_location_change(
            db, student_id, payload.location, changed_by=current_actor.changed_by
        )
    except ServiceError as e:
        raise HTTPException(status_code=e.status_code, detail=e.message)
    if not found:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{student_id}/history", response_model=List[HistoryEventResponse])
async def get_student_history(
    student_id: UUID,
    db: AsyncSession = Depends(get_db),
    current_actor: CurrentActor = Depends(get_current_actor),
) -> List[HistoryEventResponse]:
    """Every recorded change to the student, newest first."""
    events = await service.get_student_history(db, student_id)
    if events is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Student not found")
    return [HistoryEventResponse.model_validate(e) for e in events]

import logging
import math
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from registry.core.academic_calendar import (
    GRADE_ORDER,
    current_academic_year,
    cycle_phase,
    grade_from_cycle,
    is_recognized_grade,
    normalize_gender,
    normalize_grade,
    normalize_status,
    parse_cycle,
    utcnow,
)
from registry.core.enums import CyclePhase, Gender, StudentStatus
from registry.core.exceptions import DuplicateKeyError, ServiceError, ValidationError
from registry.core.models import Student, StudentHistory

from . import history_service
from .history_service import FieldChange
from .schemas import GradeSyncResponse, StudentPaginatedResponse, StudentResponse, StudentWrite, StudentUpdate

logger = logging.getLogger(__name__)

# Every field a change to which is written to the history ledger, with its display label.
# id, created_at and updated_at are never diffed.
TRACKED_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("id_number", "ID number"),
    ("last_name", "Last name"),
    ("first_name", "First name"),
    ("grade", "Grade"),
    ("stream", "Stream"),
    ("gender", "Gender"),
    ("track", "Track"),
    ("status", "Status"),
    ("cycle", "Cycle"),
)

MANDATORY_FIELDS = ("id_number", "last_name", "first_name", "stream", "gender", "track", "status", "cycle")

SEARCH_FIELDS = ("id_number", "last_name", "first_name", "track")

_GENDERS = {g.value for g in Gender}
_STATUSES = {s.value for s in StudentStatus}


def _to_response(student: Student) -> StudentResponse:
    return StudentResponse(
        id=student.id,
        id_number=student.id_number,
        last_name=student.last_name,
        first_name=student.first_name,
        grade=student.grade,
        stream=student.stream,
        gender=student.gender,
        track=student.track,
        status=student.status,
        cycle=student.cycle,
        created_at=student.created_at,
        updated_at=student.updated_at,
    )


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def candidate_values(payload: StudentWrite) -> Dict[str, Optional[str]]:
    """Trimmed column values for a payload. Blank grade becomes None; labels are canonicalized."""
    return {
        "id_number": _clean(payload.id_number),
        "last_name": _clean(payload.last_name),
        "first_name": _clean(payload.first_name),
        "grade": normalize_grade(payload.grade),
        "stream": _clean(payload.stream),
        "gender": normalize_gender(payload.gender),
        "track": _clean(payload.track),
        "status": normalize_status(payload.status),
        "cycle": _clean(payload.cycle),
    }


def validate_student_state(values: Dict[str, Optional[str]], reference_year: int, *, strict: bool = True) -> None:
    """
    Raise ValidationError for a candidate that must not be stored.
    Lenient mode (roster imports) checks mandatory fields and enumerations only; strict mode also
    enforces the cycle rules: active cycle needs a recognized grade, ended/future cycle has no grade
    and cannot be studying.
    """
    labels = dict(TRACKED_FIELDS)
    missing = [labels[attr] for attr in MANDATORY_FIELDS if not values.get(attr)]
    if missing:
        raise ValidationError(f"Missing required field(s): {', '.join(missing)}")
    if values["gender"] not in _GENDERS:
        raise ValidationError(f"Invalid gender '{values['gender']}'. Expected one of: {', '.join(sorted(_GENDERS))}")
    if values["status"] not in _STATUSES:
        raise ValidationError(f"Invalid status '{values['status']}'. Expected one of: {', '.join(sorted(_STATUSES))}")
    cycle = parse_cycle(values["cycle"])
    if cycle is None:
        raise ValidationError(f"Cycle must be a 4-digit year, got '{values['cycle']}'")
    if not strict:
        return

    grade = values["grade"]
    phase = cycle_phase(cycle, reference_year)
    if phase == CyclePhase.ACTIVE:
        if not is_recognized_grade(grade):
            raise ValidationError(
                f"Cycle {cycle} is active; grade must be one of: {', '.join(GRADE_ORDER)}"
            )
        expected = grade_from_cycle(cycle, reference_year)
        if grade != expected:
            logger.warning(
                f"Grade {grade} for ID {values['id_number']} differs from {expected} derived from cycle {cycle}"
            )
        return
    if grade is not None:
        raise ValidationError(f"Cycle {cycle} is {phase.value}; grade must be empty")
    if values["status"] == StudentStatus.studying.value:
        raise ValidationError(f"Cycle {cycle} is {phase.value}; status cannot be '{StudentStatus.studying.value}'")


def diff_fields(
    student: Student,
    values: Dict[str, Optional[str]],
    fields: Sequence[Tuple[str, str]] = TRACKED_FIELDS,
) -> List[FieldChange]:
    """(attribute, label, old, new) for every field in `fields` whose value differs."""
    changes: List[FieldChange] = []
    for attr, label in fields:
        old_value = getattr(student, attr)
        new_value = values.get(attr)
        if old_value != new_value:
            changes.append((attr, label, old_value, new_value))
    return changes


# ----- Read -----
async def get_student_model(db: AsyncSession, student_id: UUID) -> Optional[Student]:
    return await db.get(Student, student_id)


async def get_student_model_by_id_number(db: AsyncSession, id_number: str) -> Optional[Student]:
    result = await db.execute(select(Student).where(Student.id_number == id_number.strip()))
    return result.scalar_one_or_none()


async def get_student(db: AsyncSession, student_id: UUID) -> Optional[StudentResponse]:
    student = await get_student_model(db, student_id)
    return _to_response(student) if student else None


async def get_student_by_id_number(db: AsyncSession, id_number: str) -> Optional[StudentResponse]:
    student = await get_student_model_by_id_number(db, id_number)
    return _to_response(student) if student else None


async def list_students(
    db: AsyncSession,
    *,
    status_filter: Optional[str] = None,
    cycle: Optional[str] = None,
    grade: Optional[str] = None,
    gender: Optional[str] = None,
    track: Optional[str] = None,
    search: Optional[str] = None,
    page: int = 1,
    page_size: int = 50,
) -> StudentPaginatedResponse:
    """Filtered, paginated student list ordered by last name, first name."""
    stmt = select(Student)
    if status_filter:
        stmt = stmt.where(Student.status == normalize_status(status_filter))
    if cycle:
        stmt = stmt.where(Student.cycle == cycle.strip())
    if grade:
        stmt = stmt.where(Student.grade == normalize_grade(grade))
    if gender:
        stmt = stmt.where(Student.gender == normalize_gender(gender))
    if track:
        stmt = stmt.where(Student.track == track.strip())
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        stmt = stmt.where(or_(*[getattr(Student, f).ilike(pattern) for f in SEARCH_FIELDS]))

    total = (await db.execute(select(func.count()).select_from(stmt.subquery()))).scalar() or 0
    result = await db.execute(
        stmt.order_by(Student.last_name, Student.first_name, Student.id_number)
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return StudentPaginatedResponse(
        items=[_to_response(s) for s in result.scalars().all()],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=math.ceil(total / page_size) if total else 0,
    )


# ----- Mutations -----
async def create_student(
    db: AsyncSession,
    payload: StudentWrite,
    *,
    changed_by: Optional[str] = None,
    location: Optional[str] = None,
    now: Optional[datetime] = None,
    strict: bool = True,
) -> StudentResponse:
    """
    Insert a student and its created + start_studies events in one transaction.
    Raises ValidationError before writing, DuplicateKeyError if the ID number is taken.
    """
    now = now or utcnow()
    values = candidate_values(payload)
    validate_student_state(values, current_academic_year(now), strict=strict)

    student = Student(**values, created_at=now, updated_at=now)
    db.add(student)
    try:
        await db.flush()
        await history_service.record_creation(db, student, changed_by=changed_by, location=location)
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateKeyError(values["id_number"])
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Student created: {student.full_name} ({student.id_number}) by {changed_by or 'system'}")
    return _to_response(student)


async def update_student(
    db: AsyncSession,
    student_id: UUID,
    payload: StudentWrite,
    *,
    changed_by: Optional[str] = None,
    location: Optional[str] = None,
    now: Optional[datetime] = None,
    strict: bool = True,
) -> Optional[StudentResponse]:
    """
    Replace a student's state. Writes one field_update event per changed tracked field.
    No changed field is a no-op: nothing is written. Returns None if the student does not exist.
    """
    student = await get_student_model(db, student_id)
    if not student:
        return None

    now = now or utcnow()
    values = candidate_values(payload)
    validate_student_state(values, current_academic_year(now), strict=strict)

    changes = diff_fields(student, values)
    if not changes:
        return _to_response(student)

    try:
        for attr, _, _, new_value in changes:
            setattr(student, attr, new_value)
        student.updated_at = now
        await db.flush()
        await history_service.record_field_updates(
            db, student.id, changes, changed_by=changed_by, location=location, created_at=now
        )
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateKeyError(values["id_number"])
    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Student updated: {student.full_name} ({student.id_number}) by {changed_by or 'system'}; "
        f"fields: {', '.join(label for _, label, _, _ in changes)}"
    )
    return _to_response(student)


async def delete_student(
    db: AsyncSession,
    student_id: UUID,
    *,
    changed_by: Optional[str] = None,
    location: Optional[str] = None,
) -> Optional[StudentResponse]:
    """
    Delete a student. The deleted event is written in the same transaction as the row delete,
    and the cascade removes it with the rest of the history. Returns the pre-deletion state.
    """
    student = await get_student_model(db, student_id)
    if not student:
        return None

    snapshot = _to_response(student)
    try:
        await history_service.record_deletion(db, student, changed_by=changed_by, location=location)
        await db.delete(student)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Student deleted: {snapshot.first_name} {snapshot.last_name} ({snapshot.id_number}) by {changed_by or 'system'}")
    return snapshot


async def record_location_change(
    db: AsyncSession,
    student_id: UUID,
    location: str,
    *,
    changed_by: Optional[str] = None,
) -> bool:
    """Append a location_change event. The student row itself is not modified."""
    student = await get_student_model(db, student_id)
    if not student:
        return False
    location = (location or "").strip()
    if not location:
        raise ValidationError("Location is required")
    try:
        await history_service.record_location_change(db, student.id, location, changed_by=changed_by)
        await db.commit()
    except Exception:
        await db.rollback()
        raise
    return True


async def get_student_history(db: AsyncSession, student_id: UUID) -> Optional[List[StudentHistory]]:
    """History newest first, or None if the student does not exist."""
    student = await get_student_model(db, student_id)
    if not student:
        return None
    return await history_service.list_history(db, student_id)


# ----- Academic-year rollover -----
def _payload_from_student(student: Student, **overrides) -> StudentUpdate:
    data = {attr: getattr(student, attr) for attr, _ in TRACKED_FIELDS}
    data.update(overrides)
    return StudentUpdate(**data)


async def sync_grades_with_cycle(
    db: AsyncSession,
    *,
    changed_by: Optional[str] = None,
    now: Optional[datetime] = None,
) -> GradeSyncResponse:
    """
    Bring every student in line with the current academic year: grade derived from cycle
    (None once the cycle has ended or not yet begun), and studying -> completed for ended cycles.
    Each change goes through update_student so the history records it.
    """
    now = now or utcnow()
    academic_year = current_academic_year(now)
    result = await db.execute(select(Student).order_by(Student.id_number))
    students = result.scalars().all()

    examined, updated, completed = 0, 0, 0
    errors: List[str] = []
    for student in students:
        examined += 1
        student_id, id_number = student.id, student.id_number
        cycle = parse_cycle(student.cycle)
        if cycle is None:
            errors.append(f"ID {id_number}: cycle '{student.cycle}' is not a 4-digit year")
            continue
        overrides = {"grade": grade_from_cycle(cycle, academic_year)}
        phase = cycle_phase(cycle, academic_year)
        moves_to_completed = phase == CyclePhase.ENDED and student.status == StudentStatus.studying.value
        if moves_to_completed:
            overrides["status"] = StudentStatus.completed.value
        if not diff_fields(student, overrides, [f for f in TRACKED_FIELDS if f[0] in overrides]):
            continue
        try:
            await update_student(
                db,
                student_id,
                _payload_from_student(student, **overrides),
                changed_by=changed_by,
                location="academic year rollover",
                now=now,
                strict=False,
            )
        except ServiceError as e:
            errors.append(f"ID {id_number}: {e.message}")
            continue
        updated += 1
        if moves_to_completed:
            completed += 1

    logger.info(
        f"Grade sync for {academic_year}: examined={examined} updated={updated} completed={completed} errors={len(errors)}"
    )
    return GradeSyncResponse(
        academic_year=academic_year,
        examined=examined,
        updated=updated,
        completed=completed,
        errors=errors,
    )

"""
Student history ledger. Every change to a student record appends events here.

Events are never edited or deleted through this module; the only way they leave
the table is the ON DELETE CASCADE of their student. All functions add to the
caller's transaction and flush. Caller must commit, so a failed append fails the
whole enclosing mutation.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from registry.core.academic_calendar import current_academic_year, grade_from_cycle, parse_cycle, utcnow
from registry.core.enums import ChangeType
from registry.core.models import Student, StudentHistory

# (attribute, label, old value, new value)
FieldChange = Tuple[str, str, Optional[str], Optional[str]]


def _display(value: Optional[str]) -> str:
    return "" if value is None else str(value)


def describe_field_update(label: str, old_value: Optional[str], new_value: Optional[str]) -> str:
    return f"{label} changed from '{_display(old_value)}' to '{_display(new_value)}'"


def describe_start_studies(student: Student) -> str:
    grade = student.grade
    cycle = parse_cycle(student.cycle)
    if grade is None and cycle is not None:
        grade = grade_from_cycle(cycle, current_academic_year(student.created_at))
    if grade:
        return f"Started studies in cycle {student.cycle} (grade {grade})"
    return f"Started studies in cycle {student.cycle}"


async def append_event(
    db: AsyncSession,
    student_id: UUID,
    change_type: ChangeType,
    *,
    field_name: Optional[str] = None,
    old_value: Optional[str] = None,
    new_value: Optional[str] = None,
    location: Optional[str] = None,
    changed_by: Optional[str] = None,
    description: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> StudentHistory:
    """Append one history event. Caller must commit."""
    entry = StudentHistory(
        student_id=student_id,
        change_type=change_type.value,
        field_name=field_name,
        old_value=old_value,
        new_value=new_value,
        location=location,
        changed_by=changed_by,
        change_description=description,
        created_at=created_at or utcnow(),
    )
    db.add(entry)
    await db.flush()
    return entry


async def record_creation(
    db: AsyncSession,
    student: Student,
    *,
    changed_by: Optional[str] = None,
    location: Optional[str] = None,
) -> List[StudentHistory]:
    """
    created + start_studies, both stamped with the student's created_at.
    The start_studies pair is kept for clients that only render that event type.
    """
    created = await append_event(
        db,
        student.id,
        ChangeType.CREATED,
        location=location,
        changed_by=changed_by,
        description=f"Student {student.full_name} (ID {student.id_number}) created",
        created_at=student.created_at,
    )
    started = await append_event(
        db,
        student.id,
        ChangeType.START_STUDIES,
        location=location,
        changed_by=changed_by,
        description=describe_start_studies(student),
        created_at=student.created_at,
    )
    return [created, started]


async def record_field_updates(
    db: AsyncSession,
    student_id: UUID,
    changes: Iterable[FieldChange],
    *,
    changed_by: Optional[str] = None,
    location: Optional[str] = None,
    created_at: Optional[datetime] = None,
) -> List[StudentHistory]:
    """One field_update event per changed field, field_name carrying the display label."""
    created_at = created_at or utcnow()
    events = []
    for _, label, old_value, new_value in changes:
        events.append(
            await append_event(
                db,
                student_id,
                ChangeType.FIELD_UPDATE,
                field_name=label,
                old_value=old_value,
                new_value=new_value,
                location=location,
                changed_by=changed_by,
                description=describe_field_update(label, old_value, new_value),
                created_at=created_at,
            )
        )
    return events


async def record_location_change(
    db: AsyncSession,
    student_id: UUID,
    location: str,
    *,
    changed_by: Optional[str] = None,
) -> StudentHistory:
    return await append_event(
        db,
        student_id,
        ChangeType.LOCATION_CHANGE,
        location=location,
        changed_by=changed_by,
        description=f"Location changed to {location}",
    )


async def record_deletion(
    db: AsyncSession,
    student: Student,
    *,
    changed_by: Optional[str] = None,
    location: Optional[str] = None,
) -> StudentHistory:
    return await append_event(
        db,
        student.id,
        ChangeType.DELETED,
        location=location,
        changed_by=changed_by,
        description=f"Student {student.full_name} (ID {student.id_number}) deleted",
    )


async def list_history(db: AsyncSession, student_id: UUID) -> List[StudentHistory]:
    """Events for a student, newest first. Events sharing a timestamp come back in reverse insertion order."""
    result = await db.execute(
        select(StudentHistory)
        .where(StudentHistory.student_id == student_id)
        .order_by(StudentHistory.created_at.desc(), StudentHistory.id.desc())
    )
    return list(result.scalars().all())


async def backfill_start_studies(db: AsyncSession) -> int:
    """
    Insert a start_studies event, backdated to created_at, for every student that has neither
    a created nor a start_studies event (rows that predate the ledger). Idempotent. Commits.
    """
    has_event = (
        select(StudentHistory.id)
        .where(
            StudentHistory.student_id == Student.id,
            StudentHistory.change_type.in_([ChangeType.CREATED.value, ChangeType.START_STUDIES.value]),
        )
        .exists()
    )
    result = await db.execute(select(Student).where(~has_event).order_by(Student.created_at))
    students = result.scalars().all()
    for student in students:
        await append_event(
            db,
            student.id,
            ChangeType.START_STUDIES,
            description=describe_start_studies(student),
            created_at=student.created_at,
        )
    await db.commit()
    return len(students)

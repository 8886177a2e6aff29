"""
Roster reconciliation: merge externally supplied rows into the student population.

Rows are matched on ID number and processed one at a time, in source order, against
the store as it is at that row's turn; each row's create or update commits on its own.
A failure on one row is rolled back and reported; it never stops the batch.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from registry.core.academic_calendar import (
    current_academic_year,
    cycle_from_grade,
    normalize_gender,
    normalize_grade,
    utcnow,
)
from registry.core.enums import StudentStatus
from registry.core.exceptions import NotFoundError, ServiceError
from registry.core.models import Student

from . import service as student_service
from .schemas import RawRow, ReconciliationResultResponse, RowErrorResponse, StudentCreate, StudentUpdate

logger = logging.getLogger(__name__)

# Fields compared on import. Status is curated by hand and never changed by an import.
IMPORT_DIFF_FIELDS = tuple(
    (attr, label)
    for attr, label in student_service.TRACKED_FIELDS
    if attr in ("last_name", "first_name", "grade", "stream", "gender", "track", "cycle")
)

# Store-level failures that make every following row fail too: abort the batch.
SYSTEMIC_ERRORS = (OperationalError, InterfaceError)

CREATED = "created"
UPDATED = "updated"
SKIPPED = "skipped"


@dataclass
class RowError:
    row_index: int
    id_number: Optional[str]
    message: str

    def __str__(self) -> str:
        if self.id_number:
            return f"Row {self.row_index} (ID {self.id_number}): {self.message}"
        return f"Row {self.row_index}: {self.message}"


@dataclass
class ReconciliationResult:
    processed: int = 0
    created: int = 0
    updated: int = 0
    skipped: int = 0
    row_errors: List[RowError] = field(default_factory=list)

    @property
    def errors(self) -> List[str]:
        return [str(e) for e in self.row_errors]

    def to_response(self) -> ReconciliationResultResponse:
        return ReconciliationResultResponse(
            processed=self.processed,
            created=self.created,
            updated=self.updated,
            skipped=self.skipped,
            errors=self.errors,
            row_errors=[
                RowErrorResponse(row_index=e.row_index, id_number=e.id_number, message=e.message)
                for e in self.row_errors
            ],
        )


@dataclass
class NormalizedRow:
    id_number: str
    last_name: str
    first_name: str
    grade: Optional[str]
    stream: Optional[str]
    gender: Optional[str]
    track: Optional[str]


def _strip(value: Optional[str]) -> str:
    return str(value).strip() if value is not None else ""


def normalize_row(row: RawRow) -> Optional[NormalizedRow]:
    """Trimmed row with canonical grade and gender. None when ID number, last name or first name is missing."""
    id_number = _strip(row.id_number)
    last_name = _strip(row.last_name)
    first_name = _strip(row.first_name)
    if not id_number or not last_name or not first_name:
        return None
    return NormalizedRow(
        id_number=id_number,
        last_name=last_name,
        first_name=first_name,
        grade=normalize_grade(row.grade),
        stream=_strip(row.stream),
        gender=normalize_gender(row.gender) or "",
        track=_strip(row.track),
    )


def _describe(exc: Exception) -> str:
    if isinstance(exc, ServiceError):
        return exc.message
    if isinstance(exc, PydanticValidationError):
        return "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
    return str(exc) or exc.__class__.__name__


async def _reconcile_row(
    db: AsyncSession,
    row: NormalizedRow,
    academic_year: int,
    *,
    changed_by: Optional[str],
    source_label: Optional[str],
    now: datetime,
) -> str:
    existing: Optional[Student] = await student_service.get_student_model_by_id_number(db, row.id_number)
    derived_cycle = cycle_from_grade(row.grade, academic_year)

    if existing:
        payload = StudentUpdate(
            id_number=row.id_number,
            last_name=row.last_name,
            first_name=row.first_name,
            grade=row.grade,
            stream=row.stream,
            gender=row.gender,
            track=row.track,
            status=existing.status,
            cycle=derived_cycle or existing.cycle,
        )
        values = student_service.candidate_values(payload)
        if not student_service.diff_fields(existing, values, IMPORT_DIFF_FIELDS):
            return SKIPPED
        updated = await student_service.update_student(
            db,
            existing.id,
            payload,
            changed_by=changed_by,
            location=source_label,
            now=now,
            strict=False,
        )
        if updated is None:
            raise NotFoundError(f"Student with ID number {row.id_number} disappeared during import")
        return UPDATED

    payload = StudentCreate(
        id_number=row.id_number,
        last_name=row.last_name,
        first_name=row.first_name,
        grade=row.grade,
        stream=row.stream,
        gender=row.gender,
        track=row.track,
        status=StudentStatus.studying.value,
        cycle=derived_cycle or str(academic_year),
    )
    await student_service.create_student(
        db,
        payload,
        changed_by=changed_by,
        location=source_label,
        now=now,
        strict=False,
    )
    return CREATED


async def reconcile_students(
    db: AsyncSession,
    rows: Iterable[RawRow],
    *,
    changed_by: Optional[str] = None,
    source_label: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ReconciliationResult:
    """
    Create, update or skip each row. Every processed row lands in exactly one of
    created / updated / skipped / row_errors. Only a store outage propagates.
    """
    now = now or utcnow()
    academic_year = current_academic_year(now)
    result = ReconciliationResult()

    for index, raw in enumerate(rows, start=1):
        row = normalize_row(raw)
        if row is None:
            continue
        result.processed += 1
        row_index = raw.row_number or index
        try:
            outcome = await _reconcile_row(
                db,
                row,
                academic_year,
                changed_by=changed_by,
                source_label=source_label,
                now=now,
            )
        except SYSTEMIC_ERRORS:
            await db.rollback()
            logger.error(f"Import aborted at row {row_index} (ID {row.id_number}): store unavailable", exc_info=True)
            raise
        except Exception as e:
            await db.rollback()
            error = RowError(row_index=row_index, id_number=row.id_number, message=_describe(e))
            result.row_errors.append(error)
            logger.warning(f"Import row failed: {error}")
            continue

        if outcome == CREATED:
            result.created += 1
        elif outcome == UPDATED:
            result.updated += 1
        else:
            result.skipped += 1

    logger.info(
        f"Import from {source_label or 'unknown source'} by {changed_by or 'system'}: "
        f"processed={result.processed} created={result.created} updated={result.updated} "
        f"skipped={result.skipped} errors={len(result.row_errors)}"
    )
    return result

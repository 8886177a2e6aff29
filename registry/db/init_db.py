"""
Create the schema (retrying while the database container starts up) and seed sample students
into an empty table. Runs on application startup; can also be run by hand:
  python -m registry.db.init_db
"""

import asyncio
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from registry.api.v1.students import service as student_service
from registry.api.v1.students.schemas import StudentCreate
from registry.core.academic_calendar import current_academic_year, cycle_from_grade
from registry.core.config import settings
from registry.core.models import Student
from registry.db.session import AsyncSessionLocal, Base, engine

logger = logging.getLogger(__name__)

# (id_number, last_name, first_name, grade, stream, gender, track, status)
SAMPLE_STUDENTS = [
    ("123456789", "כהן", "דוד", "ט'", "1", "זכר", "מדעי המחשב", "לומד"),
    ("987654321", "לוי", "שרה", 'י"א', "3", "נקבה", "מתמטיקה", "לומד"),
    ("456789123", "ישראלי", "יוסי", 'י"ב', "5", "זכר", "פיזיקה", "הפסיק לימודים"),
    ("789123456", "דוד", "מיכל", 'י"ד', "8", "נקבה", "ביולוגיה", "סיים לימודים"),
]

SEED_ACTOR = "seed"


async def ensure_tables(db_engine: AsyncEngine) -> None:
    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def seed_sample_students(db: AsyncSession) -> int:
    """Insert SAMPLE_STUDENTS if the students table is empty. Returns how many were inserted."""
    count = (await db.execute(select(func.count(Student.id)))).scalar() or 0
    if count:
        return 0

    academic_year = current_academic_year()
    for id_number, last_name, first_name, grade, stream, gender, track, status in SAMPLE_STUDENTS:
        await student_service.create_student(
            db,
            StudentCreate(
                id_number=id_number,
                last_name=last_name,
                first_name=first_name,
                grade=grade,
                stream=stream,
                gender=gender,
                track=track,
                status=status,
                cycle=cycle_from_grade(grade, academic_year) or str(academic_year),
            ),
            changed_by=SEED_ACTOR,
            strict=False,
        )
    return len(SAMPLE_STUDENTS)


async def init_database(retries: Optional[int] = None, delay: Optional[float] = None) -> None:
    retries = retries or settings.db_init_retries
    delay = settings.db_init_retry_delay_seconds if delay is None else delay

    for attempt in range(1, retries + 1):
        try:
            await ensure_tables(engine)
            break
        except (OperationalError, InterfaceError, OSError):
            if attempt == retries:
                logger.error(f"Error initializing database after {retries} attempts", exc_info=True)
                raise
            logger.warning(f"Database connection attempt {attempt} failed, retrying in {delay}s...")
            await asyncio.sleep(delay)

    if settings.seed_sample_data:
        async with AsyncSessionLocal() as session:
            inserted = await seed_sample_students(session)
        if inserted:
            logger.info(f"Inserted {inserted} sample students")
    logger.info("Database initialized successfully")


def main() -> None:
    from registry.core.logging import configure_logging

    configure_logging()
    asyncio.run(init_database())


if __name__ == "__main__":
    main()

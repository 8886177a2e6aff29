import os

# Settings are read at import time: point the app at an in-memory database with auth off.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["SEED_SAMPLE_DATA"] = "false"
os.environ["AUTHENTIK_ISSUER"] = ""
os.environ["AUTHENTIK_CLIENT_ID"] = ""

from datetime import datetime
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from registry.api.v1.students.schemas import StudentCreate
from registry.core import models  # noqa: F401  (registers tables on Base.metadata)
from registry.db.session import Base, enable_sqlite_foreign_keys, get_db
from registry.main import app


TEST_DATABASE_URL = "sqlite+aiosqlite://"

# 1 October 2024: academic year 2024, so cycle 2024 is in ט' and cycle 2019 is in י"ד.
REFERENCE_NOW = datetime(2024, 10, 1, 9, 30)


@pytest.fixture()
async def db_engine() -> AsyncGenerator[AsyncEngine, None]:
    """Fresh in-memory database per test, foreign keys on so history cascades with its student."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Provide a database session for a test and override FastAPI dependency."""
    async_session = async_sessionmaker(
        bind=db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session() as session:

        async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
            yield session

        app.dependency_overrides[get_db] = override_get_db
        yield session

    app.dependency_overrides.clear()


@pytest.fixture()
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to the FastAPI app."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


@pytest.fixture()
def now() -> datetime:
    return REFERENCE_NOW


def make_student(**overrides) -> StudentCreate:
    """A valid first-year student for REFERENCE_NOW; override any field."""
    data = {
        "id_number": "123456789",
        "last_name": "Cohen",
        "first_name": "David",
        "grade": "ט'",
        "stream": "1",
        "gender": "male",
        "track": "Computer Science",
        "status": "studying",
        "cycle": "2024",
    }
    data.update(overrides)
    return StudentCreate(**data)

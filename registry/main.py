from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from registry.api.v1.auth.router import router as auth_router
from registry.api.v1.students.router import router as students_router
from registry.core.config import settings
from registry.core.logging import configure_logging
from registry.db.init_db import init_database


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_database()
    yield


def create_app() -> FastAPI:
    configure_logging()
    app = FastAPI(title="Student Registry", lifespan=lifespan)

    # CORS: allow the frontend dev server to call this API
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Routers
    app.include_router(auth_router)
    app.include_router(students_router)

    return app


app = create_app()

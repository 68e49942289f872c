"""
app.py: FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires the lottery services, registers routers, and runs startup
initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from teesheet.controllers.entry_controller import router as entry_router
from teesheet.controllers.lottery_controller import router as lottery_router
from teesheet.repository.data_repository import DataRepository
from teesheet.services.arrangement_service import ArrangementService
from teesheet.services.assignment_service import LotteryProcessingService
from teesheet.services.entry_service import EntryService
from teesheet.utils.config import Settings, get_settings
from teesheet.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Services share one repository and are stored on app.state for the
    controller dependency providers.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    repository = DataRepository(settings)
    entry_service = EntryService(repository=repository, settings=settings)
    processing_service = LotteryProcessingService(repository=repository, settings=settings)
    arrangement_service = ArrangementService(repository=repository, settings=settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Run startup initialization before accepting requests."""
        _startup(app, settings)
        yield

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        lifespan=lifespan,
    )

    app.include_router(entry_router)
    app.include_router(lottery_router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": settings.app_version}

    app.state.repository = repository
    app.state.entry_service = entry_service
    app.state.processing_service = processing_service
    app.state.arrangement_service = arrangement_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    Schema must exist before the optional demo roster is seeded.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo members and rules (skipped if Members not empty)")
        repository.seed_demo_data_if_empty()

    logger.info("Startup complete, lottery service ready")


# Module-level app object for uvicorn
app = create_app()

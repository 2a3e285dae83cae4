"""
app.py — FastAPI application factory and startup lifecycle.

This is the ASGI application object imported by uvicorn.
It wires all services, registers routers, and runs startup initialization.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from backend.controllers.event_controller import router as event_router
from backend.controllers.housekeeping_controller import router as housekeeping_router
from backend.controllers.notification_controller import router as notification_router
from backend.repository.data_repository import DataRepository
from backend.services.allocation_service import AllocationService
from backend.services.approval_service import ApprovalWorkflowService
from backend.services.event_service import EventService
from backend.services.housekeeping_service import HousekeepingService
from backend.services.notification_service import NotificationService
from backend.utils.config import Settings, get_settings
from backend.utils.logger import configure_logging, get_logger


logger = get_logger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """
    Build and wire the FastAPI application.

    Every service shares one repository and one notification service, and is
    injected through app.state so each dependency is traceable from here.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    repository = DataRepository(settings)
    notification_service = NotificationService(repository=repository, settings=settings)
    allocation_service = AllocationService(
        repository=repository,
        settings=settings,
        notification_service=notification_service,
    )
    approval_service = ApprovalWorkflowService(
        repository=repository,
        settings=settings,
        allocation_service=allocation_service,
        notification_service=notification_service,
    )
    event_service = EventService(repository=repository, settings=settings)
    housekeeping_service = HousekeepingService(
        repository=repository,
        settings=settings,
        notification_service=notification_service,
    )

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

    app.include_router(event_router)
    app.include_router(notification_router)
    app.include_router(housekeeping_router)

    app.state.repository = repository
    app.state.notification_service = notification_service
    app.state.allocation_service = allocation_service
    app.state.approval_service = approval_service
    app.state.event_service = event_service
    app.state.housekeeping_service = housekeeping_service

    return app


def _startup(app: FastAPI, settings: Settings) -> None:
    """
    Idempotent startup sequence. Safe to re-run on server restarts.

    The schema must exist before demo seeding; seeding skips itself once
    any user exists.
    """
    repository: DataRepository = app.state.repository

    logger.info("Startup: initializing database schema")
    repository.initialize_database()

    if settings.seed_demo_data:
        logger.info("Startup: seeding demo institution (skipped if Users table not empty)")
        repository.seed_demo_data()

    logger.info("Startup complete — system ready")


# Module-level app object for uvicorn
app = create_app()

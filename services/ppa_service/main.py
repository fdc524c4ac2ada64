"""PPA Core Composition Root"""
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from functools import partial
from typing import Any

import structlog

from services.ppa_service.attachment_service import PpaAttachmentService
from services.ppa_service.continuation import ContinuationService
from services.ppa_service.ports import (
    AcademicPeriodDirectory,
    FileStorage,
    TeacherAssignmentDirectory,
    TeacherDirectory,
)
from services.ppa_service.ppa_service import PpaService
from services.ppa_service.queries import PpaQueryService
from services.ppa_service.repository import SqlAlchemyUnitOfWork, UnitOfWorkFactory
from shared.config import Settings, get_settings
from shared.database import close_db, get_session_factory, init_db, init_engine
from shared.logging_config import configure_logging

logger = structlog.get_logger(__name__)


@dataclass
class PpaCore:
    """Use-case services sharing one unit of work factory."""

    settings: Settings
    uow_factory: UnitOfWorkFactory
    ppas: PpaService
    attachments: PpaAttachmentService
    continuations: ContinuationService
    queries: PpaQueryService


@asynccontextmanager
async def ppa_core(
    periods: AcademicPeriodDirectory,
    assignments: TeacherAssignmentDirectory,
    teachers: TeacherDirectory,
    storage: FileStorage,
    config: Settings | None = None,
    database_url: str | None = None,
    **engine_kwargs: Any,
) -> AsyncGenerator[PpaCore, None]:
    """
    Start the PPA core against the configured database.

    Configures logging, creates the engine and tables, and wires every
    service to the given reference-data and storage adapters. The engine
    is disposed on exit.
    """
    config = config or get_settings()
    configure_logging(config)
    logger.info("Starting PPA core", environment=config.environment)

    init_engine(database_url, **engine_kwargs)
    await init_db()

    uow_factory = partial(SqlAlchemyUnitOfWork, get_session_factory())
    core = PpaCore(
        settings=config,
        uow_factory=uow_factory,
        ppas=PpaService(uow_factory, periods, assignments, teachers, config),
        attachments=PpaAttachmentService(uow_factory, storage, config),
        continuations=ContinuationService(uow_factory, periods, assignments, teachers),
        queries=PpaQueryService(uow_factory, periods, assignments, teachers, config),
    )
    logger.info("PPA core ready")
    try:
        yield core
    finally:
        await close_db()
        logger.info("PPA core shutdown complete")

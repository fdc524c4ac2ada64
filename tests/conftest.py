"""
PPA test configuration and fixtures.
"""

from datetime import date
from functools import partial
from uuid import uuid4

import pytest
from sqlalchemy.pool import StaticPool

from services.ppa_service.attachment_service import PpaAttachmentService
from services.ppa_service.continuation import ContinuationService
from services.ppa_service.memory import (
    InMemoryAcademicPeriodDirectory,
    InMemoryDatabase,
    InMemoryFileStorage,
    InMemoryTeacherAssignmentDirectory,
    InMemoryTeacherDirectory,
    InMemoryUnitOfWork,
    StaticCurrentUser,
)
from services.ppa_service.ports import AcademicPeriodRef, TeacherAssignmentRef, TeacherRef
from services.ppa_service.ppa_service import PpaService
from services.ppa_service.queries import PpaQueryService
from services.ppa_service.repository import SqlAlchemyUnitOfWork, UnitOfWorkFactory
from services.ppa_service.schemas import CreatePpaCommand
from shared.config import Settings
from shared.database.postgres import close_db, get_session_factory, init_db, init_engine


@pytest.fixture
def settings() -> Settings:
    return Settings(environment="test", ppa_default_page_size=2, ppa_max_page_size=3)


@pytest.fixture
def db() -> InMemoryDatabase:
    return InMemoryDatabase()


@pytest.fixture
def uow(db) -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork(db)


@pytest.fixture
def uow_factory(db) -> UnitOfWorkFactory:
    """Fresh unit of work per use case, all over the same store."""
    return partial(InMemoryUnitOfWork, db)


@pytest.fixture
def period_2024_1() -> AcademicPeriodRef:
    return AcademicPeriodRef(id=uuid4(), code="2024-1", start_date=date(2024, 1, 15))


@pytest.fixture
def period_2024_2() -> AcademicPeriodRef:
    return AcademicPeriodRef(id=uuid4(), code="2024-2", start_date=date(2024, 7, 15))


@pytest.fixture
def periods(period_2024_1, period_2024_2) -> InMemoryAcademicPeriodDirectory:
    return InMemoryAcademicPeriodDirectory([period_2024_1, period_2024_2])


@pytest.fixture
def teacher() -> TeacherRef:
    return TeacherRef(id=uuid4(), name="Ana Torres")


@pytest.fixture
def teachers(teacher) -> InMemoryTeacherDirectory:
    return InMemoryTeacherDirectory([teacher])


@pytest.fixture
def assignment(period_2024_1, teacher) -> TeacherAssignmentRef:
    return TeacherAssignmentRef(
        id=uuid4(),
        academic_period_id=period_2024_1.id,
        teacher_id=teacher.id,
        subject_code="SW-101",
        subject_name="Software Engineering",
    )


@pytest.fixture
def next_assignment(period_2024_2, teacher) -> TeacherAssignmentRef:
    return TeacherAssignmentRef(
        id=uuid4(),
        academic_period_id=period_2024_2.id,
        teacher_id=teacher.id,
        subject_code="SW-201",
        subject_name="Software Project",
    )


@pytest.fixture
def assignments(assignment, next_assignment) -> InMemoryTeacherAssignmentDirectory:
    return InMemoryTeacherAssignmentDirectory([assignment, next_assignment])


@pytest.fixture
def storage() -> InMemoryFileStorage:
    return InMemoryFileStorage()


@pytest.fixture
def current_user(teacher) -> StaticCurrentUser:
    return StaticCurrentUser(user_id=teacher.id, permissions=["ppa.create", "ppa.update"])


@pytest.fixture
def ppa_service(uow_factory, periods, assignments, teachers, settings) -> PpaService:
    return PpaService(uow_factory, periods, assignments, teachers, settings)


@pytest.fixture
def attachment_service(uow_factory, storage, settings) -> PpaAttachmentService:
    return PpaAttachmentService(uow_factory, storage, settings)


@pytest.fixture
def continuation_service(uow_factory, periods, assignments, teachers) -> ContinuationService:
    return ContinuationService(uow_factory, periods, assignments, teachers)


@pytest.fixture
def query_service(uow_factory, periods, assignments, teachers, settings) -> PpaQueryService:
    return PpaQueryService(uow_factory, periods, assignments, teachers, settings)


@pytest.fixture
def create_command(period_2024_1, teacher, assignment):
    """Factory for create commands in period 2024-1."""

    def _make(**overrides) -> CreatePpaCommand:
        data = {
            "title": "Campus Navigation App",
            "academic_period_id": period_2024_1.id,
            "primary_teacher_id": teacher.id,
            "teacher_assignment_ids": [assignment.id],
            "student_names": ["Luis Perez", "Maria Gomez"],
            "general_objective": "Help students find classrooms",
        }
        data.update(overrides)
        return CreatePpaCommand(**data)

    return _make


@pytest.fixture
async def created_ppa_id(ppa_service, create_command, current_user):
    return await ppa_service.create_ppa(create_command(), current_user)


@pytest.fixture
async def sql_uow_factory():
    """Unit of work factory over a fresh in-memory SQLite database."""
    init_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db()
    yield partial(SqlAlchemyUnitOfWork, get_session_factory())
    await close_db()


@pytest.fixture
def sql_uow(sql_uow_factory) -> SqlAlchemyUnitOfWork:
    return sql_uow_factory()


@pytest.fixture
async def sql_file_uow_factory(tmp_path):
    """
    Unit of work factory over a SQLite file.

    Each session gets its own connection, so concurrent use cases run in
    separate transactions.
    """
    init_engine(f"sqlite+aiosqlite:///{tmp_path / 'ppa.db'}")
    await init_db()
    yield partial(SqlAlchemyUnitOfWork, get_session_factory())
    await close_db()

"""
PPA Service Repository

Repository contracts, the unit of work, and their SQLAlchemy implementations.

Every use case opens its own unit of work from a factory so that aggregate
writes and history entries commit together or not at all, and concurrent use
cases never share a session.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable, Iterable, Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, exists, func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from services.ppa_service.aggregates import Ppa
from services.ppa_service.models import (
    CODE_TO_STATUS,
    STATUS_TO_CODE,
    PpaAttachmentModel,
    PpaHistoryModel,
    PpaModel,
    PpaStudentModel,
    PpaTeacherAssignmentModel,
)
from shared.database.postgres import get_session_factory
from shared.domain.exceptions import (
    ConflictError,
    DomainException,
    DuplicateKeyError,
    NotFoundError,
    PersistenceError,
)
from shared.domain.ppa import (
    PpaAttachment,
    PpaAttachmentType,
    PpaHistoryActionType,
    PpaHistoryEntry,
    PpaStatus,
    PpaStudent,
)

logger = structlog.get_logger(__name__)

TERMINAL_STATUSES = (PpaStatus.ARCHIVED, PpaStatus.IN_CONTINUING)


class PpaSearchCriteria:
    """Filters for the paged PPA listing."""

    def __init__(
        self,
        text: str | None = None,
        academic_period_id: UUID | None = None,
        status: PpaStatus | None = None,
        primary_teacher_id: UUID | None = None,
        teacher_assignment_id: UUID | None = None,
        offset: int = 0,
        limit: int = 20,
    ):
        self.text = text.strip() if text and text.strip() else None
        self.academic_period_id = academic_period_id
        self.status = status
        self.primary_teacher_id = primary_teacher_id
        self.teacher_assignment_id = teacher_assignment_id
        self.offset = offset
        self.limit = limit


# ===========================================================================
# Contracts
# ===========================================================================


class AbstractPpaRepository(ABC):
    """PPA aggregate persistence."""

    @abstractmethod
    async def get(self, ppa_id: UUID) -> Ppa | None: ...

    async def get_required(self, ppa_id: UUID) -> Ppa:
        """
        Raises:
            NotFoundError: If the PPA does not exist
        """
        ppa = await self.get(ppa_id)
        if ppa is None:
            raise NotFoundError("Ppa", ppa_id)
        return ppa

    @abstractmethod
    async def add(self, ppa: Ppa) -> None: ...

    @abstractmethod
    async def update(self, ppa: Ppa) -> None:
        """
        Persist changes.

        Raises:
            ConflictError: If the stored version moved since the PPA was loaded
        """

    @abstractmethod
    async def list_by_teacher(self, teacher_id: UUID) -> list[Ppa]: ...

    @abstractmethod
    async def list_by_teacher_assignments(self, assignment_ids: Iterable[UUID]) -> list[Ppa]: ...

    @abstractmethod
    async def title_exists_in_period(
        self, title: str, academic_period_id: UUID, exclude_ppa_id: UUID | None = None
    ) -> bool:
        """Case-insensitive title lookup within one period."""

    @abstractmethod
    async def find_active_using_assignments(
        self,
        academic_period_id: UUID,
        assignment_ids: Iterable[UUID],
        exclude_ppa_id: UUID | None = None,
    ) -> list[UUID]:
        """Ids of non-terminal PPAs in the period linked to any of the assignments."""

    @abstractmethod
    async def search(self, criteria: PpaSearchCriteria) -> tuple[list[Ppa], int]:
        """Filtered page ordered by creation date descending, plus total count."""


class AbstractPpaAttachmentRepository(ABC):
    """Attachment persistence; owns the global file key index."""

    @abstractmethod
    async def get(self, attachment_id: UUID) -> PpaAttachment | None: ...

    @abstractmethod
    async def add(self, attachment: PpaAttachment) -> None:
        """
        Raises:
            DuplicateKeyError: If the file key is already used anywhere
        """

    @abstractmethod
    async def update(self, attachment: PpaAttachment) -> None: ...

    @abstractmethod
    async def list_for_ppa(
        self,
        ppa_id: UUID,
        type: PpaAttachmentType | None = None,
        include_deleted: bool = False,
    ) -> list[PpaAttachment]: ...

    @abstractmethod
    async def list_by_uploader(self, user_id: UUID) -> list[PpaAttachment]: ...

    @abstractmethod
    async def count_by_type(
        self, ppa_id: UUID, type: PpaAttachmentType, include_deleted: bool = False
    ) -> int: ...

    @abstractmethod
    async def file_key_exists(self, file_key: str) -> bool: ...


class AbstractPpaHistoryRepository(ABC):
    """Append-only history log. There is no update or delete."""

    @abstractmethod
    async def record(self, entry: PpaHistoryEntry) -> None: ...

    @abstractmethod
    async def record_batch(self, entries: Sequence[PpaHistoryEntry]) -> None:
        """All-or-nothing within the surrounding unit of work."""

    @abstractmethod
    async def list_for_ppa(self, ppa_id: UUID) -> list[PpaHistoryEntry]:
        """Entries ordered by ``performed_at`` descending."""

    @abstractmethod
    async def list_for_ppa_and_action(
        self, ppa_id: UUID, action_type: PpaHistoryActionType
    ) -> list[PpaHistoryEntry]: ...

    @abstractmethod
    async def list_by_user(self, user_id: UUID) -> list[PpaHistoryEntry]: ...


class AbstractUnitOfWork(ABC):
    """
    Groups the PPA repositories under a single transactional boundary.

    Use as an async context manager, one instance per use case:

        async with uow_factory() as uow:
            await uow.ppas.add(ppa)

    Leaving the block with an exception rolls back; leaving it normally
    commits whatever is still pending. An instance holds the state of one
    open block, so it must not be entered again while that block is open.
    """

    ppas: AbstractPpaRepository
    attachments: AbstractPpaAttachmentRepository
    history: AbstractPpaHistoryRepository

    async def __aenter__(self) -> "AbstractUnitOfWork":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        if exc_type:
            await self.rollback()
        else:
            await self.commit()

    @abstractmethod
    async def commit(self) -> None: ...

    @abstractmethod
    async def rollback(self) -> None: ...


UnitOfWorkFactory = Callable[[], AbstractUnitOfWork]


# ===========================================================================
# SQLAlchemy implementations
# ===========================================================================


def _wrap_db_error(operation: str, exc: SQLAlchemyError) -> PersistenceError:
    logger.error("Database operation failed", operation=operation, error=str(exc))
    return PersistenceError(f"Database operation failed: {operation}", operation=operation, cause=exc)


class SqlAlchemyPpaRepository(AbstractPpaRepository):
    """PPA repository over an AsyncSession."""

    def __init__(self, session: AsyncSession):
        """
        Initialize repository.

        Args:
            session: Database session
        """
        self.session = session

    async def get(self, ppa_id: UUID) -> Ppa | None:
        result = await self.session.execute(
            select(PpaModel)
            .where(PpaModel.id == ppa_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return await self._to_aggregate(row)

    async def _to_aggregate(self, row: PpaModel) -> Ppa:
        assignment_rows = await self.session.execute(
            select(PpaTeacherAssignmentModel.teacher_assignment_id)
            .where(PpaTeacherAssignmentModel.ppa_id == row.id)
            .order_by(PpaTeacherAssignmentModel.position)
        )
        student_rows = await self.session.execute(
            select(PpaStudentModel.id, PpaStudentModel.name)
            .where(PpaStudentModel.ppa_id == row.id)
            .order_by(PpaStudentModel.position)
        )
        return Ppa.reconstruct(
            id=row.id,
            title=row.title,
            general_objective=row.general_objective,
            specific_objectives=row.specific_objectives,
            description=row.description,
            status=CODE_TO_STATUS[row.status],
            academic_period_id=row.academic_period_id,
            primary_teacher_id=row.primary_teacher_id,
            teacher_assignment_ids=[r[0] for r in assignment_rows],
            students=[PpaStudent(id=r[0], name=r[1]) for r in student_rows],
            continuation_of_ppa_id=row.continuation_of_ppa_id,
            continued_by_ppa_id=row.continued_by_ppa_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
            version=row.version,
        )

    def _columns(self, ppa: Ppa) -> dict:
        return {
            "title": ppa.title,
            "general_objective": ppa.general_objective,
            "specific_objectives": ppa.specific_objectives,
            "description": ppa.description,
            "status": STATUS_TO_CODE[ppa.status],
            "academic_period_id": ppa.academic_period_id,
            "primary_teacher_id": ppa.primary_teacher_id,
            "continuation_of_ppa_id": ppa.continuation_of_ppa_id,
            "continued_by_ppa_id": ppa.continued_by_ppa_id,
            "updated_at": ppa.updated_at,
            "version": ppa.version,
        }

    async def _write_children(self, ppa: Ppa) -> None:
        await self.session.execute(
            delete(PpaTeacherAssignmentModel).where(PpaTeacherAssignmentModel.ppa_id == ppa.id)
        )
        await self.session.execute(delete(PpaStudentModel).where(PpaStudentModel.ppa_id == ppa.id))
        if ppa.teacher_assignment_ids:
            await self.session.execute(
                insert(PpaTeacherAssignmentModel),
                [
                    {"ppa_id": ppa.id, "teacher_assignment_id": a, "position": i}
                    for i, a in enumerate(ppa.teacher_assignment_ids)
                ],
            )
        if ppa.students:
            await self.session.execute(
                insert(PpaStudentModel),
                [
                    {"id": s.id, "ppa_id": ppa.id, "name": s.name, "position": i}
                    for i, s in enumerate(ppa.students)
                ],
            )

    async def add(self, ppa: Ppa) -> None:
        try:
            self.session.add(PpaModel(id=ppa.id, created_at=ppa.created_at, **self._columns(ppa)))
            await self.session.flush()
            await self._write_children(ppa)
        except SQLAlchemyError as exc:
            raise _wrap_db_error("add_ppa", exc) from exc

        logger.info("PPA persisted", ppa_id=str(ppa.id), version=ppa.version)

    async def update(self, ppa: Ppa) -> None:
        expected = ppa.persisted_version
        try:
            result = await self.session.execute(
                update(PpaModel)
                .where(PpaModel.id == ppa.id, PpaModel.version == expected)
                .values(**self._columns(ppa))
            )
            if result.rowcount != 1:
                raise ConflictError(
                    "PPA was modified by another operation",
                    concurrency=True,
                    context={"ppa_id": str(ppa.id), "expected_version": expected},
                )
            await self._write_children(ppa)
        except SQLAlchemyError as exc:
            raise _wrap_db_error("update_ppa", exc) from exc

        logger.info("PPA updated", ppa_id=str(ppa.id), version=ppa.version)

    async def _list(self, *conditions) -> list[Ppa]:
        result = await self.session.execute(
            select(PpaModel).where(*conditions).order_by(PpaModel.created_at.desc())
        )
        return [await self._to_aggregate(row) for row in result.scalars().all()]

    async def list_by_teacher(self, teacher_id: UUID) -> list[Ppa]:
        return await self._list(PpaModel.primary_teacher_id == teacher_id)

    async def list_by_teacher_assignments(self, assignment_ids: Iterable[UUID]) -> list[Ppa]:
        ids = list(assignment_ids)
        if not ids:
            return []
        linked = select(PpaTeacherAssignmentModel.ppa_id).where(
            PpaTeacherAssignmentModel.teacher_assignment_id.in_(ids)
        )
        return await self._list(PpaModel.id.in_(linked))

    async def title_exists_in_period(
        self, title: str, academic_period_id: UUID, exclude_ppa_id: UUID | None = None
    ) -> bool:
        stmt = select(PpaModel.id).where(
            PpaModel.academic_period_id == academic_period_id,
            func.lower(PpaModel.title) == title.strip().lower(),
        )
        if exclude_ppa_id is not None:
            stmt = stmt.where(PpaModel.id != exclude_ppa_id)
        result = await self.session.execute(stmt.limit(1))
        return result.first() is not None

    async def find_active_using_assignments(
        self,
        academic_period_id: UUID,
        assignment_ids: Iterable[UUID],
        exclude_ppa_id: UUID | None = None,
    ) -> list[UUID]:
        ids = list(assignment_ids)
        if not ids:
            return []
        stmt = (
            select(PpaModel.id)
            .join(PpaTeacherAssignmentModel, PpaTeacherAssignmentModel.ppa_id == PpaModel.id)
            .where(
                PpaModel.academic_period_id == academic_period_id,
                PpaModel.status.not_in([STATUS_TO_CODE[s] for s in TERMINAL_STATUSES]),
                PpaTeacherAssignmentModel.teacher_assignment_id.in_(ids),
            )
            .distinct()
        )
        if exclude_ppa_id is not None:
            stmt = stmt.where(PpaModel.id != exclude_ppa_id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def search(self, criteria: PpaSearchCriteria) -> tuple[list[Ppa], int]:
        conditions = []
        if criteria.text:
            conditions.append(func.lower(PpaModel.title).contains(criteria.text.lower()))
        if criteria.academic_period_id:
            conditions.append(PpaModel.academic_period_id == criteria.academic_period_id)
        if criteria.status:
            conditions.append(PpaModel.status == STATUS_TO_CODE[criteria.status])
        if criteria.primary_teacher_id:
            conditions.append(PpaModel.primary_teacher_id == criteria.primary_teacher_id)
        if criteria.teacher_assignment_id:
            conditions.append(
                exists().where(
                    PpaTeacherAssignmentModel.ppa_id == PpaModel.id,
                    PpaTeacherAssignmentModel.teacher_assignment_id
                    == criteria.teacher_assignment_id,
                )
            )

        total = await self.session.scalar(
            select(func.count()).select_from(PpaModel).where(*conditions)
        )
        result = await self.session.execute(
            select(PpaModel)
            .where(*conditions)
            .order_by(PpaModel.created_at.desc())
            .offset(criteria.offset)
            .limit(criteria.limit)
        )
        items = [await self._to_aggregate(row) for row in result.scalars().all()]
        return items, total or 0


class SqlAlchemyPpaAttachmentRepository(AbstractPpaAttachmentRepository):
    """Attachment repository; the unique column backs the file key index."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_entity(row: PpaAttachmentModel) -> PpaAttachment:
        return PpaAttachment.reconstruct(
            id=row.id,
            ppa_id=row.ppa_id,
            type=PpaAttachmentType(row.type),
            name=row.name,
            file_key=row.file_key,
            content_type=row.content_type,
            uploaded_by_user_id=row.uploaded_by_user_id,
            uploaded_at=row.uploaded_at,
            is_deleted=row.is_deleted,
            deleted_at=row.deleted_at,
        )

    async def get(self, attachment_id: UUID) -> PpaAttachment | None:
        row = await self.session.get(PpaAttachmentModel, attachment_id)
        return self._to_entity(row) if row else None

    async def add(self, attachment: PpaAttachment) -> None:
        if await self.file_key_exists(attachment.file_key):
            raise DuplicateKeyError("Attachment file key already exists", key=attachment.file_key)

        self.session.add(
            PpaAttachmentModel(
                id=attachment.id,
                ppa_id=attachment.ppa_id,
                type=attachment.type.value,
                name=attachment.name,
                file_key=attachment.file_key,
                content_type=attachment.content_type,
                uploaded_by_user_id=attachment.uploaded_by_user_id,
                uploaded_at=attachment.uploaded_at,
                is_deleted=attachment.is_deleted,
                deleted_at=attachment.deleted_at,
            )
        )
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise DuplicateKeyError(
                "Attachment file key already exists", key=attachment.file_key, cause=exc
            ) from exc
        except SQLAlchemyError as exc:
            raise _wrap_db_error("add_attachment", exc) from exc

        logger.info(
            "Attachment persisted",
            attachment_id=str(attachment.id),
            ppa_id=str(attachment.ppa_id),
            type=attachment.type.value,
        )

    async def update(self, attachment: PpaAttachment) -> None:
        row = await self.session.get(PpaAttachmentModel, attachment.id)
        if row is None:
            raise NotFoundError("PpaAttachment", attachment.id)
        row.name = attachment.name
        row.content_type = attachment.content_type
        row.is_deleted = attachment.is_deleted
        row.deleted_at = attachment.deleted_at
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise _wrap_db_error("update_attachment", exc) from exc

    async def list_for_ppa(
        self,
        ppa_id: UUID,
        type: PpaAttachmentType | None = None,
        include_deleted: bool = False,
    ) -> list[PpaAttachment]:
        stmt = select(PpaAttachmentModel).where(PpaAttachmentModel.ppa_id == ppa_id)
        if type is not None:
            stmt = stmt.where(PpaAttachmentModel.type == type.value)
        if not include_deleted:
            stmt = stmt.where(PpaAttachmentModel.is_deleted.is_(False))
        result = await self.session.execute(stmt.order_by(PpaAttachmentModel.uploaded_at.desc()))
        return [self._to_entity(r) for r in result.scalars().all()]

    async def list_by_uploader(self, user_id: UUID) -> list[PpaAttachment]:
        result = await self.session.execute(
            select(PpaAttachmentModel)
            .where(PpaAttachmentModel.uploaded_by_user_id == user_id)
            .order_by(PpaAttachmentModel.uploaded_at.desc())
        )
        return [self._to_entity(r) for r in result.scalars().all()]

    async def count_by_type(
        self, ppa_id: UUID, type: PpaAttachmentType, include_deleted: bool = False
    ) -> int:
        stmt = (
            select(func.count())
            .select_from(PpaAttachmentModel)
            .where(PpaAttachmentModel.ppa_id == ppa_id, PpaAttachmentModel.type == type.value)
        )
        if not include_deleted:
            stmt = stmt.where(PpaAttachmentModel.is_deleted.is_(False))
        return (await self.session.scalar(stmt)) or 0

    async def file_key_exists(self, file_key: str) -> bool:
        result = await self.session.execute(
            select(PpaAttachmentModel.id).where(PpaAttachmentModel.file_key == file_key).limit(1)
        )
        return result.first() is not None


class SqlAlchemyPpaHistoryRepository(AbstractPpaHistoryRepository):
    """History repository. Rows are insert-only (see model listeners)."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def _to_model(entry: PpaHistoryEntry) -> PpaHistoryModel:
        return PpaHistoryModel(
            id=entry.id,
            ppa_id=entry.ppa_id,
            performed_by_user_id=entry.performed_by_user_id,
            performed_at=entry.performed_at,
            action_type=entry.action_type.value,
            old_value=entry.old_value,
            new_value=entry.new_value,
            notes=entry.notes,
        )

    @staticmethod
    def _to_entity(row: PpaHistoryModel) -> PpaHistoryEntry:
        return PpaHistoryEntry.reconstruct(
            id=row.id,
            ppa_id=row.ppa_id,
            performed_by_user_id=row.performed_by_user_id,
            performed_at=row.performed_at,
            action_type=PpaHistoryActionType(row.action_type),
            old_value=row.old_value,
            new_value=row.new_value,
            notes=row.notes,
        )

    async def record(self, entry: PpaHistoryEntry) -> None:
        await self.record_batch([entry])

    async def record_batch(self, entries: Sequence[PpaHistoryEntry]) -> None:
        if not entries:
            return
        self.session.add_all([self._to_model(e) for e in entries])
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise _wrap_db_error("record_history", exc) from exc

        logger.debug("History recorded", count=len(entries))

    async def _list(self, *conditions) -> list[PpaHistoryEntry]:
        result = await self.session.execute(
            select(PpaHistoryModel).where(*conditions).order_by(PpaHistoryModel.performed_at.desc())
        )
        return [self._to_entity(r) for r in result.scalars().all()]

    async def list_for_ppa(self, ppa_id: UUID) -> list[PpaHistoryEntry]:
        return await self._list(PpaHistoryModel.ppa_id == ppa_id)

    async def list_for_ppa_and_action(
        self, ppa_id: UUID, action_type: PpaHistoryActionType
    ) -> list[PpaHistoryEntry]:
        return await self._list(
            PpaHistoryModel.ppa_id == ppa_id, PpaHistoryModel.action_type == action_type.value
        )

    async def list_by_user(self, user_id: UUID) -> list[PpaHistoryEntry]:
        return await self._list(PpaHistoryModel.performed_by_user_id == user_id)


class SqlAlchemyUnitOfWork(AbstractUnitOfWork):
    """Unit of work over one AsyncSession per ``async with`` block."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession] | None = None):
        self.session_factory = session_factory
        self.session: AsyncSession | None = None

    async def __aenter__(self) -> "SqlAlchemyUnitOfWork":
        if self.session is not None:
            raise PersistenceError("Unit of work is already in use", operation="begin")
        factory = self.session_factory or get_session_factory()
        self.session = factory()
        self.ppas = SqlAlchemyPpaRepository(self.session)
        self.attachments = SqlAlchemyPpaAttachmentRepository(self.session)
        self.history = SqlAlchemyPpaHistoryRepository(self.session)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            await super().__aexit__(exc_type, exc_val, exc_tb)
        finally:
            if self.session is not None:
                await self.session.close()
                self.session = None

    async def commit(self) -> None:
        if self.session is None:
            return
        try:
            await self.session.commit()
        except DomainException:
            await self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise _wrap_db_error("commit", exc) from exc

    async def rollback(self) -> None:
        if self.session is not None:
            await self.session.rollback()

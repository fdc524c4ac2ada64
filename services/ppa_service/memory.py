"""
In-Memory Adapters

In-process implementations of the repositories, unit of work and collaborator
ports. Used by the test suite and for wiring the core without a database.

The unit of work stages writes on a private copy of the store and merges them
back on commit, so a failed use case leaves the store untouched.
"""

import copy
from collections.abc import Iterable, Sequence
from uuid import UUID, uuid4

import structlog

from services.ppa_service.aggregates import Ppa
from services.ppa_service.ports import (
    AcademicPeriodDirectory,
    AcademicPeriodRef,
    CurrentUser,
    FileStorage,
    TeacherAssignmentDirectory,
    TeacherAssignmentRef,
    TeacherDirectory,
    TeacherRef,
)
from services.ppa_service.repository import (
    TERMINAL_STATUSES,
    AbstractPpaAttachmentRepository,
    AbstractPpaHistoryRepository,
    AbstractPpaRepository,
    AbstractUnitOfWork,
    PpaSearchCriteria,
)
from shared.domain.exceptions import (
    ConflictError,
    DuplicateKeyError,
    ExternalServiceError,
    NotFoundError,
    PersistenceError,
)
from shared.domain.ppa import (
    PpaAttachment,
    PpaAttachmentType,
    PpaHistoryActionType,
    PpaHistoryEntry,
)

logger = structlog.get_logger(__name__)


class InMemoryDatabase:
    """Committed state shared by every unit of work built on it."""

    def __init__(self):
        self.ppas: dict[UUID, dict] = {}
        self.attachments: dict[UUID, PpaAttachment] = {}
        self.history: list[PpaHistoryEntry] = []

    def copy(self) -> "InMemoryDatabase":
        clone = InMemoryDatabase()
        clone.ppas = copy.deepcopy(self.ppas)
        clone.attachments = {k: v.model_copy() for k, v in self.attachments.items()}
        clone.history = list(self.history)
        return clone


class InMemoryPpaRepository(AbstractPpaRepository):
    """Stores ``Ppa.get_state()`` snapshots keyed by id."""

    def __init__(self, store: dict[UUID, dict], expected_versions: dict[UUID, int]):
        self._store = store
        self._expected_versions = expected_versions

    def _load(self, state: dict) -> Ppa:
        return Ppa.from_snapshot(copy.deepcopy(state))

    def _all(self) -> list[Ppa]:
        ppas = [self._load(s) for s in self._store.values()]
        return sorted(ppas, key=lambda p: p.created_at, reverse=True)

    async def get(self, ppa_id: UUID) -> Ppa | None:
        state = self._store.get(ppa_id)
        return self._load(state) if state else None

    async def add(self, ppa: Ppa) -> None:
        if ppa.id in self._store:
            raise PersistenceError("PPA already stored", operation="add_ppa")
        self._store[ppa.id] = ppa.get_state()
        self._expected_versions.setdefault(ppa.id, -1)

    async def update(self, ppa: Ppa) -> None:
        current = self._store.get(ppa.id)
        if current is None:
            raise NotFoundError("Ppa", ppa.id)
        expected = ppa.persisted_version
        if current["version"] != expected:
            raise ConflictError(
                "PPA was modified by another operation",
                concurrency=True,
                context={"ppa_id": str(ppa.id), "expected_version": expected},
            )
        self._expected_versions.setdefault(ppa.id, expected)
        self._store[ppa.id] = ppa.get_state()

    async def list_by_teacher(self, teacher_id: UUID) -> list[Ppa]:
        return [p for p in self._all() if p.primary_teacher_id == teacher_id]

    async def list_by_teacher_assignments(self, assignment_ids: Iterable[UUID]) -> list[Ppa]:
        ids = set(assignment_ids)
        return [p for p in self._all() if ids.intersection(p.teacher_assignment_ids)]

    async def title_exists_in_period(
        self, title: str, academic_period_id: UUID, exclude_ppa_id: UUID | None = None
    ) -> bool:
        wanted = title.strip().casefold()
        return any(
            s["academic_period_id"] == academic_period_id
            and s["title"].casefold() == wanted
            and s["id"] != exclude_ppa_id
            for s in self._store.values()
        )

    async def find_active_using_assignments(
        self,
        academic_period_id: UUID,
        assignment_ids: Iterable[UUID],
        exclude_ppa_id: UUID | None = None,
    ) -> list[UUID]:
        ids = set(assignment_ids)
        return [
            s["id"]
            for s in self._store.values()
            if s["academic_period_id"] == academic_period_id
            and s["status"] not in TERMINAL_STATUSES
            and s["id"] != exclude_ppa_id
            and ids.intersection(s["teacher_assignment_ids"])
        ]

    async def search(self, criteria: PpaSearchCriteria) -> tuple[list[Ppa], int]:
        matches = []
        for ppa in self._all():
            if criteria.text and criteria.text.casefold() not in ppa.title.casefold():
                continue
            if criteria.academic_period_id and ppa.academic_period_id != criteria.academic_period_id:
                continue
            if criteria.status and ppa.status != criteria.status:
                continue
            if criteria.primary_teacher_id and ppa.primary_teacher_id != criteria.primary_teacher_id:
                continue
            if (
                criteria.teacher_assignment_id
                and criteria.teacher_assignment_id not in ppa.teacher_assignment_ids
            ):
                continue
            matches.append(ppa)
        page = matches[criteria.offset : criteria.offset + criteria.limit]
        return page, len(matches)


class InMemoryPpaAttachmentRepository(AbstractPpaAttachmentRepository):
    def __init__(self, store: dict[UUID, PpaAttachment]):
        self.written: set[UUID] = set()
        self._store = store

    async def get(self, attachment_id: UUID) -> PpaAttachment | None:
        attachment = self._store.get(attachment_id)
        return attachment.model_copy() if attachment else None

    async def add(self, attachment: PpaAttachment) -> None:
        if await self.file_key_exists(attachment.file_key):
            raise DuplicateKeyError("Attachment file key already exists", key=attachment.file_key)
        self._store[attachment.id] = attachment.model_copy()
        self.written.add(attachment.id)

    async def update(self, attachment: PpaAttachment) -> None:
        if attachment.id not in self._store:
            raise NotFoundError("PpaAttachment", attachment.id)
        self._store[attachment.id] = attachment.model_copy()
        self.written.add(attachment.id)

    async def list_for_ppa(
        self,
        ppa_id: UUID,
        type: PpaAttachmentType | None = None,
        include_deleted: bool = False,
    ) -> list[PpaAttachment]:
        result = [
            a.model_copy()
            for a in self._store.values()
            if a.ppa_id == ppa_id
            and (type is None or a.type == type)
            and (include_deleted or not a.is_deleted)
        ]
        return sorted(result, key=lambda a: a.uploaded_at, reverse=True)

    async def list_by_uploader(self, user_id: UUID) -> list[PpaAttachment]:
        result = [a.model_copy() for a in self._store.values() if a.uploaded_by_user_id == user_id]
        return sorted(result, key=lambda a: a.uploaded_at, reverse=True)

    async def count_by_type(
        self, ppa_id: UUID, type: PpaAttachmentType, include_deleted: bool = False
    ) -> int:
        return len(await self.list_for_ppa(ppa_id, type, include_deleted))

    async def file_key_exists(self, file_key: str) -> bool:
        return any(a.file_key == file_key for a in self._store.values())


class InMemoryPpaHistoryRepository(AbstractPpaHistoryRepository):
    """Append-only list. Ties on timestamp keep newest-appended first."""

    def __init__(self, log: list[PpaHistoryEntry], fail_writes: bool = False):
        self._log = log
        self.fail_writes = fail_writes
        self.appended: list[PpaHistoryEntry] = []

    async def record(self, entry: PpaHistoryEntry) -> None:
        await self.record_batch([entry])

    async def record_batch(self, entries: Sequence[PpaHistoryEntry]) -> None:
        if self.fail_writes:
            raise PersistenceError("History store unavailable", operation="record_history")
        self._log.extend(entries)
        self.appended.extend(entries)

    def _newest_first(self, entries: list[PpaHistoryEntry]) -> list[PpaHistoryEntry]:
        indexed = list(enumerate(entries))
        indexed.sort(key=lambda pair: (pair[1].performed_at, pair[0]), reverse=True)
        return [e for _, e in indexed]

    async def list_for_ppa(self, ppa_id: UUID) -> list[PpaHistoryEntry]:
        return self._newest_first([e for e in self._log if e.ppa_id == ppa_id])

    async def list_for_ppa_and_action(
        self, ppa_id: UUID, action_type: PpaHistoryActionType
    ) -> list[PpaHistoryEntry]:
        return self._newest_first(
            [e for e in self._log if e.ppa_id == ppa_id and e.action_type == action_type]
        )

    async def list_by_user(self, user_id: UUID) -> list[PpaHistoryEntry]:
        return self._newest_first([e for e in self._log if e.performed_by_user_id == user_id])


class InMemoryUnitOfWork(AbstractUnitOfWork):
    """
    Unit of work over an InMemoryDatabase.

    Repositories work on a private copy taken on ``__aenter__``. ``commit``
    re-checks PPA versions and file keys against the shared store, then merges
    only the records this unit of work wrote.
    """

    def __init__(self, db: InMemoryDatabase | None = None, fail_history_writes: bool = False):
        self.db = db if db is not None else InMemoryDatabase()
        self.fail_history_writes = fail_history_writes
        self.commits = 0
        self._open = False
        self._begin()

    def _begin(self) -> None:
        self._working = self.db.copy()
        self._expected_versions: dict[UUID, int] = {}
        self.ppas = InMemoryPpaRepository(self._working.ppas, self._expected_versions)
        self.attachments = InMemoryPpaAttachmentRepository(self._working.attachments)
        self.history = InMemoryPpaHistoryRepository(
            self._working.history, fail_writes=self.fail_history_writes
        )

    async def __aenter__(self) -> "InMemoryUnitOfWork":
        if self._open:
            raise PersistenceError("Unit of work is already in use", operation="begin")
        self._open = True
        self._begin()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            await super().__aexit__(exc_type, exc_val, exc_tb)
        finally:
            self._open = False

    async def commit(self) -> None:
        for ppa_id, expected in self._expected_versions.items():
            current = self.db.ppas.get(ppa_id)
            current_version = current["version"] if current else -1
            if current_version != expected:
                await self.rollback()
                raise ConflictError(
                    "PPA was modified by another operation",
                    concurrency=True,
                    context={"ppa_id": str(ppa_id)},
                )

        for attachment_id in self.attachments.written:
            key = self._working.attachments[attachment_id].file_key
            if any(
                a.file_key == key and a.id != attachment_id for a in self.db.attachments.values()
            ):
                await self.rollback()
                raise DuplicateKeyError("Attachment file key already exists", key=key)

        if not (self._expected_versions or self.attachments.written or self.history.appended):
            return

        for ppa_id in self._expected_versions:
            self.db.ppas[ppa_id] = self._working.ppas[ppa_id]
        for attachment_id in self.attachments.written:
            self.db.attachments[attachment_id] = self._working.attachments[attachment_id]
        self.db.history.extend(self.history.appended)
        self.commits += 1

        logger.debug(
            "In-memory unit of work committed",
            ppas=len(self._expected_versions),
            attachments=len(self.attachments.written),
            history=len(self.history.appended),
        )
        self._begin()

    async def rollback(self) -> None:
        self._begin()


# ===========================================================================
# Collaborator doubles
# ===========================================================================


class StaticCurrentUser(CurrentUser):
    def __init__(self, user_id: UUID | None = None, permissions: Iterable[str] = ()):
        self._user_id = user_id or uuid4()
        self.permissions = {p.lower() for p in permissions}

    @property
    def user_id(self) -> UUID:
        return self._user_id

    def has_permission(self, code: str) -> bool:
        return code.strip().lower() in self.permissions


class InMemoryFileStorage(FileStorage):
    """Dict-backed storage. ``fail_uploads`` simulates a backend outage."""

    def __init__(self):
        self.files: dict[str, bytes] = {}
        self.fail_uploads = False

    async def upload(
        self, content: bytes, file_name: str, content_type: str | None, folder: str
    ) -> str:
        if self.fail_uploads:
            raise ExternalServiceError("file_storage", "Upload rejected by storage backend")
        key = f"{folder.strip('/')}/{uuid4().hex}_{file_name}"
        self.files[key] = content
        logger.debug("File stored", file_key=key, size=len(content))
        return key

    async def delete(self, file_key: str) -> None:
        self.files.pop(file_key, None)

    async def get(self, file_key: str) -> bytes:
        if file_key not in self.files:
            raise NotFoundError("File", file_key)
        return self.files[file_key]


class InMemoryAcademicPeriodDirectory(AcademicPeriodDirectory):
    def __init__(self, periods: Iterable[AcademicPeriodRef] = ()):
        self.periods = {p.id: p for p in periods}

    def add(self, period: AcademicPeriodRef) -> AcademicPeriodRef:
        self.periods[period.id] = period
        return period

    async def exists(self, period_id: UUID) -> bool:
        return period_id in self.periods

    async def is_active(self, period_id: UUID) -> bool:
        period = self.periods.get(period_id)
        return bool(period and period.is_active)

    async def get(self, period_id: UUID) -> AcademicPeriodRef | None:
        return self.periods.get(period_id)


class InMemoryTeacherAssignmentDirectory(TeacherAssignmentDirectory):
    def __init__(self, assignments: Iterable[TeacherAssignmentRef] = ()):
        self.assignments = {a.id: a for a in assignments}

    def add(self, assignment: TeacherAssignmentRef) -> TeacherAssignmentRef:
        self.assignments[assignment.id] = assignment
        return assignment

    async def exists(self, assignment_id: UUID) -> bool:
        return assignment_id in self.assignments

    async def is_active(self, assignment_id: UUID) -> bool:
        assignment = self.assignments.get(assignment_id)
        return bool(assignment and assignment.is_active)

    async def get(self, assignment_id: UUID) -> TeacherAssignmentRef | None:
        return self.assignments.get(assignment_id)

    async def list_for_teacher(self, teacher_id: UUID) -> list[TeacherAssignmentRef]:
        return [a for a in self.assignments.values() if a.teacher_id == teacher_id]


class InMemoryTeacherDirectory(TeacherDirectory):
    def __init__(self, teachers: Iterable[TeacherRef] = ()):
        self.teachers = {t.id: t for t in teachers}

    def add(self, teacher: TeacherRef) -> TeacherRef:
        self.teachers[teacher.id] = teacher
        return teacher

    async def exists(self, teacher_id: UUID) -> bool:
        return teacher_id in self.teachers

    async def get(self, teacher_id: UUID) -> TeacherRef | None:
        return self.teachers.get(teacher_id)

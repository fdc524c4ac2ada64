"""
PPA Queries

Read side: assembles aggregate state with display names from the reference
collaborators.
"""

from uuid import UUID

import structlog

from services.ppa_service.aggregates import Ppa
from services.ppa_service.history import describe_action
from services.ppa_service.ports import (
    AcademicPeriodDirectory,
    TeacherAssignmentDirectory,
    TeacherDirectory,
)
from services.ppa_service.reference import ReferenceData, call_collaborator
from services.ppa_service.repository import PpaSearchCriteria, UnitOfWorkFactory
from services.ppa_service.schemas import (
    PagedResult,
    PpaDetail,
    PpaHistoryItem,
    PpaPagedQuery,
    PpaSummary,
    StudentDTO,
    TeacherAssignmentDTO,
)
from shared.config import Settings, get_settings

logger = structlog.get_logger(__name__)


class _NameCache:
    """Per-request memo of reference lookups."""

    def __init__(self, reference: ReferenceData):
        self.reference = reference
        self._periods: dict[UUID, str | None] = {}
        self._teachers: dict[UUID, str | None] = {}

    async def period_code(self, period_id: UUID) -> str | None:
        if period_id not in self._periods:
            period = await call_collaborator(
                "academic_periods", self.reference.periods.get(period_id)
            )
            self._periods[period_id] = period.code if period else None
        return self._periods[period_id]

    async def teacher_name(self, teacher_id: UUID) -> str | None:
        if teacher_id not in self._teachers:
            teacher = await call_collaborator("teachers", self.reference.teachers.get(teacher_id))
            self._teachers[teacher_id] = teacher.name if teacher else None
        return self._teachers[teacher_id]


class PpaQueryService:
    """Read models for PPA screens."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        periods: AcademicPeriodDirectory,
        assignments: TeacherAssignmentDirectory,
        teachers: TeacherDirectory,
        settings: Settings | None = None,
    ):
        self.uow_factory = uow_factory
        self.reference = ReferenceData(periods, assignments, teachers)
        self.settings = settings or get_settings()

    async def get_detail(self, ppa_id: UUID) -> PpaDetail:
        """
        Full PPA view.

        Raises:
            NotFoundError: Unknown PPA
        """
        async with self.uow_factory() as uow:
            ppa = await uow.ppas.get_required(ppa_id)

        names = _NameCache(self.reference)
        assignments = []
        for assignment_id in ppa.teacher_assignment_ids:
            ref = await call_collaborator(
                "teacher_assignments", self.reference.assignments.get(assignment_id)
            )
            if ref is None:
                assignments.append(TeacherAssignmentDTO(id=assignment_id))
                continue
            assignments.append(
                TeacherAssignmentDTO(
                    id=assignment_id,
                    subject_code=ref.subject_code,
                    subject_name=ref.subject_name,
                    teacher_id=ref.teacher_id,
                    teacher_name=await names.teacher_name(ref.teacher_id),
                )
            )

        return PpaDetail(
            id=ppa.id,
            title=ppa.title,
            general_objective=ppa.general_objective,
            specific_objectives=ppa.specific_objectives,
            description=ppa.description,
            status=ppa.status,
            academic_period_id=ppa.academic_period_id,
            academic_period_code=await names.period_code(ppa.academic_period_id),
            primary_teacher_id=ppa.primary_teacher_id,
            primary_teacher_name=await names.teacher_name(ppa.primary_teacher_id),
            teacher_assignments=assignments,
            students=[StudentDTO(id=s.id, name=s.name) for s in ppa.students],
            continuation_of_ppa_id=ppa.continuation_of_ppa_id,
            continued_by_ppa_id=ppa.continued_by_ppa_id,
            is_continuation=ppa.continuation_of_ppa_id is not None,
            has_continuation=ppa.continued_by_ppa_id is not None,
            created_at=ppa.created_at,
            updated_at=ppa.updated_at,
            version=ppa.version,
        )

    async def _summaries(self, ppas: list[Ppa]) -> list[PpaSummary]:
        names = _NameCache(self.reference)
        return [
            PpaSummary(
                id=ppa.id,
                title=ppa.title,
                status=ppa.status,
                academic_period_id=ppa.academic_period_id,
                academic_period_code=await names.period_code(ppa.academic_period_id),
                primary_teacher_id=ppa.primary_teacher_id,
                primary_teacher_name=await names.teacher_name(ppa.primary_teacher_id),
                teacher_assignment_count=len(ppa.teacher_assignment_ids),
                student_count=len(ppa.students),
                created_at=ppa.created_at,
            )
            for ppa in ppas
        ]

    async def list_paged(self, query: PpaPagedQuery) -> PagedResult[PpaSummary]:
        """Filtered page, newest first. Page size is clamped to ``ppa_max_page_size``."""
        page_size = min(
            query.page_size or self.settings.ppa_default_page_size,
            self.settings.ppa_max_page_size,
        )
        criteria = PpaSearchCriteria(
            text=query.search,
            academic_period_id=query.academic_period_id,
            status=query.status,
            primary_teacher_id=query.primary_teacher_id,
            teacher_assignment_id=query.teacher_assignment_id,
            offset=(query.page - 1) * page_size,
            limit=page_size,
        )
        async with self.uow_factory() as uow:
            ppas, total = await uow.ppas.search(criteria)

        return PagedResult[PpaSummary](
            items=await self._summaries(ppas),
            total=total,
            page=query.page,
            page_size=page_size,
        )

    async def get_history(self, ppa_id: UUID) -> list[PpaHistoryItem]:
        """
        History of a PPA, newest first.

        Performer names are resolved through the teacher directory; other
        users show no name.

        Raises:
            NotFoundError: Unknown PPA
        """
        async with self.uow_factory() as uow:
            await uow.ppas.get_required(ppa_id)
            entries = await uow.history.list_for_ppa(ppa_id)

        names = _NameCache(self.reference)
        return [
            PpaHistoryItem(
                id=entry.id,
                ppa_id=entry.ppa_id,
                action_type=entry.action_type,
                action_label=describe_action(entry.action_type),
                performed_by_user_id=entry.performed_by_user_id,
                performed_by_name=await names.teacher_name(entry.performed_by_user_id),
                performed_at=entry.performed_at,
                old_value=entry.old_value,
                new_value=entry.new_value,
                notes=entry.notes,
            )
            for entry in entries
        ]

    async def list_for_teacher(
        self, teacher_id: UUID, academic_period_id: UUID | None = None
    ) -> list[PpaSummary]:
        """PPAs the teacher is responsible for or teaches through a linked assignment."""
        owned = await call_collaborator(
            "teacher_assignments", self.reference.assignments.list_for_teacher(teacher_id)
        )
        async with self.uow_factory() as uow:
            responsible = await uow.ppas.list_by_teacher(teacher_id)
            linked = await uow.ppas.list_by_teacher_assignments(a.id for a in owned)

        by_id: dict[UUID, Ppa] = {}
        for ppa in (*responsible, *linked):
            if academic_period_id is None or ppa.academic_period_id == academic_period_id:
                by_id.setdefault(ppa.id, ppa)
        ppas = sorted(by_id.values(), key=lambda p: p.created_at, reverse=True)

        logger.debug("PPAs listed for teacher", teacher_id=str(teacher_id), count=len(ppas))
        return await self._summaries(ppas)

"""
PPA Service

Use cases that create and edit PPAs. Each use case loads the aggregate,
validates reference data, mutates it, and persists the aggregate together with
the history entries derived from its pending events in one unit of work.
"""

from collections.abc import Iterable
from uuid import UUID

import structlog

from services.ppa_service.aggregates import Ppa
from services.ppa_service.history import history_entries_from_events, referenced_ids
from services.ppa_service.ports import (
    AcademicPeriodDirectory,
    CurrentUser,
    TeacherAssignmentDirectory,
    TeacherDirectory,
)
from services.ppa_service.reference import ReferenceData
from services.ppa_service.repository import AbstractUnitOfWork, UnitOfWorkFactory
from services.ppa_service.schemas import (
    ChangeStatusCommand,
    CreatePpaCommand,
    UpdatePpaCommand,
)
from shared.config import Settings, get_settings
from shared.domain.exceptions import ConflictError, DuplicateError
from shared.domain.ppa import PpaAttachmentType, PpaHistoryEntry, PpaStatus

logger = structlog.get_logger(__name__)


async def save_with_history(
    uow: AbstractUnitOfWork,
    reference: ReferenceData,
    performed_by_user_id: UUID,
    new: Iterable[Ppa] = (),
    changed: Iterable[Ppa] = (),
) -> list[PpaHistoryEntry]:
    """
    Persist aggregates and the history entries for their pending events.

    Must run inside ``async with uow``; the caller's block commits both.

    Returns:
        list: History entries recorded, empty when nothing changed
    """
    new, changed = list(new), list(changed)
    events = [e for ppa in (*new, *changed) for e in ppa.get_uncommitted_events()]
    if not events:
        return []

    labels = await reference.labels_for(*referenced_ids(events))

    for ppa in new:
        await uow.ppas.add(ppa)
    for ppa in changed:
        if ppa.has_changes:
            await uow.ppas.update(ppa)
    for ppa in (*new, *changed):
        ppa.mark_events_committed()

    entries = history_entries_from_events(events, performed_by_user_id, labels)
    await uow.history.record_batch(entries)
    return entries


async def ensure_title_available(
    uow: AbstractUnitOfWork, title: str, academic_period_id: UUID, exclude_ppa_id: UUID | None = None
) -> None:
    """
    Raises:
        DuplicateError: If another PPA in the period has the same title
    """
    if await uow.ppas.title_exists_in_period(title, academic_period_id, exclude_ppa_id):
        raise DuplicateError(
            f"A PPA titled '{title.strip()}' already exists in this academic period",
            entity_type="Ppa",
            key=title.strip(),
        )


class PpaService:
    """
    Service orchestrating PPA creation and edits.

    The caller is expected to have checked permissions already; the current
    user is read only for the acting user id recorded in history.
    """

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        periods: AcademicPeriodDirectory,
        assignments: TeacherAssignmentDirectory,
        teachers: TeacherDirectory,
        settings: Settings | None = None,
    ):
        """
        Initialize PPA service.

        Args:
            uow_factory: Opens one unit of work per use case
            periods: Academic period reference data
            assignments: Teacher assignment reference data
            teachers: Teacher reference data
            settings: Service settings (defaults to the process settings)
        """
        self.uow_factory = uow_factory
        self.reference = ReferenceData(periods, assignments, teachers)
        self.settings = settings or get_settings()

    async def create_ppa(self, command: CreatePpaCommand, current_user: CurrentUser) -> UUID:
        """
        Create a PPA in PROPOSAL status.

        Process:
        1. Check period, teacher and assignments against reference data
        2. Check title uniqueness within the period
        3. Build the aggregate and persist it with its Created entry

        Returns:
            UUID: Identifier of the new PPA

        Raises:
            NotFoundError: Unknown period, teacher or assignment
            ConflictError: Inactive period or assignment
            ValidationError: Invalid fields or assignment of another period
            DuplicateError: Title already used in the period
        """
        logger.info(
            "Creating PPA",
            academic_period_id=str(command.academic_period_id),
            user_id=str(current_user.user_id),
        )

        await self.reference.require_period(command.academic_period_id)
        await self.reference.require_teacher(command.primary_teacher_id)
        await self.reference.require_assignments(
            command.teacher_assignment_ids, command.academic_period_id
        )

        ppa = Ppa.create(
            title=command.title,
            academic_period_id=command.academic_period_id,
            primary_teacher_id=command.primary_teacher_id,
            general_objective=command.general_objective,
            specific_objectives=command.specific_objectives,
            description=command.description,
            teacher_assignment_ids=command.teacher_assignment_ids,
            student_names=command.student_names,
            performed_by=current_user.user_id,
        )

        async with self.uow_factory() as uow:
            await ensure_title_available(uow, ppa.title, ppa.academic_period_id)
            await save_with_history(uow, self.reference, current_user.user_id, new=[ppa])

        logger.info("PPA creation committed", ppa_id=str(ppa.id))
        return ppa.id

    async def update_ppa(self, command: UpdatePpaCommand, current_user: CurrentUser) -> bool:
        """
        Apply the fields supplied on the command.

        Every real change produces one history entry; a command that changes
        nothing records nothing.

        Returns:
            bool: True if anything changed
        """
        async with self.uow_factory() as uow:
            ppa = await uow.ppas.get_required(command.ppa_id)
            ppa.acting_user_id = current_user.user_id

            if command.supplied("title") and command.title is not None:
                if command.title.strip().casefold() != ppa.title.casefold():
                    await ensure_title_available(
                        uow, command.title, ppa.academic_period_id, exclude_ppa_id=ppa.id
                    )
                ppa.update_title(command.title)
            if command.supplied("general_objective"):
                ppa.update_general_objective(command.general_objective)
            if command.supplied("specific_objectives"):
                ppa.update_specific_objectives(command.specific_objectives)
            if command.supplied("description"):
                ppa.update_description(command.description)

            if command.supplied("primary_teacher_id") and command.primary_teacher_id is not None:
                if command.primary_teacher_id != ppa.primary_teacher_id:
                    await self.reference.require_teacher(command.primary_teacher_id)
                ppa.change_responsible_teacher(command.primary_teacher_id)

            if command.supplied("teacher_assignment_ids") and command.teacher_assignment_ids is not None:
                added = [a for a in command.teacher_assignment_ids if a not in ppa.teacher_assignment_ids]
                await self.reference.require_assignments(added, ppa.academic_period_id)
                ppa.set_teacher_assignments(command.teacher_assignment_ids)

            if command.supplied("students") and command.students is not None:
                ppa.sync_students((s.id, s.name) for s in command.students)

            entries = await save_with_history(
                uow, self.reference, current_user.user_id, changed=[ppa]
            )

        logger.info("PPA updated", ppa_id=str(command.ppa_id), changes=len(entries))
        return bool(entries)

    async def change_status(self, command: ChangeStatusCommand, current_user: CurrentUser) -> bool:
        """
        Move a PPA to another status.

        Moving to COMPLETED requires a live PPA_DOCUMENT attachment unless
        ``ppa_require_document_for_completion`` is off.

        Returns:
            bool: True if the status changed

        Raises:
            NotFoundError: Unknown PPA
            TerminalStateError: PPA is ARCHIVED or IN_CONTINUING
            ConflictError: Completion without a PPA document
        """
        async with self.uow_factory() as uow:
            ppa = await uow.ppas.get_required(command.ppa_id)
            ppa.acting_user_id = current_user.user_id
            old_status = ppa.status

            if (
                command.new_status == PpaStatus.COMPLETED
                and old_status != PpaStatus.COMPLETED
                and not ppa.is_terminal
                and self.settings.ppa_require_document_for_completion
            ):
                documents = await uow.attachments.count_by_type(
                    ppa.id, PpaAttachmentType.PPA_DOCUMENT
                )
                if documents == 0:
                    raise ConflictError(
                        "A PPA document must be attached before completing the PPA",
                        rule_name="completion_requires_document",
                        context={"ppa_id": str(ppa.id)},
                    )

            changed = ppa.change_status(command.new_status)
            await save_with_history(uow, self.reference, current_user.user_id, changed=[ppa])

        if changed:
            logger.info(
                "PPA status changed",
                ppa_id=str(command.ppa_id),
                old_status=old_status.value,
                new_status=command.new_status.value,
            )
        return changed

    async def attach_teacher_assignment(
        self, ppa_id: UUID, assignment_id: UUID, current_user: CurrentUser
    ) -> None:
        """
        Link one teacher assignment to a PPA.

        Raises:
            NotFoundError: Unknown PPA or assignment
            DuplicateAssociationError: Assignment already linked
            TerminalStateError: PPA is ARCHIVED or IN_CONTINUING
        """
        async with self.uow_factory() as uow:
            ppa = await uow.ppas.get_required(ppa_id)
            ppa.acting_user_id = current_user.user_id
            await self.reference.require_assignments([assignment_id], ppa.academic_period_id)
            ppa.attach_teacher_assignment(assignment_id)
            await save_with_history(uow, self.reference, current_user.user_id, changed=[ppa])

        logger.info(
            "Teacher assignment attached", ppa_id=str(ppa_id), teacher_assignment_id=str(assignment_id)
        )

    async def remove_teacher_assignment(
        self, ppa_id: UUID, assignment_id: UUID, current_user: CurrentUser
    ) -> bool:
        """Unlink a teacher assignment. Returns False if it was not linked."""
        async with self.uow_factory() as uow:
            ppa = await uow.ppas.get_required(ppa_id)
            ppa.acting_user_id = current_user.user_id
            removed = ppa.remove_teacher_assignment(assignment_id)
            await save_with_history(uow, self.reference, current_user.user_id, changed=[ppa])

        if removed:
            logger.info(
                "Teacher assignment removed",
                ppa_id=str(ppa_id),
                teacher_assignment_id=str(assignment_id),
            )
        return removed

"""
PPA Continuation

Carries a finished PPA into a later academic period. The new PPA and the
source's link to it are written in one unit of work: either both PPAs and all
history entries commit, or nothing does.
"""

from collections.abc import Iterable
from uuid import UUID

import structlog

from services.ppa_service.aggregates import Ppa
from services.ppa_service.ports import (
    AcademicPeriodDirectory,
    AcademicPeriodRef,
    CurrentUser,
    TeacherAssignmentDirectory,
    TeacherDirectory,
)
from services.ppa_service.ppa_service import ensure_title_available, save_with_history
from services.ppa_service.reference import ReferenceData, call_collaborator
from services.ppa_service.repository import UnitOfWorkFactory
from services.ppa_service.schemas import ContinuePpaCommand
from shared.domain.exceptions import ConflictError, TerminalStateError
from shared.domain.ppa import PpaStatus

logger = structlog.get_logger(__name__)

CONTINUABLE_STATUSES = (PpaStatus.COMPLETED, PpaStatus.ARCHIVED)


def check_continuation_preconditions(
    source: Ppa,
    target_period: AcademicPeriodRef,
    source_period: AcademicPeriodRef | None,
    occupied: Iterable[UUID],
) -> None:
    """
    Validate that ``source`` may be continued into ``target_period``.

    Args:
        source: PPA being continued
        target_period: Period the continuation will belong to
        source_period: The source's own period, if reference data knows it
        occupied: Ids of active PPAs in the target period already holding
            one of the chosen teacher assignments

    Raises:
        TerminalStateError: If the source was already continued
        ConflictError: For any other unmet precondition
    """
    context = {"ppa_id": str(source.id), "target_period_id": str(target_period.id)}

    if source.continued_by_ppa_id is not None or source.status == PpaStatus.IN_CONTINUING:
        raise TerminalStateError(
            "PPA has already been continued", status=source.status, context=context
        )
    if source.status not in CONTINUABLE_STATUSES:
        raise ConflictError(
            f"Only completed or archived PPAs can be continued (status is {source.status.value})",
            rule_name="continuation_source_status",
            context=context,
        )
    if target_period.id == source.academic_period_id:
        raise ConflictError(
            "Continuation must target a different academic period",
            rule_name="continuation_period_differs",
            context=context,
        )
    if not target_period.is_active:
        raise ConflictError(
            f"Academic period {target_period.code} is not active",
            rule_name="active_period",
            context=context,
        )
    if (
        source_period is not None
        and source_period.start_date is not None
        and target_period.start_date is not None
        and target_period.start_date <= source_period.start_date
    ):
        raise ConflictError(
            "Continuation period must start after the source period",
            rule_name="continuation_period_order",
            context=context,
        )
    occupied = list(occupied)
    if occupied:
        raise ConflictError(
            "Another active PPA in the target period already uses these teacher assignments",
            rule_name="assignment_set_occupied",
            context={**context, "occupied_by": [str(i) for i in occupied]},
        )


class ContinuationService:
    """Continuation workflow across the source and the new PPA."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        periods: AcademicPeriodDirectory,
        assignments: TeacherAssignmentDirectory,
        teachers: TeacherDirectory,
    ):
        self.uow_factory = uow_factory
        self.reference = ReferenceData(periods, assignments, teachers)

    async def continue_ppa(self, command: ContinuePpaCommand, current_user: CurrentUser) -> UUID:
        """
        Create the continuation of a PPA in another period.

        Process:
        1. Load the source and resolve both periods
        2. Check continuation preconditions
        3. Resolve title, teacher, assignments and students for the new PPA
        4. Create the new PPA linked to the source, mark the source continued
        5. Persist both PPAs and their history entries together

        Returns:
            UUID: Identifier of the new PPA

        Raises:
            NotFoundError: Unknown source, period, teacher or assignment
            TerminalStateError: Source already continued
            ConflictError: Other precondition failures
            DuplicateError: Title already used in the target period
        """
        user_id = current_user.user_id
        logger.info(
            "Continuing PPA",
            source_ppa_id=str(command.source_ppa_id),
            target_period_id=str(command.target_period_id),
            user_id=str(user_id),
        )

        async with self.uow_factory() as uow:
            source = await uow.ppas.get_required(command.source_ppa_id)
            target_period = await self.reference.require_period(
                command.target_period_id, must_be_active=False
            )
            source_period = await call_collaborator(
                "academic_periods", self.reference.periods.get(source.academic_period_id)
            )
            occupied = await uow.ppas.find_active_using_assignments(
                target_period.id, command.teacher_assignment_ids
            )
            check_continuation_preconditions(source, target_period, source_period, occupied)

            teacher_id = command.primary_teacher_id or source.primary_teacher_id
            await self.reference.require_teacher(teacher_id)
            await self.reference.require_assignments(
                command.teacher_assignment_ids, target_period.id
            )

            title = command.title if command.title and command.title.strip() else source.title
            await ensure_title_available(uow, title, target_period.id)

            student_names = (
                command.student_names
                if command.student_names is not None
                else [s.name for s in source.students]
            )
            continuation = Ppa.create(
                title=title,
                academic_period_id=target_period.id,
                primary_teacher_id=teacher_id,
                general_objective=source.general_objective,
                specific_objectives=source.specific_objectives,
                description=source.description,
                teacher_assignment_ids=command.teacher_assignment_ids,
                student_names=student_names,
                performed_by=user_id,
            )
            continuation.set_continuation_of(source.id)

            source.acting_user_id = user_id
            source.mark_continued_by(continuation.id, target_period.id)

            await save_with_history(
                uow, self.reference, user_id, new=[continuation], changed=[source]
            )

        logger.info(
            "PPA continued",
            source_ppa_id=str(source.id),
            continuation_ppa_id=str(continuation.id),
            target_period_id=str(target_period.id),
        )
        return continuation.id

"""
PPA Service Aggregates

The PPA aggregate: status machine, continuation links, teacher assignment
and student associations.

Every mutation raises a domain event. The aggregate does not write history;
callers turn ``get_uncommitted_events()`` into history entries inside the same
unit of work.
"""

from collections.abc import Iterable
from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

import structlog

from shared.domain.exceptions import (
    ConflictError,
    DuplicateAssociationError,
    DuplicateError,
    TerminalStateError,
    ValidationError,
)
from shared.domain.ppa import PpaStatus, PpaStudent, clean_optional, require_id, require_text
from shared.events.aggregate import AggregateRoot
from shared.events.base import EventMetadata
from shared.events.ppa_events import (
    PpaContinuationLinkedEvent,
    PpaContinuedEvent,
    PpaCreatedEvent,
    PpaDescriptionUpdatedEvent,
    PpaEvent,
    PpaGeneralObjectiveUpdatedEvent,
    PpaResponsibleTeacherChangedEvent,
    PpaSpecificObjectivesUpdatedEvent,
    PpaStatusChangedEvent,
    PpaStudentsChangedEvent,
    PpaTeacherAssignmentsChangedEvent,
    PpaTitleUpdatedEvent,
)

logger = structlog.get_logger(__name__)

SERVICE_NAME = "ppa_service"


def _validated_assignment_ids(ids: Iterable[UUID]) -> list[UUID]:
    result: list[UUID] = []
    for assignment_id in ids:
        require_id(assignment_id, "teacher_assignment_id")
        if assignment_id in result:
            raise DuplicateAssociationError(
                "Teacher assignment listed more than once", key=assignment_id
            )
        result.append(assignment_id)
    return result


def _validated_student_names(names: Iterable[str]) -> list[str]:
    result: list[str] = []
    seen: set[str] = set()
    for name in names:
        cleaned = clean_optional(name)
        if cleaned is None:
            continue
        key = cleaned.casefold()
        if key in seen:
            raise DuplicateError(
                f"Student '{cleaned}' listed more than once", entity_type="PpaStudent", key=cleaned
            )
        seen.add(key)
        result.append(cleaned)
    return result


class Ppa(AggregateRoot):
    """
    PPA aggregate root.

    Invariants:
    - Title is never blank
    - Teacher assignment ids are unique and never nil
    - Continuation pointers never reference the PPA itself
    - ARCHIVED and IN_CONTINUING admit no further status change
    """

    def __init__(self, aggregate_id: UUID, version: int = 0):
        super().__init__(aggregate_id, version)

        self.title: str = ""
        self.general_objective: str | None = None
        self.specific_objectives: str | None = None
        self.description: str | None = None
        self.status: PpaStatus = PpaStatus.PROPOSAL
        self.academic_period_id: UUID | None = None
        self.primary_teacher_id: UUID | None = None
        self.teacher_assignment_ids: list[UUID] = []
        self.students: list[PpaStudent] = []
        self.continuation_of_ppa_id: UUID | None = None
        self.continued_by_ppa_id: UUID | None = None
        self.created_at: datetime | None = None
        self.updated_at: datetime | None = None

        # Recorded in event metadata only
        self.acting_user_id: UUID | None = None

    @classmethod
    def aggregate_type(cls) -> str:
        """Get aggregate type."""
        return "Ppa"

    # ------------------------------------------------------------------
    # Factories
    # ------------------------------------------------------------------

    @classmethod
    def create(
        cls,
        title: str,
        academic_period_id: UUID,
        primary_teacher_id: UUID,
        general_objective: str | None = None,
        specific_objectives: str | None = None,
        description: str | None = None,
        teacher_assignment_ids: Iterable[UUID] = (),
        student_names: Iterable[str] = (),
        performed_by: UUID | None = None,
        ppa_id: UUID | None = None,
    ) -> "Ppa":
        """
        Create a new PPA in PROPOSAL status.

        Args:
            title: Project title (trimmed, required)
            academic_period_id: Period the PPA belongs to
            primary_teacher_id: Responsible teacher
            general_objective: Optional free text
            specific_objectives: Optional free text
            description: Optional free text
            teacher_assignment_ids: Linked teacher assignments
            student_names: Participating students
            performed_by: Acting user, recorded in event metadata
            ppa_id: Identifier to use instead of a fresh one

        Returns:
            Ppa: New aggregate with one pending PpaCreatedEvent

        Raises:
            ValidationError: On blank title or missing identifiers
            DuplicateAssociationError: On repeated assignment ids
            DuplicateError: On repeated student names
        """
        clean_title = require_text(title, "title")
        require_id(academic_period_id, "academic_period_id")
        require_id(primary_teacher_id, "primary_teacher_id")
        assignment_ids = _validated_assignment_ids(teacher_assignment_ids)
        students = [PpaStudent.create(n) for n in _validated_student_names(student_names)]

        ppa = cls(ppa_id or uuid4())
        ppa.acting_user_id = performed_by
        ppa.raise_event(
            ppa._event(
                PpaCreatedEvent,
                title=clean_title,
                academic_period_id=academic_period_id,
                primary_teacher_id=primary_teacher_id,
                general_objective=clean_optional(general_objective),
                specific_objectives=clean_optional(specific_objectives),
                description=clean_optional(description),
                teacher_assignment_ids=assignment_ids,
                students=students,
            )
        )

        logger.info(
            "PPA created",
            ppa_id=str(ppa.id),
            academic_period_id=str(academic_period_id),
            assignments=len(assignment_ids),
            students=len(students),
        )
        return ppa

    @classmethod
    def reconstruct(
        cls,
        id: UUID,
        title: str,
        general_objective: str | None,
        specific_objectives: str | None,
        description: str | None,
        status: PpaStatus,
        academic_period_id: UUID,
        primary_teacher_id: UUID,
        teacher_assignment_ids: Iterable[UUID],
        students: Iterable[PpaStudent],
        continuation_of_ppa_id: UUID | None,
        continued_by_ppa_id: UUID | None,
        created_at: datetime,
        updated_at: datetime | None,
        version: int,
    ) -> "Ppa":
        """Rebuild a PPA from persisted fields. Raises no events."""
        ppa = cls(id, version)
        ppa.title = title
        ppa.general_objective = general_objective
        ppa.specific_objectives = specific_objectives
        ppa.description = description
        ppa.status = PpaStatus(status)
        ppa.academic_period_id = academic_period_id
        ppa.primary_teacher_id = primary_teacher_id
        ppa.teacher_assignment_ids = list(teacher_assignment_ids)
        ppa.students = list(students)
        ppa.continuation_of_ppa_id = continuation_of_ppa_id
        ppa.continued_by_ppa_id = continued_by_ppa_id
        ppa.created_at = created_at
        ppa.updated_at = updated_at
        return ppa

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def change_status(self, new_status: PpaStatus) -> bool:
        """
        Move the PPA to another status.

        The terminal check runs before the equality check, so
        ARCHIVED -> ARCHIVED raises.

        Returns:
            bool: False when the status is unchanged

        Raises:
            TerminalStateError: If the PPA is ARCHIVED or IN_CONTINUING
            ValidationError: If asked to move into IN_CONTINUING
        """
        new_status = PpaStatus(new_status)
        if self.is_terminal:
            raise TerminalStateError(
                f"PPA in status {self.status.value} cannot change status",
                status=self.status,
                context={"ppa_id": str(self.id), "requested": new_status.value},
            )
        if new_status == PpaStatus.IN_CONTINUING:
            raise ValidationError(
                "IN_CONTINUING is only reachable through the continuation workflow",
                field="status",
                value=new_status.value,
            )
        if new_status == self.status:
            return False

        self.raise_event(
            self._event(PpaStatusChangedEvent, old_status=self.status, new_status=new_status)
        )
        return True

    # ------------------------------------------------------------------
    # Text fields
    # ------------------------------------------------------------------

    def update_title(self, title: str) -> bool:
        """
        Raises:
            ValidationError: If the title is blank
        """
        new_title = require_text(title, "title")
        if new_title == self.title:
            return False
        self.raise_event(self._event(PpaTitleUpdatedEvent, old_title=self.title, new_title=new_title))
        return True

    def update_general_objective(self, value: str | None) -> bool:
        value = clean_optional(value)
        if value == self.general_objective:
            return False
        self.raise_event(
            self._event(
                PpaGeneralObjectiveUpdatedEvent, old_value=self.general_objective, new_value=value
            )
        )
        return True

    def update_specific_objectives(self, value: str | None) -> bool:
        value = clean_optional(value)
        if value == self.specific_objectives:
            return False
        self.raise_event(
            self._event(
                PpaSpecificObjectivesUpdatedEvent,
                old_value=self.specific_objectives,
                new_value=value,
            )
        )
        return True

    def update_description(self, value: str | None) -> bool:
        value = clean_optional(value)
        if value == self.description:
            return False
        self.raise_event(
            self._event(PpaDescriptionUpdatedEvent, old_value=self.description, new_value=value)
        )
        return True

    # ------------------------------------------------------------------
    # Teacher and assignments
    # ------------------------------------------------------------------

    def attach_teacher_assignment(self, assignment_id: UUID) -> None:
        """
        Raises:
            ValidationError: On a nil id
            DuplicateAssociationError: If the assignment is already linked
            TerminalStateError: If the PPA is terminal
        """
        require_id(assignment_id, "teacher_assignment_id")
        if assignment_id in self.teacher_assignment_ids:
            raise DuplicateAssociationError(
                "Teacher assignment already linked to this PPA",
                key=assignment_id,
                context={"ppa_id": str(self.id)},
            )
        self._ensure_editable("attach teacher assignment")
        self._raise_assignments_changed([*self.teacher_assignment_ids, assignment_id])

    def remove_teacher_assignment(self, assignment_id: UUID) -> bool:
        if assignment_id not in self.teacher_assignment_ids:
            return False
        self._ensure_editable("remove teacher assignment")
        self._raise_assignments_changed(
            [a for a in self.teacher_assignment_ids if a != assignment_id]
        )
        return True

    def set_teacher_assignments(self, assignment_ids: Iterable[UUID]) -> bool:
        new_ids = _validated_assignment_ids(assignment_ids)
        if set(new_ids) == set(self.teacher_assignment_ids):
            return False
        self._ensure_editable("replace teacher assignments")
        self._raise_assignments_changed(new_ids)
        return True

    def _raise_assignments_changed(self, new_ids: list[UUID]) -> None:
        self.raise_event(
            self._event(
                PpaTeacherAssignmentsChangedEvent,
                old_assignment_ids=list(self.teacher_assignment_ids),
                new_assignment_ids=new_ids,
            )
        )

    def change_responsible_teacher(self, teacher_id: UUID) -> bool:
        require_id(teacher_id, "primary_teacher_id")
        if teacher_id == self.primary_teacher_id:
            return False
        self._ensure_editable("change responsible teacher")
        self.raise_event(
            self._event(
                PpaResponsibleTeacherChangedEvent,
                old_teacher_id=self.primary_teacher_id,
                new_teacher_id=teacher_id,
            )
        )
        return True

    # ------------------------------------------------------------------
    # Students
    # ------------------------------------------------------------------

    def set_students(self, names: Iterable[str]) -> bool:
        """
        Replace the student list by name.

        Blank names are dropped. Students whose name is kept keep their id.

        Raises:
            DuplicateError: If two names match case-insensitively
        """
        cleaned = _validated_student_names(names)
        existing = {s.name.casefold(): s for s in self.students}
        new_students = [
            existing.get(name.casefold()) or PpaStudent.create(name) for name in cleaned
        ]
        return self._replace_students(new_students)

    def sync_students(self, items: Iterable[tuple[UUID | None, str]]) -> bool:
        """
        Create, rename and remove students in one call.

        Items with an id rename that student, items without one create a new
        student, and current students missing from ``items`` are removed.

        Raises:
            ValidationError: On an unknown or repeated student id
            DuplicateError: On repeated names
        """
        current = {s.id: s for s in self.students}
        seen_ids: set[UUID] = set()
        seen_names: set[str] = set()
        new_students: list[PpaStudent] = []

        for student_id, name in items:
            clean_name = require_text(name, "student name")
            if student_id is not None:
                if student_id in seen_ids:
                    raise ValidationError(
                        "Student id listed more than once", field="students", value=student_id
                    )
                if student_id not in current:
                    raise ValidationError(
                        "Student does not belong to this PPA", field="students", value=student_id
                    )
                seen_ids.add(student_id)
            key = clean_name.casefold()
            if key in seen_names:
                raise DuplicateError(
                    f"Student '{clean_name}' listed more than once",
                    entity_type="PpaStudent",
                    key=clean_name,
                )
            seen_names.add(key)
            new_students.append(PpaStudent.create(clean_name, student_id=student_id))

        return self._replace_students(new_students)

    def _replace_students(self, new_students: list[PpaStudent]) -> bool:
        if new_students == self.students:
            return False
        self._ensure_editable("update students")
        self.raise_event(
            self._event(
                PpaStudentsChangedEvent,
                old_students=list(self.students),
                new_students=new_students,
            )
        )
        return True

    # ------------------------------------------------------------------
    # Continuation
    # ------------------------------------------------------------------

    def set_continuation_of(self, source_ppa_id: UUID) -> None:
        """
        Link this PPA to the PPA it continues.

        Raises:
            ValidationError: If the source id is nil or the PPA itself
            ConflictError: If a source is already set
        """
        require_id(source_ppa_id, "continuation_of_ppa_id")
        if source_ppa_id == self.id:
            raise ValidationError(
                "A PPA cannot continue itself", field="continuation_of_ppa_id", value=source_ppa_id
            )
        if self.continuation_of_ppa_id is not None:
            raise ConflictError(
                "PPA is already a continuation of another PPA",
                rule_name="single_continuation_source",
                context={"ppa_id": str(self.id)},
            )
        self.raise_event(self._event(PpaContinuationLinkedEvent, source_ppa_id=source_ppa_id))

    def mark_continued_by(self, new_ppa_id: UUID, target_period_id: UUID) -> None:
        """
        Record the continuation on the source side and freeze the source.

        Allowed from ARCHIVED; the source moves to IN_CONTINUING.

        Raises:
            ValidationError: On nil ids or a self reference
            ConflictError: If the target period is the PPA's own period
            TerminalStateError: If the PPA was already continued
        """
        require_id(new_ppa_id, "continued_by_ppa_id")
        require_id(target_period_id, "target_period_id")
        if new_ppa_id == self.id:
            raise ValidationError(
                "A PPA cannot be continued by itself", field="continued_by_ppa_id", value=new_ppa_id
            )
        if self.continued_by_ppa_id is not None or self.status == PpaStatus.IN_CONTINUING:
            raise TerminalStateError(
                "PPA has already been continued",
                status=self.status,
                context={"ppa_id": str(self.id)},
            )
        if target_period_id == self.academic_period_id:
            raise ConflictError(
                "Continuation must target a different academic period",
                rule_name="continuation_period_differs",
                context={"ppa_id": str(self.id), "period_id": str(target_period_id)},
            )
        self.raise_event(
            self._event(
                PpaContinuedEvent,
                continued_by_ppa_id=new_ppa_id,
                target_period_id=target_period_id,
                old_status=self.status,
            )
        )

    # ------------------------------------------------------------------
    # Event plumbing
    # ------------------------------------------------------------------

    def _ensure_editable(self, operation: str) -> None:
        if self.is_terminal:
            raise TerminalStateError(
                f"Cannot {operation} on a PPA in status {self.status.value}",
                status=self.status,
                context={"ppa_id": str(self.id)},
            )

    def _event(self, event_cls: type[PpaEvent], **payload: Any) -> PpaEvent:
        return event_cls(
            metadata=EventMetadata(performed_by=self.acting_user_id, source=SERVICE_NAME),
            aggregate_id=self.id,
            aggregate_type=self.aggregate_type(),
            sequence_number=self.version,
            **payload,
        )

    def apply_event(self, event: PpaEvent) -> None:
        """
        Apply event to update aggregate state.

        Args:
            event: Domain event to apply
        """
        if isinstance(event, PpaCreatedEvent):
            self._apply_created(event)
            return

        if isinstance(event, PpaTitleUpdatedEvent):
            self.title = event.new_title
        elif isinstance(event, PpaGeneralObjectiveUpdatedEvent):
            self.general_objective = event.new_value
        elif isinstance(event, PpaSpecificObjectivesUpdatedEvent):
            self.specific_objectives = event.new_value
        elif isinstance(event, PpaDescriptionUpdatedEvent):
            self.description = event.new_value
        elif isinstance(event, PpaStatusChangedEvent):
            self.status = event.new_status
        elif isinstance(event, PpaResponsibleTeacherChangedEvent):
            self.primary_teacher_id = event.new_teacher_id
        elif isinstance(event, PpaTeacherAssignmentsChangedEvent):
            self.teacher_assignment_ids = list(event.new_assignment_ids)
        elif isinstance(event, PpaStudentsChangedEvent):
            self.students = list(event.new_students)
        elif isinstance(event, PpaContinuationLinkedEvent):
            self.continuation_of_ppa_id = event.source_ppa_id
        elif isinstance(event, PpaContinuedEvent):
            self.continued_by_ppa_id = event.continued_by_ppa_id
            self.status = PpaStatus.IN_CONTINUING
        self.updated_at = event.occurred_at

    def _apply_created(self, event: PpaCreatedEvent) -> None:
        """Apply PpaCreatedEvent."""
        self.title = event.title
        self.academic_period_id = event.academic_period_id
        self.primary_teacher_id = event.primary_teacher_id
        self.general_objective = event.general_objective
        self.specific_objectives = event.specific_objectives
        self.description = event.description
        self.teacher_assignment_ids = list(event.teacher_assignment_ids)
        self.students = list(event.students)
        self.status = PpaStatus.PROPOSAL
        self.created_at = event.occurred_at
        self.updated_at = None

    def get_state(self) -> dict[str, Any]:
        """Get current state as ``reconstruct`` keyword arguments."""
        return {
            "id": self.id,
            "title": self.title,
            "general_objective": self.general_objective,
            "specific_objectives": self.specific_objectives,
            "description": self.description,
            "status": self.status,
            "academic_period_id": self.academic_period_id,
            "primary_teacher_id": self.primary_teacher_id,
            "teacher_assignment_ids": list(self.teacher_assignment_ids),
            "students": list(self.students),
            "continuation_of_ppa_id": self.continuation_of_ppa_id,
            "continued_by_ppa_id": self.continued_by_ppa_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }

    @classmethod
    def from_snapshot(cls, state: dict[str, Any]) -> "Ppa":
        """Restore aggregate from ``get_state`` output."""
        return cls.reconstruct(**state)

"""
PPA Domain Events

Events raised by the PPA aggregate. Each event names the history action the
use-case layer records for it.
"""

from typing import ClassVar
from uuid import UUID

from pydantic import Field

from shared.domain.ppa import PpaHistoryActionType, PpaStatus, PpaStudent
from shared.events.base import DomainEvent


class PpaEvent(DomainEvent):
    """Base class for PPA events."""

    HISTORY_ACTION: ClassVar[PpaHistoryActionType | None] = None


class PpaCreatedEvent(PpaEvent):
    """Event emitted when a PPA is created in proposal status."""

    EVENT_TYPE: ClassVar[str] = "ppa.created"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = PpaHistoryActionType.CREATED

    title: str = Field(...)
    academic_period_id: UUID = Field(...)
    primary_teacher_id: UUID = Field(...)
    general_objective: str | None = Field(default=None)
    specific_objectives: str | None = Field(default=None)
    description: str | None = Field(default=None)
    teacher_assignment_ids: list[UUID] = Field(default_factory=list)
    students: list[PpaStudent] = Field(default_factory=list)


class PpaTitleUpdatedEvent(PpaEvent):
    EVENT_TYPE: ClassVar[str] = "ppa.title_updated"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = PpaHistoryActionType.UPDATED_TITLE

    old_title: str = Field(...)
    new_title: str = Field(...)


class PpaGeneralObjectiveUpdatedEvent(PpaEvent):
    EVENT_TYPE: ClassVar[str] = "ppa.general_objective_updated"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = (
        PpaHistoryActionType.UPDATED_GENERAL_OBJECTIVE
    )

    old_value: str | None = Field(default=None)
    new_value: str | None = Field(default=None)


class PpaSpecificObjectivesUpdatedEvent(PpaEvent):
    EVENT_TYPE: ClassVar[str] = "ppa.specific_objectives_updated"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = (
        PpaHistoryActionType.UPDATED_SPECIFIC_OBJECTIVES
    )

    old_value: str | None = Field(default=None)
    new_value: str | None = Field(default=None)


class PpaDescriptionUpdatedEvent(PpaEvent):
    EVENT_TYPE: ClassVar[str] = "ppa.description_updated"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = PpaHistoryActionType.UPDATED_DESCRIPTION

    old_value: str | None = Field(default=None)
    new_value: str | None = Field(default=None)


class PpaStatusChangedEvent(PpaEvent):
    """Event emitted on an explicit status change."""

    EVENT_TYPE: ClassVar[str] = "ppa.status_changed"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = PpaHistoryActionType.CHANGED_STATUS

    old_status: PpaStatus = Field(...)
    new_status: PpaStatus = Field(...)


class PpaResponsibleTeacherChangedEvent(PpaEvent):
    EVENT_TYPE: ClassVar[str] = "ppa.responsible_teacher_changed"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = (
        PpaHistoryActionType.CHANGED_RESPONSIBLE_TEACHER
    )

    old_teacher_id: UUID = Field(...)
    new_teacher_id: UUID = Field(...)


class PpaTeacherAssignmentsChangedEvent(PpaEvent):
    """Event emitted when the linked teacher assignment set changes."""

    EVENT_TYPE: ClassVar[str] = "ppa.teacher_assignments_changed"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = PpaHistoryActionType.UPDATED_ASSIGNMENTS

    old_assignment_ids: list[UUID] = Field(default_factory=list)
    new_assignment_ids: list[UUID] = Field(default_factory=list)


class PpaStudentsChangedEvent(PpaEvent):
    EVENT_TYPE: ClassVar[str] = "ppa.students_changed"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = PpaHistoryActionType.UPDATED_STUDENTS

    old_students: list[PpaStudent] = Field(default_factory=list)
    new_students: list[PpaStudent] = Field(default_factory=list)


class PpaContinuationLinkedEvent(PpaEvent):
    """Event emitted on the new PPA when it is linked to its source."""

    EVENT_TYPE: ClassVar[str] = "ppa.continuation_linked"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = (
        PpaHistoryActionType.UPDATED_CONTINUATION_SETTINGS
    )

    source_ppa_id: UUID = Field(...)


class PpaContinuedEvent(PpaEvent):
    """
    Event emitted on the source PPA when a continuation is created.

    Sets the forward pointer and moves the source into IN_CONTINUING.
    """

    EVENT_TYPE: ClassVar[str] = "ppa.continued"
    HISTORY_ACTION: ClassVar[PpaHistoryActionType] = PpaHistoryActionType.CONTINUATION_CREATED

    continued_by_ppa_id: UUID = Field(...)
    target_period_id: UUID = Field(...)
    old_status: PpaStatus = Field(...)

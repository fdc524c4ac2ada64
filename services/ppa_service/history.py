"""
PPA History

Turns pending aggregate events into history entries and renders the display
labels for history actions.
"""

from collections.abc import Iterable, Mapping
from uuid import UUID

import structlog

from shared.domain.ppa import (
    PpaAttachment,
    PpaHistoryActionType,
    PpaHistoryEntry,
    PpaStudent,
)
from shared.events.base import DomainEvent
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

ACTION_LABELS: dict[PpaHistoryActionType, str] = {
    PpaHistoryActionType.CREATED: "PPA created",
    PpaHistoryActionType.UPDATED_TITLE: "Title updated",
    PpaHistoryActionType.CHANGED_STATUS: "Status changed",
    PpaHistoryActionType.CHANGED_RESPONSIBLE_TEACHER: "Responsible teacher changed",
    PpaHistoryActionType.UPDATED_ASSIGNMENTS: "Teacher assignments updated",
    PpaHistoryActionType.UPDATED_STUDENTS: "Students updated",
    PpaHistoryActionType.UPDATED_CONTINUATION_SETTINGS: "Continuation settings updated",
    PpaHistoryActionType.ATTACHMENT_ADDED: "Attachment added",
    PpaHistoryActionType.ATTACHMENT_REMOVED: "Attachment removed",
    PpaHistoryActionType.CONTINUATION_CREATED: "Continuation created",
    PpaHistoryActionType.UPDATED_GENERAL_OBJECTIVE: "General objective updated",
    PpaHistoryActionType.UPDATED_SPECIFIC_OBJECTIVES: "Specific objectives updated",
    PpaHistoryActionType.UPDATED_DESCRIPTION: "Description updated",
}


def describe_action(action: PpaHistoryActionType) -> str:
    return ACTION_LABELS[action]


def _label(value: UUID | None, labels: Mapping[UUID, str]) -> str | None:
    if value is None:
        return None
    return labels.get(value, str(value))


def _join_ids(ids: Iterable[UUID], labels: Mapping[UUID, str]) -> str | None:
    return ", ".join(_label(i, labels) for i in ids) or None


def _join_students(students: Iterable[PpaStudent]) -> str | None:
    return ", ".join(s.name for s in students) or None


def _values_for(
    event: PpaEvent, labels: Mapping[UUID, str]
) -> tuple[str | None, str | None, str | None]:
    """(old_value, new_value, notes) for one event."""
    if isinstance(event, PpaCreatedEvent):
        period = _label(event.academic_period_id, labels)
        return (
            None,
            f"Title: {event.title}, Period: {period}",
            f"{len(event.teacher_assignment_ids)} teacher assignment(s), "
            f"{len(event.students)} student(s)",
        )
    if isinstance(event, PpaTitleUpdatedEvent):
        return event.old_title, event.new_title, None
    if isinstance(
        event,
        PpaGeneralObjectiveUpdatedEvent | PpaSpecificObjectivesUpdatedEvent | PpaDescriptionUpdatedEvent,
    ):
        return event.old_value, event.new_value, None
    if isinstance(event, PpaStatusChangedEvent):
        return event.old_status.value, event.new_status.value, None
    if isinstance(event, PpaResponsibleTeacherChangedEvent):
        return _label(event.old_teacher_id, labels), _label(event.new_teacher_id, labels), None
    if isinstance(event, PpaTeacherAssignmentsChangedEvent):
        added = set(event.new_assignment_ids) - set(event.old_assignment_ids)
        removed = set(event.old_assignment_ids) - set(event.new_assignment_ids)
        return (
            _join_ids(event.old_assignment_ids, labels),
            _join_ids(event.new_assignment_ids, labels),
            f"{len(added)} added, {len(removed)} removed",
        )
    if isinstance(event, PpaStudentsChangedEvent):
        return (
            _join_students(event.old_students),
            _join_students(event.new_students),
            f"{len(event.new_students)} student(s)",
        )
    if isinstance(event, PpaContinuationLinkedEvent):
        return None, str(event.source_ppa_id), "Continues a PPA from a previous period"
    if isinstance(event, PpaContinuedEvent):
        return (
            event.old_status.value,
            str(event.continued_by_ppa_id),
            f"Continued in period {_label(event.target_period_id, labels)}",
        )
    return None, None, None


def referenced_ids(events: Iterable[DomainEvent]) -> tuple[set[UUID], set[UUID], set[UUID]]:
    """Period, teacher and assignment ids whose labels the history values need."""
    periods: set[UUID] = set()
    teachers: set[UUID] = set()
    assignments: set[UUID] = set()
    for event in events:
        if isinstance(event, PpaCreatedEvent):
            periods.add(event.academic_period_id)
        elif isinstance(event, PpaContinuedEvent):
            periods.add(event.target_period_id)
        elif isinstance(event, PpaResponsibleTeacherChangedEvent):
            teachers.update(i for i in (event.old_teacher_id, event.new_teacher_id) if i)
        elif isinstance(event, PpaTeacherAssignmentsChangedEvent):
            assignments.update(event.old_assignment_ids)
            assignments.update(event.new_assignment_ids)
    return periods, teachers, assignments


def history_entries_from_events(
    events: Iterable[DomainEvent],
    performed_by_user_id: UUID,
    labels: Mapping[UUID, str] | None = None,
) -> list[PpaHistoryEntry]:
    """
    Build one history entry per PPA event that maps to a history action.

    Args:
        events: Pending events pulled from one or more aggregates
        performed_by_user_id: Acting user recorded on every entry
        labels: Optional display names for ids (period codes, teacher names)

    Returns:
        list: Entries in event order, timestamped with the event time
    """
    labels = labels or {}
    entries: list[PpaHistoryEntry] = []
    for event in events:
        action = getattr(event, "HISTORY_ACTION", None)
        if action is None:
            continue
        old_value, new_value, notes = _values_for(event, labels)
        entries.append(
            PpaHistoryEntry.create(
                ppa_id=event.aggregate_id,
                performed_by_user_id=performed_by_user_id,
                action_type=action,
                old_value=old_value,
                new_value=new_value,
                notes=notes,
                performed_at=event.occurred_at,
            )
        )
    return entries


def attachment_history_entry(
    attachment: PpaAttachment,
    action: PpaHistoryActionType,
    performed_by_user_id: UUID,
    restored: bool = False,
) -> PpaHistoryEntry:
    """History entry for an attachment entering or leaving the live set."""
    if action == PpaHistoryActionType.ATTACHMENT_ADDED:
        old_value, new_value = None, attachment.name
    else:
        old_value, new_value = attachment.name, None
    notes = f"Type: {attachment.type.value}"
    if restored:
        notes = f"Restored. {notes}"
    return PpaHistoryEntry.create(
        ppa_id=attachment.ppa_id,
        performed_by_user_id=performed_by_user_id,
        action_type=action,
        old_value=old_value,
        new_value=new_value,
        notes=notes,
    )

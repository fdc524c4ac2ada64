"""
Tests for the PPA aggregate: status machine, associations and continuation links.
"""

from uuid import UUID, uuid4

import pytest

from services.ppa_service.aggregates import Ppa
from shared.domain.exceptions import (
    ConflictError,
    DuplicateAssociationError,
    DuplicateError,
    TerminalStateError,
    ValidationError,
)
from shared.domain.ppa import PpaStatus
from shared.events.ppa_events import (
    PpaContinuedEvent,
    PpaCreatedEvent,
    PpaStatusChangedEvent,
    PpaTeacherAssignmentsChangedEvent,
)

NIL = UUID(int=0)


def make_ppa(**overrides) -> Ppa:
    data = {
        "title": "  Smart Parking  ",
        "academic_period_id": uuid4(),
        "primary_teacher_id": uuid4(),
    }
    data.update(overrides)
    ppa = Ppa.create(**data)
    ppa.mark_events_committed()
    return ppa


def archived_ppa() -> Ppa:
    ppa = make_ppa()
    ppa.change_status(PpaStatus.ARCHIVED)
    ppa.mark_events_committed()
    return ppa


class TestCreate:
    def test_create_starts_in_proposal_with_one_event(self):
        assignment_id = uuid4()
        ppa = Ppa.create(
            title="  Smart Parking  ",
            academic_period_id=uuid4(),
            primary_teacher_id=uuid4(),
            description="   ",
            teacher_assignment_ids=[assignment_id],
            student_names=["Luis", "  ", "Maria"],
        )

        assert ppa.status == PpaStatus.PROPOSAL
        assert ppa.title == "Smart Parking"
        assert ppa.description is None
        assert ppa.teacher_assignment_ids == [assignment_id]
        assert [s.name for s in ppa.students] == ["Luis", "Maria"]
        assert ppa.updated_at is None
        assert ppa.version == 1

        events = ppa.get_uncommitted_events()
        assert len(events) == 1
        assert isinstance(events[0], PpaCreatedEvent)

    def test_created_event_carries_the_acting_user(self):
        user_id = uuid4()
        ppa = Ppa.create(
            title="Smart Parking",
            academic_period_id=uuid4(),
            primary_teacher_id=uuid4(),
            performed_by=user_id,
        )

        (event,) = ppa.get_uncommitted_events()
        assert event.performed_by == user_id
        assert event.sequence_number == 0
        assert event.payload()["title"] == "Smart Parking"
        assert event.to_dict()["event_type"] == "ppa.created"

    @pytest.mark.parametrize("title", ["", "   "])
    def test_blank_title_is_rejected(self, title):
        with pytest.raises(ValidationError):
            make_ppa(title=title)

    def test_missing_period_is_rejected(self):
        with pytest.raises(ValidationError):
            make_ppa(academic_period_id=NIL)

    def test_repeated_assignment_is_rejected(self):
        assignment_id = uuid4()
        with pytest.raises(DuplicateAssociationError):
            make_ppa(teacher_assignment_ids=[assignment_id, assignment_id])

    def test_repeated_student_name_is_rejected(self):
        with pytest.raises(DuplicateError):
            make_ppa(student_names=["Luis", "LUIS "])

    def test_reconstruct_raises_no_events(self):
        ppa = make_ppa()
        clone = Ppa.reconstruct(**ppa.get_state())

        assert clone.get_uncommitted_events() == []
        assert clone.get_state() == ppa.get_state()


class TestStatusMachine:
    @pytest.mark.parametrize(
        "target", [PpaStatus.IN_PROGRESS, PpaStatus.COMPLETED, PpaStatus.ARCHIVED]
    )
    def test_proposal_moves_to_any_non_workflow_status(self, target):
        ppa = make_ppa()

        assert ppa.change_status(target) is True
        assert ppa.status == target
        assert ppa.updated_at is not None
        event = ppa.get_uncommitted_events()[0]
        assert isinstance(event, PpaStatusChangedEvent)
        assert event.old_status == PpaStatus.PROPOSAL

    def test_completed_can_go_back_to_in_progress(self):
        ppa = make_ppa()
        ppa.change_status(PpaStatus.COMPLETED)

        assert ppa.change_status(PpaStatus.IN_PROGRESS) is True

    def test_same_status_is_a_no_op(self):
        ppa = make_ppa()

        assert ppa.change_status(PpaStatus.PROPOSAL) is False
        assert ppa.get_uncommitted_events() == []
        assert ppa.updated_at is None

    def test_in_continuing_is_workflow_only(self):
        with pytest.raises(ValidationError):
            make_ppa().change_status(PpaStatus.IN_CONTINUING)

    @pytest.mark.parametrize("target", list(PpaStatus))
    def test_archived_is_absorbing(self, target):
        ppa = archived_ppa()

        with pytest.raises(TerminalStateError):
            ppa.change_status(target)


class TestTextFields:
    def test_update_title_trims_and_detects_no_change(self):
        ppa = make_ppa()

        assert ppa.update_title("Smart Parking  ") is False
        assert ppa.update_title(" Smarter Parking ") is True
        assert ppa.title == "Smarter Parking"
        with pytest.raises(ValidationError):
            ppa.update_title(" ")

    def test_blank_optional_text_clears_it(self):
        ppa = make_ppa(general_objective="Reduce queues")

        assert ppa.update_general_objective("  ") is True
        assert ppa.general_objective is None
        assert ppa.update_general_objective(None) is False

    def test_text_stays_editable_when_archived(self):
        ppa = archived_ppa()

        assert ppa.update_description("Final report attached") is True


class TestAssignments:
    def test_attach_and_remove(self):
        ppa = make_ppa()
        first, second = uuid4(), uuid4()

        ppa.attach_teacher_assignment(first)
        ppa.attach_teacher_assignment(second)
        assert ppa.teacher_assignment_ids == [first, second]

        assert ppa.remove_teacher_assignment(first) is True
        assert ppa.remove_teacher_assignment(first) is False
        assert ppa.teacher_assignment_ids == [second]
        assert all(
            isinstance(e, PpaTeacherAssignmentsChangedEvent) for e in ppa.get_uncommitted_events()
        )

    def test_attach_duplicate_is_rejected(self):
        assignment_id = uuid4()
        ppa = make_ppa(teacher_assignment_ids=[assignment_id])

        with pytest.raises(DuplicateAssociationError):
            ppa.attach_teacher_assignment(assignment_id)

    def test_attach_nil_is_rejected(self):
        with pytest.raises(ValidationError):
            make_ppa().attach_teacher_assignment(NIL)

    def test_set_assignments_ignores_reordering(self):
        a, b = uuid4(), uuid4()
        ppa = make_ppa(teacher_assignment_ids=[a, b])

        assert ppa.set_teacher_assignments([b, a]) is False
        assert ppa.set_teacher_assignments([a]) is True

    def test_structure_is_frozen_when_terminal(self):
        ppa = archived_ppa()

        with pytest.raises(TerminalStateError):
            ppa.attach_teacher_assignment(uuid4())
        with pytest.raises(TerminalStateError):
            ppa.change_responsible_teacher(uuid4())
        with pytest.raises(TerminalStateError):
            ppa.set_students(["New Student"])

    def test_change_responsible_teacher(self):
        ppa = make_ppa()
        new_teacher = uuid4()

        assert ppa.change_responsible_teacher(ppa.primary_teacher_id) is False
        assert ppa.change_responsible_teacher(new_teacher) is True
        assert ppa.primary_teacher_id == new_teacher
        with pytest.raises(ValidationError):
            ppa.change_responsible_teacher(NIL)


class TestStudents:
    def test_set_students_keeps_ids_of_kept_names(self):
        ppa = make_ppa(student_names=["Luis", "Maria"])
        luis = ppa.students[0]

        assert ppa.set_students(["luis", "Pedro"]) is True
        assert ppa.students[0].id == luis.id
        assert [s.name for s in ppa.students] == ["Luis", "Pedro"]

    def test_sync_students_creates_renames_and_removes(self):
        ppa = make_ppa(student_names=["Luis", "Maria"])
        luis, maria = ppa.students

        assert ppa.sync_students([(luis.id, "Luis Perez"), (None, "Pedro")]) is True

        assert [(s.id, s.name) for s in ppa.students][0] == (luis.id, "Luis Perez")
        assert maria.id not in {s.id for s in ppa.students}
        assert ppa.students[1].name == "Pedro"

    def test_sync_students_without_change_is_a_no_op(self):
        ppa = make_ppa(student_names=["Luis"])
        luis = ppa.students[0]

        assert ppa.sync_students([(luis.id, "Luis")]) is False
        assert ppa.get_uncommitted_events() == []

    def test_sync_students_rejects_unknown_and_repeated_ids(self):
        ppa = make_ppa(student_names=["Luis"])
        luis = ppa.students[0]

        with pytest.raises(ValidationError):
            ppa.sync_students([(uuid4(), "Ghost")])
        with pytest.raises(ValidationError):
            ppa.sync_students([(luis.id, "Luis"), (luis.id, "Luis Again")])
        with pytest.raises(DuplicateError):
            ppa.sync_students([(luis.id, "Luis"), (None, "LUIS")])


class TestContinuationLinks:
    def test_set_continuation_of(self):
        ppa = make_ppa()
        source_id = uuid4()

        ppa.set_continuation_of(source_id)

        assert ppa.continuation_of_ppa_id == source_id
        with pytest.raises(ConflictError):
            ppa.set_continuation_of(uuid4())

    def test_cannot_continue_itself(self):
        ppa = make_ppa()

        with pytest.raises(ValidationError):
            ppa.set_continuation_of(ppa.id)
        with pytest.raises(ValidationError):
            ppa.mark_continued_by(ppa.id, uuid4())

    def test_mark_continued_by_freezes_the_source(self):
        ppa = make_ppa()
        ppa.change_status(PpaStatus.COMPLETED)
        new_id, period_id = uuid4(), uuid4()

        ppa.mark_continued_by(new_id, period_id)

        assert ppa.status == PpaStatus.IN_CONTINUING
        assert ppa.continued_by_ppa_id == new_id
        event = ppa.get_uncommitted_events()[-1]
        assert isinstance(event, PpaContinuedEvent)
        assert event.old_status == PpaStatus.COMPLETED
        with pytest.raises(TerminalStateError):
            ppa.change_status(PpaStatus.IN_PROGRESS)
        with pytest.raises(TerminalStateError):
            ppa.mark_continued_by(uuid4(), period_id)

    def test_mark_continued_by_is_allowed_from_archived(self):
        ppa = archived_ppa()

        ppa.mark_continued_by(uuid4(), uuid4())

        assert ppa.status == PpaStatus.IN_CONTINUING

    def test_mark_continued_by_requires_another_period(self):
        ppa = make_ppa()

        with pytest.raises(ConflictError):
            ppa.mark_continued_by(uuid4(), ppa.academic_period_id)


class TestVersioning:
    def test_persisted_version_excludes_pending_events(self):
        ppa = make_ppa()
        assert ppa.version == 1
        assert ppa.persisted_version == 1

        ppa.update_title("Other")
        ppa.change_status(PpaStatus.IN_PROGRESS)

        assert ppa.version == 3
        assert ppa.persisted_version == 1
        assert ppa.has_changes is True

        ppa.mark_events_committed()
        assert ppa.persisted_version == 3
        assert ppa.has_changes is False

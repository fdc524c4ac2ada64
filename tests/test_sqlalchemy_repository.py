"""
Tests for the SQLAlchemy repositories against an in-memory SQLite database.
"""

from datetime import datetime, timedelta
from uuid import uuid4

import pytest

from services.ppa_service.aggregates import Ppa
from services.ppa_service.models import PpaHistoryModel
from services.ppa_service.repository import PpaSearchCriteria
from shared.domain.exceptions import ConflictError, DuplicateKeyError, PersistenceError
from shared.domain.ppa import (
    PpaAttachment,
    PpaAttachmentType,
    PpaHistoryActionType,
    PpaHistoryEntry,
    PpaStatus,
)

START = datetime(2024, 2, 1, 9, 0)


def stored_ppa(
    title: str,
    academic_period_id,
    minutes: int = 0,
    status: PpaStatus = PpaStatus.PROPOSAL,
    assignment_ids=(),
    teacher_id=None,
) -> Ppa:
    return Ppa.reconstruct(
        id=uuid4(),
        title=title,
        general_objective=None,
        specific_objectives=None,
        description=None,
        status=status,
        academic_period_id=academic_period_id,
        primary_teacher_id=teacher_id or uuid4(),
        teacher_assignment_ids=list(assignment_ids),
        students=[],
        continuation_of_ppa_id=None,
        continued_by_ppa_id=None,
        created_at=START + timedelta(minutes=minutes),
        updated_at=None,
        version=1,
    )


class TestPpaRepository:
    async def test_round_trip_keeps_children_in_order(self, sql_uow):
        first, second = uuid4(), uuid4()
        ppa = Ppa.create(
            title="Smart Library",
            academic_period_id=uuid4(),
            primary_teacher_id=uuid4(),
            general_objective="Lend books faster",
            teacher_assignment_ids=[first, second],
            student_names=["Luis Perez", "Maria Gomez"],
        )

        async with sql_uow:
            await sql_uow.ppas.add(ppa)
        ppa.mark_events_committed()

        async with sql_uow:
            loaded = await sql_uow.ppas.get_required(ppa.id)

        assert loaded.title == "Smart Library"
        assert loaded.general_objective == "Lend books faster"
        assert loaded.status == PpaStatus.PROPOSAL
        assert loaded.teacher_assignment_ids == [first, second]
        assert [s.name for s in loaded.students] == ["Luis Perez", "Maria Gomez"]
        assert [s.id for s in loaded.students] == [s.id for s in ppa.students]
        assert loaded.version == ppa.version
        assert loaded.get_uncommitted_events() == []

    async def test_update_persists_changes(self, sql_uow):
        ppa = stored_ppa("Parking Sensor", uuid4())
        async with sql_uow:
            await sql_uow.ppas.add(ppa)

        async with sql_uow:
            loaded = await sql_uow.ppas.get_required(ppa.id)
            loaded.update_title("Parking Sensors")
            loaded.change_status(PpaStatus.IN_PROGRESS)
            loaded.sync_students([(None, "Pedro Diaz")])
            await sql_uow.ppas.update(loaded)
            loaded.mark_events_committed()

        async with sql_uow:
            reloaded = await sql_uow.ppas.get_required(ppa.id)

        assert reloaded.title == "Parking Sensors"
        assert reloaded.status == PpaStatus.IN_PROGRESS
        assert [s.name for s in reloaded.students] == ["Pedro Diaz"]
        assert reloaded.version == loaded.version

    async def test_stale_update_is_a_concurrency_conflict(self, sql_uow):
        ppa = stored_ppa("Parking Sensor", uuid4())
        async with sql_uow:
            await sql_uow.ppas.add(ppa)

        async with sql_uow:
            first = await sql_uow.ppas.get_required(ppa.id)
        async with sql_uow:
            second = await sql_uow.ppas.get_required(ppa.id)

        first.update_title("First writer")
        async with sql_uow:
            await sql_uow.ppas.update(first)
        first.mark_events_committed()

        second.update_title("Second writer")
        with pytest.raises(ConflictError) as exc_info:
            async with sql_uow:
                await sql_uow.ppas.update(second)
        assert exc_info.value.concurrency is True

        async with sql_uow:
            stored = await sql_uow.ppas.get_required(ppa.id)
        assert stored.title == "First writer"

    async def test_title_lookup_is_case_insensitive_per_period(self, sql_uow):
        period_id = uuid4()
        ppa = stored_ppa("Campus Map", period_id)
        async with sql_uow:
            await sql_uow.ppas.add(ppa)

        async with sql_uow:
            assert await sql_uow.ppas.title_exists_in_period(" campus MAP ", period_id) is True
            assert await sql_uow.ppas.title_exists_in_period("Campus Map", uuid4()) is False
            assert (
                await sql_uow.ppas.title_exists_in_period(
                    "Campus Map", period_id, exclude_ppa_id=ppa.id
                )
                is False
            )

    async def test_find_active_using_assignments_skips_terminal(self, sql_uow):
        period_id = uuid4()
        shared_assignment = uuid4()
        running = stored_ppa("Running", period_id, assignment_ids=[shared_assignment])
        archived = stored_ppa(
            "Archived", period_id, status=PpaStatus.ARCHIVED, assignment_ids=[shared_assignment]
        )
        elsewhere = stored_ppa("Elsewhere", uuid4(), assignment_ids=[shared_assignment])
        async with sql_uow:
            for ppa in (running, archived, elsewhere):
                await sql_uow.ppas.add(ppa)

        async with sql_uow:
            found = await sql_uow.ppas.find_active_using_assignments(period_id, [shared_assignment])
            excluded = await sql_uow.ppas.find_active_using_assignments(
                period_id, [shared_assignment], exclude_ppa_id=running.id
            )
            nothing = await sql_uow.ppas.find_active_using_assignments(period_id, [])

        assert found == [running.id]
        assert excluded == []
        assert nothing == []

    async def test_search_filters_and_pages(self, sql_uow):
        period_id, teacher_id, assignment_id = uuid4(), uuid4(), uuid4()
        alpha = stored_ppa("Library Bot", period_id, minutes=0, teacher_id=teacher_id)
        beta = stored_ppa("Library Kiosk", period_id, minutes=1, assignment_ids=[assignment_id])
        gamma = stored_ppa("Parking", period_id, minutes=2, status=PpaStatus.COMPLETED)
        async with sql_uow:
            for ppa in (alpha, beta, gamma):
                await sql_uow.ppas.add(ppa)

        async with sql_uow:
            first_page, total = await sql_uow.ppas.search(
                PpaSearchCriteria(academic_period_id=period_id, limit=2)
            )
            second_page, _ = await sql_uow.ppas.search(
                PpaSearchCriteria(academic_period_id=period_id, offset=2, limit=2)
            )
            by_text, text_total = await sql_uow.ppas.search(PpaSearchCriteria(text=" LIBRARY "))
            by_status, _ = await sql_uow.ppas.search(PpaSearchCriteria(status=PpaStatus.COMPLETED))
            by_teacher, _ = await sql_uow.ppas.search(PpaSearchCriteria(primary_teacher_id=teacher_id))
            by_assignment, _ = await sql_uow.ppas.search(
                PpaSearchCriteria(teacher_assignment_id=assignment_id)
            )

        assert total == 3
        assert [p.id for p in first_page] == [gamma.id, beta.id]
        assert [p.id for p in second_page] == [alpha.id]
        assert text_total == 2
        assert [p.id for p in by_text] == [beta.id, alpha.id]
        assert [p.id for p in by_status] == [gamma.id]
        assert [p.id for p in by_teacher] == [alpha.id]
        assert [p.id for p in by_assignment] == [beta.id]

    async def test_list_by_teacher_assignments(self, sql_uow):
        assignment_id = uuid4()
        linked = stored_ppa("Linked", uuid4(), assignment_ids=[assignment_id, uuid4()])
        unlinked = stored_ppa("Unlinked", uuid4())
        async with sql_uow:
            await sql_uow.ppas.add(linked)
            await sql_uow.ppas.add(unlinked)

        async with sql_uow:
            found = await sql_uow.ppas.list_by_teacher_assignments([assignment_id])

        assert [p.id for p in found] == [linked.id]


class TestAttachmentRepository:
    async def test_file_key_is_unique(self, sql_uow):
        ppa = stored_ppa("With files", uuid4())
        user_id = uuid4()
        async with sql_uow:
            await sql_uow.ppas.add(ppa)
            await sql_uow.attachments.add(
                PpaAttachment.create(
                    ppa_id=ppa.id,
                    type=PpaAttachmentType.PPA_DOCUMENT,
                    name="final.pdf",
                    file_key="ppa/final.pdf",
                    uploaded_by_user_id=user_id,
                )
            )

        with pytest.raises(DuplicateKeyError):
            async with sql_uow:
                await sql_uow.attachments.add(
                    PpaAttachment.create(
                        ppa_id=ppa.id,
                        type=PpaAttachmentType.OTHER,
                        name="copy.pdf",
                        file_key="ppa/final.pdf",
                        uploaded_by_user_id=user_id,
                    )
                )

        async with sql_uow:
            assert await sql_uow.attachments.file_key_exists("ppa/final.pdf") is True
            assert len(await sql_uow.attachments.list_for_ppa(ppa.id, include_deleted=True)) == 1

    async def test_soft_delete_and_counts(self, sql_uow):
        ppa = stored_ppa("With files", uuid4())
        user_id = uuid4()
        document = PpaAttachment.create(
            ppa_id=ppa.id,
            type=PpaAttachmentType.PPA_DOCUMENT,
            name="final.pdf",
            file_key=f"ppa/{uuid4().hex}.pdf",
            uploaded_by_user_id=user_id,
        )
        async with sql_uow:
            await sql_uow.ppas.add(ppa)
            await sql_uow.attachments.add(document)

        document.mark_deleted()
        async with sql_uow:
            await sql_uow.attachments.update(document)

        async with sql_uow:
            stored = await sql_uow.attachments.get(document.id)
            live = await sql_uow.attachments.count_by_type(ppa.id, PpaAttachmentType.PPA_DOCUMENT)
            everything = await sql_uow.attachments.count_by_type(
                ppa.id, PpaAttachmentType.PPA_DOCUMENT, include_deleted=True
            )
            uploaded = await sql_uow.attachments.list_by_uploader(user_id)

        assert stored.is_deleted is True
        assert stored.deleted_at is not None
        assert (live, everything) == (0, 1)
        assert [a.id for a in uploaded] == [document.id]


class TestHistoryRepository:
    def entry(self, ppa_id, user_id, action, minutes) -> PpaHistoryEntry:
        return PpaHistoryEntry.create(
            ppa_id=ppa_id,
            performed_by_user_id=user_id,
            action_type=action,
            performed_at=START + timedelta(minutes=minutes),
            new_value=action.value,
        )

    async def test_entries_are_listed_newest_first(self, sql_uow):
        ppa = stored_ppa("Tracked", uuid4())
        user_id = uuid4()
        async with sql_uow:
            await sql_uow.ppas.add(ppa)
            await sql_uow.history.record_batch(
                [
                    self.entry(ppa.id, user_id, PpaHistoryActionType.CREATED, 0),
                    self.entry(ppa.id, user_id, PpaHistoryActionType.UPDATED_TITLE, 1),
                    self.entry(ppa.id, user_id, PpaHistoryActionType.CHANGED_STATUS, 2),
                ]
            )

        async with sql_uow:
            entries = await sql_uow.history.list_for_ppa(ppa.id)
            titles = await sql_uow.history.list_for_ppa_and_action(
                ppa.id, PpaHistoryActionType.UPDATED_TITLE
            )
            by_user = await sql_uow.history.list_by_user(user_id)

        assert [e.action_type for e in entries] == [
            PpaHistoryActionType.CHANGED_STATUS,
            PpaHistoryActionType.UPDATED_TITLE,
            PpaHistoryActionType.CREATED,
        ]
        assert len(titles) == 1
        assert len(by_user) == 3

    async def test_rollback_discards_ppa_and_history(self, sql_uow):
        ppa = Ppa.create(title="Never saved", academic_period_id=uuid4(), primary_teacher_id=uuid4())

        with pytest.raises(RuntimeError):
            async with sql_uow:
                await sql_uow.ppas.add(ppa)
                await sql_uow.history.record(
                    self.entry(ppa.id, uuid4(), PpaHistoryActionType.CREATED, 0)
                )
                raise RuntimeError("abort")

        async with sql_uow:
            assert await sql_uow.ppas.get(ppa.id) is None
            assert await sql_uow.history.list_for_ppa(ppa.id) == []

    @pytest.mark.parametrize("operation", ["update", "delete"])
    async def test_stored_entries_cannot_change(self, sql_uow, operation):
        ppa = stored_ppa("Tracked", uuid4())
        entry = self.entry(ppa.id, uuid4(), PpaHistoryActionType.CREATED, 0)
        async with sql_uow:
            await sql_uow.ppas.add(ppa)
            await sql_uow.history.record(entry)

        with pytest.raises(PersistenceError):
            async with sql_uow:
                row = await sql_uow.session.get(PpaHistoryModel, entry.id)
                if operation == "update":
                    row.notes = "rewritten"
                else:
                    await sql_uow.session.delete(row)
                await sql_uow.session.flush()

        async with sql_uow:
            (stored,) = await sql_uow.history.list_for_ppa(ppa.id)
        assert stored.notes is None
        assert stored.id == entry.id


class TestUnitOfWork:
    async def test_open_unit_of_work_cannot_be_entered_again(self, sql_uow):
        with pytest.raises(PersistenceError) as exc_info:
            async with sql_uow:
                async with sql_uow:
                    pass

        assert exc_info.value.operation == "begin"
        assert sql_uow.session is None

    async def test_factory_opens_independent_sessions(self, sql_uow_factory):
        async with sql_uow_factory() as first, sql_uow_factory() as second:
            assert first.session is not second.session

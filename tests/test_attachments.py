"""
Tests for the attachment ledger.
"""

from functools import partial
from uuid import uuid4

import pytest

from services.ppa_service.attachment_service import PpaAttachmentService
from services.ppa_service.memory import InMemoryUnitOfWork
from services.ppa_service.ppa_service import PpaService
from services.ppa_service.schemas import (
    AddAttachmentCommand,
    ChangeStatusCommand,
    UploadAttachmentCommand,
)
from shared.domain.exceptions import (
    ConflictError,
    DuplicateKeyError,
    ExternalServiceError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from shared.domain.ppa import PpaAttachment, PpaAttachmentType, PpaHistoryActionType, PpaStatus


def add_command(ppa_id, **overrides) -> AddAttachmentCommand:
    data = {
        "ppa_id": ppa_id,
        "type": PpaAttachmentType.PPA_DOCUMENT,
        "name": "final.pdf",
        "file_key": f"ppa/{uuid4().hex}_final.pdf",
        "content_type": "application/pdf",
    }
    data.update(overrides)
    return AddAttachmentCommand(**data)


class TestAttachmentEntity:
    def test_mark_deleted_is_idempotent(self):
        attachment = PpaAttachment.create(
            ppa_id=uuid4(),
            type=PpaAttachmentType.EVIDENCE,
            name=" photo.jpg ",
            file_key=" ppa/photo.jpg ",
            uploaded_by_user_id=uuid4(),
        )
        assert attachment.name == "photo.jpg"
        assert attachment.file_key == "ppa/photo.jpg"

        assert attachment.mark_deleted() is True
        first = attachment.deleted_at
        assert attachment.mark_deleted() is False
        assert attachment.deleted_at == first

        assert attachment.restore() is True
        assert attachment.restore() is False
        assert attachment.deleted_at is None

    @pytest.mark.parametrize("field", ["name", "file_key"])
    def test_blank_fields_are_rejected(self, field):
        data = {
            "ppa_id": uuid4(),
            "type": PpaAttachmentType.OTHER,
            "name": "a",
            "file_key": "k",
            "uploaded_by_user_id": uuid4(),
        }
        data[field] = "  "

        with pytest.raises(ValidationError):
            PpaAttachment.create(**data)


class TestAddAttachment:
    async def test_add_records_history(self, attachment_service, created_ppa_id, current_user, uow):
        dto = await attachment_service.add(add_command(created_ppa_id), current_user)

        assert dto.uploaded_by_user_id == current_user.user_id
        assert dto.is_deleted is False
        async with uow:
            entries = await uow.history.list_for_ppa_and_action(
                created_ppa_id, PpaHistoryActionType.ATTACHMENT_ADDED
            )
        assert len(entries) == 1
        assert entries[0].new_value == "final.pdf"

    async def test_file_key_is_unique_across_ppas(
        self, attachment_service, ppa_service, create_command, created_ppa_id, current_user
    ):
        other_ppa = await ppa_service.create_ppa(
            create_command(title="Another", teacher_assignment_ids=[]), current_user
        )
        await attachment_service.add(add_command(created_ppa_id, file_key="shared/key"), current_user)

        with pytest.raises(DuplicateKeyError):
            await attachment_service.add(add_command(other_ppa, file_key="shared/key"), current_user)

    async def test_unknown_ppa(self, attachment_service, current_user):
        with pytest.raises(NotFoundError):
            await attachment_service.add(add_command(uuid4()), current_user)

    async def test_list_filters_by_type_and_deleted(
        self, attachment_service, created_ppa_id, current_user
    ):
        document = await attachment_service.add(add_command(created_ppa_id), current_user)
        await attachment_service.add(
            add_command(created_ppa_id, type=PpaAttachmentType.PRESENTATION, name="slides.pptx"),
            current_user,
        )
        await attachment_service.remove(document.id, current_user)

        live = await attachment_service.list_for_ppa(created_ppa_id)
        everything = await attachment_service.list_for_ppa(created_ppa_id, include_deleted=True)
        documents = await attachment_service.list_for_ppa(
            created_ppa_id, type=PpaAttachmentType.PPA_DOCUMENT, include_deleted=True
        )

        assert [a.name for a in live] == ["slides.pptx"]
        assert len(everything) == 2
        assert [a.id for a in documents] == [document.id]


class TestUpload:
    async def test_upload_stores_bytes_under_the_ppa_folder(
        self, attachment_service, created_ppa_id, current_user, storage
    ):
        dto = await attachment_service.upload(
            UploadAttachmentCommand(
                ppa_id=created_ppa_id,
                type=PpaAttachmentType.SOURCE_CODE,
                file_name="code.zip",
                content=b"PK\x03\x04",
                content_type="application/zip",
            ),
            current_user,
        )

        assert dto.file_key.startswith(f"ppa/{created_ppa_id}/")
        assert storage.files[dto.file_key] == b"PK\x03\x04"

        downloaded, content = await attachment_service.download(dto.id)
        assert downloaded.id == dto.id
        assert content == b"PK\x03\x04"

    async def test_storage_failure_registers_nothing(
        self, attachment_service, created_ppa_id, current_user, storage, db
    ):
        storage.fail_uploads = True

        with pytest.raises(ExternalServiceError):
            await attachment_service.upload(
                UploadAttachmentCommand(
                    ppa_id=created_ppa_id,
                    type=PpaAttachmentType.OTHER,
                    file_name="x.txt",
                    content=b"x",
                ),
                current_user,
            )
        assert db.attachments == {}

    async def test_database_failure_deletes_the_stored_file(
        self, db, storage, settings, created_ppa_id, current_user
    ):
        service = PpaAttachmentService(
            partial(InMemoryUnitOfWork, db, fail_history_writes=True), storage, settings
        )

        with pytest.raises(PersistenceError):
            await service.upload(
                UploadAttachmentCommand(
                    ppa_id=created_ppa_id,
                    type=PpaAttachmentType.OTHER,
                    file_name="x.txt",
                    content=b"x",
                ),
                current_user,
            )

        assert storage.files == {}
        assert db.attachments == {}

    async def test_download_of_deleted_attachment(
        self, attachment_service, created_ppa_id, current_user
    ):
        dto = await attachment_service.add(add_command(created_ppa_id), current_user)
        await attachment_service.remove(dto.id, current_user)

        with pytest.raises(NotFoundError):
            await attachment_service.download(dto.id)


class TestRemove:
    async def test_second_remove_is_a_no_op(self, attachment_service, created_ppa_id, current_user, uow):
        dto = await attachment_service.add(
            add_command(created_ppa_id, type=PpaAttachmentType.EVIDENCE), current_user
        )

        assert await attachment_service.remove(dto.id, current_user) is True
        assert await attachment_service.remove(dto.id, current_user) is False

        async with uow:
            removed = await uow.history.list_for_ppa_and_action(
                created_ppa_id, PpaHistoryActionType.ATTACHMENT_REMOVED
            )
            stored = await uow.attachments.get(dto.id)
        assert len(removed) == 1
        assert stored.is_deleted is True

    async def test_remove_keeps_file_unless_asked(
        self, attachment_service, created_ppa_id, current_user, storage
    ):
        kept = await attachment_service.upload(
            UploadAttachmentCommand(
                ppa_id=created_ppa_id, type=PpaAttachmentType.OTHER, file_name="a.txt", content=b"a"
            ),
            current_user,
        )
        dropped = await attachment_service.upload(
            UploadAttachmentCommand(
                ppa_id=created_ppa_id, type=PpaAttachmentType.OTHER, file_name="b.txt", content=b"b"
            ),
            current_user,
        )

        await attachment_service.remove(kept.id, current_user)
        await attachment_service.remove(dropped.id, current_user, delete_file=True)

        assert kept.file_key in storage.files
        assert dropped.file_key not in storage.files

    async def test_last_document_of_completed_ppa_is_protected(
        self, attachment_service, ppa_service: PpaService, created_ppa_id, current_user
    ):
        first = await attachment_service.add(add_command(created_ppa_id), current_user)
        second = await attachment_service.add(add_command(created_ppa_id), current_user)
        await ppa_service.change_status(
            ChangeStatusCommand(ppa_id=created_ppa_id, new_status=PpaStatus.COMPLETED), current_user
        )

        assert await attachment_service.remove(first.id, current_user) is True
        with pytest.raises(ConflictError):
            await attachment_service.remove(second.id, current_user)

    async def test_unknown_attachment(self, attachment_service, current_user):
        with pytest.raises(NotFoundError):
            await attachment_service.remove(uuid4(), current_user)


class TestRestore:
    async def test_restore_records_the_attachment_as_added_again(
        self, attachment_service, created_ppa_id, current_user, uow
    ):
        dto = await attachment_service.add(
            add_command(created_ppa_id, type=PpaAttachmentType.EVIDENCE, name="photos.zip"),
            current_user,
        )
        await attachment_service.remove(dto.id, current_user)

        assert await attachment_service.restore(dto.id, current_user) is True
        assert await attachment_service.restore(dto.id, current_user) is False

        async with uow:
            added = await uow.history.list_for_ppa_and_action(
                created_ppa_id, PpaHistoryActionType.ATTACHMENT_ADDED
            )
        assert [e.notes for e in added] == ["Restored. Type: evidence", "Type: evidence"]
        assert added[0].new_value == "photos.zip"
        live = await attachment_service.list_for_ppa(created_ppa_id)
        assert [a.id for a in live] == [dto.id]
        assert live[0].deleted_at is None

    async def test_restore_unknown_attachment(self, attachment_service, current_user):
        with pytest.raises(NotFoundError):
            await attachment_service.restore(uuid4(), current_user)

"""
PPA Attachment Service

Registers, uploads, soft-deletes and serves PPA attachments. Bytes live in the
file storage collaborator; the ledger keeps only the logical file key.
"""

from uuid import UUID

import structlog

from services.ppa_service.history import attachment_history_entry
from services.ppa_service.ports import CurrentUser, FileStorage
from services.ppa_service.reference import call_collaborator
from services.ppa_service.repository import AbstractUnitOfWork, UnitOfWorkFactory
from services.ppa_service.schemas import (
    AddAttachmentCommand,
    AttachmentDTO,
    UploadAttachmentCommand,
)
from shared.config import Settings, get_settings
from shared.domain.exceptions import ConflictError, NotFoundError
from shared.domain.ppa import (
    PpaAttachment,
    PpaAttachmentType,
    PpaHistoryActionType,
    PpaStatus,
)

logger = structlog.get_logger(__name__)


def to_attachment_dto(attachment: PpaAttachment) -> AttachmentDTO:
    return AttachmentDTO.model_validate(attachment.model_dump())


class PpaAttachmentService:
    """Attachment ledger use cases."""

    def __init__(
        self,
        uow_factory: UnitOfWorkFactory,
        storage: FileStorage,
        settings: Settings | None = None,
    ):
        """
        Initialize attachment service.

        Args:
            uow_factory: Opens one unit of work per use case
            storage: File storage collaborator
            settings: Service settings (defaults to the process settings)
        """
        self.uow_factory = uow_factory
        self.storage = storage
        self.settings = settings or get_settings()

    async def add(self, command: AddAttachmentCommand, current_user: CurrentUser) -> AttachmentDTO:
        """
        Register a file already present in storage.

        Raises:
            NotFoundError: Unknown PPA
            ValidationError: Blank name or file key
            DuplicateKeyError: File key already registered
        """
        async with self.uow_factory() as uow:
            await uow.ppas.get_required(command.ppa_id)
            attachment = PpaAttachment.create(
                ppa_id=command.ppa_id,
                type=command.type,
                name=command.name,
                file_key=command.file_key,
                uploaded_by_user_id=current_user.user_id,
                content_type=command.content_type,
            )
            await self._register(uow, attachment, current_user.user_id)

        return to_attachment_dto(attachment)

    async def upload(
        self, command: UploadAttachmentCommand, current_user: CurrentUser
    ) -> AttachmentDTO:
        """
        Store bytes and register them as an attachment.

        The file goes to ``<ppa_attachment_folder>/<ppa_id>``. If registering
        fails the stored file is deleted again before the error propagates.

        Raises:
            NotFoundError: Unknown PPA
            ExternalServiceError: Storage backend failure
            DuplicateKeyError: Storage returned a key that is already registered
            PersistenceError: Database failure
        """
        file_key: str | None = None
        try:
            async with self.uow_factory() as uow:
                await uow.ppas.get_required(command.ppa_id)
                folder = f"{self.settings.ppa_attachment_folder}/{command.ppa_id}"
                file_key = await call_collaborator(
                    "file_storage",
                    self.storage.upload(
                        command.content, command.file_name, command.content_type, folder
                    ),
                )
                attachment = PpaAttachment.create(
                    ppa_id=command.ppa_id,
                    type=command.type,
                    name=command.file_name,
                    file_key=file_key,
                    uploaded_by_user_id=current_user.user_id,
                    content_type=command.content_type,
                )
                await self._register(uow, attachment, current_user.user_id)
        except Exception:
            if file_key is not None:
                await self._discard_file(file_key)
            raise

        return to_attachment_dto(attachment)

    async def _register(
        self, uow: AbstractUnitOfWork, attachment: PpaAttachment, user_id: UUID
    ) -> None:
        await uow.attachments.add(attachment)
        await uow.history.record(
            attachment_history_entry(attachment, PpaHistoryActionType.ATTACHMENT_ADDED, user_id)
        )
        logger.info(
            "Attachment added",
            attachment_id=str(attachment.id),
            ppa_id=str(attachment.ppa_id),
            type=attachment.type.value,
        )

    async def _discard_file(self, file_key: str) -> None:
        try:
            await self.storage.delete(file_key)
        except Exception as exc:
            # The original failure is re-raised by the caller.
            logger.error("Orphaned file could not be deleted", file_key=file_key, error=str(exc))
        else:
            logger.warning("Stored file discarded after failed registration", file_key=file_key)

    async def remove(
        self, attachment_id: UUID, current_user: CurrentUser, delete_file: bool = False
    ) -> bool:
        """
        Soft-delete an attachment.

        Removing an already deleted attachment is a no-op and records nothing.
        The stored bytes are deleted only when ``delete_file`` is set, after
        the ledger change has committed.

        Returns:
            bool: True if the attachment was deleted by this call

        Raises:
            NotFoundError: Unknown attachment
            ConflictError: Last PPA document of a COMPLETED PPA
        """
        async with self.uow_factory() as uow:
            attachment = await uow.attachments.get(attachment_id)
            if attachment is None:
                raise NotFoundError("PpaAttachment", attachment_id)
            if attachment.is_deleted:
                return False

            if attachment.type == PpaAttachmentType.PPA_DOCUMENT:
                await self._ensure_document_remains(uow, attachment)

            attachment.mark_deleted()
            await uow.attachments.update(attachment)
            await uow.history.record(
                attachment_history_entry(
                    attachment, PpaHistoryActionType.ATTACHMENT_REMOVED, current_user.user_id
                )
            )

        logger.info(
            "Attachment removed", attachment_id=str(attachment_id), ppa_id=str(attachment.ppa_id)
        )
        if delete_file:
            await call_collaborator("file_storage", self.storage.delete(attachment.file_key))
        return True

    async def restore(self, attachment_id: UUID, current_user: CurrentUser) -> bool:
        """
        Undo a soft delete.

        The attachment is recorded as added again. Restoring a live attachment
        is a no-op and records nothing.

        Returns:
            bool: True if the attachment was restored by this call

        Raises:
            NotFoundError: Unknown attachment
        """
        async with self.uow_factory() as uow:
            attachment = await uow.attachments.get(attachment_id)
            if attachment is None:
                raise NotFoundError("PpaAttachment", attachment_id)
            if not attachment.restore():
                return False

            await uow.attachments.update(attachment)
            await uow.history.record(
                attachment_history_entry(
                    attachment,
                    PpaHistoryActionType.ATTACHMENT_ADDED,
                    current_user.user_id,
                    restored=True,
                )
            )

        logger.info(
            "Attachment restored", attachment_id=str(attachment_id), ppa_id=str(attachment.ppa_id)
        )
        return True

    async def _ensure_document_remains(
        self, uow: AbstractUnitOfWork, attachment: PpaAttachment
    ) -> None:
        if not self.settings.ppa_require_document_for_completion:
            return
        ppa = await uow.ppas.get_required(attachment.ppa_id)
        if ppa.status != PpaStatus.COMPLETED:
            return
        live = await uow.attachments.count_by_type(ppa.id, PpaAttachmentType.PPA_DOCUMENT)
        if live <= 1:
            raise ConflictError(
                "A completed PPA must keep at least one PPA document",
                rule_name="completion_requires_document",
                context={"ppa_id": str(ppa.id), "attachment_id": str(attachment.id)},
            )

    async def download(self, attachment_id: UUID) -> tuple[AttachmentDTO, bytes]:
        """
        Fetch an attachment and its bytes.

        Raises:
            NotFoundError: Unknown or deleted attachment, or missing file
        """
        async with self.uow_factory() as uow:
            attachment = await uow.attachments.get(attachment_id)
        if attachment is None or attachment.is_deleted:
            raise NotFoundError("PpaAttachment", attachment_id)

        content = await call_collaborator("file_storage", self.storage.get(attachment.file_key))
        return to_attachment_dto(attachment), content

    async def list_for_ppa(
        self,
        ppa_id: UUID,
        type: PpaAttachmentType | None = None,
        include_deleted: bool = False,
    ) -> list[AttachmentDTO]:
        async with self.uow_factory() as uow:
            await uow.ppas.get_required(ppa_id)
            attachments = await uow.attachments.list_for_ppa(ppa_id, type, include_deleted)
        return [to_attachment_dto(a) for a in attachments]

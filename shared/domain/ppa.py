"""
PPA Domain Models

Status machine tags, attachment and history entities owned by a PPA.

PpaAttachment and PpaStudent live inside the PPA boundary; PpaHistoryEntry is
written by the use-case layer and is immutable once created.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field

from shared.domain.exceptions import ValidationError


class PpaStatus(str, Enum):
    """
    PPA life-cycle status.

    PROPOSAL, IN_PROGRESS and COMPLETED move freely among themselves.
    ARCHIVED and IN_CONTINUING are absorbing.
    """

    PROPOSAL = "proposal"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ARCHIVED = "archived"
    IN_CONTINUING = "in_continuing"

    @property
    def is_terminal(self) -> bool:
        return self in (PpaStatus.ARCHIVED, PpaStatus.IN_CONTINUING)


class PpaAttachmentType(str, Enum):
    """Attachment classification."""

    PPA_DOCUMENT = "ppa_document"
    TEACHER_AUTHORIZATION = "teacher_authorization"
    STUDENT_AUTHORIZATION = "student_authorization"
    SOURCE_CODE = "source_code"
    PRESENTATION = "presentation"
    INSTRUMENT = "instrument"
    EVIDENCE = "evidence"
    OTHER = "other"


class PpaHistoryActionType(str, Enum):
    """Audit action tags recorded in the PPA history log."""

    CREATED = "created"
    UPDATED_TITLE = "updated_title"
    CHANGED_STATUS = "changed_status"
    CHANGED_RESPONSIBLE_TEACHER = "changed_responsible_teacher"
    UPDATED_ASSIGNMENTS = "updated_assignments"
    UPDATED_STUDENTS = "updated_students"
    UPDATED_CONTINUATION_SETTINGS = "updated_continuation_settings"
    ATTACHMENT_ADDED = "attachment_added"
    ATTACHMENT_REMOVED = "attachment_removed"
    CONTINUATION_CREATED = "continuation_created"
    UPDATED_GENERAL_OBJECTIVE = "updated_general_objective"
    UPDATED_SPECIFIC_OBJECTIVES = "updated_specific_objectives"
    UPDATED_DESCRIPTION = "updated_description"


def clean_optional(value: str | None) -> str | None:
    """Trim optional free text; blank becomes None."""
    if value is None:
        return None
    value = value.strip()
    return value or None


def require_text(value: str | None, field: str) -> str:
    """
    Trim required text.

    Raises:
        ValidationError: If the value is empty after trimming
    """
    cleaned = clean_optional(value)
    if cleaned is None:
        raise ValidationError(f"{field} cannot be empty", field=field)
    return cleaned


def require_id(value: UUID | None, field: str) -> UUID:
    """
    Raises:
        ValidationError: If the identifier is missing or nil
    """
    if value is None or value.int == 0:
        raise ValidationError(f"{field} is required", field=field, value=value)
    return value


class PpaStudent(BaseModel):
    """Student participating in a PPA. Names compare case-insensitively."""

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    name: str = Field(..., min_length=1, max_length=200)

    @classmethod
    def create(cls, name: str, student_id: UUID | None = None) -> "PpaStudent":
        return cls(id=student_id or uuid4(), name=require_text(name, "student name"))

    def matches(self, name: str) -> bool:
        return self.name.casefold() == name.strip().casefold()


class PpaAttachment(BaseModel):
    """
    File reference attached to a PPA.

    Only the logical storage key is kept; the bytes live in the storage
    collaborator. Deletion is soft and idempotent.
    """

    id: UUID = Field(default_factory=uuid4)
    ppa_id: UUID
    type: PpaAttachmentType
    name: str
    file_key: str
    content_type: str | None = None
    uploaded_by_user_id: UUID
    uploaded_at: datetime = Field(default_factory=datetime.utcnow)
    is_deleted: bool = False
    deleted_at: datetime | None = None

    @classmethod
    def create(
        cls,
        ppa_id: UUID,
        type: PpaAttachmentType,
        name: str,
        file_key: str,
        uploaded_by_user_id: UUID,
        content_type: str | None = None,
    ) -> "PpaAttachment":
        """
        Create a new attachment.

        Raises:
            ValidationError: On empty name, file key or identifiers
        """
        return cls(
            ppa_id=require_id(ppa_id, "ppa_id"),
            type=PpaAttachmentType(type),
            name=require_text(name, "name"),
            file_key=require_text(file_key, "file_key"),
            content_type=clean_optional(content_type),
            uploaded_by_user_id=require_id(uploaded_by_user_id, "uploaded_by_user_id"),
        )

    @classmethod
    def reconstruct(
        cls,
        id: UUID,
        ppa_id: UUID,
        type: PpaAttachmentType,
        name: str,
        file_key: str,
        content_type: str | None,
        uploaded_by_user_id: UUID,
        uploaded_at: datetime,
        is_deleted: bool,
        deleted_at: datetime | None,
    ) -> "PpaAttachment":
        """Rebuild from persisted fields."""
        return cls(
            id=id,
            ppa_id=ppa_id,
            type=type,
            name=name,
            file_key=file_key,
            content_type=content_type,
            uploaded_by_user_id=uploaded_by_user_id,
            uploaded_at=uploaded_at,
            is_deleted=is_deleted,
            deleted_at=deleted_at,
        )

    def mark_deleted(self, at: datetime | None = None) -> bool:
        """
        Soft delete the attachment.

        Returns:
            bool: False if it was already deleted (first timestamp kept)
        """
        if self.is_deleted:
            return False
        self.is_deleted = True
        self.deleted_at = at or datetime.utcnow()
        return True

    def restore(self) -> bool:
        if not self.is_deleted:
            return False
        self.is_deleted = False
        self.deleted_at = None
        return True


class PpaHistoryEntry(BaseModel):
    """
    Immutable audit record of one mutation performed on a PPA.

    Old/new values are display text, never replayed.
    """

    model_config = ConfigDict(frozen=True)

    id: UUID = Field(default_factory=uuid4)
    ppa_id: UUID
    performed_by_user_id: UUID
    performed_at: datetime = Field(default_factory=datetime.utcnow)
    action_type: PpaHistoryActionType
    old_value: str | None = None
    new_value: str | None = None
    notes: str | None = None

    @classmethod
    def create(
        cls,
        ppa_id: UUID,
        performed_by_user_id: UUID,
        action_type: PpaHistoryActionType,
        old_value: str | None = None,
        new_value: str | None = None,
        notes: str | None = None,
        performed_at: datetime | None = None,
    ) -> "PpaHistoryEntry":
        return cls(
            ppa_id=require_id(ppa_id, "ppa_id"),
            performed_by_user_id=require_id(performed_by_user_id, "performed_by_user_id"),
            performed_at=performed_at or datetime.utcnow(),
            action_type=action_type,
            old_value=clean_optional(old_value),
            new_value=clean_optional(new_value),
            notes=clean_optional(notes),
        )

    @classmethod
    def reconstruct(
        cls,
        id: UUID,
        ppa_id: UUID,
        performed_by_user_id: UUID,
        performed_at: datetime,
        action_type: PpaHistoryActionType,
        old_value: str | None,
        new_value: str | None,
        notes: str | None,
    ) -> "PpaHistoryEntry":
        return cls(
            id=id,
            ppa_id=ppa_id,
            performed_by_user_id=performed_by_user_id,
            performed_at=performed_at,
            action_type=action_type,
            old_value=old_value,
            new_value=new_value,
            notes=notes,
        )

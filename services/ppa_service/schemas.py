"""
PPA Service Schemas

Commands accepted by the use cases and DTOs returned by the read side.
"""

from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from shared.domain.ppa import PpaAttachmentType, PpaHistoryActionType, PpaStatus

T = TypeVar("T")


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


class CreatePpaCommand(BaseModel):
    """Create PPA request."""

    title: str = Field(..., max_length=300)
    academic_period_id: UUID
    primary_teacher_id: UUID
    teacher_assignment_ids: list[UUID] = Field(default_factory=list)
    student_names: list[str] = Field(default_factory=list)
    general_objective: str | None = None
    specific_objectives: str | None = None
    description: str | None = None


class StudentInput(BaseModel):
    """Student row for a sync; ``id`` is None for a new student."""

    id: UUID | None = None
    name: str


class UpdatePpaCommand(BaseModel):
    """
    Update PPA request.

    Only fields explicitly set on the command are applied, so passing
    ``description=None`` clears the description while omitting it keeps it.
    """

    ppa_id: UUID
    title: str | None = Field(default=None, max_length=300)
    general_objective: str | None = None
    specific_objectives: str | None = None
    description: str | None = None
    primary_teacher_id: UUID | None = None
    teacher_assignment_ids: list[UUID] | None = None
    students: list[StudentInput] | None = None

    def supplied(self, field: str) -> bool:
        return field in self.model_fields_set


class ChangeStatusCommand(BaseModel):
    ppa_id: UUID
    new_status: PpaStatus


class ContinuePpaCommand(BaseModel):
    """
    Continue a PPA into another academic period.

    Title and teacher default to the source's. Students default to a copy
    of the source's when ``student_names`` is None.
    """

    source_ppa_id: UUID
    target_period_id: UUID
    title: str | None = Field(default=None, max_length=300)
    primary_teacher_id: UUID | None = None
    teacher_assignment_ids: list[UUID] = Field(default_factory=list)
    student_names: list[str] | None = None


class AddAttachmentCommand(BaseModel):
    """Register a file that is already in storage."""

    ppa_id: UUID
    type: PpaAttachmentType
    name: str
    file_key: str
    content_type: str | None = None


class UploadAttachmentCommand(BaseModel):
    """Store bytes and register them as an attachment."""

    ppa_id: UUID
    type: PpaAttachmentType
    file_name: str
    content: bytes
    content_type: str | None = None


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------


class StudentDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    name: str


class TeacherAssignmentDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    subject_code: str | None = None
    subject_name: str | None = None
    teacher_id: UUID | None = None
    teacher_name: str | None = None


class AttachmentDTO(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    ppa_id: UUID
    type: PpaAttachmentType
    name: str
    file_key: str
    content_type: str | None
    uploaded_by_user_id: UUID
    uploaded_at: datetime
    is_deleted: bool
    deleted_at: datetime | None


class PpaSummary(BaseModel):
    """Row of the paged PPA listing."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    title: str
    status: PpaStatus
    academic_period_id: UUID
    academic_period_code: str | None
    primary_teacher_id: UUID
    primary_teacher_name: str | None
    teacher_assignment_count: int
    student_count: int
    created_at: datetime


class PpaDetail(BaseModel):
    """Full PPA view with denormalized reference names."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    title: str
    general_objective: str | None
    specific_objectives: str | None
    description: str | None
    status: PpaStatus
    academic_period_id: UUID
    academic_period_code: str | None
    primary_teacher_id: UUID
    primary_teacher_name: str | None
    teacher_assignments: list[TeacherAssignmentDTO]
    students: list[StudentDTO]
    continuation_of_ppa_id: UUID | None
    continued_by_ppa_id: UUID | None
    is_continuation: bool
    has_continuation: bool
    created_at: datetime
    updated_at: datetime | None
    version: int


class PpaHistoryItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    ppa_id: UUID
    action_type: PpaHistoryActionType
    action_label: str
    performed_by_user_id: UUID
    performed_by_name: str | None
    performed_at: datetime
    old_value: str | None
    new_value: str | None
    notes: str | None


class PpaPagedQuery(BaseModel):
    """Paged listing filters."""

    search: str | None = None
    academic_period_id: UUID | None = None
    status: PpaStatus | None = None
    primary_teacher_id: UUID | None = None
    teacher_assignment_id: UUID | None = None
    page: int = Field(default=1, ge=1)
    page_size: int | None = Field(default=None, ge=1)


class PagedResult(BaseModel, Generic[T]):
    items: list[T]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        if self.page_size <= 0:
            return 0
        return (self.total + self.page_size - 1) // self.page_size

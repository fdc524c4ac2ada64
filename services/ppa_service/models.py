"""
PPA Service Database Models

SQLAlchemy models for PPAs, their assignment links, students, attachments and
the append-only history log.
"""

from datetime import datetime
from uuid import UUID, uuid4

import structlog
from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column

from shared.database.postgres import Base
from shared.domain.exceptions import PersistenceError
from shared.domain.ppa import PpaStatus

logger = structlog.get_logger(__name__)

# Persistence is the only place status integers appear.
STATUS_TO_CODE: dict[PpaStatus, int] = {
    PpaStatus.PROPOSAL: 0,
    PpaStatus.IN_PROGRESS: 1,
    PpaStatus.COMPLETED: 2,
    PpaStatus.ARCHIVED: 3,
    PpaStatus.IN_CONTINUING: 4,
}
CODE_TO_STATUS: dict[int, PpaStatus] = {v: k for k, v in STATUS_TO_CODE.items()}


class PpaModel(Base):
    """PPA database model."""

    __tablename__ = "ppas"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(300), nullable=False, index=True)
    general_objective: Mapped[str | None] = mapped_column(Text, nullable=True)
    specific_objectives: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    academic_period_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    primary_teacher_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)

    # Continuation links
    continuation_of_ppa_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    continued_by_ppa_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)

    # Optimistic concurrency
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class PpaTeacherAssignmentModel(Base):
    """Link between a PPA and a teacher assignment."""

    __tablename__ = "ppa_teacher_assignments"

    ppa_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("ppas.id", ondelete="CASCADE"), primary_key=True
    )
    teacher_assignment_id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class PpaStudentModel(Base):
    """Student participating in a PPA."""

    __tablename__ = "ppa_students"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ppa_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("ppas.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class PpaAttachmentModel(Base):
    """Attachment reference; the file key is unique system-wide."""

    __tablename__ = "ppa_attachments"
    __table_args__ = (UniqueConstraint("file_key", name="uq_ppa_attachments_file_key"),)

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ppa_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("ppas.id"), nullable=False, index=True
    )
    type: Mapped[str] = mapped_column(String(40), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(300), nullable=False)
    file_key: Mapped[str] = mapped_column(String(500), nullable=False)
    content_type: Mapped[str | None] = mapped_column(String(150), nullable=True)
    uploaded_by_user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    uploaded_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class PpaHistoryModel(Base):
    """Append-only history entry."""

    __tablename__ = "ppa_history"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ppa_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("ppas.id"), nullable=False, index=True
    )
    performed_by_user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    performed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)


@event.listens_for(PpaHistoryModel, "before_update")
def _block_history_update(mapper, connection, target: PpaHistoryModel) -> None:
    logger.error("History immutability violation blocked", entry_id=str(target.id), operation="UPDATE")
    raise PersistenceError("PPA history entries cannot be modified", operation="update_history")


@event.listens_for(PpaHistoryModel, "before_delete")
def _block_history_delete(mapper, connection, target: PpaHistoryModel) -> None:
    logger.error("History immutability violation blocked", entry_id=str(target.id), operation="DELETE")
    raise PersistenceError("PPA history entries cannot be deleted", operation="delete_history")

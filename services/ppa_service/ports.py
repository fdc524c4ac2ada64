"""
PPA Service Ports

Contracts for the collaborators the PPA core consumes: the acting user, file
storage and academic reference data. Adapters live outside the core; the
in-process doubles are in ``services.ppa_service.memory``.
"""

from abc import ABC, abstractmethod
from datetime import date
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AcademicPeriodRef(BaseModel):
    """Academic period as seen by the PPA core."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    code: str = Field(..., description="Human code, e.g. '2024-1'")
    start_date: date | None = None
    end_date: date | None = None
    is_active: bool = True


class TeacherAssignmentRef(BaseModel):
    """A teacher-subject-period combination a PPA can be linked to."""

    model_config = ConfigDict(frozen=True)

    id: UUID
    academic_period_id: UUID
    teacher_id: UUID
    subject_code: str
    subject_name: str
    is_active: bool = True


class TeacherRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: UUID
    name: str
    is_active: bool = True


class CurrentUser(ABC):
    """The authenticated caller. The core reads only the id."""

    @property
    @abstractmethod
    def user_id(self) -> UUID:
        """Acting user id, recorded on history entries."""

    @abstractmethod
    def has_permission(self, code: str) -> bool:
        """Permission lookup for the outer request layer."""


class FileStorage(ABC):
    """Physical file storage. The core keeps only the returned key."""

    @abstractmethod
    async def upload(
        self, content: bytes, file_name: str, content_type: str | None, folder: str
    ) -> str:
        """
        Store bytes and return the logical file key.

        Raises:
            ExternalServiceError: If the storage backend fails
        """

    @abstractmethod
    async def delete(self, file_key: str) -> None:
        """Remove stored bytes. Unknown keys are ignored."""

    @abstractmethod
    async def get(self, file_key: str) -> bytes:
        """
        Raises:
            NotFoundError: If the key is unknown
        """


class AcademicPeriodDirectory(ABC):
    """Academic period reference data."""

    @abstractmethod
    async def exists(self, period_id: UUID) -> bool: ...

    @abstractmethod
    async def is_active(self, period_id: UUID) -> bool: ...

    @abstractmethod
    async def get(self, period_id: UUID) -> AcademicPeriodRef | None: ...


class TeacherAssignmentDirectory(ABC):
    """Teacher assignment reference data."""

    @abstractmethod
    async def exists(self, assignment_id: UUID) -> bool: ...

    @abstractmethod
    async def is_active(self, assignment_id: UUID) -> bool: ...

    @abstractmethod
    async def get(self, assignment_id: UUID) -> TeacherAssignmentRef | None: ...

    @abstractmethod
    async def list_for_teacher(self, teacher_id: UUID) -> list[TeacherAssignmentRef]: ...


class TeacherDirectory(ABC):
    """Teacher (user) reference data."""

    @abstractmethod
    async def exists(self, teacher_id: UUID) -> bool: ...

    @abstractmethod
    async def get(self, teacher_id: UUID) -> TeacherRef | None: ...

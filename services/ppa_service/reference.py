"""
Reference Data Checks

Precondition checks against the academic reference collaborators. Any
unexpected collaborator failure surfaces as ExternalServiceError with the
original exception attached.
"""

from collections.abc import Awaitable, Iterable
from typing import TypeVar
from uuid import UUID

import structlog

from services.ppa_service.ports import (
    AcademicPeriodDirectory,
    AcademicPeriodRef,
    TeacherAssignmentDirectory,
    TeacherAssignmentRef,
    TeacherDirectory,
    TeacherRef,
)
from shared.domain.exceptions import (
    ConflictError,
    DomainException,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def call_collaborator(service_name: str, awaitable: Awaitable[T]) -> T:
    """Await a collaborator call, wrapping foreign errors in ExternalServiceError."""
    try:
        return await awaitable
    except DomainException:
        raise
    except Exception as exc:
        logger.error("Collaborator call failed", service=service_name, error=str(exc))
        raise ExternalServiceError(service_name, f"{service_name} call failed: {exc}", cause=exc) from exc


class ReferenceData:
    """Facade over the period, assignment and teacher directories."""

    def __init__(
        self,
        periods: AcademicPeriodDirectory,
        assignments: TeacherAssignmentDirectory,
        teachers: TeacherDirectory,
    ):
        self.periods = periods
        self.assignments = assignments
        self.teachers = teachers

    async def require_period(self, period_id: UUID, must_be_active: bool = True) -> AcademicPeriodRef:
        """
        Load a period.

        Raises:
            NotFoundError: If the period does not exist
            ConflictError: If the period is inactive and ``must_be_active``
        """
        period = await call_collaborator("academic_periods", self.periods.get(period_id))
        if period is None:
            raise NotFoundError("AcademicPeriod", period_id)
        if must_be_active and not await call_collaborator(
            "academic_periods", self.periods.is_active(period_id)
        ):
            raise ConflictError(
                f"Academic period {period.code} is not active",
                rule_name="active_period",
                context={"period_id": str(period_id)},
            )
        return period

    async def require_teacher(self, teacher_id: UUID) -> TeacherRef:
        teacher = await call_collaborator("teachers", self.teachers.get(teacher_id))
        if teacher is None:
            raise NotFoundError("Teacher", teacher_id)
        return teacher

    async def require_assignments(
        self, assignment_ids: Iterable[UUID], academic_period_id: UUID
    ) -> list[TeacherAssignmentRef]:
        """
        Check that every assignment exists, is active and belongs to the period.

        Raises:
            NotFoundError: For an unknown assignment
            ConflictError: For an inactive assignment
            ValidationError: For an assignment of another period
        """
        refs = []
        for assignment_id in assignment_ids:
            ref = await call_collaborator("teacher_assignments", self.assignments.get(assignment_id))
            if ref is None:
                raise NotFoundError("TeacherAssignment", assignment_id)
            if not await call_collaborator(
                "teacher_assignments", self.assignments.is_active(assignment_id)
            ):
                raise ConflictError(
                    f"Teacher assignment {ref.subject_code} is not active",
                    rule_name="active_assignment",
                    context={"teacher_assignment_id": str(assignment_id)},
                )
            if ref.academic_period_id != academic_period_id:
                raise ValidationError(
                    "Teacher assignment belongs to another academic period",
                    field="teacher_assignment_ids",
                    value=assignment_id,
                )
            refs.append(ref)
        return refs

    async def labels_for(
        self,
        period_ids: Iterable[UUID] = (),
        teacher_ids: Iterable[UUID] = (),
        assignment_ids: Iterable[UUID] = (),
    ) -> dict[UUID, str]:
        """Display names used when rendering history values. Unknown ids are skipped."""
        labels: dict[UUID, str] = {}
        for period_id in set(period_ids):
            period = await call_collaborator("academic_periods", self.periods.get(period_id))
            if period:
                labels[period_id] = period.code
        for teacher_id in set(teacher_ids):
            teacher = await call_collaborator("teachers", self.teachers.get(teacher_id))
            if teacher:
                labels[teacher_id] = teacher.name
        for assignment_id in set(assignment_ids):
            ref = await call_collaborator("teacher_assignments", self.assignments.get(assignment_id))
            if ref:
                labels[assignment_id] = f"{ref.subject_code} - {ref.subject_name}"
        return labels

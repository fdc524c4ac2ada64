"""
Domain Event Base

Every PPA state change is a frozen ``DomainEvent``. The aggregate applies it
to its own state and keeps it pending until the unit of work has stored the
aggregate and the matching history entries.
"""

from datetime import datetime
from typing import Any, ClassVar
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field


class EventMetadata(BaseModel):
    """Who raised an event, when, and from which service."""

    model_config = ConfigDict(frozen=True)

    event_id: UUID = Field(default_factory=uuid4)
    occurred_at: datetime = Field(default_factory=datetime.utcnow)
    performed_by: UUID | None = Field(default=None, description="Acting user, if known")
    correlation_id: UUID | None = Field(
        default=None, description="Groups the events of one use case"
    )
    source: str = Field(..., description="Originating service name")


class DomainEvent(BaseModel):
    """
    Immutable fact about one aggregate.

    ``sequence_number`` is the aggregate version before the event was
    applied, so the first event of a new aggregate carries 0.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    EVENT_TYPE: ClassVar[str] = "domain.event"

    metadata: EventMetadata
    aggregate_id: UUID
    aggregate_type: str
    sequence_number: int = Field(..., ge=0)

    @classmethod
    def get_event_type(cls) -> str:
        return cls.EVENT_TYPE

    @property
    def occurred_at(self) -> datetime:
        return self.metadata.occurred_at

    @property
    def performed_by(self) -> UUID | None:
        return self.metadata.performed_by

    def payload(self) -> dict[str, Any]:
        """Event-specific fields only."""
        return self.model_dump(
            exclude={"metadata", "aggregate_id", "aggregate_type", "sequence_number"}
        )

    def to_dict(self) -> dict[str, Any]:
        """Serializable form used in logs."""
        return {
            "event_type": self.get_event_type(),
            "aggregate_id": str(self.aggregate_id),
            "sequence_number": self.sequence_number,
            "metadata": self.metadata.model_dump(mode="json"),
            "payload": self.model_dump(
                mode="json",
                exclude={"metadata", "aggregate_id", "aggregate_type", "sequence_number"},
            ),
        }

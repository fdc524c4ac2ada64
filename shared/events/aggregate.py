"""
Aggregate Root Base Class

Aggregates change state only through ``raise_event``. Raised events stay
pending until the unit of work has stored the aggregate, then the caller
clears them with ``mark_events_committed``.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar
from uuid import UUID

import structlog

from shared.events.base import DomainEvent

logger = structlog.get_logger(__name__)

TEvent = TypeVar("TEvent", bound=DomainEvent)


class AggregateRoot(ABC, Generic[TEvent]):
    """
    Base for event-raising aggregates.

    ``version`` counts every applied event, pending or stored. Repositories
    compare ``persisted_version`` with the stored row to detect concurrent
    writers.
    """

    def __init__(self, aggregate_id: UUID, version: int = 0):
        self.id = aggregate_id
        self.version = version
        self.uncommitted_events: list[TEvent] = []

    @classmethod
    @abstractmethod
    def aggregate_type(cls) -> str: ...

    @abstractmethod
    def apply_event(self, event: TEvent) -> None:
        """Mutate state from ``event``. No validation happens here."""

    @abstractmethod
    def get_state(self) -> dict[str, Any]:
        """Plain-data copy of the aggregate, accepted by ``from_snapshot``."""

    @classmethod
    @abstractmethod
    def from_snapshot(cls, state: dict[str, Any]) -> "AggregateRoot[TEvent]": ...

    @property
    def persisted_version(self) -> int:
        """Version as last loaded or saved."""
        return self.version - len(self.uncommitted_events)

    @property
    def has_changes(self) -> bool:
        return bool(self.uncommitted_events)

    def raise_event(self, event: TEvent) -> None:
        self.apply_event(event)
        self.uncommitted_events.append(event)
        self.version += 1

        logger.debug(
            "Event raised",
            aggregate_type=self.aggregate_type(),
            aggregate_id=str(self.id),
            event_type=event.get_event_type(),
            version=self.version,
        )

    def get_uncommitted_events(self) -> list[TEvent]:
        return list(self.uncommitted_events)

    def mark_events_committed(self) -> None:
        if not self.uncommitted_events:
            return
        count = len(self.uncommitted_events)
        self.uncommitted_events.clear()
        logger.debug(
            "Events committed",
            aggregate_id=str(self.id),
            count=count,
            version=self.version,
        )

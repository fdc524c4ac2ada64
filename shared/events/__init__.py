"""
Domain Events

Event base class, the aggregate root and the PPA event catalog.
"""

from shared.events.aggregate import AggregateRoot
from shared.events.base import DomainEvent, EventMetadata

__all__ = [
    "AggregateRoot",
    "DomainEvent",
    "EventMetadata",
]

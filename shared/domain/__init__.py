"""
PPA Domain Models

Value objects, entities and error kinds shared by the PPA lifecycle core.
"""

from shared.domain.exceptions import (
    AuthorizationError,
    ConflictError,
    DomainException,
    DuplicateAssociationError,
    DuplicateError,
    DuplicateKeyError,
    ErrorCode,
    ExternalServiceError,
    FormatError,
    NotFoundError,
    PersistenceError,
    TerminalStateError,
    ValidationError,
)
from shared.domain.ppa import (
    PpaAttachment,
    PpaAttachmentType,
    PpaHistoryActionType,
    PpaHistoryEntry,
    PpaStatus,
    PpaStudent,
)
from shared.domain.security import Permission, Role, User

__all__ = [
    # Errors
    "ErrorCode",
    "DomainException",
    "ValidationError",
    "FormatError",
    "NotFoundError",
    "DuplicateError",
    "DuplicateKeyError",
    "DuplicateAssociationError",
    "TerminalStateError",
    "ConflictError",
    "AuthorizationError",
    "ExternalServiceError",
    "PersistenceError",
    # PPA
    "PpaStatus",
    "PpaAttachmentType",
    "PpaHistoryActionType",
    "PpaStudent",
    "PpaAttachment",
    "PpaHistoryEntry",
    # Security
    "Permission",
    "Role",
    "User",
]

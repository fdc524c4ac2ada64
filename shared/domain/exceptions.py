"""
Rich Domain Exceptions

Exception hierarchy for the PPA lifecycle core.
Each error kind carries an error code, an HTTP-style status code and context
so the outer request layer can translate it without string matching.
"""

from enum import Enum
from typing import Any

import structlog

logger = structlog.get_logger(__name__)


class ErrorCode(str, Enum):
    """Standard error codes for domain exceptions."""

    # Domain errors
    DOMAIN_VALIDATION_ERROR = "DOMAIN_VALIDATION_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
    DUPLICATE = "DUPLICATE"
    DUPLICATE_KEY = "DUPLICATE_KEY"
    DUPLICATE_ASSOCIATION = "DUPLICATE_ASSOCIATION"
    TERMINAL_STATE = "TERMINAL_STATE"
    CONFLICT = "CONFLICT"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"

    # Authorization
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"

    # External collaborators
    EXTERNAL_SERVICE_ERROR = "EXTERNAL_SERVICE_ERROR"

    # System errors
    PERSISTENCE_ERROR = "PERSISTENCE_ERROR"


class DomainException(Exception):
    """
    Base class for all domain exceptions.

    Provides structured error information with error codes, context, and metadata.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        """
        Initialize domain exception.

        Args:
            message: Human-readable error message
            error_code: Standard error code
            status_code: HTTP status code (default: 500)
            context: Additional context data
            cause: Underlying exception that caused this error
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.context = context or {}
        self.cause = cause

        logger.warning(
            "Domain exception raised",
            error_code=error_code.value,
            message=message,
            status_code=status_code,
            context=context,
            exception_type=type(self).__name__,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        result = {
            "error": self.error_code.value,
            "message": self.message,
            "type": type(self).__name__,
        }
        if self.context:
            result["context"] = self.context
        return result


class ValidationError(DomainException):
    """Raised when a required field is missing or malformed."""

    def __init__(
        self,
        message: str,
        field: str | None = None,
        value: Any | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if field:
            context["field"] = field
        if value is not None:
            context["value"] = str(value)

        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", ErrorCode.DOMAIN_VALIDATION_ERROR),
            status_code=400,
            context=context,
            **kwargs
        )
        self.field = field


class FormatError(ValidationError):
    """Raised when a value does not follow its textual format (e.g. ``module.action``)."""

    def __init__(self, message: str, value: str | None = None, **kwargs):
        super().__init__(
            message=message,
            field=kwargs.pop("field", None),
            value=value,
            error_code=ErrorCode.INVALID_FORMAT,
            **kwargs
        )


class NotFoundError(DomainException):
    """Raised when a referenced entity does not exist."""

    def __init__(
        self,
        entity_type: str,
        entity_id: Any | None = None,
        **kwargs
    ):
        message = kwargs.pop("message", None) or f"{entity_type} not found"
        if entity_id is not None:
            message += f" (ID: {entity_id})"

        context = kwargs.pop("context", {})
        context["entity_type"] = entity_type
        if entity_id is not None:
            context["entity_id"] = str(entity_id)

        super().__init__(
            message=message,
            error_code=ErrorCode.ENTITY_NOT_FOUND,
            status_code=404,
            context=context,
            **kwargs
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class DuplicateError(DomainException):
    """Raised when a uniqueness rule is violated."""

    def __init__(
        self,
        message: str,
        entity_type: str | None = None,
        key: Any | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if entity_type:
            context["entity_type"] = entity_type
        if key is not None:
            context["key"] = str(key)

        super().__init__(
            message=message,
            error_code=kwargs.pop("error_code", ErrorCode.DUPLICATE),
            status_code=409,
            context=context,
            **kwargs
        )
        self.key = key


class DuplicateKeyError(DuplicateError):
    """Raised when a globally unique key (file key, role code) is already taken."""

    def __init__(self, message: str, key: Any | None = None, **kwargs):
        super().__init__(message, key=key, error_code=ErrorCode.DUPLICATE_KEY, **kwargs)


class DuplicateAssociationError(DuplicateError):
    """Raised when an association (e.g. teacher assignment in a PPA) already exists."""

    def __init__(self, message: str, key: Any | None = None, **kwargs):
        super().__init__(
            message, key=key, error_code=ErrorCode.DUPLICATE_ASSOCIATION, **kwargs
        )


class TerminalStateError(DomainException):
    """Raised when an operation is attempted on an absorbing status."""

    def __init__(
        self,
        message: str,
        status: Any | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if status is not None:
            context["status"] = getattr(status, "value", str(status))

        super().__init__(
            message=message,
            error_code=ErrorCode.TERMINAL_STATE,
            status_code=409,
            context=context,
            **kwargs
        )
        self.status = status


class ConflictError(DomainException):
    """Raised on concurrency conflicts or cross-aggregate business rule violations."""

    def __init__(
        self,
        message: str,
        rule_name: str | None = None,
        concurrency: bool = False,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if rule_name:
            context["rule_name"] = rule_name

        super().__init__(
            message=message,
            error_code=ErrorCode.CONCURRENCY_CONFLICT if concurrency else ErrorCode.CONFLICT,
            status_code=409,
            context=context,
            **kwargs
        )
        self.rule_name = rule_name
        self.concurrency = concurrency


class AuthorizationError(DomainException):
    """Raised when authorization is denied."""

    def __init__(
        self,
        message: str = "Authorization denied",
        permission: str | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if permission:
            context["permission"] = permission

        super().__init__(
            message=message,
            error_code=ErrorCode.AUTHORIZATION_DENIED,
            status_code=403,
            context=context,
            **kwargs
        )


class ExternalServiceError(DomainException):
    """Raised when a collaborator (storage, reference data) call fails."""

    def __init__(
        self,
        service_name: str,
        message: str | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        context["service_name"] = service_name

        super().__init__(
            message=message or f"{service_name} returned an error",
            error_code=ErrorCode.EXTERNAL_SERVICE_ERROR,
            status_code=503,
            context=context,
            **kwargs
        )
        self.service_name = service_name


class PersistenceError(DomainException):
    """Raised when the persistence layer fails, including history writes."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        **kwargs
    ):
        context = kwargs.pop("context", {})
        if operation:
            context["operation"] = operation

        super().__init__(
            message=message,
            error_code=ErrorCode.PERSISTENCE_ERROR,
            status_code=500,
            context=context,
            **kwargs
        )
        self.operation = operation

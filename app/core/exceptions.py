# app/core/exceptions.py
"""
Application exception hierarchy.

Every error that can reach a client derives from ``AppException`` and carries
the HTTP status code and the short error label used in the JSON error body.
The service layer raises these; only the handler layer turns them into
responses.
"""

from typing import Optional

from fastapi import status


class AppException(Exception):
    """Base class for all application errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    error: str = "Internal server error"
    code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        detail: Optional[str] = None,
        *,
        resource_type: Optional[str] = None,
        error: Optional[str] = None,
    ):
        if error is not None:
            self.error = error
        self.detail = detail or self.error
        self.resource_type = resource_type
        super().__init__(self.detail)

    def __str__(self) -> str:
        return self.detail


class ValidationError(AppException):
    """Bad input shape or value."""

    status_code = status.HTTP_400_BAD_REQUEST
    error = "Validation error"
    code = "VALIDATION_ERROR"


class ResourceNotFound(AppException):
    """The requested entity does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    error = "Book not found"
    code = "NOT_FOUND"


class ResourceAlreadyExists(AppException):
    """A uniqueness constraint would be violated."""

    status_code = status.HTTP_409_CONFLICT
    error = "Duplicate resource"
    code = "CONFLICT"


class OperationTimeout(AppException):
    """A bounded internal wait ran out of time."""

    status_code = status.HTTP_408_REQUEST_TIMEOUT
    error = "Request timeout"
    code = "TIMEOUT"


class RateLimitExceeded(AppException):
    """No concurrency slot was free."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    error = "Rate limit exceeded"
    code = "RATE_LIMIT"


class InternalServerError(AppException):
    """Unclassified, repository or infrastructure failure."""


class WorkerPoolError(Exception):
    """Raised when a job cannot be accepted by the worker pool.

    Never reaches a client: job submission is best-effort.
    """


class CacheMiss(Exception):
    """Canonical miss signal of an external cache tier."""


__all__ = [
    "AppException",
    "ValidationError",
    "ResourceNotFound",
    "ResourceAlreadyExists",
    "OperationTimeout",
    "RateLimitExceeded",
    "InternalServerError",
    "WorkerPoolError",
    "CacheMiss",
]

# app/core/exception_utils.py
import functools
import logging
from typing import Callable, Optional, Type

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.exceptions import (
    AppException,
    InternalServerError,
    ResourceAlreadyExists,
    ResourceNotFound,
    ValidationError,
)

logger = logging.getLogger(__name__)


def raise_for_status(
    *,
    condition: bool,
    exception: Type[AppException],
    detail: Optional[str] = None,
    resource_type: Optional[str] = None,
) -> None:
    """Raise ``exception`` when ``condition`` holds."""
    if condition:
        raise exception(detail, resource_type=resource_type)


def handle_exceptions(
    default_exception: Type[AppException] = InternalServerError,
    message: str = "An unexpected error occurred.",
) -> Callable:
    """
    Decorator for repository methods.

    Application exceptions pass through untouched. Unique-constraint
    violations become ``ResourceAlreadyExists``; any other database error is
    logged and re-raised as ``default_exception``.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            try:
                return func(*args, **kwargs)
            except AppException:
                raise
            except IntegrityError as e:
                logger.warning(f"Integrity error in {func.__qualname__}: {e.orig}")
                raise ResourceAlreadyExists(
                    f"book with the same ISBN already exists: {e.orig}",
                    resource_type="Book",
                ) from e
            except SQLAlchemyError as e:
                logger.error(
                    f"Database error in {func.__qualname__}",
                    exc_info=True,
                )
                raise default_exception(f"{message} {e}") from e

        return wrapper

    return decorator


_VALIDATION_KEYWORDS = (
    "is required",
    "cannot be empty",
    "invalid",
    "must be greater than",
    "format",
)


def classify_error(exc: BaseException) -> AppException:
    """
    Map any exception onto the application taxonomy.

    Typed errors are returned as-is. Anything else is classified by its
    message, so errors from collaborators that do not use the taxonomy still
    land on the right status code.
    """
    if isinstance(exc, AppException):
        return exc

    text = str(exc)
    if any(keyword in text for keyword in _VALIDATION_KEYWORDS):
        return ValidationError(text)
    if "already exists" in text:
        return ResourceAlreadyExists(text)
    if "not found" in text:
        return ResourceNotFound(text)
    return InternalServerError(text or exc.__class__.__name__)

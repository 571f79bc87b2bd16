"""Typed errors raised by the controllers and their HTTP mapping.

Every error raised across a controller boundary is one of the classes
below. Anything else escaping a controller is logged and converted to a
generic ``ServerError`` so internal details never reach the caller.
"""
import functools
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger("modelhub-core.errors")


class ModelhubError(Exception):
    """Base class for all controller errors."""

    status_code = 500
    log_level = logging.ERROR

    def __init__(self, message: str, status_code: Optional[int] = None, description: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.description = description
        if status_code is not None:
            self.status_code = status_code

    @property
    def status(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status_code,
            "message": self.status,
            "description": self.message if self.description is None else self.description,
        }


class DataFormatError(ModelhubError):
    """Malformed input: wrong type, unknown key, bad id or duplicate in a batch."""

    status_code = 400
    log_level = logging.WARNING


class PermissionDeniedError(ModelhubError):
    """The principal lacks the role required for the operation (401 when unauthenticated)."""

    status_code = 403
    log_level = logging.WARNING


class NotFoundError(ModelhubError):
    """A referenced entity does not exist."""

    status_code = 404
    log_level = logging.WARNING


class OperationError(ModelhubError):
    """The request is well-formed but not allowed in the current state."""

    status_code = 403
    log_level = logging.WARNING


class ServerError(ModelhubError):
    """Unexpected internal failure."""

    status_code = 500
    log_level = logging.ERROR


def capture_errors(func: Callable) -> Callable:
    """
    Wrap a controller operation so only typed errors escape it.

    Typed errors are logged at their own level and re-raised unchanged.
    Anything else (database failures included) is logged with its
    traceback and replaced by ``ServerError``.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except ModelhubError as e:
            logger.log(e.log_level, f"{func.__qualname__} failed: {e.status}: {e.message}")
            raise
        except Exception as e:
            logger.error(f"Unexpected error in {func.__qualname__}: {e}", exc_info=True)
            raise ServerError("Internal server error.") from e

    return wrapper

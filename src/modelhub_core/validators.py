"""Field format validators for user-supplied ids and names."""
import re
from typing import Any, Callable, Union

from .errors import DataFormatError, ServerError

Validator = Union[str, Callable[[Any], bool]]

ID_PATTERN = r"^([a-z])([a-z0-9-]){0,}$"
NAME_PATTERN = r"^[a-zA-Z0-9\s-]+$"

VALIDATORS: dict[str, dict[str, Validator]] = {
    "organization": {
        "id": ID_PATTERN,
        "name": NAME_PATTERN,
    },
    "project": {
        "id": ID_PATTERN,
        "name": NAME_PATTERN,
    },
    "branch": {
        "id": r"^[a-z0-9][a-z0-9_-]*$",
    },
    "user": {
        "id": r"^([a-z])([a-z0-9_]){0,}$",
        "email": r"^[^@\s]+@[^@\s]+$",
    },
    "webhook": {
        "id": r"^[A-Za-z0-9_-]{1,36}$",
        "token_location": r"^[A-Za-z0-9_-]+$",
    },
}


def is_valid(kind: str, field: str, value: Any) -> bool:
    """
    Check a value against the configured validator.

    A validator is either a regular expression (the value must be a string
    that fully matches) or a predicate.

    Raises:
        ServerError: If the configured validator is neither a pattern nor callable
    """
    validator = VALIDATORS.get(kind, {}).get(field)
    if validator is None:
        return True
    if isinstance(validator, str):
        return isinstance(value, str) and re.match(validator, value) is not None
    if callable(validator):
        return bool(validator(value))
    raise ServerError(f"Validator for {kind}.{field} is misconfigured.")


def validate(kind: str, field: str, value: Any) -> None:
    """Raise DataFormatError if ``value`` is not a valid ``kind.field``."""
    if not is_valid(kind, field, value):
        raise DataFormatError(f"Invalid {kind} {field}: {value!r}")

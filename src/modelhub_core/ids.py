"""Composite reference ids.

An id encodes its containment path, joined with ``ID_DELIMITER``:
``org``, ``org:project``, ``org:project:branch``,
``org:project:branch:element``.
"""
from .errors import DataFormatError

ID_DELIMITER = ":"


def build_id(*parts: str) -> str:
    """
    Join id components into a composite id.

    Args:
        *parts: Id components, outermost scope first

    Returns:
        The composite id, e.g. ``build_id("acme", "rocket") == "acme:rocket"``

    Raises:
        DataFormatError: If a component is not a non-empty string or contains the delimiter
    """
    if not parts:
        raise DataFormatError("At least one id component is required.")
    for part in parts:
        if not isinstance(part, str) or part == "":
            raise DataFormatError(f"Invalid id component: {part!r}")
        if ID_DELIMITER in part:
            raise DataFormatError(f"Id component '{part}' cannot contain '{ID_DELIMITER}'.")
    return ID_DELIMITER.join(parts)


def parse_id(composite_id: str) -> list[str]:
    """
    Split a composite id into its components.

    ``parse_id("")`` returns an empty list.

    Raises:
        DataFormatError: If the id is not a string or has an empty component
    """
    if not isinstance(composite_id, str):
        raise DataFormatError(f"Id must be a string, got {type(composite_id).__name__}.")
    if composite_id == "":
        return []
    parts = composite_id.split(ID_DELIMITER)
    if any(part == "" for part in parts):
        raise DataFormatError(f"Malformed id: '{composite_id}'")
    return parts


def last_part(composite_id: str) -> str:
    """Return the entity's own short id (the last component)."""
    parts = parse_id(composite_id)
    if not parts:
        raise DataFormatError("Cannot take the short id of an empty id.")
    return parts[-1]


def parent_id(composite_id: str) -> str:
    """Return the id of the containing scope ("" for a top-level id)."""
    return ID_DELIMITER.join(parse_id(composite_id)[:-1])

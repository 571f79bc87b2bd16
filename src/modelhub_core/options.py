"""Input normalization for controller operations.

Controllers accept a selector that may be nothing ("all"), a single id, a
single object, or a homogeneous list of either, plus an options mapping.
``normalize`` turns these into one uniform batch and a validated
``ParsedOptions`` so the rest of a controller never branches on input shape.
"""
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import DataFormatError

# Keys that can be used as equality filters on find, in addition to custom.*
COMMON_SEARCH_KEYS = ("name", "created_by", "last_modified_by", "archived_by")

OPTION_ALIASES = {"includeArchived": "include_archived"}


class ParsedOptions(BaseModel):
    """Validated controller options."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True, strict=True)

    populate: list[str] = Field(default_factory=list)
    fields: list[str] = Field(default_factory=list)
    limit: int = Field(0, ge=0, description="Maximum results, 0 means unlimited")
    skip: int = Field(0, ge=0)
    sort: Optional[str] = None
    include_archived: bool = Field(False, alias="includeArchived")
    archived: Optional[bool] = None

    def archived_filter(self) -> Optional[bool]:
        """
        Return the ``archived`` value results must have, or None for both.

        ``archived`` takes precedence over ``include_archived``.
        """
        if self.archived is not None:
            return self.archived
        if self.include_archived:
            return None
        return False

    @property
    def allows_archived(self) -> bool:
        """True if archived parents may be traversed for this request."""
        return self.include_archived or bool(self.archived)


ALL_OPTIONS = frozenset(ParsedOptions.model_fields)


@dataclass
class Normalized:
    """A selector and its options in uniform shape."""

    ids: Optional[list[str]] = None
    objects: Optional[list[dict]] = None
    options: ParsedOptions = field(default_factory=ParsedOptions)
    filters: dict[str, str] = field(default_factory=dict)

    @property
    def is_all(self) -> bool:
        return self.ids is None and self.objects is None

    def id_list(self, id_field: str = "id") -> list[str]:
        """
        Return the batch as a list of ids.

        Objects contribute their ``id_field`` value.

        Raises:
            DataFormatError: If an object has no string id
        """
        if self.ids is not None:
            return list(self.ids)
        ids = []
        for obj in self.objects or []:
            value = obj.get(id_field)
            if not isinstance(value, str):
                raise DataFormatError(f"One or more objects does not have a valid {id_field}.")
            ids.append(value)
        return ids


def _split_selector(selector: Any) -> tuple[Optional[list[str]], Optional[list[dict]]]:
    if selector is None:
        return None, None
    if isinstance(selector, str):
        return [selector], None
    if isinstance(selector, dict):
        return None, [selector]
    if isinstance(selector, list):
        if all(isinstance(item, str) for item in selector):
            return list(selector), None
        if all(isinstance(item, dict) for item in selector):
            return None, list(selector)
        raise DataFormatError("Input must be an array of strings or an array of objects, not a mix.")
    raise DataFormatError(f"Invalid input type: {type(selector).__name__}.")


def normalize(
    selector: Any,
    options: Optional[dict] = None,
    *,
    allowed: Iterable[str] = ALL_OPTIONS,
    search_keys: Iterable[str] = (),
) -> Normalized:
    """
    Normalize a selector and its options.

    Args:
        selector: None, an id, an object, or a homogeneous list of either
        options: Option mapping (camelCase aliases accepted)
        allowed: Option names the calling operation accepts
        search_keys: Keys accepted as equality filters (``custom.*`` is implied when non-empty)

    Returns:
        Normalized batch

    Raises:
        DataFormatError: On any malformed selector or option
    """
    ids, objects = _split_selector(selector)

    if options is None:
        options = {}
    if not isinstance(options, dict):
        raise DataFormatError("Options must be an object.")

    allowed = set(allowed)
    search_keys = set(search_keys)
    parsed_input: dict[str, Any] = {}
    filters: dict[str, str] = {}

    for key, value in options.items():
        name = OPTION_ALIASES.get(key, key)
        if name in ALL_OPTIONS and name in allowed:
            parsed_input[name] = value
        elif key in search_keys or (search_keys and key.startswith("custom.")):
            if not isinstance(value, str):
                raise DataFormatError(f"The option '{key}' is not a string.")
            filters[key] = value
        else:
            raise DataFormatError(f"Invalid option: '{key}'.")

    try:
        parsed = ParsedOptions.model_validate(parsed_input)
    except ValidationError as e:
        details = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise DataFormatError(f"Invalid options: {details}") from e

    return Normalized(ids=ids, objects=objects, options=parsed, filters=filters)

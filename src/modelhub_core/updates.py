"""Field-level update rules shared by every controller.

Pure functions: they inspect or build dicts and raise typed errors, but
never touch the store.
"""
from datetime import datetime
from typing import Any, Iterable, Optional

from .errors import DataFormatError, OperationError

# System-maintained fields no update may set
IMMUTABLE_FIELDS = frozenset({
    "id",
    "created_by",
    "created_on",
    "last_modified_by",
    "updated_on",
    "archived_by",
    "archived_on",
})


def merge_custom(old: Optional[dict], patch: Any) -> dict:
    """
    Merge a custom-data patch into existing custom data.

    Keys missing from the patch are kept; keys present are overwritten
    (a ``None`` value is stored as-is). Neither input is modified.

    Raises:
        DataFormatError: If the patch is not an object
    """
    if not isinstance(patch, dict):
        raise DataFormatError("The field 'custom' must be an object.")
    merged = dict(old or {})
    merged.update(patch)
    return merged


def check_update_fields(
    label: str,
    update: dict,
    valid_fields: Iterable[str],
    protected_fields: Iterable[str] = (),
) -> None:
    """
    Reject update keys that may not be changed.

    Args:
        label: Entity label used in messages, e.g. ``"Organization"``
        update: The update object, including its id key
        valid_fields: Keys the kind allows to be updated
        protected_fields: Extra keys that are immutable for this kind or document

    Raises:
        OperationError: If a key is immutable, protected, or not updatable
    """
    valid = set(valid_fields) - set(protected_fields)
    for key in update:
        if key == "id":
            continue
        if key in IMMUTABLE_FIELDS or key not in valid:
            raise OperationError(f"{label} property [{key}] cannot be changed.")


def check_archive_rules(label: str, existing: dict, update: dict) -> None:
    """
    Enforce the archived-state rules for one update.

    An archived document accepts only ``{"archived": False}``. Setting
    ``archived: True`` cannot be combined with other field changes.

    Raises:
        DataFormatError: If ``archived`` is not a boolean
        OperationError: If the update breaks an archive rule
    """
    changes = {k: v for k, v in update.items() if k != "id"}

    if "archived" in changes and not isinstance(changes["archived"], bool):
        raise DataFormatError(f"{label} property [archived] must be a boolean.")

    if existing.get("archived"):
        if changes != {"archived": False}:
            raise OperationError(
                f"{label} [{existing['id']}] is archived. Archived objects cannot be "
                f"modified; unarchive it first with archived: false."
            )
        return

    if changes.get("archived") is True and len(changes) > 1:
        raise OperationError(
            f"{label} [{existing['id']}] cannot be archived and updated in the same request."
        )


def archive_changes(existing: dict, archived: bool, principal_id: str, now: datetime) -> dict:
    """Return the column changes for an archive flag transition (empty if unchanged)."""
    if bool(existing.get("archived")) == archived:
        return {}
    if archived:
        return {"archived": True, "archived_by": principal_id, "archived_on": now}
    return {"archived": False, "archived_by": None, "archived_on": None}


def creation_stamp(principal_id: str, now: datetime, archived: bool = False) -> dict:
    """Audit fields for a newly created document."""
    stamp = {
        "created_by": principal_id,
        "created_on": now,
        "last_modified_by": principal_id,
        "updated_on": now,
        "archived": archived,
        "archived_by": principal_id if archived else None,
        "archived_on": now if archived else None,
    }
    return stamp


def modification_stamp(principal_id: str, now: datetime) -> dict:
    return {"last_modified_by": principal_id, "updated_on": now}


def jmi_index(docs: Iterable[dict], key: str = "id") -> dict[str, dict]:
    """Index documents by id for constant-time lookups during batch passes."""
    return {doc[key]: doc for doc in docs}


def find_duplicates(values: Iterable[str]) -> list[str]:
    """Return values that occur more than once, in first-seen order."""
    seen: set[str] = set()
    duplicates: list[str] = []
    for value in values:
        if value in seen and value not in duplicates:
            duplicates.append(value)
        seen.add(value)
    return duplicates

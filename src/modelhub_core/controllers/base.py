"""Shared machinery for the batch CRUD controllers."""
import logging
from datetime import datetime
from typing import Any, Iterable, Optional

from ..cascade import CascadeCoordinator
from ..config import Settings, get_settings
from ..errors import DataFormatError, NotFoundError, OperationError
from ..models import utcnow
from ..options import Normalized, ParsedOptions
from ..permissions import PermissionResolver
from ..store import DocumentStore, Stores, UpdateOp
from ..updates import (
    archive_changes,
    check_archive_rules,
    check_update_fields,
    creation_stamp,
    find_duplicates,
    jmi_index,
    merge_custom,
    modification_stamp,
)

logger = logging.getLogger("modelhub-core.controllers")

WRITE_OPTIONS = frozenset({"populate", "fields"})


class BatchController:
    """
    Base class for a permission-scoped batch controller.

    Subclasses set the entity ``kind`` (the store name), a human ``label``
    for messages, and the allow-lists for create and update.
    """

    kind: str = ""
    label: str = ""
    plural: str = ""
    create_fields: frozenset[str] = frozenset()
    required_create_fields: tuple[str, ...] = ()
    valid_update_fields: frozenset[str] = frozenset()

    def __init__(
        self,
        stores: Stores,
        resolver: Optional[PermissionResolver] = None,
        cascade: Optional[CascadeCoordinator] = None,
        settings: Optional[Settings] = None,
    ):
        self.stores = stores
        self.settings = settings or get_settings()
        self.resolver = resolver or PermissionResolver(self.settings.delete_requires_admin)
        self.cascade = cascade or CascadeCoordinator(stores)

    @property
    def store(self) -> DocumentStore:
        return getattr(self.stores, self.kind)

    # ------------------------------------------------------------------
    # Input checks
    # ------------------------------------------------------------------

    def _require_objects(self, normalized: Normalized, action: str) -> list[dict]:
        if normalized.is_all or normalized.objects is None:
            raise DataFormatError(f"{self.plural.capitalize()} to {action} must be provided as objects.")
        return normalized.objects

    def _require_ids(self, normalized: Normalized, action: str) -> list[str]:
        if normalized.is_all:
            raise DataFormatError(f"The {self.plural} to {action} must be specified.")
        return normalized.id_list()

    def _update_ids(self, updates: list[dict], id_field: str = "id") -> list[str]:
        ids = []
        for update in updates:
            value = update.get(id_field)
            if not isinstance(value, str) or not value:
                raise DataFormatError(f"One or more {self.label.lower()} updates does not have an id.")
            ids.append(value)
        self._check_batch_duplicates(ids, "update")
        return ids

    def _check_batch_duplicates(self, ids: Iterable[str], action: str = "create") -> None:
        duplicates = find_duplicates(ids)
        if duplicates:
            raise DataFormatError(
                f"Duplicate ids found in {action} array: {', '.join(duplicates)}"
            )

    def _check_create_keys(self, obj: dict) -> None:
        for key in obj:
            if key not in self.create_fields:
                raise DataFormatError(f"Invalid {self.label.lower()} property: [{key}].")
        for key in self.required_create_fields:
            if key not in obj:
                raise DataFormatError(f"{self.label} property [{key}] is required.")

    def _check_not_existing(self, ids: list[str], short_ids: Optional[list[str]] = None) -> None:
        found = {doc["id"] for doc in self.store.find({"id": ids}, ["id"])}
        if found:
            names = [s for s, i in zip(short_ids or ids, ids) if i in found]
            raise OperationError(
                f"{self.plural.capitalize()} with the following ids already exist: [{', '.join(names)}].",
                status_code=409,
            )

    def _fetch_all(self, ids: list[str], short_ids: Optional[list[str]] = None) -> list[dict]:
        """Fetch documents by id, raising NotFoundError naming only the missing ones."""
        docs = self.store.find({"id": ids})
        found = {doc["id"] for doc in docs}
        missing = [s for s, i in zip(short_ids or ids, ids) if i not in found]
        if missing:
            raise NotFoundError(
                f"The following {self.plural} were not found: [{', '.join(missing)}]."
            )
        return docs

    @staticmethod
    def _check_custom(value: Any) -> dict:
        if value is None:
            return {}
        if not isinstance(value, dict):
            raise DataFormatError("The field 'custom' must be an object.")
        return value

    # ------------------------------------------------------------------
    # Document building
    # ------------------------------------------------------------------

    def _new_document(self, principal: dict, obj: dict, now: datetime, **fields) -> dict:
        archived = obj.get("archived", False)
        if not isinstance(archived, bool):
            raise DataFormatError(f"{self.label} property [archived] must be a boolean.")
        doc = dict(fields)
        doc["custom"] = self._check_custom(obj.get("custom"))
        doc.update(creation_stamp(principal["id"], now, archived))
        return doc

    def _protected_fields(self, existing: dict) -> frozenset[str]:
        """Per-document fields that may not be updated."""
        return frozenset()

    def _convert_value(self, principal: dict, existing: dict, key: str, value: Any) -> Any:
        """Validate and convert one updated value. Subclasses handle their own fields."""
        return value

    def _prepare_update(self, principal: dict, existing: dict, update: dict, now: datetime) -> dict:
        """
        Build the column changes for one update object.

        Raises:
            OperationError: On immutable fields or archive rule violations
            DataFormatError: On malformed values
        """
        check_update_fields(self.label, update, self.valid_update_fields, self._protected_fields(existing))
        check_archive_rules(self.label, existing, update)

        changes: dict[str, Any] = {}
        for key, value in update.items():
            if key == "id":
                continue
            if key == "custom":
                changes["custom"] = merge_custom(existing.get("custom"), value)
            elif key == "archived":
                changes.update(archive_changes(existing, value, principal["id"], now))
            else:
                changes[key] = self._convert_value(principal, existing, key, value)
        changes.update(modification_stamp(principal["id"], now))
        return changes

    # ------------------------------------------------------------------
    # Store round-trips
    # ------------------------------------------------------------------

    def _apply_updates(self, principal: dict, existing_docs: list[dict], updates: list[dict], ids: list[str]) -> None:
        """Validate every update first, then write them in one batch."""
        now = utcnow()
        index = jmi_index(existing_docs)
        ops = [
            UpdateOp(doc_id, self._prepare_update(principal, index[doc_id], update, now))
            for doc_id, update in zip(ids, updates)
        ]
        result = self.store.bulk_write(ops)
        if result.matched != len(ops):
            logger.error(
                f"Expected to update {len(ops)} {self.plural} but matched {result.matched}."
            )

    def _delete(self, ids: list[str]) -> None:
        deleted = self.store.delete_many({"id": ids})
        if deleted != len(ids):
            logger.error(f"Expected to delete {len(ids)} {self.plural} but deleted {deleted}.")

    def _finalize(self, docs: list[dict], options: ParsedOptions, paginate: bool = True) -> list[dict]:
        """Apply skip/limit, projection and population to already filtered results."""
        if paginate:
            end = options.skip + options.limit if options.limit else None
            docs = docs[options.skip:end]
        if options.fields:
            docs = [self.store.project(doc, options.fields) for doc in docs]
        if options.populate:
            self.store.populate(docs, options.populate)
        return docs

    def _refetch(self, ids: list[str], options: ParsedOptions) -> list[dict]:
        docs = self.store.find({"id": ids}, sort=options.sort)
        return self._finalize(docs, options, paginate=False)

    @staticmethod
    def _archived_query(query: dict, options: ParsedOptions) -> dict:
        archived = options.archived_filter()
        if archived is not None:
            query["archived"] = archived
        return query


def load_parent(store: DocumentStore, label: str, parent_id: str, for_write: bool = False, allow_archived: bool = False) -> dict:
    """
    Fetch a parent scope and check it can be used.

    Args:
        store: Store holding the parent kind
        label: Parent label for messages, e.g. ``"organization"``
        parent_id: Full id of the parent
        for_write: True if the caller is about to write under the parent
        allow_archived: True if a read may traverse an archived parent

    Raises:
        NotFoundError: If it does not exist, or is archived on a read that excludes archived data
        OperationError: If it is archived and the caller is about to write under it
    """
    if not isinstance(parent_id, str):
        raise DataFormatError(f"The {label} id must be a string.")
    parent = store.find_one({"id": parent_id})
    if parent is None:
        raise NotFoundError(f"The {label} [{parent_id}] was not found.")
    if parent["archived"]:
        if for_write:
            raise OperationError(
                f"The {label} [{parent_id}] is archived. It must first be unarchived "
                f"before performing this operation."
            )
        if not allow_archived:
            raise NotFoundError(f"The {label} [{parent_id}] was not found.")
    return parent

"""Webhook batch controller.

A webhook's ``reference`` decides which scope governs access to it: the
server (empty reference, admins only), an organization, a project or a
branch. Type and reference are fixed at creation.
"""
import logging
from typing import Any, Optional
from uuid import uuid4

from pydantic import ValidationError

from ..errors import DataFormatError, OperationError, capture_errors
from ..ids import build_id, parse_id
from ..models import WebhookType, utcnow
from ..options import ALL_OPTIONS, COMMON_SEARCH_KEYS, normalize
from ..permissions import Operation
from ..schemas import WebhookResponseSpec
from ..updates import jmi_index
from ..validators import validate
from .base import BatchController, WRITE_OPTIONS, load_parent

logger = logging.getLogger("modelhub-core.webhooks")

WEBHOOK_SEARCH_KEYS = COMMON_SEARCH_KEYS + ("type",)


def _check_token(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value:
        label = "token" if key == "token" else "token location"
        raise DataFormatError(f"Invalid {label}: [{value}]")
    if key == "token_location":
        validate("webhook", "token_location", value)
    return value


def _check_responses(value: Any) -> list[dict]:
    if not isinstance(value, list) or not value:
        raise DataFormatError("An outgoing webhook must have a non-empty responses array.")
    try:
        return [WebhookResponseSpec.model_validate(item).model_dump(exclude_none=True) for item in value]
    except ValidationError as e:
        raise DataFormatError(f"Invalid webhook responses: {e.errors()[0]['msg']}") from e


def _check_triggers(value: Any) -> list[str]:
    if not isinstance(value, list) or not all(isinstance(t, str) for t in value):
        raise DataFormatError("Webhook triggers must be an array of strings.")
    return value


def _check_text(key: str, value: Any) -> Optional[str]:
    if value is not None and not isinstance(value, str):
        raise DataFormatError(f"Webhook property [{key}] must be a string.")
    return value


def check_type_fields(webhook_type: str, values: dict, creating: bool = False) -> dict:
    """
    Enforce the fields allowed for a webhook type and return them validated.

    Incoming webhooks carry ``token`` and ``token_location``; outgoing
    webhooks carry ``responses``. On creation the fields of the type are
    required.

    Raises:
        DataFormatError: If a field belongs to the other type or is malformed
    """
    checked: dict[str, Any] = {}
    if webhook_type == WebhookType.INCOMING.value:
        if "responses" in values:
            raise DataFormatError("An incoming webhook cannot have a responses field.")
        for key in ("token", "token_location"):
            if key in values or creating:
                checked[key] = _check_token(key, values.get(key))
    else:
        if "token" in values or "token_location" in values:
            raise DataFormatError("An outgoing webhook cannot have a token.")
        if "responses" in values or creating:
            checked["responses"] = _check_responses(values.get("responses"))
    return checked


class WebhookController(BatchController):
    """Find, create, update and remove webhooks."""

    kind = "webhooks"
    label = "Webhook"
    plural = "webhooks"
    create_fields = frozenset({
        "id", "name", "description", "type", "triggers", "responses",
        "token", "token_location", "reference", "custom", "archived",
    })
    required_create_fields = ("type",)
    valid_update_fields = frozenset({
        "name", "description", "triggers", "responses", "token", "token_location", "custom", "archived",
    })

    def _resolve_scope(self, reference: Any, cache: dict, for_write: bool = False, allow_archived: bool = False) -> dict:
        """
        Load the org, project and branch a reference points to.

        Returns:
            Keyword arguments for ``PermissionResolver.check``

        Raises:
            DataFormatError: If the reference is malformed
            NotFoundError: If a scope along the path does not exist
            OperationError: If writing under an archived scope
        """
        if not isinstance(reference, str):
            raise DataFormatError("Webhook reference must be a string.")
        if reference in cache:
            return cache[reference]

        parts = parse_id(reference)
        if len(parts) > 3:
            raise DataFormatError(f"Invalid webhook reference: '{reference}'.")
        scope = {}
        labels = (("organization", self.stores.organizations), ("project", self.stores.projects), ("branch", self.stores.branches))
        for depth, (label, store) in enumerate(labels[:len(parts)], start=1):
            scope[label] = load_parent(store, label, build_id(*parts[:depth]), for_write, allow_archived)
        cache[reference] = scope
        return scope

    def _convert_value(self, principal: dict, existing: dict, key: str, value: Any) -> Any:
        if key in ("responses", "token", "token_location"):
            return check_type_fields(existing["type"], {key: value})[key]
        if key == "triggers":
            return _check_triggers(value)
        return _check_text(key, value)

    @capture_errors
    def find(
        self,
        principal: dict,
        webhooks: Any = None,
        options: Optional[dict] = None,
        *,
        org_id: Optional[str] = None,
        project_id: Optional[str] = None,
        branch_id: Optional[str] = None,
    ) -> list[dict]:
        """
        Find webhooks attached to one scope.

        With no org, project or branch the server-level webhooks are
        searched. Webhooks the principal cannot read are dropped.

        Raises:
            DataFormatError: If a project is given without its org, or a branch without its project
            NotFoundError: If a scope along the path does not exist
        """
        if (project_id and not org_id) or (branch_id and not project_id):
            raise DataFormatError("A webhook scope must include every parent id.")
        if branch_id:
            validate("branch", "id", branch_id)
        normalized = normalize(webhooks, options, allowed=ALL_OPTIONS, search_keys=WEBHOOK_SEARCH_KEYS)
        opts = normalized.options

        parts = [p for p in (org_id, project_id, branch_id) if p]
        reference = build_id(*parts) if parts else ""
        scope = self._resolve_scope(reference, {}, allow_archived=opts.allows_archived)
        if not self.resolver.can(principal, Operation.READ, **scope):
            return []

        query: dict[str, Any] = dict(normalized.filters)
        query["reference"] = reference
        if not normalized.is_all:
            query["id"] = normalized.id_list()
        self._archived_query(query, opts)

        docs = self.store.find(query, sort=opts.sort)
        return self._finalize(docs, opts)

    @capture_errors
    def create(self, principal: dict, webhooks: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Create webhooks. Each needs write on the scope of its reference.

        Raises:
            DataFormatError: On malformed webhooks or duplicate ids in the batch
            NotFoundError: If a referenced scope does not exist
            OperationError: If a referenced scope is archived or an id is taken
        """
        normalized = normalize(webhooks, options, allowed=WRITE_OPTIONS)
        objects = self._require_objects(normalized, "create")

        cache: dict[str, dict] = {}
        docs_in: list[tuple[dict, dict]] = []
        for obj in objects:
            self._check_create_keys(obj)
            webhook_type = obj["type"]
            if not isinstance(webhook_type, str) or webhook_type not in {t.value for t in WebhookType}:
                raise DataFormatError(f"Invalid webhook type: [{webhook_type}].")

            doc = {
                "id": obj.get("id") or str(uuid4()),
                "type": webhook_type,
                "name": _check_text("name", obj.get("name")),
                "description": _check_text("description", obj.get("description")),
                "triggers": _check_triggers(obj.get("triggers", [])),
                "reference": obj.get("reference", ""),
                "responses": None,
                "token": None,
                "token_location": None,
            }
            validate("webhook", "id", doc["id"])
            doc.update(check_type_fields(webhook_type, obj, creating=True))

            scope = self._resolve_scope(doc["reference"], cache, for_write=True)
            self.resolver.check(principal, Operation.CREATE, **scope)
            docs_in.append((obj, doc))

        ids = [doc["id"] for _, doc in docs_in]
        self._check_batch_duplicates(ids)
        self._check_not_existing(ids)

        now = utcnow()
        docs = [self._new_document(principal, obj, now, **doc) for obj, doc in docs_in]
        self.store.insert_many(docs)
        logger.info(f"User {principal['id']} created webhooks {ids}")
        return self._refetch(ids, normalized.options)

    @capture_errors
    def update(self, principal: dict, webhooks: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Update webhooks.

        Raises:
            DataFormatError: On missing or duplicate ids, or fields of the other webhook type
            NotFoundError: Naming the webhooks that do not exist
            OperationError: On type or reference changes and archived webhooks
        """
        normalized = normalize(webhooks, options, allowed=WRITE_OPTIONS)
        updates = self._require_objects(normalized, "update")
        ids = self._update_ids(updates)
        existing = self._fetch_all(ids)

        index = jmi_index(existing)
        cache: dict[str, dict] = {}
        for doc_id, update in zip(ids, updates):
            if "type" in update:
                raise OperationError("A webhook's type cannot be changed.")
            if "reference" in update:
                raise OperationError("A webhook's reference id cannot be changed.")
            scope = self._resolve_scope(index[doc_id]["reference"], cache, for_write=True)
            self.resolver.check(principal, Operation.UPDATE, **scope)

        self._apply_updates(principal, existing, updates, ids)
        logger.info(f"User {principal['id']} updated webhooks {ids}")
        return self._refetch(ids, normalized.options)

    @capture_errors
    def remove(self, principal: dict, webhooks: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Permanently delete webhooks.

        Returns:
            The deleted webhooks

        Raises:
            NotFoundError: Naming only the webhook ids that do not exist
        """
        normalized = normalize(webhooks, options, allowed=())
        ids = self._require_ids(normalized, "delete")
        self._check_batch_duplicates(ids, "delete")
        existing = self._fetch_all(ids)

        cache: dict[str, dict] = {}
        for doc in existing:
            scope = self._resolve_scope(doc["reference"], cache, allow_archived=True)
            self.resolver.check(principal, Operation.DELETE, **scope)

        self._delete(ids)
        logger.info(f"User {principal['id']} deleted webhooks {ids}")
        return existing

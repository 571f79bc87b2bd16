"""Organization batch controller."""
import logging
from typing import Any, Optional

from ..errors import DataFormatError, NotFoundError, OperationError, capture_errors
from ..models import Role, utcnow
from ..options import ALL_OPTIONS, COMMON_SEARCH_KEYS, normalize
from ..permissions import Operation, apply_permission_changes
from ..updates import jmi_index
from ..validators import validate
from .base import BatchController, WRITE_OPTIONS

logger = logging.getLogger("modelhub-core.organizations")


class OrganizationController(BatchController):
    """
    Find, create, update and remove organizations.

    Creating and hard-deleting organizations is reserved for system
    administrators. The default organization cannot be removed, renamed or
    archived.
    """

    kind = "organizations"
    label = "Organization"
    plural = "organizations"
    create_fields = frozenset({"id", "name", "custom", "archived"})
    required_create_fields = ("id", "name")
    valid_update_fields = frozenset({"name", "custom", "archived", "permissions"})

    def _protected_fields(self, existing: dict) -> frozenset[str]:
        if existing["id"] == self.settings.default_organization_id:
            return frozenset({"name", "archived"})
        return frozenset()

    def _convert_value(self, principal: dict, existing: dict, key: str, value: Any) -> Any:
        if key == "name":
            validate("organization", "name", value)
            return value
        if key == "permissions":
            updated = apply_permission_changes(existing.get("permissions"), value, principal["id"])
            check_users_exist(self.stores, [u for u in value if u in updated])
            return updated
        return value

    @capture_errors
    def find(self, principal: dict, orgs: Any = None, options: Optional[dict] = None) -> list[dict]:
        """
        Find organizations readable by the principal.

        Args:
            principal: Requesting user document
            orgs: None for all, an org id, or a list of org ids
            options: Find options and search keys

        Returns:
            Organizations the principal can read (unreadable ones are dropped)
        """
        normalized = normalize(orgs, options, allowed=ALL_OPTIONS, search_keys=COMMON_SEARCH_KEYS)
        opts = normalized.options

        query: dict[str, Any] = dict(normalized.filters)
        if not normalized.is_all:
            query["id"] = normalized.id_list()
        self._archived_query(query, opts)

        docs = [
            doc for doc in self.store.find(query, sort=opts.sort)
            if self.resolver.can(principal, Operation.READ, organization=doc)
        ]
        return self._finalize(docs, opts)

    @capture_errors
    def create(self, principal: dict, orgs: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Create organizations. The creator becomes an admin of each.

        Raises:
            PermissionDeniedError: If the principal is not a system admin
            DataFormatError: On malformed objects or duplicate ids in the batch
            OperationError: If any of the ids already exist
        """
        self.resolver.require_admin(principal, "create organizations")
        normalized = normalize(orgs, options, allowed=WRITE_OPTIONS)
        objects = self._require_objects(normalized, "create")

        for obj in objects:
            self._check_create_keys(obj)
            validate("organization", "id", obj["id"])
            validate("organization", "name", obj["name"])

        ids = [obj["id"] for obj in objects]
        self._check_batch_duplicates(ids)
        self._check_not_existing(ids)

        now = utcnow()
        docs = [
            self._new_document(
                principal, obj, now,
                id=obj["id"],
                name=obj["name"],
                permissions={principal["id"]: Role.ADMIN.value},
            )
            for obj in objects
        ]
        self.store.insert_many(docs)
        logger.info(f"User {principal['id']} created organizations {ids}")
        return self._refetch(ids, normalized.options)

    @capture_errors
    def update(self, principal: dict, orgs: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Update organizations.

        ``custom`` is merged into the existing data; ``permissions`` is a
        change-set of user id to role or ``remove_all``. Permission and
        archive changes need admin on the organization, other fields need
        write.

        Raises:
            NotFoundError: If any organization does not exist
            OperationError: On immutable fields or archived organizations
        """
        normalized = normalize(orgs, options, allowed=WRITE_OPTIONS)
        updates = self._require_objects(normalized, "update")
        ids = self._update_ids(updates)
        existing = self._fetch_all(ids)

        index = jmi_index(existing)
        for doc_id, update in zip(ids, updates):
            operation = Operation.MANAGE if {"permissions", "archived"} & set(update) else Operation.UPDATE
            self.resolver.check(principal, operation, organization=index[doc_id])

        self._apply_updates(principal, existing, updates, ids)
        logger.info(f"User {principal['id']} updated organizations {ids}")
        return self._refetch(ids, normalized.options)

    @capture_errors
    def remove(self, principal: dict, orgs: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Permanently delete organizations and everything they contain.

        Returns:
            The deleted organizations

        Raises:
            PermissionDeniedError: If the principal is not a system admin
            OperationError: If the default organization is included
            NotFoundError: Naming the ids that do not exist
        """
        self.resolver.require_admin(principal, "delete organizations")
        normalized = normalize(orgs, options, allowed=())
        ids = self._require_ids(normalized, "delete")
        self._check_batch_duplicates(ids, "delete")

        if self.settings.default_organization_id in ids:
            raise OperationError("The default organization cannot be deleted.")

        existing = self._fetch_all(ids)
        self.cascade.remove_organization_contents(ids)
        self._delete(ids)
        logger.info(f"User {principal['id']} deleted organizations {ids}")
        return existing

    def set_permissions(self, principal: dict, org_id: str, user_id: str, role: str) -> dict:
        """Set one user's role on an organization (``remove_all`` drops it)."""
        if not isinstance(user_id, str) or not isinstance(org_id, str):
            raise DataFormatError("Organization and user ids must be strings.")
        return self.update(principal, {"id": org_id, "permissions": {user_id: role}})[0]


def check_users_exist(stores, user_ids: list[str]) -> None:
    """Raise NotFoundError if any granted user does not exist or is archived."""
    if not user_ids:
        return
    found = {doc["id"] for doc in stores.users.find({"id": user_ids, "archived": False}, ["id"])}
    missing = [u for u in user_ids if u not in found]
    if missing:
        raise NotFoundError(f"The following users were not found: [{', '.join(missing)}].")

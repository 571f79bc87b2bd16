"""User batch controller.

User payloads identify users by ``username``; the stored id is the
username itself. Every document returned carries both keys.
"""
import logging
from typing import Any, Optional

from ..errors import DataFormatError, PermissionDeniedError, ServerError, capture_errors
from ..models import Role, utcnow
from ..options import ALL_OPTIONS, normalize
from ..permissions import check_not_self
from ..store import UpdateOp
from ..updates import modification_stamp
from ..validators import validate
from .base import BatchController, WRITE_OPTIONS

logger = logging.getLogger("modelhub-core.users")

USER_SEARCH_KEYS = (
    "fname",
    "lname",
    "preferred_name",
    "email",
    "created_by",
    "last_modified_by",
    "archived_by",
)

PROFILE_FIELDS = ("fname", "lname", "preferred_name", "email")


def _present(doc: dict) -> dict:
    return {"username": doc["id"], **doc}


def _check_profile_field(key: str, value: Any) -> Any:
    if value is None:
        return value
    if not isinstance(value, str):
        raise DataFormatError(f"User property [{key}] must be a string.")
    if key == "email":
        validate("user", "email", value)
    return value


class UserController(BatchController):
    """
    Find, create, update and remove users.

    Only system administrators create or delete users. A user may update
    their own profile; admins may update anyone's. New users are enrolled
    in the default organization.
    """

    kind = "users"
    label = "User"
    plural = "users"
    create_fields = frozenset({"username", "custom", "archived", "admin", "provider", *PROFILE_FIELDS})
    required_create_fields = ("username",)
    valid_update_fields = frozenset({"custom", "archived", *PROFILE_FIELDS})

    def _convert_value(self, principal: dict, existing: dict, key: str, value: Any) -> Any:
        if key in PROFILE_FIELDS:
            return _check_profile_field(key, value)
        return value

    def _enroll_in_default_organization(self, principal: dict, user_ids: list[str]) -> None:
        org_id = self.settings.default_organization_id
        org = self.stores.organizations.find_one({"id": org_id})
        if org is None:
            raise ServerError(f"The default organization [{org_id}] does not exist.")
        permissions = dict(org["permissions"])
        for user_id in user_ids:
            permissions.setdefault(user_id, Role.WRITE.value)
        changes = {"permissions": permissions, **modification_stamp(principal["id"], utcnow())}
        self.stores.organizations.bulk_write([UpdateOp(org_id, changes)])

    @capture_errors
    def find(self, principal: dict, users: Any = None, options: Optional[dict] = None) -> list[dict]:
        """
        Find users. Any active user can read user profiles.

        Args:
            principal: Requesting user document
            users: None for all, a username, or a list of usernames
            options: Find options and search keys

        Returns:
            Matching user documents
        """
        if principal.get("archived"):
            raise PermissionDeniedError(f"User {principal['id']} is archived.")
        normalized = normalize(users, options, allowed=ALL_OPTIONS, search_keys=USER_SEARCH_KEYS)
        opts = normalized.options

        query: dict[str, Any] = dict(normalized.filters)
        if not normalized.is_all:
            query["id"] = normalized.id_list("username")
        self._archived_query(query, opts)

        docs = self.store.find(query, sort=opts.sort)
        return [_present(doc) for doc in self._finalize(docs, opts)]

    @capture_errors
    def create(self, principal: dict, users: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Create users and add them to the default organization with write.

        If enrollment fails the new users are deleted again.

        Raises:
            PermissionDeniedError: If the principal is not a system admin
            DataFormatError: On malformed objects or duplicate usernames in the batch
            OperationError: If any username is taken
        """
        self.resolver.require_admin(principal, "create users")
        normalized = normalize(users, options, allowed=WRITE_OPTIONS)
        objects = self._require_objects(normalized, "create")

        for obj in objects:
            self._check_create_keys(obj)
            validate("user", "id", obj["username"])
            for field in PROFILE_FIELDS:
                _check_profile_field(field, obj.get(field))
            if not isinstance(obj.get("provider", "local"), str):
                raise DataFormatError("User property [provider] must be a string.")
            if not isinstance(obj.get("admin", False), bool):
                raise DataFormatError("User property [admin] must be a boolean.")

        ids = [obj["username"] for obj in objects]
        self._check_batch_duplicates(ids)
        self._check_not_existing(ids)

        now = utcnow()
        docs = [
            self._new_document(
                principal, obj, now,
                id=obj["username"],
                admin=obj.get("admin", False),
                provider=obj.get("provider", "local"),
                **{field: obj.get(field) for field in PROFILE_FIELDS},
            )
            for obj in objects
        ]
        self.store.insert_many(docs)

        try:
            self._enroll_in_default_organization(principal, ids)
        except Exception:
            logger.error(f"Failed to add users {ids} to the default organization, removing them")
            self.store.delete_many({"id": ids})
            raise

        logger.info(f"User {principal['id']} created users {ids}")
        return [_present(doc) for doc in self._refetch(ids, normalized.options)]

    @capture_errors
    def update(self, principal: dict, users: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Update user profiles.

        Archiving or unarchiving a user is reserved for system admins.

        Raises:
            PermissionDeniedError: When updating another user without being an admin
            NotFoundError: If any user does not exist
        """
        normalized = normalize(users, options, allowed=WRITE_OPTIONS)
        updates = self._require_objects(normalized, "update")
        ids = self._update_ids(updates, "username")
        existing = self._fetch_all(ids)

        if principal.get("archived"):
            raise PermissionDeniedError(f"User {principal['id']} is archived.")
        for user_id, update in zip(ids, updates):
            if principal.get("admin"):
                continue
            if user_id != principal["id"] or "archived" in update:
                raise PermissionDeniedError(f"User does not have permission to update user {user_id}.")

        updates = [{k: v for k, v in update.items() if k != "username"} for update in updates]
        self._apply_updates(principal, existing, updates, ids)
        logger.info(f"User {principal['id']} updated users {ids}")
        return [_present(doc) for doc in self._refetch(ids, normalized.options)]

    @capture_errors
    def remove(self, principal: dict, users: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Permanently delete users and strip them from every permission map.

        Returns:
            The deleted users

        Raises:
            PermissionDeniedError: If the principal is not an admin or deletes themselves
            NotFoundError: Naming the usernames that do not exist
        """
        self.resolver.require_admin(principal, "delete users")
        normalized = normalize(users, options, allowed=())
        if normalized.is_all:
            raise DataFormatError("The users to delete must be specified.")
        ids = normalized.id_list("username")
        self._check_batch_duplicates(ids, "delete")
        for user_id in ids:
            check_not_self(principal, user_id, "delete")

        existing = self._fetch_all(ids)
        self.cascade.remove_user_references(ids, principal["id"])
        self._delete(ids)
        logger.info(f"User {principal['id']} deleted users {ids}")
        return [_present(doc) for doc in existing]


"""Project batch controller.

Projects are addressed by short id within an organization; stored ids are
``org:project``. Creating a project also creates its ``master`` branch.
"""
import logging
from typing import Any, Optional

from ..errors import DataFormatError, PermissionDeniedError, capture_errors
from ..ids import build_id, last_part, parse_id
from ..models import REMOVE_ALL, ProjectVisibility, Role, utcnow
from ..options import ALL_OPTIONS, COMMON_SEARCH_KEYS, normalize
from ..permissions import Operation, apply_permission_changes, get_permissions
from ..store import UpdateOp
from ..updates import creation_stamp, jmi_index, modification_stamp
from ..validators import validate
from .base import BatchController, WRITE_OPTIONS, load_parent
from .organizations import check_users_exist

logger = logging.getLogger("modelhub-core.projects")

MASTER_BRANCH = "master"


def load_organization(stores, org_id: str, for_write: bool = False, allow_archived: bool = False) -> dict:
    """Fetch the owning organization of a project request."""
    return load_parent(stores.organizations, "organization", org_id, for_write, allow_archived)


class ProjectController(BatchController):
    """Find, create, update and remove projects within an organization."""

    kind = "projects"
    label = "Project"
    plural = "projects"
    create_fields = frozenset({"id", "name", "custom", "archived", "visibility"})
    required_create_fields = ("id", "name")
    valid_update_fields = frozenset({"name", "custom", "archived", "permissions", "visibility"})
    search_keys = COMMON_SEARCH_KEYS + ("visibility",)

    def _convert_value(self, principal: dict, existing: dict, key: str, value: Any) -> Any:
        if key == "name":
            validate("project", "name", value)
            return value
        if key == "visibility":
            return _check_visibility(value)
        if key == "permissions":
            updated = apply_permission_changes(existing.get("permissions"), value, principal["id"])
            check_users_exist(self.stores, [u for u in value if u in updated])
            return updated
        return value

    def _enroll_in_organizations(self, principal: dict, grants: dict[str, set[str]]) -> None:
        """Give users newly granted on a project read access to its organization."""
        ops = []
        for org_id, user_ids in grants.items():
            org = self.stores.organizations.find_one({"id": org_id})
            if org is None:
                continue
            permissions = dict(org["permissions"])
            added = [u for u in sorted(user_ids) if u not in permissions]
            if not added:
                continue
            for user_id in added:
                permissions[user_id] = Role.READ.value
            changes = {"permissions": permissions, **modification_stamp(principal["id"], utcnow())}
            ops.append(UpdateOp(org_id, changes))
            logger.info(f"Added users {added} to organization {org_id} with read")
        if ops:
            self.stores.organizations.bulk_write(ops)

    @capture_errors
    def find(
        self,
        principal: dict,
        org_id: Optional[str] = None,
        projects: Any = None,
        options: Optional[dict] = None,
    ) -> list[dict]:
        """
        Find projects readable by the principal.

        Args:
            principal: Requesting user document
            org_id: Owning organization, or None to search every organization
                (ids are then full ``org:project`` ids)
            projects: None for all, a project id, or a list of project ids
            options: Find options and search keys

        Returns:
            Readable projects; unreadable ones are silently dropped
        """
        normalized = normalize(projects, options, allowed=ALL_OPTIONS, search_keys=self.search_keys)
        opts = normalized.options

        query: dict[str, Any] = dict(normalized.filters)
        if "visibility" in query:
            _check_visibility(query["visibility"])
        if org_id is not None:
            load_organization(self.stores, org_id, allow_archived=opts.allows_archived)
            query["org"] = org_id
        if not normalized.is_all:
            ids = normalized.id_list()
            query["id"] = [build_id(org_id, p) for p in ids] if org_id is not None else ids
        self._archived_query(query, opts)

        docs = self.store.find(query, sort=opts.sort)
        orgs = jmi_index(self.stores.organizations.find({"id": sorted({d["org"] for d in docs})}))
        if not opts.allows_archived:
            docs = [doc for doc in docs if doc["org"] in orgs and not orgs[doc["org"]]["archived"]]
        docs = [
            doc for doc in docs
            if self.resolver.can(principal, Operation.READ, organization=orgs.get(doc["org"]), project=doc)
        ]
        return self._finalize(docs, opts)

    @capture_errors
    def create(self, principal: dict, org_id: str, projects: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Create projects in an organization.

        The creator is granted admin on each project and a ``master`` branch
        is created for each. If branch creation fails the new projects are
        deleted again.

        Raises:
            NotFoundError: If the organization does not exist
            OperationError: If the organization is archived or a project id is taken
            PermissionDeniedError: Without write on the organization
        """
        org = load_organization(self.stores, org_id, for_write=True)
        self.resolver.check(principal, Operation.CREATE, organization=org)

        normalized = normalize(projects, options, allowed=WRITE_OPTIONS)
        objects = self._require_objects(normalized, "create")
        for obj in objects:
            self._check_create_keys(obj)
            validate("project", "id", obj["id"])
            validate("project", "name", obj["name"])
            if "visibility" in obj:
                _check_visibility(obj["visibility"])

        short_ids = [obj["id"] for obj in objects]
        ids = [build_id(org_id, p) for p in short_ids]
        self._check_batch_duplicates(short_ids)
        self._check_not_existing(ids, short_ids)

        now = utcnow()
        docs = [
            self._new_document(
                principal, obj, now,
                id=full_id,
                org=org_id,
                name=obj["name"],
                visibility=obj.get("visibility", ProjectVisibility.PRIVATE.value),
                permissions={principal["id"]: Role.ADMIN.value},
            )
            for full_id, obj in zip(ids, objects)
        ]
        self.store.insert_many(docs)

        try:
            self.stores.branches.insert_many([
                {
                    "id": build_id(org_id, short_id, MASTER_BRANCH),
                    "project": full_id,
                    "name": "Master",
                    "source": None,
                    "custom": {},
                    **creation_stamp(principal["id"], now),
                }
                for short_id, full_id in zip(short_ids, ids)
            ])
        except Exception:
            logger.error(f"Failed to create master branches for {ids}, removing the new projects")
            self.store.delete_many({"id": ids})
            raise

        logger.info(f"User {principal['id']} created projects {ids}")
        return self._refetch(ids, normalized.options)

    @capture_errors
    def create_or_replace(self, principal: dict, org_id: str, projects: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Create projects, replacing any that already exist.

        Existing projects and their ``master`` branches are deleted and the
        whole batch is created again. If creation fails the deleted projects
        and branches are restored. Other contents of a replaced project are
        left in place.

        Args:
            principal: Requesting user document
            org_id: Owning organization
            projects: A project object or a list of them, each with an id
            options: Write options

        Returns:
            The created projects

        Raises:
            PermissionDeniedError: Without write on the organization, or admin on a replaced project
            DataFormatError: On missing or duplicate ids, or any error ``create`` raises
        """
        org = load_organization(self.stores, org_id, for_write=True)
        self.resolver.check(principal, Operation.CREATE, organization=org)

        normalized = normalize(projects, options, allowed=WRITE_OPTIONS)
        objects = self._require_objects(normalized, "replace")
        short_ids = normalized.id_list()
        self._check_batch_duplicates(short_ids, "replace")
        ids = [build_id(org_id, p) for p in short_ids]

        found = self.store.find({"id": ids})
        for doc in found:
            self.resolver.check(principal, Operation.MANAGE, organization=org, project=doc)

        replaced_ids = [doc["id"] for doc in found]
        branch_ids = [build_id(*parse_id(i), MASTER_BRANCH) for i in replaced_ids]
        backup_branches = self.stores.branches.find({"id": branch_ids}) if found else []
        if found:
            self.stores.branches.delete_many({"id": branch_ids})
            self._delete(replaced_ids)
            logger.info(f"User {principal['id']} is replacing projects {replaced_ids}")

        try:
            return self.create(principal, org_id, objects, options)
        except Exception:
            if found:
                logger.error(f"Failed to replace projects {replaced_ids}, restoring them")
                self.store.insert_many(found)
                if backup_branches:
                    self.stores.branches.insert_many(backup_branches)
            raise

    @capture_errors
    def update(self, principal: dict, org_id: str, projects: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Update projects in an organization.

        Permission and archive changes need admin on the project; other
        fields need write. Users granted a role on a project who are not yet
        members of the organization are added to it with read.

        Raises:
            NotFoundError: If the organization or any project does not exist
            OperationError: On immutable fields, archived projects or an archived organization
        """
        org = load_organization(self.stores, org_id, for_write=True)
        normalized = normalize(projects, options, allowed=WRITE_OPTIONS)
        updates = self._require_objects(normalized, "update")
        short_ids = self._update_ids(updates)
        ids = [build_id(org_id, p) for p in short_ids]
        existing = self._fetch_all(ids, short_ids)

        index = jmi_index(existing)
        for doc_id, update in zip(ids, updates):
            operation = Operation.MANAGE if {"permissions", "archived"} & set(update) else Operation.UPDATE
            self.resolver.check(principal, operation, organization=org, project=index[doc_id])

        self._apply_updates(principal, existing, updates, ids)
        self._enroll_in_organizations(principal, _granted_members(index, ids, updates))
        logger.info(f"User {principal['id']} updated projects {ids}")
        return self._refetch(ids, normalized.options)

    @capture_errors
    def remove(self, principal: dict, org_id: str, projects: Any, options: Optional[dict] = None) -> list[dict]:
        """
        Permanently delete projects and everything they contain.

        Requires delete rights on each project, or admin on the organization.

        Returns:
            The deleted projects

        Raises:
            NotFoundError: Naming the project ids that do not exist
        """
        org = load_organization(self.stores, org_id, allow_archived=True)
        normalized = normalize(projects, options, allowed=())
        short_ids = self._require_ids(normalized, "delete")
        self._check_batch_duplicates(short_ids, "delete")
        ids = [build_id(org_id, p) for p in short_ids]
        existing = self._fetch_all(ids, short_ids)

        if principal.get("archived"):
            raise PermissionDeniedError(f"User {principal['id']} is archived.")
        org_admin = principal.get("admin") or get_permissions(org, principal["id"])["admin"]
        for doc in existing:
            if not org_admin:
                self.resolver.check(principal, Operation.DELETE, organization=org, project=doc)

        self.cascade.remove_project_contents(ids)
        self._delete(ids)
        logger.info(f"User {principal['id']} deleted projects {[last_part(i) for i in ids]} from {org_id}")
        return existing

    def set_permissions(self, principal: dict, org_id: str, project_id: str, user_id: str, role: str) -> dict:
        """Set one user's role on a project (``remove_all`` drops it)."""
        if not isinstance(user_id, str) or not isinstance(project_id, str):
            raise DataFormatError("Project and user ids must be strings.")
        return self.update(principal, org_id, {"id": project_id, "permissions": {user_id: role}})[0]


def _granted_members(index: dict, ids: list[str], updates: list[dict]) -> dict[str, set[str]]:
    """Map each organization to the users granted a project role in ``updates``."""
    grants: dict[str, set[str]] = {}
    for doc_id, update in zip(ids, updates):
        changes = update.get("permissions") or {}
        granted = {user_id for user_id, role in changes.items() if role != REMOVE_ALL}
        if granted:
            grants.setdefault(index[doc_id]["org"], set()).update(granted)
    return grants


def _check_visibility(value: Any) -> str:
    if not isinstance(value, str) or value not in {v.value for v in ProjectVisibility}:
        raise DataFormatError(
            f"Invalid project visibility: {value!r}. Must be one of "
            f"{', '.join(v.value for v in ProjectVisibility)}."
        )
    return value

"""Role-based access control over the org → project → branch hierarchy.

Permission maps store, per user id, the highest role held on the entity.
Roles are cumulative: admin implies write, write implies read. System
administrators (``user["admin"]``) bypass every map; archived users are
denied everything.
"""
import enum
import logging
from typing import Any, Optional

from .errors import DataFormatError, PermissionDeniedError, ServerError
from .models import Role, ROLE_ORDER, REMOVE_ALL, ProjectVisibility

logger = logging.getLogger("modelhub-core.permissions")


class Operation(str, enum.Enum):
    """Kinds of access checked by the resolver."""

    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE = "manage"  # permission and archive changes


def get_permissions(entity: Optional[dict], principal_id: str) -> dict[str, bool]:
    """
    Derive read/write/admin flags for a principal from an entity's map.

    Args:
        entity: Organization or project document (may be None)
        principal_id: User id to look up

    Returns:
        ``{"read": bool, "write": bool, "admin": bool}``, monotone in the role order
    """
    flags = {role.value: False for role in ROLE_ORDER}
    if not entity:
        return flags
    held = (entity.get("permissions") or {}).get(principal_id)
    if held is None:
        return flags
    try:
        held_role = Role(held)
    except ValueError:
        logger.warning(f"Ignoring unknown role '{held}' for {principal_id} on {entity.get('id')}")
        return flags
    for role in ROLE_ORDER:
        flags[role.value] = held_role.implies(role)
    return flags


def permission_lists(entity: dict) -> dict[str, list[str]]:
    """Return the map as role → sorted list of user ids holding at least that role."""
    lists: dict[str, list[str]] = {role.value: [] for role in ROLE_ORDER}
    for user_id in sorted(entity.get("permissions") or {}):
        for role, granted in get_permissions(entity, user_id).items():
            if granted:
                lists[role].append(user_id)
    return lists


def apply_permission_changes(current: Optional[dict], changes: Any, principal_id: str) -> dict[str, str]:
    """
    Apply a permission change-set to a map and return the new map.

    ``changes`` maps user id → role (``read``/``write``/``admin``) or
    ``remove_all``. The input map is not modified.

    Raises:
        DataFormatError: If the change-set is not a mapping of strings to known roles
        PermissionDeniedError: If the principal tries to change its own entry
    """
    if not isinstance(changes, dict):
        raise DataFormatError("Permissions must be an object mapping user ids to roles.")

    updated = dict(current or {})
    for user_id, role in changes.items():
        if user_id == principal_id:
            raise PermissionDeniedError("User cannot update their own permissions.")
        if role == REMOVE_ALL:
            updated.pop(user_id, None)
            continue
        if not isinstance(role, str) or role not in {r.value for r in ROLE_ORDER}:
            raise DataFormatError(
                f"The permission '{role}' for user {user_id} is not a valid permission."
            )
        updated[user_id] = role
    return updated


class PermissionResolver:
    """Decides whether a principal may perform an operation on a scope."""

    def __init__(self, delete_requires_admin: bool = False):
        self.delete_requires_admin = delete_requires_admin

    def required_role(self, operation: Operation) -> Role:
        """Return the minimum role an operation needs on its scope."""
        if operation == Operation.READ:
            return Role.READ
        if operation == Operation.MANAGE:
            return Role.ADMIN
        if operation == Operation.DELETE and self.delete_requires_admin:
            return Role.ADMIN
        return Role.WRITE

    def check(
        self,
        principal: dict,
        operation: Operation,
        organization: Optional[dict] = None,
        project: Optional[dict] = None,
        branch: Optional[dict] = None,
    ) -> None:
        """
        Ensure the principal may perform ``operation`` on the most specific scope given.

        Branch checks are governed by the branch's project. A READ on an
        internal project falls back to the owning organization's map. With
        no scope at all only system administrators pass.

        Raises:
            PermissionDeniedError: If access is denied
            ServerError: If a branch is given without its project
        """
        if principal.get("archived"):
            raise PermissionDeniedError(f"User {principal.get('id')} is archived.")
        if principal.get("admin"):
            return

        role = self.required_role(operation).value
        user_id = principal["id"]

        if branch is not None and project is None:
            raise ServerError("Branch permission check requires the owning project.")

        if project is not None:
            if get_permissions(project, user_id)[role]:
                return
            if (
                operation == Operation.READ
                and project.get("visibility") == ProjectVisibility.INTERNAL.value
                and get_permissions(organization, user_id)["read"]
            ):
                return
            target = branch["id"] if branch is not None else project["id"]
        elif organization is not None:
            if get_permissions(organization, user_id)[role]:
                return
            target = organization["id"]
        else:
            target = "the server"

        raise PermissionDeniedError(
            f"User does not have permission to {operation.value} on {target}."
        )

    def can(self, principal: dict, operation: Operation, **scope) -> bool:
        """Non-raising variant of :meth:`check`."""
        try:
            self.check(principal, operation, **scope)
        except PermissionDeniedError:
            return False
        return True

    def require_admin(self, principal: dict, action: str) -> None:
        """Ensure the principal is an active system administrator."""
        if principal.get("archived") or not principal.get("admin"):
            raise PermissionDeniedError(f"User does not have permission to {action}.")


def check_not_self(principal: dict, target_id: str, action: str) -> None:
    """Reject operations a user may never apply to themselves, admins included."""
    if principal.get("id") == target_id:
        raise PermissionDeniedError(f"User cannot {action} themselves.")

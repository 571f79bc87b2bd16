"""Tests for role derivation and the permission resolver."""
import pytest

from modelhub_core.errors import DataFormatError, PermissionDeniedError
from modelhub_core.permissions import (
    Operation,
    PermissionResolver,
    apply_permission_changes,
    get_permissions,
    permission_lists,
)

ORG = {"id": "acme", "permissions": {"alice": "admin", "bob": "write", "carol": "read"}}
PRIVATE_PROJECT = {"id": "acme:rocket", "org": "acme", "visibility": "private", "permissions": {"bob": "read"}}
INTERNAL_PROJECT = {"id": "acme:lander", "org": "acme", "visibility": "internal", "permissions": {}}

ALICE = {"id": "alice", "admin": False, "archived": False}
BOB = {"id": "bob", "admin": False, "archived": False}
CAROL = {"id": "carol", "admin": False, "archived": False}
ROOT = {"id": "root", "admin": True, "archived": False}


class TestGetPermissions:
    """Test that the role hierarchy is applied."""

    def test_roles_are_cumulative(self):
        """Test roles are cumulative."""
        assert get_permissions(ORG, "alice") == {"read": True, "write": True, "admin": True}
        assert get_permissions(ORG, "bob") == {"read": True, "write": True, "admin": False}
        assert get_permissions(ORG, "carol") == {"read": True, "write": False, "admin": False}

    def test_monotone_for_every_member(self):
        """Test monotone for every member."""
        for user_id in ORG["permissions"]:
            flags = get_permissions(ORG, user_id)
            assert not flags["admin"] or flags["write"]
            assert not flags["write"] or flags["read"]

    def test_unknown_user_has_nothing(self):
        """Test unknown user has nothing."""
        assert get_permissions(ORG, "mallory") == {"read": False, "write": False, "admin": False}
        assert get_permissions(None, "alice") == {"read": False, "write": False, "admin": False}

    def test_permission_lists(self):
        """Test permission lists."""
        lists = permission_lists(ORG)
        assert lists["read"] == ["alice", "bob", "carol"]
        assert lists["write"] == ["alice", "bob"]
        assert lists["admin"] == ["alice"]


class TestPermissionResolver:
    """Test scope walking and policy decisions."""

    def setup_method(self):
        self.resolver = PermissionResolver()

    def test_org_roles(self):
        """Test org roles."""
        self.resolver.check(CAROL, Operation.READ, organization=ORG)
        self.resolver.check(BOB, Operation.UPDATE, organization=ORG)
        self.resolver.check(ALICE, Operation.MANAGE, organization=ORG)
        with pytest.raises(PermissionDeniedError):
            self.resolver.check(CAROL, Operation.UPDATE, organization=ORG)
        with pytest.raises(PermissionDeniedError):
            self.resolver.check(BOB, Operation.MANAGE, organization=ORG)

    def test_project_map_governs_project_scope(self):
        """Test project map governs project scope."""
        # alice is org admin but holds nothing on the private project
        assert not self.resolver.can(ALICE, Operation.READ, organization=ORG, project=PRIVATE_PROJECT)
        assert self.resolver.can(BOB, Operation.READ, organization=ORG, project=PRIVATE_PROJECT)
        assert not self.resolver.can(BOB, Operation.UPDATE, organization=ORG, project=PRIVATE_PROJECT)

    def test_internal_project_readable_by_org_members(self):
        """Test internal project readable by org members."""
        assert self.resolver.can(CAROL, Operation.READ, organization=ORG, project=INTERNAL_PROJECT)
        assert not self.resolver.can(CAROL, Operation.UPDATE, organization=ORG, project=INTERNAL_PROJECT)

    def test_branch_uses_project_map(self):
        """Test branch uses project map."""
        branch = {"id": "acme:rocket:master"}
        assert self.resolver.can(BOB, Operation.READ, organization=ORG, project=PRIVATE_PROJECT, branch=branch)
        assert not self.resolver.can(CAROL, Operation.READ, organization=ORG, project=PRIVATE_PROJECT, branch=branch)

    def test_system_admin_bypasses_maps(self):
        """Test system admin bypasses maps."""
        self.resolver.check(ROOT, Operation.MANAGE, organization=ORG, project=PRIVATE_PROJECT)
        self.resolver.check(ROOT, Operation.DELETE)

    def test_server_scope_is_admin_only(self):
        """Test server scope is admin only."""
        with pytest.raises(PermissionDeniedError):
            self.resolver.check(ALICE, Operation.READ)

    def test_archived_principal_always_denied(self):
        """Test archived principal always denied."""
        archived_root = {**ROOT, "archived": True}
        with pytest.raises(PermissionDeniedError):
            self.resolver.check(archived_root, Operation.READ, organization=ORG)

    def test_delete_policy(self):
        """Test delete policy."""
        assert self.resolver.can(BOB, Operation.DELETE, organization=ORG)
        strict = PermissionResolver(delete_requires_admin=True)
        assert not strict.can(BOB, Operation.DELETE, organization=ORG)
        assert strict.can(ALICE, Operation.DELETE, organization=ORG)


class TestApplyPermissionChanges:
    """Test permission change-sets."""

    def test_grant_change_and_remove(self):
        """Test grant change and remove."""
        updated = apply_permission_changes(ORG["permissions"], {"carol": "write", "bob": "remove_all"}, "alice")
        assert updated == {"alice": "admin", "carol": "write"}
        # input untouched
        assert ORG["permissions"]["bob"] == "write"

    def test_self_change_always_denied(self):
        """Test self change always denied."""
        with pytest.raises(PermissionDeniedError):
            apply_permission_changes(ORG["permissions"], {"alice": "read"}, "alice")
        with pytest.raises(PermissionDeniedError):
            apply_permission_changes({}, {"root": "admin"}, "root")

    def test_invalid_role(self):
        """Test invalid role."""
        with pytest.raises(DataFormatError):
            apply_permission_changes({}, {"bob": "owner"}, "alice")
        with pytest.raises(DataFormatError):
            apply_permission_changes({}, ["bob"], "alice")

"""Tests for the webhook controller."""
import pytest

from modelhub_core.errors import (
    DataFormatError,
    NotFoundError,
    OperationError,
    PermissionDeniedError,
)

INCOMING = {
    "id": "hook-in",
    "name": "Deploy trigger",
    "type": "Incoming",
    "token": "s3cret",
    "token_location": "X-Hook-Token",
    "triggers": ["project-updated"],
    "reference": "acme:rocket",
}

OUTGOING = {
    "id": "hook-out",
    "name": "Notifier",
    "type": "Outgoing",
    "responses": [{"url": "https://example.com/hook"}],
    "triggers": ["element-created"],
    "reference": "acme:rocket:master",
}


@pytest.fixture
def hooks(webhook_controller, alice, rocket):
    return webhook_controller.create(alice, [INCOMING, OUTGOING])


class TestCreateWebhooks:
    """Test webhook creation."""

    def test_create_both_types(self, hooks):
        """Test create both types."""
        incoming, outgoing = hooks
        assert incoming["type"] == "Incoming"
        assert incoming["responses"] is None
        assert outgoing["responses"] == [{
            "url": "https://example.com/hook",
            "method": "POST",
            "headers": {"Content-Type": "application/json"},
        }]
        assert outgoing["token"] is None

    def test_generated_id(self, webhook_controller, admin):
        """Test generated id."""
        created = webhook_controller.create(admin, {"type": "Incoming", "token": "t", "token_location": "X-T"})
        assert len(created[0]["id"]) == 36
        assert created[0]["reference"] == ""

    def test_incoming_rejects_responses(self, webhook_controller, alice, rocket):
        """Test incoming rejects responses."""
        with pytest.raises(DataFormatError) as exc_info:
            webhook_controller.create(alice, {**INCOMING, "responses": [{"url": "https://x"}]})
        assert "responses" in exc_info.value.message

    def test_outgoing_rejects_token(self, webhook_controller, alice, rocket):
        """Test outgoing rejects token."""
        with pytest.raises(DataFormatError):
            webhook_controller.create(alice, {**OUTGOING, "token": "nope"})

    def test_type_specific_fields_required(self, webhook_controller, alice, rocket):
        """Test type specific fields required."""
        with pytest.raises(DataFormatError):
            webhook_controller.create(alice, {"type": "Incoming", "reference": "acme:rocket"})
        with pytest.raises(DataFormatError):
            webhook_controller.create(alice, {"type": "Outgoing", "reference": "acme:rocket", "responses": []})
        with pytest.raises(DataFormatError):
            webhook_controller.create(alice, {"type": "Sideways", "reference": "acme:rocket"})

    def test_server_webhooks_need_system_admin(self, webhook_controller, alice):
        """Test server webhooks need system admin."""
        with pytest.raises(PermissionDeniedError):
            webhook_controller.create(alice, {"type": "Incoming", "token": "t", "token_location": "X-T"})

    def test_missing_scope(self, webhook_controller, admin, acme):
        """Test missing scope."""
        with pytest.raises(NotFoundError):
            webhook_controller.create(admin, {**INCOMING, "reference": "acme:ghost"})

    def test_archived_scope(self, webhook_controller, project_controller, alice, rocket):
        """Test archived scope."""
        project_controller.update(alice, "acme", {"id": "rocket", "archived": True})
        with pytest.raises(OperationError):
            webhook_controller.create(alice, INCOMING)

    def test_duplicates(self, webhook_controller, alice, hooks):
        """Test duplicates."""
        with pytest.raises(DataFormatError):
            webhook_controller.create(alice, [{**INCOMING, "id": "same"}, {**INCOMING, "id": "same"}])
        with pytest.raises(OperationError):
            webhook_controller.create(alice, INCOMING)

    def test_invalid_id_and_token_location(self, webhook_controller, alice, rocket):
        """Test that malformed ids and token locations are rejected."""
        for bad_id in ("a:b", "x" * 37, "has space"):
            with pytest.raises(DataFormatError):
                webhook_controller.create(alice, {**INCOMING, "id": bad_id})
        with pytest.raises(DataFormatError) as exc_info:
            webhook_controller.create(alice, {**INCOMING, "token_location": "X Hook: Token"})
        assert "token_location" in exc_info.value.message


class TestFindWebhooks:
    """Test reading webhooks."""

    def test_find_by_scope(self, webhook_controller, alice, hooks):
        """Test find by scope."""
        project_hooks = webhook_controller.find(alice, org_id="acme", project_id="rocket")
        assert [h["id"] for h in project_hooks] == ["hook-in"]
        branch_hooks = webhook_controller.find(alice, None, None, org_id="acme", project_id="rocket", branch_id="master")
        assert [h["id"] for h in branch_hooks] == ["hook-out"]

    def test_unreadable_scope_yields_nothing(self, webhook_controller, bob, hooks):
        """Test unreadable scope yields nothing."""
        assert webhook_controller.find(bob, org_id="acme", project_id="rocket") == []

    def test_search_by_type(self, webhook_controller, alice, hooks):
        """Test search by type."""
        found = webhook_controller.find(alice, None, {"type": "Incoming"}, org_id="acme", project_id="rocket")
        assert len(found) == 1

    def test_scope_needs_parents(self, webhook_controller, alice, hooks):
        """Test scope needs parents."""
        with pytest.raises(DataFormatError):
            webhook_controller.find(alice, project_id="rocket")

    def test_invalid_branch_scope(self, webhook_controller, alice, hooks):
        """Test that a malformed branch id in the scope is rejected."""
        with pytest.raises(DataFormatError):
            webhook_controller.find(alice, org_id="acme", project_id="rocket", branch_id="Main Line")


class TestUpdateWebhooks:
    """Test webhook updates."""

    def test_update_fields(self, webhook_controller, alice, hooks):
        """Test update fields."""
        updated = webhook_controller.update(alice, {"id": "hook-in", "token": "rotated", "custom": {"k": "v"}})[0]
        assert updated["token"] == "rotated"
        assert updated["custom"] == {"k": "v"}

    def test_type_and_reference_immutable(self, webhook_controller, alice, hooks):
        """Test type and reference immutable."""
        with pytest.raises(OperationError) as exc_info:
            webhook_controller.update(alice, {"id": "hook-in", "type": "Outgoing"})
        assert exc_info.value.message == "A webhook's type cannot be changed."
        with pytest.raises(OperationError) as exc_info:
            webhook_controller.update(alice, {"id": "hook-in", "reference": "acme"})
        assert exc_info.value.message == "A webhook's reference id cannot be changed."

    def test_cross_type_fields(self, webhook_controller, alice, hooks):
        """Test cross type fields."""
        with pytest.raises(DataFormatError):
            webhook_controller.update(alice, {"id": "hook-in", "responses": [{"url": "https://x"}]})
        with pytest.raises(DataFormatError):
            webhook_controller.update(alice, {"id": "hook-out", "token": "abc"})
        with pytest.raises(DataFormatError) as exc_info:
            webhook_controller.update(alice, {"id": "hook-in", "token": None})
        assert exc_info.value.message == "Invalid token: [None]"

    def test_token_location_format_on_update(self, webhook_controller, alice, hooks):
        """Test that an update cannot set a malformed token location."""
        with pytest.raises(DataFormatError):
            webhook_controller.update(alice, {"id": "hook-in", "token_location": "bad header"})
        updated = webhook_controller.update(alice, {"id": "hook-in", "token_location": "X-Other"})[0]
        assert updated["token_location"] == "X-Other"

    def test_missing_and_duplicate_ids(self, webhook_controller, alice, hooks):
        """Test missing and duplicate ids."""
        with pytest.raises(DataFormatError) as exc_info:
            webhook_controller.update(alice, [{"name": "no id"}])
        assert exc_info.value.message == "One or more webhook updates does not have an id."
        with pytest.raises(DataFormatError) as exc_info:
            webhook_controller.update(alice, [{"id": "hook-in"}, {"id": "hook-in"}])
        assert exc_info.value.message == "Duplicate ids found in update array: hook-in"
        with pytest.raises(NotFoundError) as exc_info:
            webhook_controller.update(alice, [{"id": "hook-in", "name": "x"}, {"id": "ghost", "name": "y"}])
        assert "[ghost]" in exc_info.value.message

    def test_archive_round_trip(self, webhook_controller, alice, hooks):
        """Test archive round trip."""
        webhook_controller.update(alice, {"id": "hook-out", "archived": True})
        with pytest.raises(OperationError):
            webhook_controller.update(alice, {"id": "hook-out", "name": "Renamed"})
        restored = webhook_controller.update(alice, {"id": "hook-out", "archived": False})[0]
        assert restored["archived_on"] is None


class TestRemoveWebhooks:
    """Test webhook deletes."""

    def test_remove_returns_documents(self, webhook_controller, alice, hooks):
        """Test remove returns documents."""
        removed = webhook_controller.remove(alice, ["hook-in", "hook-out"])
        assert sorted(h["id"] for h in removed) == ["hook-in", "hook-out"]
        assert webhook_controller.find(alice, org_id="acme", project_id="rocket") == []

    def test_missing_only_named(self, webhook_controller, alice, hooks):
        """Test missing only named."""
        with pytest.raises(NotFoundError) as exc_info:
            webhook_controller.remove(alice, ["hook-in", "ghost"])
        assert "[ghost]" in exc_info.value.message
        assert "hook-in" not in exc_info.value.message

    def test_outsider_cannot_remove(self, webhook_controller, bob, hooks):
        """Test outsider cannot remove."""
        with pytest.raises(PermissionDeniedError):
            webhook_controller.remove(bob, "hook-in")

"""Tests for the HTTP layer: authentication, routing and error mapping."""
import pytest
from fastapi.testclient import TestClient

from modelhub_core.api.main import app
from modelhub_core.config import get_settings
from modelhub_core.database import get_db

ADMIN = {"X-User-Id": "admin"}
ALICE = {"X-User-Id": "alice"}


@pytest.fixture
def client(db, stores, settings, admin, alice):
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_settings] = lambda: settings
    # Not used as a context manager so the startup hook never touches the configured database
    yield TestClient(app)
    app.dependency_overrides.clear()


class TestAuthentication:
    """Test resolution of the requesting user."""

    def test_health_needs_no_user(self, client):
        """Test that the health check needs no user."""
        assert client.get("/health").json() == {"status": "healthy"}

    def test_missing_header(self, client):
        """Test missing header."""
        response = client.get("/api/v1/orgs/")
        assert response.status_code == 401
        assert response.json() == {
            "status": 401,
            "message": "PermissionDeniedError",
            "description": "Authentication required.",
        }

    def test_unknown_user(self, client):
        """Test unknown user."""
        response = client.get("/api/v1/orgs/", headers={"X-User-Id": "mallory"})
        assert response.status_code == 401

    def test_whoami(self, client):
        """Test that whoami returns the requesting user."""
        body = client.get("/api/v1/users/whoami", headers=ALICE).json()
        assert body["username"] == "alice"
        assert body["admin"] is False


class TestOrganizationRoutes:
    """Test organization endpoints and status codes."""

    def test_create_and_read(self, client):
        """Test create and read."""
        response = client.post("/api/v1/orgs/", json={"id": "acme", "name": "Acme Corp"}, headers=ADMIN)
        assert response.status_code == 201
        assert response.json()[0]["id"] == "acme"

        response = client.get("/api/v1/orgs/acme", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["name"] == "Acme Corp"

        ids = [org["id"] for org in client.get("/api/v1/orgs/", params={"fields": "name"}, headers=ADMIN).json()]
        assert ids == ["acme", "default"]

    def test_error_statuses(self, client):
        """Test error statuses."""
        client.post("/api/v1/orgs/", json={"id": "acme", "name": "Acme Corp"}, headers=ADMIN)

        denied = client.post("/api/v1/orgs/", json={"id": "mine", "name": "Mine"}, headers=ALICE)
        assert denied.status_code == 403
        assert denied.json()["message"] == "PermissionDeniedError"

        conflict = client.post("/api/v1/orgs/", json={"id": "acme", "name": "Again"}, headers=ADMIN)
        assert conflict.status_code == 409
        assert conflict.json()["message"] == "OperationError"

        bad = client.post("/api/v1/orgs/", json={"id": "Not Valid", "name": "Bad"}, headers=ADMIN)
        assert bad.status_code == 400
        assert bad.json()["message"] == "DataFormatError"

        missing = client.get("/api/v1/orgs/ghost", headers=ADMIN)
        assert missing.status_code == 404

        bad_option = client.get("/api/v1/orgs/", params={"limit": -1}, headers=ADMIN)
        assert bad_option.status_code == 400

    def test_members_and_delete(self, client):
        """Test members and delete."""
        client.post("/api/v1/orgs/", json={"id": "acme", "name": "Acme Corp"}, headers=ADMIN)
        response = client.put("/api/v1/orgs/acme/members/alice", json={"role": "write"}, headers=ADMIN)
        assert response.json()["permissions"]["alice"] == "write"

        response = client.request("DELETE", "/api/v1/orgs/", json=["acme"], headers=ADMIN)
        assert response.json() == ["acme"]
        assert client.get("/api/v1/orgs/acme", headers=ADMIN).status_code == 404


class TestProjectAndWebhookRoutes:
    """Test nested project routes and scoped webhook listing."""

    def test_project_lifecycle(self, client):
        """Test project lifecycle."""
        client.post("/api/v1/orgs/", json={"id": "acme", "name": "Acme Corp"}, headers=ADMIN)
        client.put("/api/v1/orgs/acme/members/alice", json={"role": "write"}, headers=ADMIN)

        response = client.post("/api/v1/orgs/acme/projects", json={"id": "rocket", "name": "Rocket"}, headers=ALICE)
        assert response.status_code == 201
        assert response.json()[0]["id"] == "acme:rocket"

        response = client.get("/api/v1/orgs/acme/projects/rocket", headers=ALICE)
        assert response.json()["permissions"] == {"alice": "admin"}
        assert [p["id"] for p in client.get("/api/v1/projects", headers=ALICE).json()] == ["acme:rocket"]

        response = client.put("/api/v1/orgs/acme/projects", json=[{"id": "rocket", "name": "Rocket Two"}], headers=ALICE)
        assert response.status_code == 200
        assert response.json()[0]["name"] == "Rocket Two"

        hook = {"type": "Incoming", "token": "t", "token_location": "X-T", "reference": "acme:rocket"}
        assert client.post("/api/v1/webhooks/", json=hook, headers=ALICE).status_code == 201
        listed = client.get("/api/v1/webhooks/", params={"org": "acme", "project": "rocket"}, headers=ALICE).json()
        assert len(listed) == 1

        response = client.request("DELETE", "/api/v1/orgs/acme/projects", json="rocket", headers=ALICE)
        assert response.json() == ["acme:rocket"]

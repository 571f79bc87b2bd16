"""Shared fixtures: an in-memory database, stores and controllers."""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from modelhub_core.bootstrap import ensure_default_organization
from modelhub_core.config import Settings
from modelhub_core.controllers import (
    OrganizationController,
    ProjectController,
    UserController,
    WebhookController,
)
from modelhub_core.models import Base, utcnow
from modelhub_core.store import Stores
from modelhub_core.updates import creation_stamp


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def db(engine):
    Session = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = Session()
    yield session
    session.close()


@pytest.fixture
def settings():
    return Settings(database_url="sqlite://", _env_file=None)


@pytest.fixture
def stores(db, settings):
    stores = Stores(db)
    ensure_default_organization(stores, settings)
    return stores


@pytest.fixture
def make_user(stores):
    """Insert a user directly, bypassing the controller."""

    def _make_user(username, admin=False, archived=False):
        doc = {
            "id": username,
            "admin": admin,
            "custom": {},
            **creation_stamp("admin", utcnow(), archived),
        }
        return stores.users.insert_many([doc])[0]

    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user("admin", admin=True)


@pytest.fixture
def alice(make_user):
    return make_user("alice")


@pytest.fixture
def bob(make_user):
    return make_user("bob")


@pytest.fixture
def org_controller(stores, settings):
    return OrganizationController(stores, settings=settings)


@pytest.fixture
def project_controller(stores, settings):
    return ProjectController(stores, settings=settings)


@pytest.fixture
def user_controller(stores, settings):
    return UserController(stores, settings=settings)


@pytest.fixture
def webhook_controller(stores, settings):
    return WebhookController(stores, settings=settings)


@pytest.fixture
def acme(org_controller, admin, alice):
    """Organization 'acme' where alice holds write."""
    org_controller.create(admin, {"id": "acme", "name": "Acme Corp"})
    return org_controller.set_permissions(admin, "acme", "alice", "write")


@pytest.fixture
def rocket(project_controller, acme, alice):
    """Project 'acme:rocket' created by alice (so alice is its admin)."""
    return project_controller.create(alice, "acme", {"id": "rocket", "name": "Rocket"})[0]

"""SQLAlchemy database models.

Every entity is keyed by its composite reference id (see ``ids``), so
containment is encoded in the key itself: ``org``, ``org:project``,
``org:project:branch`` and ``org:project:branch:item``. Cross-scope cleanup
is driven by id prefixes in the cascade layer rather than by foreign keys.
"""
from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Column,
    String,
    Text,
    DateTime,
    Enum,
    Boolean,
    JSON,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

# Base class for all models
Base = declarative_base()

# Portable JSON column: JSONB on PostgreSQL, JSON elsewhere
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Return the current UTC time."""
    return datetime.now(timezone.utc)


class Role(str, enum.Enum):
    """Permission roles, ordered from weakest to strongest."""

    READ = "read"
    WRITE = "write"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return ROLE_ORDER.index(self)

    def implies(self, other: "Role") -> bool:
        """Return True if holding this role grants ``other`` as well."""
        return self.rank >= Role(other).rank


ROLE_ORDER = [Role.READ, Role.WRITE, Role.ADMIN]

# Change-set value that drops a principal from a permission map
REMOVE_ALL = "remove_all"


class ProjectVisibility(str, enum.Enum):
    """Project visibility enum."""

    PRIVATE = "private"
    INTERNAL = "internal"  # Readable by every member of the owning org


class WebhookType(str, enum.Enum):
    """Webhook direction."""

    INCOMING = "Incoming"
    OUTGOING = "Outgoing"


class AuditMixin:
    """Columns shared by every stored entity."""

    custom = Column(JSONType, nullable=False, default=dict)

    archived = Column(Boolean, nullable=False, default=False, index=True)
    archived_by = Column(String(255), nullable=True)
    archived_on = Column(DateTime(timezone=True), nullable=True)

    created_by = Column(String(255), nullable=True, index=True)
    created_on = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_modified_by = Column(String(255), nullable=True, index=True)
    updated_on = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class User(AuditMixin, Base):
    """
    User model.

    The id is the username. Users are referenced by id from permission maps
    and audit columns, never embedded.
    """

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    fname = Column(String(255), nullable=True)
    lname = Column(String(255), nullable=True)
    preferred_name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    admin = Column(Boolean, nullable=False, default=False)
    provider = Column(String(50), nullable=False, default="local")

    def __repr__(self) -> str:
        return f"<User {self.id}>"


class Organization(AuditMixin, Base):
    """
    Organization model, the top-level tenant scope.

    ``permissions`` maps a user id to the highest role held on the org.
    """

    __tablename__ = "organizations"

    id = Column(String(255), primary_key=True)
    name = Column(String(255), nullable=False)
    permissions = Column(JSONType, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<Organization {self.id}: {self.name}>"


class Project(AuditMixin, Base):
    """
    Project model. Id is ``org:project``.
    """

    __tablename__ = "projects"

    id = Column(String(255), primary_key=True)
    org = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    visibility = Column(
        Enum(ProjectVisibility, values_callable=lambda x: [e.value for e in x], native_enum=False),
        nullable=False,
        default=ProjectVisibility.PRIVATE,
    )
    permissions = Column(JSONType, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<Project {self.id}: {self.name}>"


class Branch(AuditMixin, Base):
    """Branch model. Id is ``org:project:branch``."""

    __tablename__ = "branches"

    id = Column(String(255), primary_key=True)
    project = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    source = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Branch {self.id}>"


class Element(AuditMixin, Base):
    """Element model. Id is ``org:project:branch:element``."""

    __tablename__ = "elements"

    id = Column(String(255), primary_key=True)
    project = Column(String(255), nullable=False, index=True)
    branch = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    parent = Column(String(255), nullable=True)

    def __repr__(self) -> str:
        return f"<Element {self.id}>"


class Artifact(AuditMixin, Base):
    """Artifact metadata. Id is ``org:project:branch:artifact``."""

    __tablename__ = "artifacts"

    id = Column(String(255), primary_key=True)
    project = Column(String(255), nullable=False, index=True)
    branch = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    filename = Column(String(255), nullable=True)
    location = Column(Text, nullable=True)

    def __repr__(self) -> str:
        return f"<Artifact {self.id}>"


class Webhook(AuditMixin, Base):
    """
    Webhook model.

    ``reference`` is the scope the webhook is attached to: an empty string
    for server-wide hooks, otherwise an org, project or branch id. Outgoing
    hooks carry ``responses``; incoming hooks carry ``token`` and
    ``token_location``.
    """

    __tablename__ = "webhooks"

    id = Column(String(36), primary_key=True)
    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    type = Column(
        Enum(WebhookType, values_callable=lambda x: [e.value for e in x], native_enum=False),
        nullable=False,
    )
    triggers = Column(JSONType, nullable=False, default=list)
    responses = Column(JSONType, nullable=True)
    token = Column(String(255), nullable=True)
    token_location = Column(String(255), nullable=True)
    reference = Column(String(255), nullable=False, default="", index=True)

    def __repr__(self) -> str:
        return f"<Webhook {self.id} ({self.type})>"

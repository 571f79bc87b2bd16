"""Document-style persistence over SQLAlchemy.

Controllers work with plain dicts and small query dicts; this module
translates both to SQLAlchemy queries on the model for each entity kind.

Query dicts support:

- ``{"field": value}``: equality
- ``{"field": [v1, v2]}``: membership
- ``{"field": None}``: null test
- ``{"field__under": "org:proj"}``: the value itself or anything below it
  in the id hierarchy (a list of prefixes is also accepted)
- ``{"custom.key": "value"}``: equality on a custom-data key
"""
import copy
import enum
import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy import false, inspect, or_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from . import models
from .errors import DataFormatError, OperationError, ServerError
from .ids import ID_DELIMITER

logger = logging.getLogger("modelhub-core.store")

UNDER_SUFFIX = "__under"
CUSTOM_PREFIX = "custom."

# Reference fields that can be replaced by the referenced document
POPULATE_TARGETS = {
    "created_by": "users",
    "last_modified_by": "users",
    "archived_by": "users",
    "org": "organizations",
    "project": "projects",
    "branch": "branches",
}


@dataclass
class UpdateOp:
    """A single-document update: set ``changes`` on the row with ``id``."""

    id: str
    changes: dict[str, Any]


@dataclass
class BulkWriteResult:
    matched: int
    modified: int


class DocumentStore:
    """Find/insert/update/delete documents of one entity kind."""

    def __init__(self, db: Session, model, stores: Optional["Stores"] = None):
        self.db = db
        self.model = model
        self.stores = stores
        self.columns = [attr.key for attr in inspect(model).column_attrs]

    @property
    def name(self) -> str:
        return self.model.__tablename__

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    def _column(self, key: str):
        if key not in self.columns:
            raise DataFormatError(f"Invalid field for {self.name}: '{key}'.")
        return getattr(self.model, key)

    def _filters(self, query: Optional[dict]) -> list:
        clauses = []
        for key, value in (query or {}).items():
            if key.startswith(CUSTOM_PREFIX):
                path = key[len(CUSTOM_PREFIX):]
                clauses.append(self.model.custom[path].as_string() == value)
            elif key.endswith(UNDER_SUFFIX):
                column = self._column(key[:-len(UNDER_SUFFIX)])
                prefixes = value if isinstance(value, (list, tuple, set)) else [value]
                if not prefixes:
                    clauses.append(false())
                    continue
                clauses.append(or_(*[
                    or_(column == prefix, column.startswith(prefix + ID_DELIMITER, autoescape=True))
                    for prefix in prefixes
                ]))
            else:
                column = self._column(key)
                if isinstance(value, (list, tuple, set)):
                    clauses.append(column.in_(list(value)))
                elif value is None:
                    clauses.append(column.is_(None))
                else:
                    clauses.append(column == value)
        return clauses

    def _order(self, sort: Optional[str]) -> list:
        if not sort:
            return [self.model.id]
        descending = sort.startswith("-")
        column = self._column(sort.lstrip("-"))
        return [column.desc() if descending else column.asc(), self.model.id]

    def to_dict(self, row) -> dict[str, Any]:
        """Convert a row to a plain document."""
        doc = {}
        for key in self.columns:
            value = getattr(row, key)
            if isinstance(value, enum.Enum):
                value = value.value
            elif isinstance(value, (dict, list)):
                value = copy.deepcopy(value)
            doc[key] = value
        return doc

    def project(self, doc: dict, fields: list[str]) -> dict:
        """Apply a projection; a leading ``-`` excludes a field. The id is always kept."""
        include = [f for f in fields if not f.startswith("-")]
        exclude = {f[1:] for f in fields if f.startswith("-")}
        for name in include + list(exclude):
            self._column(name)
        if include:
            doc = {k: v for k, v in doc.items() if k == "id" or k in include}
        return {k: v for k, v in doc.items() if k == "id" or k not in exclude}

    def populate(self, docs: list[dict], names: list[str]) -> None:
        """Replace reference ids in ``docs`` with the referenced documents, in place."""
        for name in names:
            target = POPULATE_TARGETS.get(name)
            if target is None or name not in self.columns or self.stores is None:
                raise DataFormatError(f"Cannot populate field '{name}' of {self.name}.")
            refs = sorted({doc[name] for doc in docs if isinstance(doc.get(name), str)})
            found = {ref["id"]: ref for ref in getattr(self.stores, target).find({"id": refs})}
            for doc in docs:
                if isinstance(doc.get(name), str) and doc[name] in found:
                    doc[name] = found[doc[name]]

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find(
        self,
        query: Optional[dict] = None,
        fields: Optional[list[str]] = None,
        *,
        skip: int = 0,
        limit: int = 0,
        sort: Optional[str] = None,
        populate: Optional[list[str]] = None,
    ) -> list[dict]:
        """
        Find documents matching a query.

        Args:
            query: Query dict (see module docstring)
            fields: Projection
            skip: Number of results to skip
            limit: Maximum number of results, 0 for unlimited
            sort: Field to sort by, ``-`` prefix for descending
            populate: Reference fields to replace with the referenced documents

        Returns:
            List of documents
        """
        q = self.db.query(self.model).filter(*self._filters(query)).order_by(*self._order(sort))
        if skip:
            q = q.offset(skip)
        if limit:
            q = q.limit(limit)
        docs = [self.to_dict(row) for row in q.all()]
        if fields:
            docs = [self.project(doc, fields) for doc in docs]
        if populate:
            self.populate(docs, populate)
        return docs

    def find_one(self, query: dict) -> Optional[dict]:
        docs = self.find(query, limit=1)
        return docs[0] if docs else None

    def count(self, query: Optional[dict] = None) -> int:
        return self.db.query(self.model).filter(*self._filters(query)).count()

    def find_with_member(self, principal_id: str) -> list[dict]:
        """Find documents whose permission map has an entry for the user."""
        column = self._column("permissions")
        q = self.db.query(self.model).filter(column[principal_id].as_string().is_not(None))
        return [self.to_dict(row) for row in q.order_by(self.model.id).all()]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert_many(self, docs: list[dict]) -> list[dict]:
        """
        Insert documents in one transaction.

        Raises:
            OperationError: If an id already exists
        """
        rows = [self.model(**doc) for doc in docs]
        try:
            self.db.add_all(rows)
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"Insert into {self.name} rejected: {e.orig}")
            raise OperationError(f"One or more {self.name} already exist.", status_code=409) from e
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return [self.to_dict(row) for row in rows]

    def bulk_write(self, ops: list[UpdateOp]) -> BulkWriteResult:
        """
        Apply single-document updates in one transaction.

        Ids that no longer exist are skipped and show up as a lower
        ``matched`` count.
        """
        for op in ops:
            for key in op.changes:
                self._column(key)
        ids = [op.id for op in ops]
        rows = {row.id: row for row in self.db.query(self.model).filter(self.model.id.in_(ids))}
        matched = modified = 0
        try:
            for op in ops:
                row = rows.get(op.id)
                if row is None:
                    continue
                matched += 1
                changed = False
                for key, value in op.changes.items():
                    if getattr(row, key) != value:
                        setattr(row, key, value)
                        changed = True
                if changed:
                    modified += 1
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return BulkWriteResult(matched=matched, modified=modified)

    def delete_many(self, query: dict) -> int:
        """Delete every document matching a non-empty query and return the count."""
        if not query:
            raise ServerError(f"Refusing to delete from {self.name} without a filter.")
        try:
            deleted = (
                self.db.query(self.model)
                .filter(*self._filters(query))
                .delete(synchronize_session="fetch")
            )
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return deleted


class Stores:
    """One document store per entity kind, sharing a session."""

    def __init__(self, db: Session):
        self.db = db
        self.users = DocumentStore(db, models.User, self)
        self.organizations = DocumentStore(db, models.Organization, self)
        self.projects = DocumentStore(db, models.Project, self)
        self.branches = DocumentStore(db, models.Branch, self)
        self.elements = DocumentStore(db, models.Element, self)
        self.artifacts = DocumentStore(db, models.Artifact, self)
        self.webhooks = DocumentStore(db, models.Webhook, self)

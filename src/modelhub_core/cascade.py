"""Cleanup of dependent documents when a parent is hard-deleted.

Works on the stores only, so controllers can depend on it without
depending on each other.
"""
import logging

from sqlalchemy.exc import SQLAlchemyError

from .store import Stores, UpdateOp
from .models import utcnow

logger = logging.getLogger("modelhub-core.cascade")


class CascadeCoordinator:
    """Removes contained documents and dangling permission entries."""

    def __init__(self, stores: Stores):
        self.stores = stores

    def _remove_contents(self, scope_ids: list[str], include_projects: bool) -> dict[str, int]:
        counts = {
            "elements": self.stores.elements.delete_many({"id__under": scope_ids}),
            "artifacts": self.stores.artifacts.delete_many({"id__under": scope_ids}),
            "branches": self.stores.branches.delete_many({"id__under": scope_ids}),
            "webhooks": self.stores.webhooks.delete_many({"reference__under": scope_ids}),
        }
        if include_projects:
            counts["projects"] = self.stores.projects.delete_many({"org": scope_ids})
        return counts

    def remove_organization_contents(self, org_ids: list[str]) -> dict[str, int]:
        """
        Delete every project, branch, element, artifact and webhook under the orgs.

        Args:
            org_ids: Ids of the organizations being removed

        Returns:
            Number of deleted documents per kind
        """
        if not org_ids:
            return {}
        counts = self._remove_contents(org_ids, include_projects=True)
        logger.info(f"Cascade for organizations {org_ids}: {counts}")
        return counts

    def remove_project_contents(self, project_ids: list[str]) -> dict[str, int]:
        """Delete every branch, element, artifact and webhook under the projects."""
        if not project_ids:
            return {}
        counts = self._remove_contents(project_ids, include_projects=False)
        logger.info(f"Cascade for projects {project_ids}: {counts}")
        return counts

    def remove_user_references(self, user_ids: list[str], actor_id: str) -> dict[str, int]:
        """
        Strip users from every organization and project permission map.

        Best-effort: a map that fails to save is logged and skipped, the
        remaining documents are still processed.

        Returns:
            Number of updated documents per kind
        """
        counts = {"organizations": 0, "projects": 0}
        for kind in counts:
            store = getattr(self.stores, kind)
            for user_id in user_ids:
                for doc in store.find_with_member(user_id):
                    permissions = dict(doc["permissions"])
                    permissions.pop(user_id, None)
                    changes = {
                        "permissions": permissions,
                        "last_modified_by": actor_id,
                        "updated_on": utcnow(),
                    }
                    try:
                        result = store.bulk_write([UpdateOp(doc["id"], changes)])
                    except SQLAlchemyError as e:
                        logger.error(f"Failed to remove user {user_id} from {kind} {doc['id']}: {e}")
                        continue
                    counts[kind] += result.modified
        logger.info(f"Removed permission references for users {user_ids}: {counts}")
        return counts

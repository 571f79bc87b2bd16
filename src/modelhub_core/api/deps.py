"""FastAPI dependencies shared by the routers."""
import logging
from typing import Optional

from fastapi import Depends, Header, Query
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from ..controllers import OrganizationController, ProjectController, UserController, WebhookController
from ..database import get_db
from ..errors import PermissionDeniedError
from ..store import Stores

logger = logging.getLogger("modelhub-core.api")


def get_stores(db: Session = Depends(get_db)) -> Stores:
    return Stores(db)


def get_current_user(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    stores: Stores = Depends(get_stores),
) -> dict:
    """
    Resolve the requesting user from the ``X-User-Id`` header.

    Raises:
        PermissionDeniedError: 401 if the header is missing or names no user
    """
    if not x_user_id:
        raise PermissionDeniedError("Authentication required.", status_code=401)
    user = stores.users.find_one({"id": x_user_id})
    if user is None:
        logger.warning(f"Rejected request for unknown user '{x_user_id}'")
        raise PermissionDeniedError("Authentication required.", status_code=401)
    return user


def find_options(
    include_archived: Optional[bool] = Query(None, alias="includeArchived"),
    archived: Optional[bool] = Query(None),
    limit: Optional[int] = Query(None),
    skip: Optional[int] = Query(None),
    sort: Optional[str] = Query(None),
    fields: Optional[str] = Query(None, description="Comma separated projection"),
    populate: Optional[str] = Query(None, description="Comma separated reference fields"),
) -> dict:
    """Collect the find options present on the query string."""
    options = {
        "include_archived": include_archived,
        "archived": archived,
        "limit": limit,
        "skip": skip,
        "sort": sort,
        "fields": fields.split(",") if fields else None,
        "populate": populate.split(",") if populate else None,
    }
    return {key: value for key, value in options.items() if value is not None}


def write_options(
    fields: Optional[str] = Query(None, description="Comma separated projection"),
    populate: Optional[str] = Query(None, description="Comma separated reference fields"),
) -> dict:
    options = {
        "fields": fields.split(",") if fields else None,
        "populate": populate.split(",") if populate else None,
    }
    return {key: value for key, value in options.items() if value is not None}


def get_organization_controller(
    stores: Stores = Depends(get_stores),
    settings: Settings = Depends(get_settings),
) -> OrganizationController:
    return OrganizationController(stores, settings=settings)


def get_project_controller(
    stores: Stores = Depends(get_stores),
    settings: Settings = Depends(get_settings),
) -> ProjectController:
    return ProjectController(stores, settings=settings)


def get_user_controller(
    stores: Stores = Depends(get_stores),
    settings: Settings = Depends(get_settings),
) -> UserController:
    return UserController(stores, settings=settings)


def get_webhook_controller(
    stores: Stores = Depends(get_stores),
    settings: Settings = Depends(get_settings),
) -> WebhookController:
    return WebhookController(stores, settings=settings)

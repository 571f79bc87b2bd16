"""Organizations API endpoints."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query

from ... import schemas
from ...controllers import OrganizationController
from ...errors import NotFoundError
from ..deps import find_options, get_current_user, get_organization_controller, write_options

logger = logging.getLogger("modelhub-core.organizations")

router = APIRouter(tags=["organizations"])


@router.get("/")
def list_organizations(
    ids: Optional[str] = Query(None, description="Comma separated organization ids"),
    options: dict = Depends(find_options),
    user: dict = Depends(get_current_user),
    controller: OrganizationController = Depends(get_organization_controller),
):
    """
    List organizations the requesting user can read.
    """
    return controller.find(user, ids.split(",") if ids else None, options)


@router.get("/{org_id}")
def get_organization(
    org_id: str,
    options: dict = Depends(find_options),
    user: dict = Depends(get_current_user),
    controller: OrganizationController = Depends(get_organization_controller),
):
    """
    Get a specific organization by ID.
    """
    found = controller.find(user, org_id, options)
    if not found:
        raise NotFoundError(f"The organization [{org_id}] was not found.")
    return found[0]


@router.post("/", status_code=201)
def create_organizations(
    payload: Any = Body(...),
    options: dict = Depends(write_options),
    user: dict = Depends(get_current_user),
    controller: OrganizationController = Depends(get_organization_controller),
):
    """
    Create one organization (object body) or many (array body).

    - **id**: Organization id (lowercase letters, digits and hyphens)
    - **name**: Display name
    - **custom**: Optional free-form data
    """
    return controller.create(user, payload, options)


@router.patch("/")
def update_organizations(
    payload: Any = Body(...),
    options: dict = Depends(write_options),
    user: dict = Depends(get_current_user),
    controller: OrganizationController = Depends(get_organization_controller),
):
    """
    Update one or many organizations. Each object must carry its id.
    """
    return controller.update(user, payload, options)


@router.delete("/")
def delete_organizations(
    payload: Any = Body(...),
    user: dict = Depends(get_current_user),
    controller: OrganizationController = Depends(get_organization_controller),
):
    """
    Permanently delete organizations by id, with everything they contain.
    """
    return [org["id"] for org in controller.remove(user, payload)]


@router.delete("/{org_id}")
def delete_organization(
    org_id: str,
    user: dict = Depends(get_current_user),
    controller: OrganizationController = Depends(get_organization_controller),
):
    """
    Permanently delete one organization.
    """
    return controller.remove(user, org_id)[0]["id"]


@router.put("/{org_id}/members/{user_id}")
def set_organization_permissions(
    org_id: str,
    user_id: str,
    body: schemas.PermissionUpdate,
    user: dict = Depends(get_current_user),
    controller: OrganizationController = Depends(get_organization_controller),
):
    """
    Set a user's role on an organization (``remove_all`` removes the user).
    """
    return controller.set_permissions(user, org_id, user_id, body.role)

"""Projects API endpoints, nested under an organization."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query

from ... import schemas
from ...controllers import ProjectController
from ...errors import NotFoundError
from ..deps import find_options, get_current_user, get_project_controller, write_options

logger = logging.getLogger("modelhub-core.projects")

router = APIRouter(tags=["projects"])


@router.get("/projects")
def list_all_projects(
    options: dict = Depends(find_options),
    user: dict = Depends(get_current_user),
    controller: ProjectController = Depends(get_project_controller),
):
    """
    List readable projects across every organization.
    """
    return controller.find(user, None, None, options)


@router.get("/orgs/{org_id}/projects")
def list_projects(
    org_id: str,
    ids: Optional[str] = Query(None, description="Comma separated project ids"),
    options: dict = Depends(find_options),
    user: dict = Depends(get_current_user),
    controller: ProjectController = Depends(get_project_controller),
):
    """
    List readable projects of an organization.
    """
    return controller.find(user, org_id, ids.split(",") if ids else None, options)


@router.get("/orgs/{org_id}/projects/{project_id}")
def get_project(
    org_id: str,
    project_id: str,
    options: dict = Depends(find_options),
    user: dict = Depends(get_current_user),
    controller: ProjectController = Depends(get_project_controller),
):
    """
    Get a specific project.
    """
    found = controller.find(user, org_id, project_id, options)
    if not found:
        raise NotFoundError(f"The project [{project_id}] was not found.")
    return found[0]


@router.post("/orgs/{org_id}/projects", status_code=201)
def create_projects(
    org_id: str,
    payload: Any = Body(...),
    options: dict = Depends(write_options),
    user: dict = Depends(get_current_user),
    controller: ProjectController = Depends(get_project_controller),
):
    """
    Create one or many projects. Each gets a master branch.
    """
    return controller.create(user, org_id, payload, options)


@router.put("/orgs/{org_id}/projects")
def create_or_replace_projects(
    org_id: str,
    payload: Any = Body(...),
    options: dict = Depends(write_options),
    user: dict = Depends(get_current_user),
    controller: ProjectController = Depends(get_project_controller),
):
    """
    Create projects, replacing any that already exist.
    """
    return controller.create_or_replace(user, org_id, payload, options)


@router.patch("/orgs/{org_id}/projects")
def update_projects(
    org_id: str,
    payload: Any = Body(...),
    options: dict = Depends(write_options),
    user: dict = Depends(get_current_user),
    controller: ProjectController = Depends(get_project_controller),
):
    """
    Update one or many projects. Each object must carry its id.
    """
    return controller.update(user, org_id, payload, options)


@router.delete("/orgs/{org_id}/projects")
def delete_projects(
    org_id: str,
    payload: Any = Body(...),
    user: dict = Depends(get_current_user),
    controller: ProjectController = Depends(get_project_controller),
):
    """
    Permanently delete projects by id, with everything they contain.
    """
    return [project["id"] for project in controller.remove(user, org_id, payload)]


@router.put("/orgs/{org_id}/projects/{project_id}/members/{user_id}")
def set_project_permissions(
    org_id: str,
    project_id: str,
    user_id: str,
    body: schemas.PermissionUpdate,
    user: dict = Depends(get_current_user),
    controller: ProjectController = Depends(get_project_controller),
):
    """
    Set a user's role on a project (``remove_all`` removes the user).
    """
    return controller.set_permissions(user, org_id, project_id, user_id, body.role)

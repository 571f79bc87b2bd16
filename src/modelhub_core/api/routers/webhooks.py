"""Webhooks API endpoints."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query

from ...controllers import WebhookController
from ..deps import find_options, get_current_user, get_webhook_controller, write_options

logger = logging.getLogger("modelhub-core.webhooks")

router = APIRouter(tags=["webhooks"])


@router.get("/")
def list_webhooks(
    org: Optional[str] = Query(None, description="Organization id of the scope"),
    project: Optional[str] = Query(None, description="Project id of the scope"),
    branch: Optional[str] = Query(None, description="Branch id of the scope"),
    ids: Optional[str] = Query(None, description="Comma separated webhook ids"),
    options: dict = Depends(find_options),
    user: dict = Depends(get_current_user),
    controller: WebhookController = Depends(get_webhook_controller),
):
    """
    List webhooks of one scope. With no scope, server-level webhooks are listed.
    """
    return controller.find(
        user,
        ids.split(",") if ids else None,
        options,
        org_id=org,
        project_id=project,
        branch_id=branch,
    )


@router.post("/", status_code=201)
def create_webhooks(
    payload: Any = Body(...),
    options: dict = Depends(write_options),
    user: dict = Depends(get_current_user),
    controller: WebhookController = Depends(get_webhook_controller),
):
    """
    Create one or many webhooks.

    - **type**: Incoming (with token and token_location) or Outgoing (with responses)
    - **reference**: "" for server-level, or an org, project or branch id
    """
    return controller.create(user, payload, options)


@router.patch("/")
def update_webhooks(
    payload: Any = Body(...),
    options: dict = Depends(write_options),
    user: dict = Depends(get_current_user),
    controller: WebhookController = Depends(get_webhook_controller),
):
    """
    Update one or many webhooks. Type and reference cannot be changed.
    """
    return controller.update(user, payload, options)


@router.delete("/")
def delete_webhooks(
    payload: Any = Body(...),
    user: dict = Depends(get_current_user),
    controller: WebhookController = Depends(get_webhook_controller),
):
    """
    Permanently delete webhooks by id.
    """
    return [hook["id"] for hook in controller.remove(user, payload)]

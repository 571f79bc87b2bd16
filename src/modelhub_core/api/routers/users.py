"""Users API endpoints."""
import logging
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, Query

from ...controllers import UserController
from ...errors import NotFoundError
from ..deps import find_options, get_current_user, get_user_controller, write_options

logger = logging.getLogger("modelhub-core.users")

router = APIRouter(tags=["users"])


@router.get("/whoami")
def whoami(user: dict = Depends(get_current_user)):
    """
    Return the requesting user.
    """
    return {"username": user["id"], **user}


@router.get("/")
def list_users(
    usernames: Optional[str] = Query(None, description="Comma separated usernames"),
    options: dict = Depends(find_options),
    user: dict = Depends(get_current_user),
    controller: UserController = Depends(get_user_controller),
):
    """
    List users.
    """
    return controller.find(user, usernames.split(",") if usernames else None, options)


@router.get("/{username}")
def get_user(
    username: str,
    options: dict = Depends(find_options),
    user: dict = Depends(get_current_user),
    controller: UserController = Depends(get_user_controller),
):
    """
    Get a specific user.
    """
    found = controller.find(user, username, options)
    if not found:
        raise NotFoundError(f"The user [{username}] was not found.")
    return found[0]


@router.post("/", status_code=201)
def create_users(
    payload: Any = Body(...),
    options: dict = Depends(write_options),
    user: dict = Depends(get_current_user),
    controller: UserController = Depends(get_user_controller),
):
    """
    Create one or many users (system admins only).
    """
    return controller.create(user, payload, options)


@router.patch("/")
def update_users(
    payload: Any = Body(...),
    options: dict = Depends(write_options),
    user: dict = Depends(get_current_user),
    controller: UserController = Depends(get_user_controller),
):
    """
    Update one or many users. Each object must carry its username.
    """
    return controller.update(user, payload, options)


@router.delete("/")
def delete_users(
    payload: Any = Body(...),
    user: dict = Depends(get_current_user),
    controller: UserController = Depends(get_user_controller),
):
    """
    Permanently delete users (system admins only).
    """
    return [doc["username"] for doc in controller.remove(user, payload)]

"""Pydantic schemas for structured fields and HTTP bodies."""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field


# Webhook Schemas

class WebhookResponseSpec(BaseModel):
    """One dispatch target of an outgoing webhook."""

    model_config = ConfigDict(extra="forbid")

    url: str = Field(..., min_length=1)
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=lambda: {"Content-Type": "application/json"})
    ca: Optional[str] = Field(None, description="Certificate authority used to verify the target")
    data: Optional[Any] = None


# Request Schemas

class PermissionUpdate(BaseModel):
    """Body for setting one user's role on an organization or project."""

    role: str = Field(..., description="read, write, admin or remove_all")


# Response Schemas

class ErrorResponse(BaseModel):
    """Body returned for every controller error."""

    status: int
    message: str
    description: str

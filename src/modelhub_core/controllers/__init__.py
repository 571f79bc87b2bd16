"""Permission-scoped batch CRUD controllers."""
from .organizations import OrganizationController
from .projects import ProjectController
from .users import UserController
from .webhooks import WebhookController

__all__ = [
    "OrganizationController",
    "ProjectController",
    "UserController",
    "WebhookController",
]

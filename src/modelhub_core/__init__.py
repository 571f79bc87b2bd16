"""Permission-scoped bulk CRUD core for organizations, projects, users and webhooks."""

__version__ = "1.0.0"

"""Startup data that must exist before any controller runs."""
import logging
from typing import Optional

from .config import Settings, get_settings
from .models import utcnow
from .store import Stores
from .updates import creation_stamp

logger = logging.getLogger("modelhub-core.bootstrap")


def ensure_default_organization(stores: Stores, settings: Optional[Settings] = None) -> dict:
    """
    Create the default organization if it does not exist yet.

    Args:
        stores: Stores bound to an open session
        settings: Settings naming the default organization

    Returns:
        The default organization document
    """
    settings = settings or get_settings()
    org_id = settings.default_organization_id
    existing = stores.organizations.find_one({"id": org_id})
    if existing is not None:
        return existing

    doc = {
        "id": org_id,
        "name": settings.default_organization_name,
        "permissions": {},
        "custom": {},
        **creation_stamp(None, utcnow()),
    }
    created = stores.organizations.insert_many([doc])[0]
    logger.info(f"Created default organization '{org_id}'")
    return created

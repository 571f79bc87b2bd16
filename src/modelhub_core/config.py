"""Application settings loaded from the environment."""
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration.

    Values are read from ``MODELHUB_*`` environment variables or a local
    ``.env`` file.
    """

    model_config = SettingsConfigDict(
        env_prefix="MODELHUB_",
        env_file=".env",
        extra="ignore",
    )

    database_url: str = "sqlite:///./modelhub.db"
    default_organization_id: str = "default"
    default_organization_name: str = "Default Org"

    # Hard deletes normally need write on the scope; flip to require admin
    delete_requires_admin: bool = False

    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()

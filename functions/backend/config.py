"""
Configuration and settings for the Love Journal API.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.firebase_constants import detect_env_prefix


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service and scheduled jobs."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")

    # Cloudinary
    cloudinary_cloud_name: Optional[str] = Field(default=None)
    cloudinary_api_key: Optional[str] = Field(default=None)
    cloudinary_api_secret: Optional[str] = Field(default=None)
    # Folder prefix separating DEV/PROD uploads, e.g. "dev".
    cloudinary_folder_prefix: str = Field(default="")

    # Firestore collection prefix ("dev_" or ""). Detected from the project
    # when unset.
    env_prefix: Optional[str] = Field(default=None)

    # Firebase Admin service account (optional; falls back to default creds)
    firebase_project_id: Optional[str] = Field(default=None)
    firebase_client_email: Optional[str] = Field(default=None)
    firebase_private_key: Optional[str] = Field(default=None)

    # Comma-separated collection prefixes processed by the account reaper.
    # An empty item means production, e.g. "dev_," processes both.
    account_reaper_environments: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="LOVE_JOURNAL_USE_IN_MEMORY_BACKENDS"
    )

    @property
    def cloudinary_configured(self) -> bool:
        return bool(
            self.cloudinary_cloud_name
            and self.cloudinary_api_key
            and self.cloudinary_api_secret
        )

    @property
    def firebase_credentials_configured(self) -> bool:
        return bool(
            self.firebase_project_id
            and self.firebase_client_email
            and self.firebase_private_key
        )

    def resolved_env_prefix(self) -> str:
        if self.env_prefix is not None:
            return self.env_prefix
        return detect_env_prefix()

    def reaper_env_prefixes(self) -> list[str]:
        if self.account_reaper_environments is None:
            return [self.resolved_env_prefix()]
        prefixes = [p.strip() for p in self.account_reaper_environments.split(",")]
        # Keep order, drop duplicates.
        return list(dict.fromkeys(prefixes))


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()

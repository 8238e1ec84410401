from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from tradelog.schema import DEFAULT_MIGRATION_BATCH_SIZE, DEFAULT_ROOT_COLLECTION, MAX_BATCH_SIZE


class SyncSettings(BaseSettings):
    """
    Runtime configuration for the sync layer.

    Env vars use the `TRADELOG_` prefix (e.g. TRADELOG_MIGRATION_BATCH_SIZE=200).
    The Firestore project id also accepts the usual Firebase/GCP names.
    """

    model_config = SettingsConfigDict(
        env_prefix="TRADELOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    service_name: str = "tradelog"
    env: str = "local"
    log_level: str = "INFO"

    # Firestore layout
    root_collection: str = DEFAULT_ROOT_COLLECTION
    migration_batch_size: int = Field(default=DEFAULT_MIGRATION_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE)

    firebase_project_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "TRADELOG_FIREBASE_PROJECT_ID",
            "FIREBASE_PROJECT_ID",
            "GOOGLE_CLOUD_PROJECT",
        ),
    )

    # Offline journal (JSON files mirroring the app's local storage keys)
    local_data_dir: Path = Path(".tradelog")

    @field_validator("root_collection")
    @classmethod
    def _root_collection_is_single_segment(cls, v: str) -> str:
        s = (v or "").strip().strip("/")
        if not s or "/" in s:
            raise ValueError("root_collection must be a single non-empty path segment")
        return s

    @field_validator("log_level")
    @classmethod
    def _upper_log_level(cls, v: str) -> str:
        return (v or "INFO").strip().upper()


@lru_cache(maxsize=1)
def get_settings() -> SyncSettings:
    return SyncSettings()

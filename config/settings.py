"""
Identity Reconciliation Configuration Settings
"""
from pathlib import Path
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Contact store (SQLite file shared by every worker process)
    db_path: Path = Field(
        default=Path("./data/contacts.db"),
        alias="IDENTITY_DB_PATH"
    )
    store_timeout_seconds: float = Field(
        default=5.0,
        alias="IDENTITY_STORE_TIMEOUT",
        description="Seconds to wait for the store write lock before reporting a conflict"
    )

    # Server
    port: int = Field(default=8000, alias="IDENTITY_PORT")
    host: str = Field(default="0.0.0.0", alias="IDENTITY_HOST")

    # Conflict retries for the identify unit of work
    max_conflict_retries: int = Field(
        default=3,
        alias="IDENTITY_MAX_CONFLICT_RETRIES",
        description="Retries after the first attempt when a concurrent merge conflicts"
    )
    retry_base_delay: float = Field(
        default=0.05,
        alias="IDENTITY_RETRY_BASE_DELAY",
        description="Initial backoff between conflict retries (seconds)"
    )

    log_level: str = Field(default="INFO", alias="IDENTITY_LOG_LEVEL")


settings = Settings()

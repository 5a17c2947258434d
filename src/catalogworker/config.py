"""
Configuration for catalogworker.

Uses Pydantic for validation and environment loading.
"""

import os
from functools import lru_cache

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ImportConfig(BaseModel):
    """Configuration for a single CSV import run."""

    batch_size: int = Field(default=10, ge=1, description="Rows imported concurrently")
    progress_interval: int = Field(
        default=50, ge=1, description="Rows between progress log lines"
    )
    max_redirects: int = Field(default=5, ge=0, description="Max HTTP redirects to follow")
    download_timeout: float = Field(
        default=30.0, description="CSV download timeout in seconds"
    )
    error_sample_size: int = Field(
        default=50, description="Row errors kept in an execution summary"
    )
    notification_error_sample: int = Field(
        default=10, description="Row errors included in a completion event"
    )


class WorkerConfig(BaseSettings):
    """Master configuration for catalogworker."""

    model_config = SettingsConfigDict(
        env_prefix="",  # No prefix, use exact names
        env_file=".env",
        extra="ignore",
    )

    # Service identity
    service_name: str = Field(default="catalogworker")
    service_version: str = Field(default="0.1.0")
    log_level: str = Field(default="INFO")

    # Job store
    database_url: str = Field(
        default="", description="PostgreSQL URL for job state, empty = in-memory"
    )

    # Scheduling
    timezone: str = Field(default="UTC", description="Timezone for cron evaluation")

    # Catalog collaborator
    catalog_backend: str = Field(
        default="catalogworker.importer.catalog:InMemoryCatalogStore",
        description="Import path (module:attribute) of the catalog store factory",
    )

    importer: ImportConfig = Field(default_factory=ImportConfig)

    @classmethod
    def from_env(cls) -> "WorkerConfig":
        """Load configuration from environment variables."""
        return cls(
            service_name=os.getenv("SERVICE_NAME", "catalogworker"),
            service_version=os.getenv("SERVICE_VERSION", "0.1.0"),
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            database_url=os.getenv("DATABASE_URL", ""),
            timezone=os.getenv("SCHEDULER_TIMEZONE", "UTC"),
            catalog_backend=os.getenv(
                "CATALOG_BACKEND",
                "catalogworker.importer.catalog:InMemoryCatalogStore",
            ),
            importer=ImportConfig(
                batch_size=int(os.getenv("IMPORT_BATCH_SIZE", "10")),
                progress_interval=int(os.getenv("IMPORT_PROGRESS_INTERVAL", "50")),
                max_redirects=int(os.getenv("IMPORT_MAX_REDIRECTS", "5")),
                download_timeout=float(os.getenv("IMPORT_DOWNLOAD_TIMEOUT", "30.0")),
                error_sample_size=int(os.getenv("IMPORT_ERROR_SAMPLE_SIZE", "50")),
                notification_error_sample=int(
                    os.getenv("IMPORT_NOTIFICATION_ERROR_SAMPLE", "10")
                ),
            ),
        )


@lru_cache(maxsize=1)
def get_config() -> WorkerConfig:
    """Get the process-wide configuration (loaded once)."""
    return WorkerConfig.from_env()

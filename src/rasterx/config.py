"""Environment-based configuration for RasterX."""

from __future__ import annotations

import tempfile
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from RASTERX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RASTERX_",
        case_sensitive=False,
    )

    # Deployed transform (one per process)
    transform: Literal["grayscale", "rotate", "resize"] = "grayscale"

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Spooled input/output files land here
    spool_dir: str = Field(default_factory=tempfile.gettempdir)

    # Object storage
    aws_region: str | None = None
    s3_endpoint_url: str | None = None

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()

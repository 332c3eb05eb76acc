"""Application configuration via environment variables.

Uses pydantic-settings to load config from env vars with MARKETSYNC_ prefix.
The defaults run a single-node server backed by a local SQLite file.
"""

from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """All app configuration. Set via MARKETSYNC_* env vars."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./marketplace.db"

    # Server
    environment: str = "development"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3000

    # Static assets and uploaded listing images
    static_dir: str = "public"
    uploads_dir: str = "uploads"
    uploads_url_prefix: str = "/uploads"
    max_image_bytes: int = 5 * 1024 * 1024

    # Realtime
    command_timeout_seconds: Optional[float] = None  # None = wait for the store
    outbound_queue_size: int = 1000  # per session, before the peer is dropped

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    model_config = {"env_prefix": "MARKETSYNC_"}

    @model_validator(mode="after")
    def validate_realtime_settings(self):
        """Reject limits that would make every command or session fail."""
        if self.command_timeout_seconds is not None and self.command_timeout_seconds <= 0:
            raise ValueError("MARKETSYNC_COMMAND_TIMEOUT_SECONDS must be positive")
        if self.outbound_queue_size < 1:
            raise ValueError("MARKETSYNC_OUTBOUND_QUEUE_SIZE must be at least 1")
        return self


# Singleton — import this everywhere
settings = Settings()

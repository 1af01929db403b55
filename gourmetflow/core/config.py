"""
Terminal configuration.

Everything is read from the environment (or a .env file next to the
terminal) through pydantic-settings. ENV_MODE picks the adapters:
    - DEVELOPMENT: Uses mock collaborators (no backend, bridge or gateway needed)
    - STAGING: Uses the real HTTP backend with test credentials
    - PRODUCTION: Uses the real HTTP backend, WhatsApp bridge and Stripe

The same terminal build runs fully offline on a laptop or against the
live backend.

Usage:
    from gourmetflow.core.config import get_settings

    settings = get_settings()
    if settings.is_development:
        # Mock remote backend
    else:
        # Real HTTP backend

Author: GourmetFlow Team
Version: 1.0.0
"""

import logging
import sys
from enum import Enum
from typing import Optional
from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EnvironmentMode(str, Enum):
    """Which adapters the service factories build."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"
    STAGING = "staging"


class Settings(BaseSettings):
    """
    Settings of one restaurant terminal.

    Field names map to upper-case environment variables
    (RESTAURANT_ID, SYNC_MAX_ATTEMPTS, ...). Keys and tokens belong in .env only.

    Attributes:
        env_mode: development, staging or production
        debug: Enable verbose logging

        # Local store
        local_database_url: SQLAlchemy URL of the on-device database
        data_directory: Directory holding the database and lock files

        # Remote backend
        remote_api_url: Base URL of the records API
        remote_api_key: Bearer token for the records API
        remote_timeout_seconds: Upper bound for a single remote call

        # Sync policy
        sync_interval_seconds: Periodic drain interval while online
        sync_max_attempts: Attempts before an item is marked failed
        sync_base_delay_seconds: First retry delay (doubles per attempt)
        sync_max_delay_seconds: Retry delay cap
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # ENVIRONMENT
    # ==========================================================================

    env_mode: EnvironmentMode = Field(
        default=EnvironmentMode.DEVELOPMENT,
        description="Application environment mode"
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode with verbose logging"
    )

    # ==========================================================================
    # APPLICATION
    # ==========================================================================

    app_name: str = Field(
        default="GourmetFlow Offline Sync",
        description="Application display name"
    )
    app_version: str = Field(
        default="1.0.0",
        description="Application version"
    )
    api_host: str = Field(
        default="127.0.0.1",
        description="Local API server host"
    )
    api_port: int = Field(
        default=8010,
        description="Local API server port"
    )
    restaurant_id: str = Field(
        default="default",
        description="Restaurant this terminal belongs to"
    )

    # ==========================================================================
    # LOCAL STORE
    # ==========================================================================

    data_directory: str = Field(
        default="data",
        description="Directory for the local database and lock files"
    )
    local_database_url: Optional[str] = Field(
        default=None,
        description="SQLAlchemy async URL (defaults to SQLite in data_directory)"
    )
    drain_lock_filename: str = Field(
        default="sync_drain.lock",
        description="Lock file guarding a single drain per device"
    )

    # ==========================================================================
    # REMOTE BACKEND
    # ==========================================================================

    remote_api_url: str = Field(
        default="http://localhost:54321/rest/v1",
        description="Base URL of the remote records API"
    )
    remote_api_key: Optional[str] = Field(
        default=None,
        description="API key sent as bearer token to the records API"
    )
    remote_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for a single remote call"
    )

    # ==========================================================================
    # WHATSAPP BRIDGE
    # ==========================================================================

    whatsapp_bridge_url: str = Field(
        default="http://localhost:3001",
        description="Base URL of the WhatsApp bridge process"
    )
    whatsapp_bridge_token: Optional[str] = Field(
        default=None,
        description="Shared secret for the WhatsApp bridge"
    )
    whatsapp_device_id: Optional[str] = Field(
        default=None,
        description="Default WhatsApp device used for outbound messages"
    )

    # ==========================================================================
    # STRIPE PAYMENT GATEWAY
    # ==========================================================================

    stripe_secret_key: Optional[str] = Field(
        default=None,
        description="Stripe API secret key (sk_live_... or sk_test_...)"
    )
    stripe_currency: str = Field(
        default="brl",
        description="Default currency for charges"
    )

    # ==========================================================================
    # REDIS / CELERY
    # ==========================================================================

    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL"
    )

    # ==========================================================================
    # SYNC POLICY
    # ==========================================================================

    sync_interval_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Seconds between periodic drains while online"
    )
    sync_max_attempts: int = Field(
        default=5,
        ge=1,
        description="Attempts before a queue item is marked failed"
    )
    sync_base_delay_seconds: float = Field(
        default=2.0,
        ge=0,
        description="Initial retry delay, doubled per attempt"
    )
    sync_max_delay_seconds: float = Field(
        default=60.0,
        ge=0,
        description="Maximum retry delay"
    )
    menu_cache_max_age_minutes: int = Field(
        default=60,
        description="Age after which the cached menu is considered stale"
    )
    retention_days: int = Field(
        default=7,
        description="Synced records older than this may be pruned"
    )

    # ==========================================================================
    # VALIDATORS
    # ==========================================================================

    @field_validator("env_mode", mode="before")
    @classmethod
    def validate_env_mode(cls, v: str) -> EnvironmentMode:
        if isinstance(v, EnvironmentMode):
            return v
        try:
            return EnvironmentMode(v.lower())
        except ValueError:
            valid = [e.value for e in EnvironmentMode]
            raise ValueError(f"Invalid env_mode. Must be one of: {valid}")

    # ==========================================================================
    # COMPUTED PROPERTIES
    # ==========================================================================

    @property
    def is_development(self) -> bool:
        return self.env_mode == EnvironmentMode.DEVELOPMENT

    @property
    def use_real_services(self) -> bool:
        """Staging and production talk to the real backend, bridge and gateway."""
        return self.env_mode in (EnvironmentMode.PRODUCTION, EnvironmentMode.STAGING)

    @property
    def data_path(self) -> Path:
        return Path(self.data_directory)

    @property
    def database_url(self) -> str:
        """Resolved SQLAlchemy URL for the local store."""
        if self.local_database_url:
            return self.local_database_url
        return f"sqlite+aiosqlite:///{self.data_path / 'gourmetflow-offline.db'}"

    @property
    def drain_lock_path(self) -> Path:
        return self.data_path / self.drain_lock_filename

    # ==========================================================================
    # VALIDATION METHODS
    # ==========================================================================

    def validate_production_config(self) -> list[str]:
        """
        Names of the credentials missing for the real adapters.

        Empty in development, where nothing external is contacted.
        """
        missing = []

        if self.use_real_services:
            if not self.remote_api_key:
                missing.append("REMOTE_API_KEY")
            if not self.whatsapp_bridge_token:
                missing.append("WHATSAPP_BRIDGE_TOKEN")
            if not self.stripe_secret_key:
                missing.append("STRIPE_SECRET_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Settings are loaded once per process; tests call
    ``get_settings.cache_clear()`` after changing the environment.
    """
    return Settings()


# =============================================================================
# LOGGING CONFIGURATION
# =============================================================================

def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Route every logger to stdout in one format. DEBUG=true forces debug level.

    Returns the "gourmetflow" package logger.
    """
    settings = get_settings()

    if settings.debug:
        level = logging.DEBUG

    log_format = "%(asctime)s │ %(levelname)-8s │ %(name)-25s │ %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    logging.basicConfig(
        level=level,
        format=log_format,
        datefmt=date_format,
        handlers=[logging.StreamHandler(sys.stdout)],
    )

    # Client libraries are chatty at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    return logging.getLogger("gourmetflow")


"""Application Settings and Configuration.

This module provides application-wide settings that combine configuration
from the configuration manager with application-specific defaults.

Security Impact:
    - The issuing cipher is fixed to AES-GCM and is not configurable
    - PINs are never part of configuration
"""

import os
from typing import Optional

from opentag.infrastructure.config_manager import StoreConfig, get_store_config

# Application metadata
APP_NAME = "OpenTag"
APP_VERSION = "1.0.0"

DEFAULT_SERVERLESS_BASE_URL = "https://opentag.github.io/serverless"
DEFAULT_ONLINE_BASE_URL = "https://opentag.github.io/tag"

# Simulated verification latency; zero disables it
DEFAULT_VERIFY_DELAY_MS = 0


class Settings:
    """Application settings loaded from configuration manager and environment.

    Example Usage:
        ```python
        from opentag.infrastructure.settings import settings

        delay = settings.verification_delay
        store_config = settings.store_config
        ```
    """

    def __init__(self):
        """Initialize settings from the environment."""
        self._store_config: Optional[StoreConfig] = None

        self.app_name = os.getenv("OT_APP_NAME", APP_NAME)

        # Logging
        self.log_level = os.getenv("OT_LOG_LEVEL", "WARNING")
        self.log_json = os.getenv("OT_LOG_JSON", "false").lower() == "true"

        # Issuance
        self.serverless_base_url = os.getenv("OT_SERVERLESS_BASE_URL", DEFAULT_SERVERLESS_BASE_URL)
        self.online_base_url = os.getenv("OT_ONLINE_BASE_URL", DEFAULT_ONLINE_BASE_URL)

        # Resolution
        self.verify_delay_ms = int(os.getenv("OT_VERIFY_DELAY_MS", str(DEFAULT_VERIFY_DELAY_MS)))

    @property
    def verification_delay(self) -> float:
        """Verification delay in seconds."""
        return max(self.verify_delay_ms, 0) / 1000

    @property
    def store_config(self) -> StoreConfig:
        """Record store configuration, loaded lazily on first access."""
        if self._store_config is None:
            self._store_config = get_store_config()
        return self._store_config

    def get_db_path(self) -> str:
        """Get database path for DuckDB.

        Returns:
            Database path or ':memory:' for in-memory database
        """
        if self.store_config.store_type == "duckdb":
            return self.store_config.db_path or ":memory:"
        raise ValueError(f"Store type '{self.store_config.store_type}' does not use db_path")


# Global settings instance
settings = Settings()

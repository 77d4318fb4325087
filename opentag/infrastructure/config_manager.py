"""Configuration Manager for the Record Store.

This module loads the record store configuration (which backend, and where
its data lives) from environment variables or a JSON file.

Security Impact:
    - Configuration is validated before use
    - The store only ever holds names, blood groups and opaque envelopes;
      no PIN or key material is configured here

Architecture:
    - Infrastructure layer, isolated from the domain core
    - Type-safe configuration using Pydantic models
    - Fail-fast validation prevents runtime errors
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

SUPPORTED_STORE_TYPES = ("memory", "duckdb")

# Store file used when nothing is configured, relative to the working directory
DEFAULT_DB_PATH = "opentag.duckdb"


class StoreConfig(BaseModel):
    """Record store configuration.

    Parameters:
        store_type: Backend type ('memory' or 'duckdb')
        db_path: Path to the DuckDB database file, or ':memory:'
    """

    store_type: str = Field("memory", description="Record store backend (memory, duckdb)")
    db_path: Optional[str] = Field(None, description="Path to database file (for DuckDB)")

    @field_validator("store_type")
    @classmethod
    def validate_store_type(cls, v: str) -> str:
        """Validate store type."""
        if v.lower() not in SUPPORTED_STORE_TYPES:
            raise ValueError(f"Unsupported store type: {v}. Supported: {list(SUPPORTED_STORE_TYPES)}")
        return v.lower()

    @field_validator("db_path")
    @classmethod
    def validate_db_path(cls, v: Optional[str]) -> Optional[str]:
        """Validate the database directory exists (the file may not yet)."""
        if v is None or v == ":memory:":
            return v

        db_path_obj = Path(v)
        if not db_path_obj.parent.exists():
            raise ValueError(f"Database directory does not exist: {db_path_obj.parent}")

        return str(db_path_obj)

    @property
    def is_persistent(self) -> bool:
        """Whether stored tags outlive the process."""
        return self.store_type == "duckdb" and self.db_path not in (None, ":memory:")


class ConfigManager:
    """Configuration manager for OpenTag infrastructure settings.

    Example Usage:
        ```python
        # Load from environment variables
        config = ConfigManager.from_environment()
        store_config = config.get_store_config()

        # Load from file
        config = ConfigManager.from_file("opentag.json")
        store_config = config.get_store_config()
        ```
    """

    def __init__(self, config_data: Dict[str, Any]):
        """Initialize configuration manager.

        Parameters:
            config_data: Configuration dictionary
        """
        self._config_data = config_data
        self._store_config: Optional[StoreConfig] = None

    @classmethod
    def from_environment(cls, env_file: Optional[str] = None) -> 'ConfigManager':
        """Load configuration from environment variables.

        Environment Variables:
            - OT_STORE_TYPE: Record store backend (memory, duckdb); default duckdb
            - OT_STORE_PATH: Path to the DuckDB database file; default
              ``opentag.duckdb`` in the working directory

        Parameters:
            env_file: Optional .env file; defaults to ``.env`` in the working
                directory when present

        Returns:
            ConfigManager instance
        """
        env_path = Path(env_file) if env_file else Path.cwd() / ".env"
        if env_path.exists():
            load_dotenv(env_path)
            logger.debug(f"Loaded environment variables from {env_path}")

        config_data = {
            "store": {
                "store_type": os.getenv("OT_STORE_TYPE", "duckdb"),
                "db_path": os.getenv("OT_STORE_PATH", DEFAULT_DB_PATH),
            }
        }

        return cls(config_data)

    @classmethod
    def from_file(cls, config_path: str) -> 'ConfigManager':
        """Load configuration from a JSON file.

        Parameters:
            config_path: Path to configuration file

        Returns:
            ConfigManager instance

        Raises:
            FileNotFoundError: If config file doesn't exist
            ValueError: If config file is invalid
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {str(e)}")

        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a JSON object")

        return cls(config_data)

    def get_store_config(self) -> StoreConfig:
        """Get the validated record store configuration."""
        if self._store_config is None:
            store_data = self._config_data.get("store", {})
            self._store_config = StoreConfig(**{k: v for k, v in store_data.items() if v is not None})

        return self._store_config

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value by key.

        Parameters:
            key: Configuration key (supports dot notation, e.g., "store.db_path")
            default: Default value if key not found

        Returns:
            Configuration value
        """
        keys = key.split(".")
        value = self._config_data

        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default

        return value if value is not None else default


# ============================================================================
# Convenience Functions
# ============================================================================

def get_store_config() -> StoreConfig:
    """Load the record store configuration from the environment.

    Defaults to a DuckDB file in the working directory when nothing is
    configured.
    """
    config_manager = ConfigManager.from_environment()
    return config_manager.get_store_config()

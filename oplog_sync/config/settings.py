"""
Centralized configuration management for oplog-sync.

Uses Pydantic Settings for validation and environment variable loading.
Loads from .env file if present, falls back to environment variables, then defaults.
"""
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..errors import ConfigurationError


FIELD_CASES = {"none", "snake", "camel", "lower", "upper"}


class SourceSettings(BaseSettings):
    """MongoDB source configuration."""

    model_config = SettingsConfigDict(
        env_prefix="MONGO_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    uri: str = Field(
        default="mongodb://localhost:27017/test",
        description="Source database URI. The path selects the replicated database."
    )
    oplog_uri: Optional[str] = Field(
        default=None,
        description="URI of the database holding oplog.rs. Defaults to uri with the database set to 'local'."
    )
    server_selection_timeout: int = Field(default=30, description="Server selection timeout in seconds")
    import_batch_size: int = Field(default=100, description="Cursor batch size used while bulk loading")


class SinkSettings(BaseSettings):
    """Relational sink configuration."""

    model_config = SettingsConfigDict(
        env_prefix="SINK_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="mysql+pymysql://root@localhost/test",
        description="SQLAlchemy URL of the sink database"
    )
    pool_size: int = Field(default=5, description="Connection pool size")
    max_overflow: int = Field(default=10, description="Max overflow connections")
    pool_recycle: int = Field(default=3600, description="Recycle connections after this many seconds")
    string_length: int = Field(default=255, description="Length of VARCHAR columns for string fields")


class ReplicationSettings(BaseSettings):
    """Dataset mapping and tail behaviour."""

    model_config = SettingsConfigDict(
        env_prefix="SYNC_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    collections_file: str = Field(
        default="collections.yml",
        description="YAML file mapping collection -> {field: type}"
    )
    prefix: str = Field(default="", description="Prefix prepended to every sink table name")
    field_case: str = Field(default="none", description="Field name case rule: none, snake, camel, lower, upper")

    max_idle_retries: int = Field(
        default=60 * 60 * 24,
        description="Empty polls tolerated on the tailable cursor before the cycle is closed and reopened"
    )
    retry_interval: float = Field(default=1.0, description="Seconds between empty polls")
    await_time_ms: int = Field(default=1000, description="Server-side await time per getMore")
    start_from_latest: bool = Field(
        default=False,
        description="When no checkpoint is stored, start at the newest oplog entry instead of the beginning"
    )

    @field_validator("field_case")
    @classmethod
    def validate_field_case(cls, v: str) -> str:
        if v.lower() not in FIELD_CASES:
            raise ValueError(f"field_case must be one of: {sorted(FIELD_CASES)}")
        return v.lower()

    @field_validator("max_idle_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_idle_retries must be positive")
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    level: str = Field(default="INFO", description="Log level")
    json_format: bool = Field(default=True, description="Emit JSON lines")


class MetricsSettings(BaseSettings):
    """Prometheus exporter configuration."""

    model_config = SettingsConfigDict(
        env_prefix="METRICS_",
        case_sensitive=False,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    enabled: bool = Field(default=False, description="Expose /metrics over HTTP")
    port: int = Field(default=9108, description="Exporter port")


class Settings(BaseSettings):
    """Main application settings combining all sub-settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    source: SourceSettings = Field(default_factory=SourceSettings)
    sink: SinkSettings = Field(default_factory=SinkSettings)
    replication: ReplicationSettings = Field(default_factory=ReplicationSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    metrics: MetricsSettings = Field(default_factory=MetricsSettings)


def load_collections(path: str) -> Dict[str, Dict[str, Any]]:
    """Load the dataset mapping from a YAML file.

    The file maps collection names to ``{field: type}`` mappings::

        users:
          name: string
          age: number
          address.city: string

    Raises:
        ConfigurationError: If the file is missing or malformed
    """
    collections_path = Path(path)
    if not collections_path.exists():
        raise ConfigurationError(f"Collections file not found: {collections_path}")

    try:
        with open(collections_path, 'r') as f:
            collections = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {collections_path}: {e}") from e

    if not isinstance(collections, dict):
        raise ConfigurationError(f"{collections_path} must contain a mapping of collections")

    for name, fields in collections.items():
        if not isinstance(fields, dict) or not fields:
            raise ConfigurationError(f"Collection '{name}' must map field names to types")

    return collections


# Global settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance (singleton pattern)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reload_settings() -> Settings:
    """Reload settings from environment (useful for testing)."""
    global _settings
    _settings = Settings()
    return _settings

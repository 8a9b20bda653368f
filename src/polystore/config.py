"""Configuration loading and Pydantic models for polystore."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class LoggingConfig(BaseModel):
    """Log level, output format and per-logger overrides."""

    level: str = "INFO"
    format: str = "text"
    logger_levels: dict[str, str] = Field(default_factory=dict)


class ListingConfig(BaseModel):
    """Defaults applied to listing traversals."""

    num_recursion_threads: int = Field(default=10, ge=1)
    page_size: int = Field(default=1000, ge=1)


class PollingConfig(BaseModel):
    """Message pump backoff and batching configuration.

    Delays are in seconds.
    """

    min_delay: float = Field(default=0.1, gt=0)
    max_delay: float = Field(default=900.0, gt=0)
    max_batch_size: int = Field(default=1, ge=1)
    visibility: float = Field(default=60.0, gt=0)


class LargeMessageConfig(BaseModel):
    """Payload externalization configuration."""

    threshold: int = Field(default=256 * 1024, ge=0)
    keep_inner_open: bool = False
    path_prefix: str = "message"


class MemoryStorageConfig(BaseModel):
    """In-memory storage backend configuration."""

    max_size_bytes: int = 0
    persistence: str = "none"
    snapshot_path: str = "./data/memory.snap"
    snapshot_interval_seconds: int = 300
    hierarchical: bool = False


class LocalStorageConfig(BaseModel):
    """Local disk storage backend configuration."""

    root_dir: str = "./data/objects"


class StorageConfig(BaseModel):
    """Object storage backend selection."""

    backend: str = "memory"
    memory: MemoryStorageConfig = Field(default_factory=MemoryStorageConfig)
    local: LocalStorageConfig = Field(default_factory=LocalStorageConfig)


class MessagingConfig(BaseModel):
    """Channel backend selection."""

    backend: str = "memory"
    default_visibility: float = Field(default=60.0, gt=0)


class PolystoreConfig(BaseModel):
    """Top-level polystore configuration."""

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    listing: ListingConfig = Field(default_factory=ListingConfig)
    polling: PollingConfig = Field(default_factory=PollingConfig)
    large_message: LargeMessageConfig = Field(default_factory=LargeMessageConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    messaging: MessagingConfig = Field(default_factory=MessagingConfig)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    """Return a YAML section as a dict, treating null or scalars as empty."""
    value = raw.get(name)
    return value if isinstance(value, dict) else {}


def _parse_storage(data: dict[str, Any]) -> dict[str, Any]:
    """Parse the storage section from YAML data.

    Only the nested ``memory`` and ``local`` sections that are mappings are
    kept; anything else falls back to defaults.
    """
    result: dict[str, Any] = {"backend": data.get("backend", "memory")}
    for name in ("memory", "local"):
        nested = data.get(name)
        if isinstance(nested, dict):
            result[name] = nested
    return result


def load_config(path: Path) -> PolystoreConfig:
    """Load a PolystoreConfig from a YAML file.

    Args:
        path: Path to the YAML configuration file.

    Returns:
        A fully populated PolystoreConfig validated by Pydantic.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        pydantic.ValidationError: If a value is out of range.
    """
    with open(path, "r") as fh:
        raw: dict[str, Any] = yaml.safe_load(fh) or {}

    return PolystoreConfig(
        logging=LoggingConfig(**_section(raw, "logging")),
        listing=ListingConfig(**_section(raw, "listing")),
        polling=PollingConfig(**_section(raw, "polling")),
        large_message=LargeMessageConfig(**_section(raw, "large_message")),
        storage=StorageConfig(**_parse_storage(_section(raw, "storage"))),
        messaging=MessagingConfig(**_section(raw, "messaging")),
    )

"""Storage backends and the recursive listing engine for polystore."""

from typing import TYPE_CHECKING

from polystore.storage.backend import StorageBackend
from polystore.storage.generic import Storage
from polystore.storage.listing import list_entries

if TYPE_CHECKING:
    from polystore.config import StorageConfig

__all__ = [
    "create_storage_backend",
    "list_entries",
    "Storage",
    "StorageBackend",
]


def create_storage_backend(config: "StorageConfig") -> StorageBackend:
    """Create a storage backend instance based on configuration.

    Args:
        config: The storage configuration.

    Returns:
        A backend implementing the StorageBackend protocol.

    Raises:
        ValueError: If the backend name is unknown.
    """
    backend = config.backend

    if backend == "memory":
        from polystore.storage.memory import MemoryStorageBackend

        return MemoryStorageBackend(
            hierarchical=config.memory.hierarchical,
            max_size_bytes=config.memory.max_size_bytes,
            persistence=config.memory.persistence,
            snapshot_path=config.memory.snapshot_path,
            snapshot_interval_seconds=config.memory.snapshot_interval_seconds,
        )

    elif backend == "local":
        from polystore.storage.local import LocalStorageBackend

        return LocalStorageBackend(config.local.root_dir)

    else:
        raise ValueError(f"Unknown storage backend: {backend}")

"""Storage facade combining a backend with the recursive listing engine."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from polystore import paths
from polystore.config import ListingConfig
from polystore.errors import InvalidPathError, NotFoundError
from polystore.models import Entry, ListOptions
from polystore.storage.backend import StorageBackend
from polystore.storage.listing import list_entries

logger = logging.getLogger(__name__)


def _file_path(path: str) -> str:
    """Normalize a file path, rejecting the root folder."""
    normalized = paths.normalize(path)
    if not normalized:
        raise InvalidPathError(path, "a file path cannot be the root folder")
    return normalized


class Storage:
    """Backend-independent storage API.

    Every operation normalizes its paths and then delegates to the
    backend's primitives. Bulk operations run concurrently.

    Example:
        async with Storage(MemoryStorageBackend()) as storage:
            await storage.write_text("a/b/file1", "hello")
            entries = await storage.list(recurse=True)
    """

    def __init__(self, backend: StorageBackend, listing: ListingConfig | None = None) -> None:
        self.backend = backend
        self.listing = listing or ListingConfig()

    async def init(self) -> None:
        await self.backend.init()

    async def close(self) -> None:
        await self.backend.close()

    async def __aenter__(self) -> "Storage":
        await self.init()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def default_options(self) -> ListOptions:
        """ListOptions seeded from the listing configuration."""
        return ListOptions(
            page_size=self.listing.page_size,
            num_recursion_threads=self.listing.num_recursion_threads,
        )

    async def list(self, options: ListOptions | None = None, **changes: Any) -> list[Entry]:
        """List entries.

        Args:
            options: Traversal options (defaults from the listing config).
            **changes: Fields applied to a clone of ``options``, e.g.
                ``recurse=True`` or ``folder_path="a"``.

        Returns:
            The filtered, capped entries.
        """
        options = options or self.default_options()
        if changes:
            options = options.clone(**changes)
        return await list_entries(self.backend, options)

    async def exists(self, paths_: Iterable[str]) -> list[bool]:
        """Check which files exist, in input order."""
        return list(
            await asyncio.gather(*(self.backend.exists(_file_path(p)) for p in paths_))
        )

    async def delete(self, paths_: Iterable[str]) -> None:
        """Delete files or folders. Missing paths are ignored."""
        await asyncio.gather(*(self.backend.delete(paths.normalize(p)) for p in paths_))

    async def get_entries(self, paths_: Iterable[str]) -> list[Entry | None]:
        """Fetch file entries with metadata (None for missing files)."""
        return list(
            await asyncio.gather(*(self.backend.get_entry(_file_path(p)) for p in paths_))
        )

    async def read(self, path: str) -> bytes | None:
        """Read a file's bytes, or None if it does not exist."""
        try:
            return await self.backend.read(_file_path(path))
        except (NotFoundError, FileNotFoundError):
            return None

    async def read_text(self, path: str, encoding: str = "utf-8") -> str | None:
        data = await self.read(path)
        return None if data is None else data.decode(encoding)

    async def write(self, path: str, data: bytes, append: bool = False) -> None:
        normalized = _file_path(path)
        await self.backend.write(normalized, data, append=append)
        logger.debug("Wrote %d bytes (append=%s)", len(data), append, extra={"path": normalized})

    async def write_text(
        self, path: str, text: str, append: bool = False, encoding: str = "utf-8"
    ) -> None:
        await self.write(path, text.encode(encoding), append=append)

    async def set_metadata(self, path: str, metadata: Mapping[str, str]) -> None:
        """Replace the user metadata of an existing file.

        Raises:
            NotFoundError: If the file does not exist.
        """
        await self.backend.set_metadata(_file_path(path), dict(metadata))

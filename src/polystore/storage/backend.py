"""Abstract storage backend protocol for polystore."""

from typing import Protocol

from polystore.models import Entry, ListOptions


class StorageBackend(Protocol):
    """Protocol defining the primitive object storage surface.

    Backends implement only these primitives; recursive listing, bulk
    operations and path normalization are derived by the listing engine and
    the :class:`~polystore.storage.generic.Storage` facade. All paths passed
    in are already normalized.
    """

    can_list_hierarchy: bool
    """True if one :meth:`list_level` call with ``options.recurse`` set
    returns the whole subtree, so the engine must not recurse locally."""

    async def init(self) -> None:
        """Initialize the backend (create directories, connect, etc.)."""
        ...

    async def close(self) -> None:
        """Release resources held by the backend."""
        ...

    async def list_level(self, path: str, options: ListOptions) -> list[Entry]:
        """List the entries directly inside a folder.

        Backends that support server-side prefix filtering should honour
        ``options.file_prefix``; the engine re-applies it regardless.
        Hierarchical backends return the full subtree when
        ``options.recurse`` is set.

        Args:
            path: The folder path ("" for the root).
            options: The traversal options.

        Returns:
            Files and folders found at ``path``.

        Raises:
            NotFoundError: If the folder does not exist.
        """
        ...

    async def exists(self, path: str) -> bool:
        """Return True if a file exists at ``path``."""
        ...

    async def get_entry(self, path: str) -> Entry | None:
        """Return the entry for a file with its metadata, or None if absent."""
        ...

    async def read(self, path: str) -> bytes:
        """Retrieve a file's bytes.

        Raises:
            NotFoundError: If the file does not exist.
        """
        ...

    async def write(self, path: str, data: bytes, append: bool = False) -> None:
        """Store a file's bytes, replacing or appending to existing content.

        Args:
            path: The file path.
            data: The raw bytes to store.
            append: Append to an existing file instead of overwriting it.

        Raises:
            ConflictError: If ``path`` is a folder or one of its parents is
                a file.
        """
        ...

    async def delete(self, path: str) -> None:
        """Delete a file, or a folder together with everything under it.

        Missing paths are ignored.
        """
        ...

    async def set_metadata(self, path: str, metadata: dict[str, str]) -> None:
        """Replace the user metadata of an existing file.

        Raises:
            NotFoundError: If the file does not exist.
        """
        ...

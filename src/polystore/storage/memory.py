"""In-memory storage backend for polystore.

Implements the StorageBackend protocol using a flat dictionary keyed by
normalized path. Folders are implicit: a folder exists while at least one
file lives under it. Optional snapshot persistence uses an SQLite file to
save/restore state across restarts.

Persistence modes:
    - "none": nothing survives the process.
    - "snapshot": init() restores the files table from the snapshot file when
      present, close() saves it, and a background task saves it every
      ``snapshot_interval_seconds`` in between. Each save goes to a temp file
      that is renamed over the previous snapshot.
"""

import asyncio
import hashlib
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone

import aiosqlite

from polystore import paths
from polystore.errors import CapacityError, ConflictError, NotFoundError
from polystore.models import Entry, ListOptions

logger = logging.getLogger(__name__)


@dataclass
class _StoredFile:
    data: bytes
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, str] = field(default_factory=dict)


class MemoryStorageBackend:
    """Storage backend that holds all files in memory.

    Attributes:
        can_list_hierarchy: When True, a recursive ``list_level`` call returns
            the whole subtree in one go (like a flat-namespace object store);
            when False, only direct children are returned and the listing
            engine recurses locally.
        max_size_bytes: Cap on the summed size of all file contents; 0 means
            no cap.
        persistence: "none" or "snapshot" (see module docstring).
        snapshot_path: SQLite file holding the snapshot.
        snapshot_interval_seconds: Period of background snapshots; 0 turns
            them off.
    """

    def __init__(
        self,
        hierarchical: bool = False,
        max_size_bytes: int = 0,
        persistence: str = "none",
        snapshot_path: str = "./data/memory.snap",
        snapshot_interval_seconds: int = 300,
    ) -> None:
        if persistence not in ("none", "snapshot"):
            raise ValueError(f"Unknown persistence mode: {persistence}")

        self.can_list_hierarchy = hierarchical
        self.max_size_bytes = max_size_bytes
        self.persistence = persistence
        self.snapshot_path = snapshot_path
        self.snapshot_interval_seconds = snapshot_interval_seconds

        self._files: dict[str, _StoredFile] = {}
        self._current_size: int = 0

        self._snapshot_task: asyncio.Task[None] | None = None

    @property
    def current_size(self) -> int:
        """Total bytes of file data currently held."""
        return self._current_size

    def _check_capacity(self, path: str, new_size: int) -> None:
        """Check whether replacing ``path`` with ``new_size`` bytes fits.

        Raises:
            CapacityError: If the store would exceed capacity.
        """
        if self.max_size_bytes <= 0:
            return
        old = self._files.get(path)
        additional = new_size - (len(old.data) if old else 0)
        if additional > 0 and self._current_size + additional > self.max_size_bytes:
            raise CapacityError(
                f"Cannot store {additional} bytes: would exceed "
                f"max_size_bytes ({self._current_size} + {additional} "
                f"> {self.max_size_bytes})"
            )

    def _put_file(self, path: str, data: bytes, metadata: dict[str, str] | None = None) -> None:
        old = self._files.get(path)
        if old is not None:
            self._current_size -= len(old.data)
            if metadata is None:
                metadata = old.metadata
        self._files[path] = _StoredFile(data=data, metadata=dict(metadata or {}))
        self._current_size += len(data)

    def _remove_file(self, path: str) -> None:
        old = self._files.pop(path, None)
        if old is not None:
            self._current_size -= len(old.data)

    def _folder_exists(self, path: str) -> bool:
        if paths.is_root(path):
            return True
        return any(paths.is_under(p, path) for p in self._files)

    def _check_layout(self, path: str) -> None:
        """Reject a file path that is an implicit folder or lies under a file.

        Raises:
            ConflictError: If ``path`` collides with the existing tree.
        """
        segments = paths.split(path)
        for i in range(1, len(segments)):
            parent = paths.PATH_SEPARATOR.join(segments[:i])
            if parent in self._files:
                raise ConflictError(f"Cannot write {path!r}: {parent!r} is a file")
        if path not in self._files and self._folder_exists(path):
            raise ConflictError(f"Cannot write {path!r}: it is a folder")

    def _to_entry(self, path: str, include_metadata: bool) -> Entry:
        stored = self._files[path]
        return Entry.file(
            path,
            size=len(stored.data),
            last_modified=stored.last_modified,
            properties={"md5": hashlib.md5(stored.data).hexdigest()},
            metadata=dict(stored.metadata) if include_metadata else {},
        )

    async def init(self) -> None:
        """Restore the snapshot and start periodic saves when persistence is on."""
        if self.persistence == "snapshot":
            await self._load_snapshot()
            if self.snapshot_interval_seconds > 0:
                self._snapshot_task = asyncio.create_task(self._periodic_snapshot())

        logger.info(
            "Memory storage backend initialized (hierarchical=%s, persistence=%s, "
            "max_size=%s, files=%d, current_size=%d)",
            self.can_list_hierarchy,
            self.persistence,
            self.max_size_bytes if self.max_size_bytes > 0 else "unlimited",
            len(self._files),
            self._current_size,
        )

    async def close(self) -> None:
        """Shut down the backend, writing a final snapshot if configured."""
        if self._snapshot_task is not None:
            self._snapshot_task.cancel()
            try:
                await self._snapshot_task
            except asyncio.CancelledError:
                pass
            self._snapshot_task = None

        if self.persistence == "snapshot":
            await self._write_snapshot()
            logger.info("Final snapshot written to %s", self.snapshot_path)

    async def list_level(self, path: str, options: ListOptions) -> list[Entry]:
        """List entries under ``path``.

        Direct children only, unless this backend is hierarchical and
        ``options.recurse`` is set, in which case every file and implicit
        folder below ``path`` is returned. The file prefix is applied here.

        Raises:
            NotFoundError: If no file lives under ``path``.
        """
        if not self._folder_exists(path):
            raise NotFoundError(path)

        depth = len(paths.split(path))
        whole_subtree = self.can_list_hierarchy and options.recurse
        folders: dict[str, Entry] = {}
        files: list[Entry] = []

        for file_path in sorted(self._files):
            if not paths.is_under(file_path, path):
                continue
            segments = paths.split(file_path)
            relative = segments[depth:]

            # Implicit folders between ``path`` and the file.
            folder_levels = len(relative) - 1 if whole_subtree else min(1, len(relative) - 1)
            for i in range(1, folder_levels + 1):
                folder = paths.PATH_SEPARATOR.join(segments[: depth + i])
                if folder not in folders:
                    folders[folder] = Entry.folder(folder)

            if len(relative) == 1 or whole_subtree:
                entry = self._to_entry(file_path, options.include_metadata)
                if options.is_match(entry):
                    files.append(entry)

        return list(folders.values()) + files

    async def exists(self, path: str) -> bool:
        return path in self._files

    async def get_entry(self, path: str) -> Entry | None:
        if path not in self._files:
            return None
        return self._to_entry(path, include_metadata=True)

    async def read(self, path: str) -> bytes:
        """Retrieve a file's bytes from memory.

        Raises:
            NotFoundError: If the file does not exist.
        """
        stored = self._files.get(path)
        if stored is None:
            raise NotFoundError(path)
        return stored.data

    async def write(self, path: str, data: bytes, append: bool = False) -> None:
        """Store a file's bytes in memory.

        Raises:
            CapacityError: If storing this data would exceed max_size_bytes.
            ConflictError: If ``path`` is a folder or lies under a file.
        """
        self._check_layout(path)
        if append and path in self._files:
            data = self._files[path].data + data
        self._check_capacity(path, len(data))
        self._put_file(path, data)

    async def delete(self, path: str) -> None:
        """Delete a file, or every file under a folder. Missing paths are ignored."""
        if path in self._files:
            self._remove_file(path)
            return
        for file_path in [p for p in self._files if paths.is_under(p, path)]:
            self._remove_file(file_path)

    async def set_metadata(self, path: str, metadata: dict[str, str]) -> None:
        """Replace the user metadata of an existing file.

        Raises:
            NotFoundError: If the file does not exist.
        """
        stored = self._files.get(path)
        if stored is None:
            raise NotFoundError(path)
        stored.metadata = dict(metadata)

    # ── Snapshot Persistence ──────────────────────────────────────────

    async def _load_snapshot(self) -> None:
        """Fill the files table from the snapshot file, if there is one.

        A snapshot that cannot be read is logged and ignored.
        """
        if not os.path.exists(self.snapshot_path):
            logger.info("No snapshot file found at %s, starting fresh", self.snapshot_path)
            return

        try:
            async with aiosqlite.connect(self.snapshot_path) as db:
                async with db.execute(
                    "SELECT path, data, metadata, last_modified FROM file_snapshots"
                ) as cursor:
                    async for row in cursor:
                        path, data, metadata, last_modified = row
                        if not isinstance(data, bytes):
                            data = bytes(data)
                        self._files[path] = _StoredFile(
                            data=data,
                            last_modified=datetime.fromisoformat(last_modified),
                            metadata=json.loads(metadata),
                        )
                        self._current_size += len(data)

            logger.info(
                "Loaded snapshot from %s: %d files, %d bytes",
                self.snapshot_path,
                len(self._files),
                self._current_size,
            )
        except Exception:
            logger.exception("Failed to load snapshot from %s, starting fresh", self.snapshot_path)
            self._files.clear()
            self._current_size = 0

    async def _write_snapshot(self) -> None:
        """Write all in-memory files to a SQLite snapshot file.

        Writes to a temp file in the same directory, then renames it over
        the final path, so the snapshot is never left partially written.
        """
        snapshot_dir = os.path.dirname(self.snapshot_path)
        if snapshot_dir:
            os.makedirs(snapshot_dir, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            suffix=".snap.tmp",
            dir=snapshot_dir if snapshot_dir else ".",
        )
        os.close(fd)

        try:
            async with aiosqlite.connect(tmp_path) as db:
                await db.execute(
                    "CREATE TABLE file_snapshots ("
                    "  path TEXT PRIMARY KEY,"
                    "  data BLOB NOT NULL,"
                    "  metadata TEXT NOT NULL,"
                    "  last_modified TEXT NOT NULL"
                    ")"
                )
                await db.executemany(
                    "INSERT INTO file_snapshots (path, data, metadata, last_modified) "
                    "VALUES (?, ?, ?, ?)",
                    [
                        (path, f.data, json.dumps(f.metadata), f.last_modified.isoformat())
                        for path, f in self._files.items()
                    ],
                )
                await db.commit()

            os.replace(tmp_path, self.snapshot_path)
            logger.debug("Snapshot written to %s: %d files", self.snapshot_path, len(self._files))
        except Exception:
            logger.exception("Failed to write snapshot to %s", self.snapshot_path)
            try:
                os.unlink(tmp_path)
            except OSError:
                pass

    async def _periodic_snapshot(self) -> None:
        """Background task that periodically writes snapshots until cancelled."""
        while True:
            try:
                await asyncio.sleep(self.snapshot_interval_seconds)
                await self._write_snapshot()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Periodic snapshot failed")

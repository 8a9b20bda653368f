"""Local disk directory storage backend for polystore.

Implements the StorageBackend protocol on top of a directory tree: the
storage path ``a/b/c.txt`` is the file ``{root}/a/b/c.txt``. User metadata
is kept in a JSON sidecar ``{file}.attr`` which never shows up in listings.
In-progress writes live in ``{root}/.tmp/``; both names are reserved and
rejected as storage paths.

Crash-only design:
    - Atomic overwrites via temp-fsync-rename pattern.
    - Never acknowledge before data is fsync'd to disk.
    - Startup empties ``.tmp/`` of files left by interrupted writes.
"""

import json
import logging
import os
import shutil
import uuid
from datetime import datetime, timezone
from pathlib import Path

from polystore import paths
from polystore.errors import ConflictError, InvalidPathError, NotFoundError
from polystore.models import Entry, ListOptions

logger = logging.getLogger(__name__)

ATTRIBUTES_FILE_EXTENSION = ".attr"
TEMP_DIR_NAME = ".tmp"


def _utc(timestamp: float) -> datetime:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


class LocalStorageBackend:
    """Storage backend that persists files under a local directory.

    Directories are listed one level at a time, so the listing engine
    recurses locally.

    Attributes:
        root: The root directory for all stored data.
    """

    can_list_hierarchy = False

    def __init__(self, root: str | Path) -> None:
        """Initialize the local storage backend.

        Args:
            root: Root directory path for file storage.
        """
        self.root = Path(root).resolve()

    @property
    def _temp_dir(self) -> Path:
        return self.root / TEMP_DIR_NAME

    def _os_path(self, path: str) -> Path:
        """Return the filesystem path for a storage path.

        Raises:
            InvalidPathError: If the path uses a name reserved by this backend.
        """
        segments = paths.split(path)
        if segments and (
            segments[0] == TEMP_DIR_NAME or segments[-1].endswith(ATTRIBUTES_FILE_EXTENSION)
        ):
            raise InvalidPathError(path, "the name is reserved by the local storage backend")
        return self.root.joinpath(*segments)

    def _storage_path(self, os_path: Path) -> str:
        return paths.normalize(os_path.relative_to(self.root).as_posix())

    async def init(self) -> None:
        """Create the root directory and clean up orphan temp files.

        Every startup is a recovery: files left in ``.tmp/`` by interrupted
        writes are removed.
        """
        self._temp_dir.mkdir(parents=True, exist_ok=True)
        self._clean_temp_files()
        logger.info("Local storage backend initialized at %s", self.root)

    def _clean_temp_files(self) -> None:
        """Remove orphan temp files left by interrupted atomic writes."""
        count = 0
        for orphan in self._temp_dir.iterdir():
            try:
                orphan.unlink()
                count += 1
            except OSError:
                pass
        if count > 0:
            logger.info("Cleaned %d orphan temp files on startup", count)

    async def close(self) -> None:
        """No-op for the local filesystem backend."""
        pass

    def _read_metadata(self, os_path: Path) -> dict[str, str]:
        attr = os_path.with_name(os_path.name + ATTRIBUTES_FILE_EXTENSION)
        try:
            return json.loads(attr.read_text("utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError):
            logger.warning("Unreadable attributes file %s, ignoring", attr)
            return {}

    def _to_entry(self, os_path: Path, include_metadata: bool) -> Entry:
        stat = os_path.stat()
        path = self._storage_path(os_path)
        properties = {"last_access_utc": _utc(stat.st_atime).isoformat()}

        if os_path.is_dir():
            return Entry.folder(path, last_modified=_utc(stat.st_mtime), properties=properties)

        properties["is_read_only"] = str(not os.access(os_path, os.W_OK))
        return Entry.file(
            path,
            size=stat.st_size,
            last_modified=_utc(stat.st_mtime),
            properties=properties,
            metadata=self._read_metadata(os_path) if include_metadata else {},
        )

    async def list_level(self, path: str, options: ListOptions) -> list[Entry]:
        """List the direct children of a directory.

        The file prefix is applied while scanning.

        Raises:
            NotFoundError: If the directory does not exist.
        """
        folder = self._os_path(path)
        if not folder.is_dir():
            raise NotFoundError(path)

        folders: list[Entry] = []
        files: list[Entry] = []
        with os.scandir(folder) as it:
            for item in sorted(it, key=lambda e: e.name):
                try:
                    if item.is_dir():
                        if folder == self.root and item.name == TEMP_DIR_NAME:
                            continue
                        folders.append(self._to_entry(Path(item.path), False))
                    elif item.name.endswith(ATTRIBUTES_FILE_EXTENSION):
                        continue
                    elif not options.file_prefix or item.name.startswith(options.file_prefix):
                        files.append(self._to_entry(Path(item.path), options.include_metadata))
                except FileNotFoundError:
                    # Deleted between the scan and the stat.
                    continue
        return folders + files

    async def exists(self, path: str) -> bool:
        return self._os_path(path).is_file()

    async def get_entry(self, path: str) -> Entry | None:
        os_path = self._os_path(path)
        if not os_path.is_file():
            return None
        return self._to_entry(os_path, include_metadata=True)

    async def read(self, path: str) -> bytes:
        """Retrieve a file's bytes from disk.

        Raises:
            NotFoundError: If the file does not exist.
        """
        os_path = self._os_path(path)
        if paths.is_root(path) or not os_path.is_file():
            raise NotFoundError(path)
        return os_path.read_bytes()

    async def write(self, path: str, data: bytes, append: bool = False) -> None:
        """Store a file's bytes on disk.

        Overwrites use the atomic temp-fsync-rename pattern. Appends write
        in place and fsync before returning.

        Raises:
            ConflictError: If ``path`` is a directory or lies under a file.
        """
        if paths.is_root(path):
            raise NotFoundError(path, message="Cannot write to the root folder")

        os_path = self._os_path(path)
        if os_path.is_dir():
            raise ConflictError(f"Cannot write {path!r}: it is a folder")
        for parent in os_path.parents:
            if parent == self.root:
                break
            if parent.is_file():
                parent_path = self._storage_path(parent)
                raise ConflictError(f"Cannot write {path!r}: {parent_path!r} is a file")
        os_path.parent.mkdir(parents=True, exist_ok=True)

        if append:
            with open(os_path, "ab") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            return

        self._temp_dir.mkdir(exist_ok=True)
        tmp = self._temp_dir / uuid.uuid4().hex
        try:
            fd = os.open(str(tmp), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o644)
            try:
                os.write(fd, data)
                os.fsync(fd)
            finally:
                os.close(fd)
            tmp.replace(os_path)
        except Exception:
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass
            raise

    async def delete(self, path: str) -> None:
        """Delete a file (and its attributes) or a whole directory.

        Missing paths are ignored. Empty parent directories are removed up
        to the root.
        """
        os_path = self._os_path(path)

        if os_path.is_dir():
            if os_path == self.root:
                for child in self.root.iterdir():
                    if child == self._temp_dir:
                        continue
                    if child.is_dir():
                        shutil.rmtree(child)
                    else:
                        child.unlink()
                return
            shutil.rmtree(os_path)
        else:
            try:
                os_path.unlink()
            except FileNotFoundError:
                return
            os_path.with_name(os_path.name + ATTRIBUTES_FILE_EXTENSION).unlink(missing_ok=True)

        self._prune_empty_parents(os_path.parent)

    def _prune_empty_parents(self, directory: Path) -> None:
        while directory != self.root and self.root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                break
            directory = directory.parent

    async def set_metadata(self, path: str, metadata: dict[str, str]) -> None:
        """Write the user metadata sidecar of an existing file.

        Raises:
            NotFoundError: If the file does not exist.
        """
        os_path = self._os_path(path)
        if not os_path.is_file():
            raise NotFoundError(path)
        attr = os_path.with_name(os_path.name + ATTRIBUTES_FILE_EXTENSION)
        attr.write_text(json.dumps(metadata), "utf-8")

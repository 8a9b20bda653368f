"""Unit tests for the local directory storage backend.

Tests cover write+read round-trip, append, atomic writes, temp file
cleanup on startup, reserved names and file/folder conflicts, one-level
listing with hidden sidecar files, metadata sidecars, and delete with
empty-parent pruning.
"""

import pytest

from polystore.errors import ConflictError, InvalidPathError, NotFoundError
from polystore.models import EntryKind, ListOptions
from polystore.storage.listing import list_entries
from polystore.storage.local import (
    ATTRIBUTES_FILE_EXTENSION,
    TEMP_DIR_NAME,
    LocalStorageBackend,
)


@pytest.fixture
async def local(tmp_path):
    """Create and initialize a local storage backend in a temp directory."""
    backend = LocalStorageBackend(tmp_path / "objects")
    await backend.init()
    yield backend
    await backend.close()


class VanishingBackend(LocalStorageBackend):
    """Deletes one file right before it is stat'ed, as a concurrent writer could."""

    def __init__(self, root, vanish):
        super().__init__(root)
        self.vanish = vanish

    def _to_entry(self, os_path, include_metadata):
        if os_path.name == self.vanish:
            os_path.unlink()
        return super()._to_entry(os_path, include_metadata)


class TestInit:
    """Tests for LocalStorageBackend.init()."""

    async def test_creates_root_directory(self, tmp_path):
        root = tmp_path / "new-root"
        backend = LocalStorageBackend(str(root))
        await backend.init()
        assert root.is_dir()

    async def test_idempotent_init(self, tmp_path):
        """init() can be called twice without error (crash-only)."""
        backend = LocalStorageBackend(tmp_path / "again")
        await backend.init()
        await backend.init()

    async def test_cleans_temp_files(self, tmp_path):
        """init() empties the temp directory left by previous crashes."""
        temp_dir = tmp_path / "cleanup" / TEMP_DIR_NAME
        temp_dir.mkdir(parents=True)
        orphan = temp_dir / "abc12345"
        orphan.write_bytes(b"leftover data")

        await LocalStorageBackend(tmp_path / "cleanup").init()

        assert not orphan.exists()
        assert temp_dir.is_dir()

    async def test_user_files_that_look_temporary_survive(self, tmp_path):
        backend = LocalStorageBackend(tmp_path / "keep")
        await backend.init()
        await backend.write("logs/app.tmp.2024", b"kept")

        result = await list_entries(backend, ListOptions(recurse=True))
        assert {e.path for e in result} == {"logs", "logs/app.tmp.2024"}

        restarted = LocalStorageBackend(tmp_path / "keep")
        await restarted.init()
        assert await restarted.read("logs/app.tmp.2024") == b"kept"

    def test_never_lists_hierarchy(self, tmp_path):
        assert LocalStorageBackend(tmp_path).can_list_hierarchy is False


class TestReadWrite:
    """Tests for write() and read()."""

    async def test_round_trip_creates_parents(self, local):
        await local.write("path/to/deep/file.txt", b"nested")
        assert await local.read("path/to/deep/file.txt") == b"nested"
        assert (local.root / "path" / "to" / "deep" / "file.txt").is_file()

    async def test_overwrite(self, local):
        await local.write("f", b"original")
        await local.write("f", b"updated")
        assert await local.read("f") == b"updated"

    async def test_append(self, local):
        await local.write("log", b"a")
        await local.write("log", b"b", append=True)
        await local.write("log", b"c", append=True)
        assert await local.read("log") == b"abc"

    async def test_atomic_write_leaves_no_temp_files(self, local):
        """After write(), only the final file exists."""
        await local.write("dir/atomic.txt", b"data")
        assert [p.name for p in (local.root / "dir").iterdir()] == ["atomic.txt"]
        assert list((local.root / TEMP_DIR_NAME).iterdir()) == []

    @pytest.mark.parametrize("path", [".tmp/x", ".tmp", "a/f.attr"])
    async def test_reserved_names_rejected(self, local, path):
        with pytest.raises(InvalidPathError):
            await local.write(path, b"x")

    async def test_write_over_folder_conflicts(self, local):
        await local.write("a/b", b"x")
        with pytest.raises(ConflictError):
            await local.write("a", b"y")
        assert await local.read("a/b") == b"x"

    async def test_write_under_file_conflicts(self, local):
        await local.write("a", b"x")
        with pytest.raises(ConflictError):
            await local.write("a/b", b"y")
        assert await local.read("a") == b"x"

    async def test_read_missing_raises(self, local):
        with pytest.raises(NotFoundError):
            await local.read("missing.txt")

    async def test_read_folder_raises(self, local):
        await local.write("a/f", b"")
        with pytest.raises(NotFoundError):
            await local.read("a")
        with pytest.raises(NotFoundError):
            await local.read("")

    async def test_write_root_raises(self, local):
        with pytest.raises(NotFoundError):
            await local.write("", b"x")

    async def test_exists_only_for_files(self, local):
        await local.write("a/f", b"")
        assert await local.exists("a/f")
        assert not await local.exists("a")
        assert not await local.exists("nope")


class TestListLevel:
    """Tests for list_level()."""

    async def test_folders_first_then_files(self, local):
        await local.write("z.txt", b"1")
        await local.write("b/inner", b"2")
        await local.write("a.txt", b"3")
        entries = await local.list_level("", ListOptions())
        assert [(e.kind, e.path) for e in entries] == [
            (EntryKind.FOLDER, "b"),
            (EntryKind.FILE, "a.txt"),
            (EntryKind.FILE, "z.txt"),
        ]

    async def test_file_properties(self, local):
        await local.write("f.bin", b"abcd")
        (entry,) = await local.list_level("", ListOptions())
        assert entry.size == 4
        assert entry.last_modified is not None
        assert entry.properties["is_read_only"] == "False"
        assert "last_access_utc" in entry.properties

    async def test_attribute_sidecars_hidden(self, local):
        await local.write("f", b"x")
        await local.set_metadata("f", {"k": "v"})
        assert (local.root / ("f" + ATTRIBUTES_FILE_EXTENSION)).is_file()
        entries = await local.list_level("", ListOptions())
        assert [e.path for e in entries] == ["f"]

    async def test_prefix(self, local):
        await local.write("report1", b"")
        await local.write("data", b"")
        entries = await local.list_level("", ListOptions(file_prefix="rep"))
        assert [e.path for e in entries] == ["report1"]

    async def test_temp_dir_hidden(self, local):
        await local.write("f", b"x")
        assert (local.root / TEMP_DIR_NAME).is_dir()
        assert [e.path for e in await local.list_level("", ListOptions())] == ["f"]

    async def test_vanished_file_skipped(self, tmp_path):
        backend = VanishingBackend(tmp_path / "race", vanish="b")
        await backend.init()
        for name in ("a", "b", "c"):
            await backend.write(name, b"x")

        entries = await backend.list_level("", ListOptions())

        assert [e.path for e in entries] == ["a", "c"]

    async def test_missing_folder_raises(self, local):
        with pytest.raises(NotFoundError):
            await local.list_level("nope", ListOptions())

    async def test_recursive_listing_through_engine(self, local):
        """The listing engine recurses the directory tree locally."""
        await local.write("a/b/file1", b"1")
        await local.write("a/c/file2", b"2")
        result = await list_entries(local, ListOptions(folder_path="a", recurse=True))
        assert {(e.kind, e.path) for e in result} == {
            (EntryKind.FOLDER, "a/b"),
            (EntryKind.FOLDER, "a/c"),
            (EntryKind.FILE, "a/b/file1"),
            (EntryKind.FILE, "a/c/file2"),
        }


class TestMetadata:
    """Tests for set_metadata() and get_entry()."""

    async def test_round_trip(self, local):
        await local.write("f", b"x")
        await local.set_metadata("f", {"owner": "ops"})
        assert (await local.get_entry("f")).metadata == {"owner": "ops"}

    async def test_missing_sidecar_means_empty(self, local):
        await local.write("f", b"x")
        assert (await local.get_entry("f")).metadata == {}

    async def test_corrupt_sidecar_ignored(self, local):
        await local.write("f", b"x")
        (local.root / ("f" + ATTRIBUTES_FILE_EXTENSION)).write_text("{not json")
        assert (await local.get_entry("f")).metadata == {}

    async def test_set_metadata_missing_file(self, local):
        with pytest.raises(NotFoundError):
            await local.set_metadata("missing", {})

    async def test_get_entry_missing(self, local):
        assert await local.get_entry("missing") is None


class TestDelete:
    """Tests for delete()."""

    async def test_delete_file_and_sidecar(self, local):
        await local.write("a/f", b"x")
        await local.write("a/g", b"y")
        await local.set_metadata("a/f", {"k": "v"})
        await local.delete("a/f")
        assert not (local.root / "a" / "f").exists()
        assert not (local.root / "a" / ("f" + ATTRIBUTES_FILE_EXTENSION)).exists()
        assert await local.exists("a/g")

    async def test_prunes_empty_parents(self, local):
        await local.write("a/b/c/f", b"x")
        await local.delete("a/b/c/f")
        assert not (local.root / "a").exists()
        assert local.root.is_dir()

    async def test_delete_folder(self, local):
        await local.write("a/b/1", b"")
        await local.write("a/b/2", b"")
        await local.write("a/keep", b"")
        await local.delete("a/b")
        assert not (local.root / "a" / "b").exists()
        assert await local.exists("a/keep")

    async def test_delete_root_clears_children(self, local):
        await local.write("a/1", b"")
        await local.write("top", b"")
        await local.delete("")
        assert local.root.is_dir()
        assert [p.name for p in local.root.iterdir()] == [TEMP_DIR_NAME]
        assert await local.list_level("", ListOptions()) == []

    async def test_delete_missing_is_noop(self, local):
        await local.delete("nothing")
        await local.delete("nothing/deeper")

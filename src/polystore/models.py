"""Data model types for polystore.

These dataclasses are shared by every engine and backend: storage entries
discovered by listing, the options controlling one listing traversal, and
the message envelope exchanged with channel backends.
"""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from polystore import paths
from polystore.errors import InvalidArgumentError

# Reserved message property pointing at an externalized payload.
LARGE_MESSAGE_CONTENT_HEADER = "x-sn-large"

DEFAULT_PAGE_SIZE = 1000
DEFAULT_RECURSION_THREADS = 10


class EntryKind(str, Enum):
    """Kind of a storage entry."""

    FILE = "file"
    FOLDER = "folder"


class RecursionMode(str, Enum):
    """Where a recursive listing descends into sub-folders.

    LOCAL lists one level per backend call and recurses client-side. REMOTE
    lets a backend that can list a whole subtree do so in one call, and
    falls back to LOCAL on backends that cannot.
    """

    LOCAL = "local"
    REMOTE = "remote"


@dataclass
class Entry:
    """A discovered storage object.

    Attributes:
        path: Normalized full path of the entry.
        kind: File or folder.
        size: Size in bytes (None for folders).
        last_modified: Last modification time, if the backend reports one.
        properties: Backend-reported attributes.
        metadata: User metadata, populated only when requested.
    """

    path: str
    kind: EntryKind = EntryKind.FILE
    size: int | None = None
    last_modified: datetime | None = None
    properties: dict[str, str] = field(default_factory=dict)
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.path = paths.normalize(self.path)
        if self.kind is EntryKind.FOLDER:
            self.size = None

    @classmethod
    def file(cls, path: str, size: int = 0, **kwargs: Any) -> Entry:
        return cls(path=path, kind=EntryKind.FILE, size=size, **kwargs)

    @classmethod
    def folder(cls, path: str, **kwargs: Any) -> Entry:
        return cls(path=path, kind=EntryKind.FOLDER, **kwargs)

    @property
    def name(self) -> str:
        return paths.get_name(self.path)

    @property
    def folder_path(self) -> str:
        """Path of the folder containing this entry."""
        return paths.get_parent(self.path) or paths.ROOT_FOLDER_PATH

    @property
    def is_file(self) -> bool:
        return self.kind is EntryKind.FILE

    @property
    def is_folder(self) -> bool:
        return self.kind is EntryKind.FOLDER

    @property
    def key(self) -> tuple[EntryKind, str]:
        """Identity of the entry: its kind and full path."""
        return (self.kind, self.path)


@dataclass(frozen=True)
class ListOptions:
    """Options for one listing traversal.

    Instances are immutable; use :meth:`clone` to scope a sub-traversal
    without affecting the caller's options.

    Attributes:
        folder_path: Folder to start browsing from (root when empty).
        file_prefix: Only files whose name starts with this prefix are
            returned. Folders are never affected. When recursing the prefix
            applies in every folder.
        browse_filter: Client-side predicate applied to every candidate
            entry after any backend-side filtering.
        recurse: Descend into sub-folders.
        max_results: Upper bound on the number of returned entries (files
            and folders alike).
        page_size: Items per page requested from paging backends.
        num_recursion_threads: Maximum number of one-level listing calls in
            flight at once during local recursion.
        include_metadata: Populate :attr:`Entry.metadata` when supported.
        recursion_mode: :attr:`RecursionMode.LOCAL` forces client-side
            recursion even on backends that can list a subtree themselves.
    """

    folder_path: str = paths.ROOT_FOLDER_PATH
    file_prefix: str | None = None
    browse_filter: Callable[[Entry], bool] | None = None
    recurse: bool = False
    max_results: int | None = None
    page_size: int = DEFAULT_PAGE_SIZE
    num_recursion_threads: int = DEFAULT_RECURSION_THREADS
    include_metadata: bool = False
    recursion_mode: RecursionMode = RecursionMode.REMOTE

    def __post_init__(self) -> None:
        object.__setattr__(self, "folder_path", paths.normalize(self.folder_path))

        if self.file_prefix is not None and paths.PATH_SEPARATOR in self.file_prefix:
            raise InvalidArgumentError(
                f"file prefix cannot contain {paths.PATH_SEPARATOR!r}: {self.file_prefix!r}"
            )
        if self.max_results is not None and self.max_results < 0:
            raise InvalidArgumentError(f"max_results must be >= 0, got {self.max_results}")
        if self.page_size < 1:
            raise InvalidArgumentError(f"page_size must be >= 1, got {self.page_size}")
        if self.num_recursion_threads < 1:
            raise InvalidArgumentError(
                f"num_recursion_threads must be >= 1, got {self.num_recursion_threads}"
            )

    def clone(self, **changes: Any) -> ListOptions:
        """Return a copy of these options with ``changes`` applied."""
        return replace(self, **changes)

    def is_match(self, entry: Entry) -> bool:
        """True if ``entry`` passes the file-prefix rule."""
        return (
            not self.file_prefix
            or entry.kind is not EntryKind.FILE
            or entry.name.startswith(self.file_prefix)
        )

    def accepts(self, entry: Entry) -> bool:
        """True if ``entry`` passes both the prefix rule and the browse filter."""
        if not self.is_match(entry):
            return False
        return self.browse_filter is None or bool(self.browse_filter(entry))


def _new_message_id() -> str:
    return uuid.uuid4().hex


@dataclass
class QueueMessage:
    """A message envelope.

    Attributes:
        content: Opaque payload bytes.
        id: Unique message id.
        properties: Ordered string properties carrying protocol metadata.
        next_visible_at: When a received message becomes visible again
            (pull-model visibility window), if hidden.
        dequeue_count: Number of times the message has been received.
    """

    content: bytes = b""
    id: str = field(default_factory=_new_message_id)
    properties: dict[str, str] = field(default_factory=dict)
    next_visible_at: datetime | None = None
    dequeue_count: int | None = None

    @classmethod
    def from_text(cls, text: str, **properties: str) -> QueueMessage:
        """Create a message with a UTF-8 encoded payload."""
        return cls(content=text.encode("utf-8"), properties=dict(properties))

    @property
    def text(self) -> str:
        return self.content.decode("utf-8")

    @property
    def is_externalized(self) -> bool:
        """True if the payload was offloaded to object storage."""
        return LARGE_MESSAGE_CONTENT_HEADER in self.properties

    def copy(self, **changes: Any) -> QueueMessage:
        """Return an independent copy (properties are not shared)."""
        changes.setdefault("properties", dict(self.properties))
        return replace(self, **changes)

"""polystore - provider-agnostic object storage and message channels."""

from polystore.models import (
    LARGE_MESSAGE_CONTENT_HEADER,
    Entry,
    EntryKind,
    ListOptions,
    QueueMessage,
    RecursionMode,
)

__version__ = "0.1.0"

__all__ = [
    "Entry",
    "EntryKind",
    "LARGE_MESSAGE_CONTENT_HEADER",
    "ListOptions",
    "QueueMessage",
    "RecursionMode",
]

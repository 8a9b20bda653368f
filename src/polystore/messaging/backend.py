"""Abstract channel backend protocol for polystore."""

from collections.abc import Iterable
from datetime import timedelta
from typing import Protocol

from polystore.models import QueueMessage


class ChannelBackend(Protocol):
    """Protocol defining the primitive message channel surface.

    Pull-model backends hide received messages for a visibility window;
    a message that is not deleted before the window ends is delivered
    again (at-least-once).
    """

    async def create_channels(self, names: Iterable[str]) -> None:
        """Create channels. Existing channels are left untouched."""
        ...

    async def list_channels(self) -> list[str]:
        """Return the names of all channels."""
        ...

    async def delete_channels(self, names: Iterable[str]) -> None:
        """Physically delete channels and their messages."""
        ...

    async def get_message_count(self, channel: str) -> int:
        """Return the number of messages in a channel, including hidden ones."""
        ...

    async def send(self, channel: str, messages: Iterable[QueueMessage]) -> None:
        """Append messages to a channel."""
        ...

    async def receive(
        self, channel: str, count: int = 100, visibility: timedelta | None = None
    ) -> list[QueueMessage]:
        """Receive up to ``count`` visible messages and hide them.

        Args:
            channel: The channel name.
            count: Maximum number of messages to return.
            visibility: How long returned messages stay hidden (backend
                default when None).

        Returns:
            The received messages, possibly empty.
        """
        ...

    async def peek(self, channel: str, count: int = 100) -> list[QueueMessage]:
        """Return up to ``count`` visible messages without hiding them."""
        ...

    async def delete(self, channel: str, messages: Iterable[QueueMessage]) -> None:
        """Delete (confirm) received messages by id."""
        ...

    async def close(self) -> None:
        """Release resources held by the backend."""
        ...

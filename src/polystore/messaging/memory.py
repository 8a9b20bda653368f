"""In-memory channel backend for polystore.

Each channel is a FIFO deque. Receiving a message does not remove it: the
message is hidden until its visibility window ends and is only removed by
:meth:`MemoryChannelBackend.delete`. This mirrors the pull-based queue
services the polling engine is designed for.
"""

import logging
from collections import deque
from collections.abc import Callable, Iterable
from datetime import datetime, timedelta, timezone

from polystore.errors import InvalidArgumentError
from polystore.models import QueueMessage

logger = logging.getLogger(__name__)

DEFAULT_VISIBILITY = timedelta(minutes=1)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryChannelBackend:
    """Channel backend that holds all messages in memory.

    Attributes:
        default_visibility: Visibility window applied when ``receive`` is
            called without one.
        closed: True once :meth:`close` has been called.
    """

    def __init__(
        self,
        default_visibility: timedelta = DEFAULT_VISIBILITY,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize the memory channel backend.

        Args:
            default_visibility: Default visibility window for ``receive``.
            clock: Returns the current aware UTC time.
        """
        self.default_visibility = default_visibility
        self.closed = False
        self._clock = clock
        self._channels: dict[str, deque[QueueMessage]] = {}

    def _queue(self, channel: str) -> deque[QueueMessage]:
        if not channel:
            raise InvalidArgumentError("channel name must not be empty")
        return self._channels.setdefault(channel, deque())

    def _visible(self, message: QueueMessage, now: datetime) -> bool:
        return message.next_visible_at is None or message.next_visible_at <= now

    async def create_channels(self, names: Iterable[str]) -> None:
        for name in names:
            self._queue(name)

    async def list_channels(self) -> list[str]:
        return sorted(self._channels)

    async def delete_channels(self, names: Iterable[str]) -> None:
        for name in names:
            self._channels.pop(name, None)

    async def get_message_count(self, channel: str) -> int:
        return len(self._channels.get(channel, ()))

    async def send(self, channel: str, messages: Iterable[QueueMessage]) -> None:
        queue = self._queue(channel)
        for message in messages:
            queue.append(message.copy(next_visible_at=None, dequeue_count=0))

    async def receive(
        self, channel: str, count: int = 100, visibility: timedelta | None = None
    ) -> list[QueueMessage]:
        """Receive up to ``count`` visible messages, hiding them for ``visibility``."""
        if count < 1:
            raise InvalidArgumentError(f"count must be >= 1, got {count}")

        now = self._clock()
        if visibility is None:
            visibility = self.default_visibility
        hidden_until = now + visibility
        result: list[QueueMessage] = []

        for message in self._channels.get(channel, ()):
            if len(result) >= count:
                break
            if not self._visible(message, now):
                continue
            message.next_visible_at = hidden_until
            message.dequeue_count = (message.dequeue_count or 0) + 1
            result.append(message.copy())

        if result:
            logger.debug("Received %d messages", len(result), extra={"channel": channel})
        return result

    async def peek(self, channel: str, count: int = 100) -> list[QueueMessage]:
        now = self._clock()
        visible = (m for m in self._channels.get(channel, ()) if self._visible(m, now))
        return [m.copy() for _, m in zip(range(count), visible)]

    async def delete(self, channel: str, messages: Iterable[QueueMessage]) -> None:
        """Delete messages by id. Unknown ids and channels are ignored."""
        queue = self._channels.get(channel)
        if queue is None:
            return
        ids = {m.id for m in messages}
        self._channels[channel] = deque(m for m in queue if m.id not in ids)

    async def close(self) -> None:
        self.closed = True

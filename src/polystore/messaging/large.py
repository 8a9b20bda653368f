"""Large message externalization for polystore.

Many queue services cap message size. :class:`LargeMessageChannel` wraps a
channel backend and, on send, moves every payload larger than a threshold
into object storage. The forwarded envelope has an empty payload and a
``x-sn-large`` property holding the storage path.

Only the send path is implemented. Receivers resolve the property
themselves, e.g. ``await storage.read(message.properties[LARGE_MESSAGE_CONTENT_HEADER])``.
"""

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import timedelta
from typing import Any

from polystore import metrics, paths
from polystore.config import LargeMessageConfig
from polystore.errors import UnsupportedOperationError
from polystore.messaging.backend import ChannelBackend
from polystore.models import LARGE_MESSAGE_CONTENT_HEADER, QueueMessage
from polystore.storage.generic import Storage

logger = logging.getLogger(__name__)

PathGenerator = Callable[[QueueMessage], str]

DEFAULT_PATH_PREFIX = "message"


def default_path_generator(prefix: str = DEFAULT_PATH_PREFIX) -> PathGenerator:
    """Return a generator producing ``{prefix}/{random uuid}`` paths."""

    def generate(message: QueueMessage) -> str:
        return paths.combine(prefix, str(uuid.uuid4()))

    return generate


class LargeMessageChannel:
    """Channel decorator that offloads oversized payloads to storage.

    Attributes:
        inner: The wrapped channel backend.
        storage: Where offloaded payloads are written.
        threshold: Payloads strictly longer than this many bytes are offloaded.
        keep_inner_open: When True, :meth:`close` leaves ``inner`` open
            because another owner shares it.
    """

    def __init__(
        self,
        inner: ChannelBackend,
        storage: Storage,
        threshold: int,
        path_generator: PathGenerator | None = None,
        keep_inner_open: bool = False,
    ) -> None:
        if inner is None:
            raise ValueError("inner channel backend is required")
        if storage is None:
            raise ValueError("offload storage is required")
        if threshold < 0:
            raise ValueError(f"threshold must be >= 0, got {threshold}")

        self.inner = inner
        self.storage = storage
        self.threshold = threshold
        self.keep_inner_open = keep_inner_open
        self._path_generator = path_generator or default_path_generator()

    @classmethod
    def from_config(
        cls, inner: ChannelBackend, storage: Storage, config: LargeMessageConfig
    ) -> "LargeMessageChannel":
        return cls(
            inner,
            storage,
            threshold=config.threshold,
            path_generator=default_path_generator(config.path_prefix),
            keep_inner_open=config.keep_inner_open,
        )

    async def _externalize(self, message: QueueMessage) -> QueueMessage:
        if len(message.content) <= self.threshold:
            return message

        path = self._path_generator(message)
        await self.storage.write(path, message.content)

        envelope = message.copy(content=b"")
        envelope.properties[LARGE_MESSAGE_CONTENT_HEADER] = paths.normalize(path)

        if metrics.messages_externalized_total is not None:
            metrics.messages_externalized_total.inc()
            metrics.bytes_externalized_total.inc(len(message.content))
        logger.debug(
            "Externalized %d byte payload of message %s",
            len(message.content),
            message.id,
            extra={"path": path},
        )
        return envelope

    async def send(self, channel: str, messages: Iterable[QueueMessage]) -> None:
        """Offload large payloads, then forward every envelope in order."""
        envelopes = await asyncio.gather(*(self._externalize(m) for m in messages))
        await self.inner.send(channel, list(envelopes))

    # Channel management is passed through unchanged.

    async def create_channels(self, names: Iterable[str]) -> None:
        await self.inner.create_channels(names)

    async def list_channels(self) -> list[str]:
        return await self.inner.list_channels()

    async def delete_channels(self, names: Iterable[str]) -> None:
        await self.inner.delete_channels(names)

    async def get_message_count(self, channel: str) -> int:
        return await self.inner.get_message_count(channel)

    # TODO: rehydrate externalized payloads on receive/peek once offloaded
    # blob cleanup after delete is designed.

    async def receive(
        self, channel: str, count: int = 100, visibility: timedelta | None = None
    ) -> list[QueueMessage]:
        raise UnsupportedOperationError("receive", type(self).__name__)

    async def peek(self, channel: str, count: int = 100) -> list[QueueMessage]:
        raise UnsupportedOperationError("peek", type(self).__name__)

    async def delete(self, channel: str, messages: Iterable[QueueMessage]) -> None:
        raise UnsupportedOperationError("delete", type(self).__name__)

    async def close(self) -> None:
        """Close the inner backend unless it is shared."""
        if not self.keep_inner_open:
            await self.inner.close()

    async def __aenter__(self) -> "LargeMessageChannel":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

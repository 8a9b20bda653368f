"""Message channel backends, the polling engine and payload externalization."""

from datetime import timedelta
from typing import TYPE_CHECKING

from polystore.messaging.backend import ChannelBackend
from polystore.messaging.large import LargeMessageChannel
from polystore.messaging.polling import (
    ChannelPollingReceiver,
    ExponentialBackoffPollingPolicy,
    PollingMessageReceiver,
    PollingPolicy,
    PumpState,
)
from polystore.messaging.registry import ChannelRegistry

if TYPE_CHECKING:
    from polystore.config import MessagingConfig

__all__ = [
    "ChannelBackend",
    "ChannelPollingReceiver",
    "ChannelRegistry",
    "create_channel_backend",
    "ExponentialBackoffPollingPolicy",
    "LargeMessageChannel",
    "PollingMessageReceiver",
    "PollingPolicy",
    "PumpState",
]


def create_channel_backend(config: "MessagingConfig") -> ChannelBackend:
    """Create a channel backend instance based on configuration.

    Raises:
        ValueError: If the backend name is unknown.
    """
    if config.backend == "memory":
        from polystore.messaging.memory import MemoryChannelBackend

        return MemoryChannelBackend(
            default_visibility=timedelta(seconds=config.default_visibility)
        )

    raise ValueError(f"Unknown messaging backend: {config.backend}")

"""Backoff polling engine for polystore.

Channel backends without server-push delivery only offer "receive a batch".
:class:`PollingMessageReceiver` turns that primitive into a continuous
message pump running as one background asyncio task:

    IDLE -> POLLING -> DELIVERING -> POLLING          (batch received)
                    -> BACKOFF    -> POLLING          (empty batch or failure)
    any state -> STOPPED                              (cancellation)

After a delivered batch the pump polls again immediately and resets its
policy; after an empty poll it waits for the policy's next delay. The wait
ends early as soon as the cancellation event is set. Handler and receive
failures are logged and treated as empty polls, so the pump never dies on
its own.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from datetime import timedelta
from enum import Enum
from typing import Any

from polystore import metrics
from polystore.config import PollingConfig
from polystore.errors import InvalidArgumentError, PumpAlreadyRunningError
from polystore.messaging.backend import ChannelBackend
from polystore.models import QueueMessage

logger = logging.getLogger(__name__)

MessageHandler = Callable[[list[QueueMessage], asyncio.Event], Awaitable[None]]

DEAD_LETTER_SUFFIX = "-deadletter"
DEAD_LETTER_REASON_PROPERTY = "dead-letter-reason"
DEAD_LETTER_ERROR_PROPERTY = "dead-letter-error"


class PumpState(str, Enum):
    """Lifecycle state of a message pump."""

    IDLE = "idle"
    POLLING = "polling"
    DELIVERING = "delivering"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class PollingPolicy(ABC):
    """Computes the wait between consecutive empty polls.

    Attributes:
        min_delay: Smallest delay in seconds.
        max_delay: Largest delay in seconds.
        current_delay: Last delay handed out, or None after a reset.
    """

    def __init__(self, min_delay: float, max_delay: float) -> None:
        if min_delay <= 0:
            raise InvalidArgumentError(f"min_delay must be > 0, got {min_delay}")
        if max_delay < min_delay:
            raise InvalidArgumentError(
                f"max_delay ({max_delay}) must be >= min_delay ({min_delay})"
            )
        self.min_delay = min_delay
        self.max_delay = max_delay
        self.current_delay: float | None = None

    @abstractmethod
    def next_delay(self) -> float:
        """Return the delay before the next poll, in seconds."""

    def reset(self) -> None:
        """Go back to the minimum delay."""
        self.current_delay = None


class ExponentialBackoffPollingPolicy(PollingPolicy):
    """Starts at ``min_delay`` and multiplies by ``factor`` up to ``max_delay``."""

    def __init__(self, min_delay: float = 0.1, max_delay: float = 900.0, factor: float = 2.0) -> None:
        super().__init__(min_delay, max_delay)
        if factor < 1:
            raise InvalidArgumentError(f"factor must be >= 1, got {factor}")
        self.factor = factor

    @classmethod
    def from_config(cls, config: PollingConfig) -> "ExponentialBackoffPollingPolicy":
        return cls(min_delay=config.min_delay, max_delay=config.max_delay)

    def next_delay(self) -> float:
        if self.current_delay is None:
            self.current_delay = self.min_delay
        else:
            self.current_delay = min(self.current_delay * self.factor, self.max_delay)
        return self.current_delay


class PollingMessageReceiver(ABC):
    """Base class for receivers whose backend only supports pull delivery.

    Subclasses implement :meth:`receive_messages`. One receiver runs at most
    one pump at a time, and the pump keeps at most one receive outstanding.

    Attributes:
        name: Label used in logs and the pump task name.
        policy: The backoff policy owned by this receiver.
        max_batch_size: Messages requested per poll unless the pump is
            started with an explicit size.
        state: Current pump state.
    """

    def __init__(
        self, policy: PollingPolicy | None = None, name: str = "receiver", max_batch_size: int = 1
    ) -> None:
        if max_batch_size < 1:
            raise InvalidArgumentError(f"max_batch_size must be >= 1, got {max_batch_size}")
        self.name = name
        self.policy = policy or ExponentialBackoffPollingPolicy()
        self.max_batch_size = max_batch_size
        self.state = PumpState.IDLE
        self._task: asyncio.Task[None] | None = None
        self._cancel_event: asyncio.Event | None = None

    @abstractmethod
    async def receive_messages(self, max_batch_size: int) -> list[QueueMessage]:
        """Receive up to ``max_batch_size`` messages (empty list when none)."""

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_message_pump(
        self,
        handler: MessageHandler,
        max_batch_size: int | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> "asyncio.Task[None]":
        """Schedule the message pump and return immediately.

        Must be called from a running event loop.

        Args:
            handler: Awaited with each non-empty batch and the cancellation
                event.
            max_batch_size: Maximum messages requested per poll (defaults to
                :attr:`max_batch_size`).
            cancel_event: Setting this event stops the pump. A private event
                is created when omitted (see :meth:`stop_message_pump`).

        Returns:
            The background task running the pump.

        Raises:
            PumpAlreadyRunningError: If a pump is already running.
        """
        if handler is None:
            raise InvalidArgumentError("handler is required")
        if max_batch_size is None:
            max_batch_size = self.max_batch_size
        if max_batch_size < 1:
            raise InvalidArgumentError(f"max_batch_size must be >= 1, got {max_batch_size}")
        if self.is_running:
            raise PumpAlreadyRunningError()

        self._cancel_event = cancel_event or asyncio.Event()
        self.policy.reset()
        self.state = PumpState.IDLE
        self._task = asyncio.create_task(
            self._pump(handler, max_batch_size, self._cancel_event),
            name=f"polystore-pump-{self.name}",
        )
        return self._task

    async def stop_message_pump(self) -> None:
        """Signal cancellation and wait for the pump to finish."""
        task = self._task
        if task is None:
            return
        if self._cancel_event is not None:
            self._cancel_event.set()
        await asyncio.wait({task})

    async def close(self) -> None:
        await self.stop_message_pump()

    async def __aenter__(self) -> "PollingMessageReceiver":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _enter(self, state: PumpState) -> None:
        self.state = state
        logger.debug("Pump state -> %s", state.value, extra={"channel": self.name, "state": state.value})

    def _count_poll(self, outcome: str) -> None:
        if metrics.polls_total is not None:
            metrics.polls_total.labels(outcome=outcome).inc()

    async def _backoff(self, cancel_event: asyncio.Event) -> bool:
        """Wait for the next policy delay.

        Returns:
            True if cancellation was requested during the wait.
        """
        self._enter(PumpState.BACKOFF)
        delay = self.policy.next_delay()
        logger.debug("Backing off", extra={"channel": self.name, "delay": delay})
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _pump(
        self, handler: MessageHandler, max_batch_size: int, cancel_event: asyncio.Event
    ) -> None:
        logger.info("Message pump started", extra={"channel": self.name, "batch_size": max_batch_size})
        try:
            while not cancel_event.is_set():
                self._enter(PumpState.POLLING)
                try:
                    messages = await self.receive_messages(max_batch_size)
                except asyncio.CancelledError:
                    raise
                except Exception:
                    logger.exception("Receiving messages failed", extra={"channel": self.name})
                    self._count_poll("error")
                    messages = []
                else:
                    self._count_poll("messages" if messages else "empty")

                if messages:
                    self._enter(PumpState.DELIVERING)
                    try:
                        await handler(messages, cancel_event)
                    except asyncio.CancelledError:
                        raise
                    except Exception:
                        logger.exception(
                            "Message handler failed",
                            extra={"channel": self.name, "batch_size": len(messages)},
                        )
                    else:
                        self.policy.reset()
                        continue

                if cancel_event.is_set() or await self._backoff(cancel_event):
                    break
        finally:
            self._enter(PumpState.STOPPED)
            logger.info("Message pump stopped", extra={"channel": self.name})


class ChannelPollingReceiver(PollingMessageReceiver):
    """Polls one channel of a :class:`~polystore.messaging.backend.ChannelBackend`.

    Received messages stay hidden for ``visibility``; the handler should
    :meth:`confirm_messages` them, otherwise the backend delivers them again
    once the window ends.
    """

    def __init__(
        self,
        backend: ChannelBackend,
        channel: str,
        visibility: timedelta = timedelta(minutes=1),
        policy: PollingPolicy | None = None,
        dead_letter_suffix: str = DEAD_LETTER_SUFFIX,
        max_batch_size: int = 1,
    ) -> None:
        super().__init__(policy=policy, name=channel, max_batch_size=max_batch_size)
        self.backend = backend
        self.channel = channel
        self.visibility = visibility
        self.dead_letter_channel = channel + dead_letter_suffix

    @classmethod
    def from_config(
        cls, backend: ChannelBackend, channel: str, config: PollingConfig, **kwargs: Any
    ) -> "ChannelPollingReceiver":
        """Build a receiver whose backoff, batch size and visibility come from ``config``."""
        return cls(
            backend,
            channel,
            visibility=timedelta(seconds=config.visibility),
            policy=ExponentialBackoffPollingPolicy.from_config(config),
            max_batch_size=config.max_batch_size,
            **kwargs,
        )

    async def receive_messages(self, max_batch_size: int) -> list[QueueMessage]:
        return await self.backend.receive(
            self.channel, count=max_batch_size, visibility=self.visibility
        )

    async def get_message_count(self) -> int:
        return await self.backend.get_message_count(self.channel)

    async def peek_messages(self, max_messages: int) -> list[QueueMessage]:
        return await self.backend.peek(self.channel, count=max_messages)

    async def confirm_messages(self, messages: Iterable[QueueMessage]) -> None:
        """Delete processed messages so they are not delivered again."""
        await self.backend.delete(self.channel, list(messages))

    async def dead_letter(self, message: QueueMessage, reason: str, error_description: str = "") -> None:
        """Move a message to the dead-letter channel.

        The copy carries the reason and error description as properties; the
        original is deleted from this channel.
        """
        dead = message.copy(next_visible_at=None)
        dead.properties[DEAD_LETTER_REASON_PROPERTY] = reason
        dead.properties[DEAD_LETTER_ERROR_PROPERTY] = error_description
        await self.backend.send(self.dead_letter_channel, [dead])
        await self.backend.delete(self.channel, [message])
        logger.warning("Message %s dead-lettered: %s", message.id, reason, extra={"channel": self.channel})

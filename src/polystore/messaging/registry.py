"""Caller-owned registry of named channel backends.

Tests and in-process pipelines often need several components to share the
same in-memory channel backend by name. Instead of a process-wide cache,
the owner constructs a :class:`ChannelRegistry`, hands it to whoever needs
it, and closes it when done.
"""

import logging
import threading
from collections.abc import Callable
from typing import Any

from polystore.messaging.backend import ChannelBackend
from polystore.messaging.memory import MemoryChannelBackend

logger = logging.getLogger(__name__)


class ChannelRegistry:
    """Name-to-backend registry with explicit lifecycle.

    ``get_or_create`` is safe to call from several threads: a backend is
    constructed at most once per name.
    """

    def __init__(self, factory: Callable[[], ChannelBackend] = MemoryChannelBackend) -> None:
        self._factory = factory
        self._backends: dict[str, ChannelBackend] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str) -> ChannelBackend:
        """Return the backend registered under ``name``, creating it if needed."""
        with self._lock:
            backend = self._backends.get(name)
            if backend is None:
                backend = self._factory()
                self._backends[name] = backend
                logger.debug("Created channel backend %r", name)
            return backend

    def get(self, name: str) -> ChannelBackend | None:
        with self._lock:
            return self._backends.get(name)

    def names(self) -> list[str]:
        with self._lock:
            return sorted(self._backends)

    async def dispose(self, name: str) -> None:
        """Remove and close one backend. Unknown names are ignored."""
        with self._lock:
            backend = self._backends.pop(name, None)
        if backend is not None:
            await backend.close()

    async def close(self) -> None:
        """Close and forget every registered backend."""
        with self._lock:
            backends = list(self._backends.values())
            self._backends.clear()
        for backend in backends:
            await backend.close()

    async def __aenter__(self) -> "ChannelRegistry":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

"""Shared pytest fixtures for polystore tests.

Backends are created fresh per test; nothing is shared across tests except
the prometheus_client registry, which ``init_metrics`` only touches once.
"""

import asyncio
from collections.abc import Callable

import pytest

from polystore.messaging.memory import MemoryChannelBackend
from polystore.storage.generic import Storage
from polystore.storage.memory import MemoryStorageBackend


async def _wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.001)


@pytest.fixture
def wait_until():
    """Helper awaiting until ``predicate()`` holds, failing after ``timeout`` seconds."""
    return _wait_until


@pytest.fixture
async def memory_backend():
    """An initialized flat (non-hierarchical) in-memory storage backend."""
    backend = MemoryStorageBackend()
    await backend.init()
    yield backend
    await backend.close()


@pytest.fixture
async def storage(memory_backend):
    """A Storage facade over the in-memory backend."""
    return Storage(memory_backend)


@pytest.fixture
async def channels():
    """An in-memory channel backend."""
    backend = MemoryChannelBackend()
    yield backend
    await backend.close()

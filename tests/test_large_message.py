"""Tests for LargeMessageChannel payload externalization."""

import pytest
from prometheus_client import REGISTRY

from polystore import metrics
from polystore.config import LargeMessageConfig
from polystore.errors import UnsupportedOperationError
from polystore.messaging.large import LargeMessageChannel, default_path_generator
from polystore.messaging.memory import MemoryChannelBackend
from polystore.models import LARGE_MESSAGE_CONTENT_HEADER, QueueMessage


class SpyChannel(MemoryChannelBackend):
    """Memory channel that records the exact message objects it was sent."""

    def __init__(self):
        super().__init__()
        self.sent = []

    async def send(self, channel, messages):
        messages = list(messages)
        self.sent.append((channel, messages))
        await super().send(channel, messages)


@pytest.fixture
def inner():
    return SpyChannel()


@pytest.fixture
def large(inner, storage):
    return LargeMessageChannel(inner, storage, threshold=10)


def forwarded(inner):
    (_, messages) = inner.sent[-1]
    return messages


class TestSend:
    """Tests for LargeMessageChannel.send()."""

    async def test_small_message_forwarded_unchanged(self, large, inner):
        message = QueueMessage(content=b"tiny")
        await large.send("q", [message])
        assert forwarded(inner)[0] is message

    async def test_threshold_is_inclusive(self, large, inner):
        """A payload of exactly ``threshold`` bytes stays inline."""
        message = QueueMessage(content=b"x" * 10)
        await large.send("q", [message])
        assert forwarded(inner)[0] is message

    async def test_large_message_externalized(self, large, inner, storage):
        payload = b"y" * 11
        message = QueueMessage(content=payload, properties={"kind": "report"})
        await large.send("q", [message])

        (envelope,) = forwarded(inner)
        assert envelope.content == b""
        assert envelope.id == message.id
        assert envelope.properties["kind"] == "report"
        path = envelope.properties[LARGE_MESSAGE_CONTENT_HEADER]
        assert path.startswith("message/")
        assert await storage.read(path) == payload

    async def test_caller_message_not_mutated(self, large):
        message = QueueMessage(content=b"z" * 100)
        await large.send("q", [message])
        assert message.content == b"z" * 100
        assert LARGE_MESSAGE_CONTENT_HEADER not in message.properties

    async def test_order_preserved_in_single_send(self, large, inner):
        messages = [
            QueueMessage(content=b"a"),
            QueueMessage(content=b"b" * 50),
            QueueMessage(content=b"c"),
            QueueMessage(content=b"d" * 50),
        ]
        await large.send("q", messages)

        assert len(inner.sent) == 1
        assert [m.id for m in forwarded(inner)] == [m.id for m in messages]
        assert [m.is_externalized for m in forwarded(inner)] == [False, True, False, True]

    async def test_custom_path_generator(self, inner, storage):
        large = LargeMessageChannel(
            inner, storage, threshold=0, path_generator=lambda m: f"/blobs/{m.id}/"
        )
        message = QueueMessage(content=b"1")
        await large.send("q", [message])
        assert forwarded(inner)[0].properties[LARGE_MESSAGE_CONTENT_HEADER] == f"blobs/{message.id}"
        assert await storage.read(f"blobs/{message.id}") == b"1"

    async def test_zero_threshold_keeps_empty_payload_inline(self, inner, storage):
        large = LargeMessageChannel(inner, storage, threshold=0)
        message = QueueMessage(content=b"")
        await large.send("q", [message])
        assert forwarded(inner)[0] is message

    async def test_envelope_reaches_inner_channel(self, large, inner):
        await large.send("q", [QueueMessage(content=b"w" * 20)])
        (received,) = await inner.receive("q")
        assert received.is_externalized

    async def test_externalization_metrics(self, large):
        metrics.init_metrics()
        before_count = REGISTRY.get_sample_value("polystore_messages_externalized_total") or 0.0
        before_bytes = REGISTRY.get_sample_value("polystore_bytes_externalized_total") or 0.0

        await large.send("q", [QueueMessage(content=b"m" * 40), QueueMessage(content=b"s")])

        assert REGISTRY.get_sample_value("polystore_messages_externalized_total") - before_count == 1
        assert REGISTRY.get_sample_value("polystore_bytes_externalized_total") - before_bytes == 40


class TestPassThrough:
    """Channel administration goes straight to the inner backend."""

    async def test_admin_operations(self, large, inner):
        await large.create_channels(["a", "b"])
        assert await large.list_channels() == ["a", "b"]
        await large.send("a", [QueueMessage(content=b"1")])
        assert await large.get_message_count("a") == 1
        await large.delete_channels(["a"])
        assert await inner.list_channels() == ["b"]


class TestUnsupported:
    """The decorator does not rehydrate payloads."""

    @pytest.mark.parametrize("operation", ["receive", "peek"])
    async def test_read_side_unsupported(self, large, operation):
        with pytest.raises(UnsupportedOperationError) as exc_info:
            await getattr(large, operation)("q")
        assert exc_info.value.operation == operation
        assert exc_info.value.code == "Unsupported"

    async def test_delete_unsupported(self, large):
        with pytest.raises(UnsupportedOperationError):
            await large.delete("q", [QueueMessage()])


class TestLifecycle:
    """Tests for construction and close()."""

    async def test_close_closes_inner(self, large, inner):
        await large.close()
        assert inner.closed

    async def test_keep_inner_open(self, inner, storage):
        async with LargeMessageChannel(inner, storage, threshold=1, keep_inner_open=True):
            pass
        assert not inner.closed

    @pytest.mark.parametrize("field", ["inner", "storage"])
    async def test_requires_collaborators(self, field, storage):
        kwargs = {"inner": MemoryChannelBackend(), "storage": storage, "threshold": 1}
        kwargs[field] = None
        with pytest.raises(ValueError):
            LargeMessageChannel(**kwargs)

    async def test_negative_threshold(self, storage):
        with pytest.raises(ValueError):
            LargeMessageChannel(MemoryChannelBackend(), storage, threshold=-1)

    def test_default_path_generator(self):
        generate = default_path_generator("payloads")
        first, second = generate(QueueMessage()), generate(QueueMessage())
        assert first.startswith("payloads/")
        assert first != second

    async def test_from_config(self, inner, storage):
        config = LargeMessageConfig(threshold=4, keep_inner_open=True, path_prefix="blobs/q")
        channel = LargeMessageChannel.from_config(inner, storage, config)
        assert channel.threshold == 4
        assert channel.keep_inner_open

        await channel.send("q", [QueueMessage(content=b"12345")])

        path = forwarded(inner)[0].properties[LARGE_MESSAGE_CONTENT_HEADER]
        assert path.startswith("blobs/q/")
        assert await storage.read(path) == b"12345"
        await channel.close()
        assert not inner.closed

"""Shared fixtures: an in-memory Redis double wired through ``redis_factory``."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
import redis.exceptions

from tripero_client.client import TriperoClient


class FakeBroker:
    """Routes PUBLISH from any fake client to every fake pub/sub subscribed."""

    def __init__(self) -> None:
        self.clients: list[FakeRedis] = []
        self.pubsubs: list[FakePubSub] = []
        self.published: list[tuple[str, str]] = []
        self.pipelines_executed = 0
        self.fail_connect = False
        self.fail_publish = False
        self.fail_ping = False
        self.fail_subscribe = False
        # Messages handed to the first pub/sub that subscribes to their channel.
        self.backlog: dict[str, list[str]] = {}

    def factory(self, **kwargs: Any) -> "FakeRedis":
        client = FakeRedis(self, kwargs)
        self.clients.append(client)
        return client

    def deliver(self, channel: str, data: str) -> int:
        receivers = 0
        for pubsub in self.pubsubs:
            if channel in pubsub.channels:
                pubsub.queue.put_nowait({"type": "message", "channel": channel, "data": data})
                receivers += 1
        return receivers


class FakeRedis:
    def __init__(self, broker: FakeBroker, kwargs: dict[str, Any]) -> None:
        self.broker = broker
        self.kwargs = kwargs
        self.closed = False
        self.pings = 0

    async def ping(self) -> bool:
        if self.broker.fail_connect:
            raise redis.exceptions.ConnectionError("Connection refused")
        if self.broker.fail_ping and self.pings > 0:
            raise redis.exceptions.ConnectionError("Connection reset by peer")
        self.pings += 1
        return True

    async def publish(self, channel: str, data: str) -> int:
        if self.broker.fail_publish:
            raise redis.exceptions.ConnectionError("Connection reset by peer")
        self.broker.published.append((channel, data))
        return self.broker.deliver(channel, data)

    def pipeline(self, transaction: bool = True) -> "FakePipeline":
        return FakePipeline(self.broker)

    def pubsub(self) -> "FakePubSub":
        pubsub = FakePubSub(self.broker)
        self.broker.pubsubs.append(pubsub)
        return pubsub

    async def aclose(self) -> None:
        self.closed = True


class FakePipeline:
    def __init__(self, broker: FakeBroker) -> None:
        self.broker = broker
        self.commands: list[tuple[str, str]] = []

    def publish(self, channel: str, data: str) -> "FakePipeline":
        self.commands.append((channel, data))
        return self

    async def execute(self) -> list[int]:
        if self.broker.fail_publish:
            raise redis.exceptions.ConnectionError("Connection reset by peer")
        self.broker.pipelines_executed += 1
        results = []
        for channel, data in self.commands:
            self.broker.published.append((channel, data))
            results.append(self.broker.deliver(channel, data))
        return results


class FakePubSub:
    def __init__(self, broker: FakeBroker) -> None:
        self.broker = broker
        self.channels: set[str] = set()
        self.subscribe_calls: list[tuple[str, ...]] = []
        self.queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels: str) -> None:
        if self.broker.fail_subscribe:
            raise redis.exceptions.ConnectionError("Connection reset by peer")
        self.subscribe_calls.append(channels)
        self.channels.update(channels)
        for channel in channels:
            for data in self.broker.backlog.pop(channel, []):
                self.queue.put_nowait({"type": "message", "channel": channel, "data": data})

    def fail(self, exc: BaseException) -> None:
        """Make the receive loop raise *exc* once queued messages are read."""
        self.queue.put_nowait(exc)

    async def unsubscribe(self, *channels: str) -> None:
        self.channels.clear()

    async def listen(self):
        while True:
            item = await self.queue.get()
            if isinstance(item, BaseException):
                raise item
            yield item

    async def aclose(self) -> None:
        self.closed = True
        if self in self.broker.pubsubs:
            self.broker.pubsubs.remove(self)


async def settle() -> None:
    """Let the listener task and any scheduled handlers run."""
    for _ in range(10):
        await asyncio.sleep(0)


@pytest.fixture
def broker() -> FakeBroker:
    return FakeBroker()


@pytest.fixture
def make_client(broker: FakeBroker):
    """Build a :class:`TriperoClient` backed by the fake broker."""

    def _make(config: Any = None, **kwargs: Any) -> TriperoClient:
        return TriperoClient(config, redis_factory=broker.factory, **kwargs)

    return _make


class RecordingLogger:
    """Collects ``(level, message)`` pairs; usable as ``options.logger``."""

    def __init__(self) -> None:
        self.records: list[tuple[str, str]] = []

    def _log(self, level: str, msg: str, *args: Any, **kwargs: Any) -> None:
        self.records.append((level, msg % args if args else msg))

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log("debug", msg, *args)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log("info", msg, *args)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log("warning", msg, *args)

    def error(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log("error", msg, *args)

    def messages(self, level: str) -> list[str]:
        return [m for lvl, m in self.records if lvl == level]


@pytest.fixture
def recorder() -> RecordingLogger:
    return RecordingLogger()

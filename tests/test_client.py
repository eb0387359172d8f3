"""Tests for the TriperoClient facade."""

import asyncio

import logging

import orjson
import pytest
import redis.exceptions

from conftest import FakeBroker, RecordingLogger, settle
from tripero_client.codec import from_wire
from tripero_client.errors import HttpNotConfiguredError, NotConnectedError, TransportError
from tripero_client.models import IgnitionEvent, PositionEvent

POSITION = PositionEvent(
    device_id="VEHICLE-001",
    timestamp=1700000000000,
    latitude=-34.6037,
    longitude=-58.3816,
    speed=45.5,
    ignition=True,
    heading=45,
    metadata={"tenant_id": "demo-tenant", "fleet_id": "demo-fleet"},
)


def test_position_round_trips_through_channel(make_client, broker: FakeBroker) -> None:
    """A published position arrives field-for-field on the prefixed channel."""

    async def scenario() -> None:
        async with make_client() as client:
            await client.publish_position(POSITION)

        channel, data = broker.published[-1]
        assert channel == "tripero:position:new"
        assert from_wire(PositionEvent, orjson.loads(data)) == POSITION

    asyncio.run(scenario())


def test_published_position_reaches_subscriber(make_client, broker: FakeBroker) -> None:
    """Handlers registered on one client receive what another client publishes."""

    async def scenario() -> None:
        received = []
        async with make_client() as listener, make_client() as publisher:
            listener.on("position:new", received.append)
            await listener.subscribe()
            await publisher.publish_position(POSITION)
            await settle()
        assert len(received) == 1
        assert from_wire(PositionEvent, received[0]) == POSITION

    asyncio.run(scenario())


def test_ignition_event_channel(make_client, broker: FakeBroker) -> None:
    async def scenario() -> None:
        async with make_client({"redis": {"key_prefix": "fleet:"}}) as client:
            await client.publish_ignition_event(
                IgnitionEvent(device_id="d", timestamp=1, ignition=False, latitude=1, longitude=2)
            )
        channel, data = broker.published[-1]
        assert channel == "fleet:ignition:changed"
        assert orjson.loads(data)["ignition"] is False

    asyncio.run(scenario())


def test_connect_is_idempotent(make_client, broker: FakeBroker, recorder: RecordingLogger) -> None:
    async def scenario() -> None:
        client = make_client({"options": {"logger": recorder}})
        await client.connect()
        await client.connect()
        assert len(broker.clients) == 2
        assert "Already connected to Redis" in recorder.messages("warning")
        await client.disconnect()

    asyncio.run(scenario())


def test_connect_failure_always_raises(make_client, broker: FakeBroker) -> None:
    broker.fail_connect = True

    async def scenario() -> None:
        client = make_client()
        with pytest.raises(TransportError):
            await client.connect()
        assert client.is_connected is False

    asyncio.run(scenario())


def test_disconnect_resets_state(make_client) -> None:
    async def scenario() -> None:
        client = make_client()
        client.on("trip:started", lambda e: None)
        await client.connect()
        await client.subscribe()
        assert client.is_subscribed
        await client.disconnect()
        assert not client.is_connected
        assert not client.is_subscribed
        await client.disconnect()

    asyncio.run(scenario())


def test_subscribe_without_handlers_is_noop(make_client, broker: FakeBroker, recorder: RecordingLogger) -> None:
    async def scenario() -> None:
        async with make_client({"options": {"logger": recorder}}) as client:
            await client.subscribe()
            assert broker.pubsubs == []
            assert not client.is_subscribed
        assert any("No handlers registered" in m for m in recorder.messages("warning"))

    asyncio.run(scenario())


def test_subscribe_twice_warns(make_client, broker: FakeBroker, recorder: RecordingLogger) -> None:
    async def scenario() -> None:
        async with make_client({"options": {"logger": recorder}}) as client:
            client.on("trip:started", lambda e: None)
            client.on("stop:started", lambda e: None)
            await client.subscribe()
            await client.subscribe()
            assert len(broker.pubsubs) == 1
            assert broker.pubsubs[0].subscribe_calls == [("tripero:trip:started", "tripero:stop:started")]
        assert "Already subscribed to events" in recorder.messages("warning")

    asyncio.run(scenario())


def test_subscribe_before_connect_raises(make_client) -> None:
    async def scenario() -> None:
        client = make_client()
        client.on("trip:started", lambda e: None)
        with pytest.raises(NotConnectedError):
            await client.subscribe()

    asyncio.run(scenario())


def test_throwing_handler_does_not_block_others(make_client, broker: FakeBroker) -> None:
    async def scenario() -> None:
        received = []

        def broken(event):
            raise ValueError("bad handler")

        async with make_client({"options": {"log_level": "silent"}}) as client:
            client.on("trip:completed", broken)
            client.on("trip:completed", received.append)
            await client.subscribe()
            broker.deliver("tripero:trip:completed", '{"tripId": "t-1", "distance": 1200}')
            await settle()
        assert received == [{"tripId": "t-1", "distance": 1200}]

    asyncio.run(scenario())


def test_message_without_handlers_is_dropped(make_client, broker: FakeBroker) -> None:
    async def scenario() -> None:
        received = []
        async with make_client() as client:
            client.on("trip:started", received.append)
            await client.subscribe()
            broker.pubsubs[0].channels.add("tripero:stop:started")
            broker.deliver("tripero:stop:started", '{"stopId": "s"}')
            await settle()
        assert received == []

    asyncio.run(scenario())


def test_decorator_registration_and_off(make_client, broker: FakeBroker) -> None:
    async def scenario() -> None:
        received = []
        async with make_client() as client:

            @client.on("stop:completed")
            async def on_stop(event):
                received.append(event["stopId"])

            await client.subscribe()
            broker.deliver("tripero:stop:completed", '{"stopId": "s1"}')
            await settle()
            client.off("stop:completed", on_stop)
            broker.deliver("tripero:stop:completed", '{"stopId": "s2"}')
            await settle()
        assert received == ["s1"]

    asyncio.run(scenario())


def test_publish_while_disconnected_swallowed_by_default(make_client, recorder: RecordingLogger) -> None:
    async def scenario() -> None:
        client = make_client({"options": {"logger": recorder}})
        await client.publish_position(POSITION)
        await client.publish_positions([POSITION, POSITION])
        assert len(recorder.messages("error")) == 2

    asyncio.run(scenario())


def test_publish_while_disconnected_raises_when_configured(make_client) -> None:
    async def scenario() -> None:
        client = make_client({"options": {"throw_on_error": True, "log_level": "silent"}})
        with pytest.raises(NotConnectedError):
            await client.publish_position(POSITION)

    asyncio.run(scenario())


def test_transport_failure_follows_error_policy(make_client, broker: FakeBroker) -> None:
    async def scenario() -> None:
        async with make_client({"options": {"log_level": "silent"}}) as lenient:
            broker.fail_publish = True
            await lenient.publish_positions([POSITION])
        broker.fail_publish = False

        async with make_client({"options": {"throw_on_error": True, "log_level": "silent"}}) as strict:
            broker.fail_publish = True
            with pytest.raises(TransportError):
                await strict.publish_position(POSITION)
            broker.fail_publish = False

    asyncio.run(scenario())


def test_health_states(make_client, broker: FakeBroker) -> None:
    async def scenario() -> None:
        client = make_client({"redis": {"host": "redis-tripero", "db": 3}})
        health = await client.health()
        assert (health.status, health.host, health.port, health.db) == ("disconnected", "redis-tripero", 6379, 3)

        await client.connect()
        assert (await client.health()).status == "connected"

        broker.fail_ping = True
        health = await client.health()
        assert health.status == "error"
        assert "reset" in health.error
        await client.disconnect()
        assert (await client.health()).status == "disconnected"

    asyncio.run(scenario())


def test_http_operations_require_base_url(make_client) -> None:
    async def scenario() -> None:
        client = make_client({"http": {"timeout_ms": 1000}})
        assert client.has_http_client is False
        with pytest.raises(HttpNotConfiguredError):
            await client.get_tracker_status("VEHICLE-001")
        with pytest.raises(HttpNotConfiguredError):
            await client.get_trips(device_id="all", from_="2025-01-01", to="2025-01-02")

    asyncio.run(scenario())


def test_retry_settings_forwarded(make_client, broker: FakeBroker) -> None:
    async def scenario() -> None:
        async with make_client({"options": {"enable_retry": True, "max_retries_per_request": 3}}):
            kwargs = broker.clients[0].kwargs
        assert kwargs["retry"]._retries == 3
        assert kwargs["retry_on_error"]

    asyncio.run(scenario())


def test_lost_subscription_reported_and_recoverable(make_client, broker: FakeBroker) -> None:
    async def scenario() -> None:
        received = []
        async with make_client({"options": {"log_level": "silent"}}) as client:
            client.on("trip:started", received.append)
            await client.subscribe()
            broker.pubsubs[0].fail(redis.exceptions.ConnectionError("Connection reset by peer"))
            await settle()

            assert not client.is_subscribed
            health = await client.health()
            assert health.status == "error"
            assert "Connection reset by peer" in health.error

            await client.subscribe()
            assert client.is_subscribed
            assert (await client.health()).status == "connected"
            broker.deliver("tripero:trip:started", '{"tripId": "t-9"}')
            await settle()
        assert received == [{"tripId": "t-9"}]

    asyncio.run(scenario())


def test_offline_batch_logs_queued_count(make_client, recorder: RecordingLogger) -> None:
    async def scenario() -> None:
        client = make_client({"options": {"logger": recorder, "enable_offline_queue": True}})
        await client.publish_positions([POSITION, POSITION])
        assert "2 positions queued while offline" in recorder.messages("debug")
        assert not any("published in batch" in m for m in recorder.messages("debug"))

    asyncio.run(scenario())


def test_clients_keep_their_own_log_levels(make_client) -> None:
    verbose = make_client({"options": {"log_level": "debug"}})
    quiet = make_client({"options": {"log_level": "silent"}})
    assert verbose._logger is not quiet._logger
    assert verbose._logger.isEnabledFor(logging.DEBUG)
    assert verbose._logger.isEnabledFor(logging.ERROR)
    assert not quiet._logger.isEnabledFor(logging.CRITICAL)

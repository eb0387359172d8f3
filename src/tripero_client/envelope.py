"""Redis pub/sub envelope: channel prefixing, serialization, handler dispatch.

Two Redis connections are held while connected, because a connection in
subscribed mode cannot issue other commands::

    publisher   PUBLISH / pipelines / PING
    subscriber  SUBSCRIBE → listener task → dispatch → handlers

Connection lifecycle::

    DISCONNECTED → CONNECTING → (success) → CONNECTED → CLOSING → DISCONNECTED
                              → (failure) → DISCONNECTED

Logical channel names (``trip:started``) are prefixed with
``redis.key_prefix`` before they reach Redis and stripped again on the way
in, so handlers are always looked up by logical name.
"""

from __future__ import annotations

import asyncio
import enum
import inspect
from collections import deque
from contextlib import suppress
from functools import partial
from typing import Any, Awaitable, Callable, Iterable, Optional, Union

import redis.asyncio as aioredis
import redis.exceptions
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff, NoBackoff

from tripero_client import constants
from tripero_client.codec import decode_payload, encode_event
from tripero_client.config import ClientConfig
from tripero_client.errors import MalformedPayloadError, NotConnectedError, TransportError

Handler = Callable[[dict], Union[None, Awaitable[None]]]
RedisFactory = Callable[..., Any]


class ConnectionState(enum.Enum):
    """States of the publisher/subscriber connection pair."""

    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CLOSING = "CLOSING"


class HandlerRegistry:
    """Event type → handlers, in registration order, without duplicates."""

    def __init__(self) -> None:
        self._handlers: dict[str, dict[Handler, None]] = {}

    def add(self, event_type: str, handler: Handler) -> None:
        self._handlers.setdefault(event_type, {})[handler] = None

    def remove(self, event_type: str, handler: Handler) -> None:
        handlers = self._handlers.get(event_type)
        if handlers is not None:
            handlers.pop(handler, None)
            if not handlers:
                del self._handlers[event_type]

    def get(self, event_type: str) -> list[Handler]:
        """Return a snapshot of the handlers for *event_type*."""
        return list(self._handlers.get(event_type, ()))

    def event_types(self) -> list[str]:
        """Event types with at least one registered handler."""
        return [k for k, v in self._handlers.items() if v]

    def __len__(self) -> int:
        return sum(len(v) for v in self._handlers.values())


class PubSubEnvelope:
    """Owns the two Redis connections and the inbound dispatch loop.

    Parameters
    ----------
    config:
        Resolved client configuration.
    logger:
        Logger used for every message this envelope emits.
    redis_factory:
        Callable building a Redis client from keyword arguments. Defaults to
        :class:`redis.asyncio.Redis`.
    """

    def __init__(
        self,
        config: ClientConfig,
        logger: Any,
        redis_factory: Optional[RedisFactory] = None,
    ) -> None:
        self._config = config
        self._logger = logger
        self._redis_factory = redis_factory or aioredis.Redis
        self._prefix = config.redis.key_prefix
        self._state = ConnectionState.DISCONNECTED
        self._publisher = None
        self._subscriber = None
        self._pubsub = None
        self._listener: Optional[asyncio.Task] = None
        self._subscribed = False
        self._listener_error: Optional[str] = None
        self._pending: set[asyncio.Future] = set()
        self._offline: deque[tuple[str, str]] = deque(maxlen=constants.OFFLINE_QUEUE_LIMIT)
        self.registry = HandlerRegistry()

    # ── state ───────────────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def subscribed(self) -> bool:
        return self._subscribed

    @property
    def listener_error(self) -> Optional[str]:
        """Why the last subscription listener died, until the next subscribe."""
        return self._listener_error

    @property
    def offline_queue_size(self) -> int:
        return len(self._offline)

    # ── channel naming ──────────────────────────────────────────────

    def prefix_channel(self, channel: str) -> str:
        return f"{self._prefix}{channel}"

    def unprefix_channel(self, channel: str) -> str:
        if self._prefix and channel.startswith(self._prefix):
            return channel[len(self._prefix):]
        return channel

    # ── lifecycle ───────────────────────────────────────────────────

    async def open(self) -> None:
        """Open and ping both connections, then flush the offline queue.

        Raises
        ------
        TransportError
            If either connection cannot be established.
        """
        self._set_state(ConnectionState.CONNECTING)
        kwargs = self._client_kwargs()
        try:
            self._publisher = self._redis_factory(**kwargs)
            await self._publisher.ping()
            self._subscriber = self._redis_factory(**kwargs)
            await self._subscriber.ping()
        except (redis.exceptions.RedisError, OSError) as exc:
            await self._close_clients()
            self._set_state(ConnectionState.DISCONNECTED)
            raise TransportError(
                f"Could not connect to Redis at {self._config.redis.host}:{self._config.redis.port}: {exc}"
            ) from exc

        self._set_state(ConnectionState.CONNECTED)
        if self._offline:
            await self._flush_offline()

    async def close(self) -> None:
        """Stop listening and close both connections; always ends DISCONNECTED."""
        self._set_state(ConnectionState.CLOSING)
        try:
            await self.unsubscribe()
        except redis.exceptions.RedisError as exc:
            self._logger.warning("Error while unsubscribing: %s", exc)
        await self._close_clients()
        self._subscribed = False
        self._listener_error = None
        self._set_state(ConnectionState.DISCONNECTED)

    async def ping(self) -> None:
        """Liveness check on the publisher connection."""
        self._require_connected()
        await self._publisher.ping()

    # ── publish ─────────────────────────────────────────────────────

    async def publish(self, channel: str, event: Any) -> None:
        """Serialize *event* and publish it on the prefixed *channel*.

        Raises
        ------
        NotConnectedError
            If not connected and the offline queue is disabled.
        TransportError
            If the PUBLISH command fails.
        """
        prefixed = self.prefix_channel(channel)
        payload = encode_event(event)
        if not self.connected and self._config.options.enable_offline_queue:
            self._enqueue_offline(prefixed, payload)
            return
        self._require_connected()
        try:
            await self._publisher.publish(prefixed, payload)
        except redis.exceptions.RedisError as exc:
            raise TransportError(f"Error publishing to {prefixed}: {exc}") from exc

    async def publish_many(self, channel: str, events: Iterable[Any]) -> int:
        """Publish *events* in order as one pipeline; all-or-nothing.

        Returns the number of events sent, or queued when offline.
        """
        prefixed = self.prefix_channel(channel)
        payloads = [encode_event(e) for e in events]
        if not self.connected and self._config.options.enable_offline_queue:
            for payload in payloads:
                self._enqueue_offline(prefixed, payload)
            return len(payloads)
        self._require_connected()
        if not payloads:
            return 0
        await self._execute_pipeline([(prefixed, p) for p in payloads])
        return len(payloads)

    async def _execute_pipeline(self, messages: list[tuple[str, str]]) -> None:
        pipe = self._publisher.pipeline(transaction=False)
        for prefixed, payload in messages:
            pipe.publish(prefixed, payload)
        try:
            await pipe.execute()
        except redis.exceptions.RedisError as exc:
            raise TransportError(f"Error publishing batch of {len(messages)}: {exc}") from exc

    def _enqueue_offline(self, prefixed: str, payload: str) -> None:
        if len(self._offline) == self._offline.maxlen:
            self._logger.warning("Offline queue full, dropping oldest message")
        self._offline.append((prefixed, payload))
        self._logger.debug("Queued message for %s while offline (%d pending)", prefixed, len(self._offline))

    async def _flush_offline(self) -> None:
        messages = list(self._offline)
        self._offline.clear()
        try:
            await self._execute_pipeline(messages)
        except TransportError as exc:
            self._logger.error("Could not flush %d offline messages: %s", len(messages), exc)
            return
        self._logger.info("Flushed %d messages queued while offline", len(messages))

    # ── subscribe ───────────────────────────────────────────────────

    async def subscribe(self) -> list[str]:
        """Subscribe to every event type that has a handler.

        Returns the logical channels subscribed to; empty when already
        subscribed or when no handler is registered.
        """
        self._require_connected()
        if self._subscribed:
            self._logger.warning("Already subscribed to events")
            return []

        channels = self.registry.event_types()
        if not channels:
            self._logger.warning("No handlers registered, nothing to subscribe to")
            return []

        self._pubsub = self._subscriber.pubsub()
        try:
            await self._pubsub.subscribe(*(self.prefix_channel(c) for c in channels))
        except redis.exceptions.RedisError as exc:
            await self._pubsub.aclose()
            self._pubsub = None
            raise TransportError(f"Error subscribing: {exc}") from exc

        self._listener_error = None
        self._listener = asyncio.create_task(self._listen(self._pubsub))
        self._subscribed = True
        self._logger.info("Subscribed to %d channels: %s", len(channels), ", ".join(channels))
        return channels

    async def unsubscribe(self) -> None:
        """Cancel all subscriptions; no-op when not subscribed."""
        if not self._subscribed:
            return
        pubsub, listener = self._pubsub, self._listener
        self._pubsub = None
        self._listener = None
        self._subscribed = False
        try:
            await pubsub.unsubscribe()
        finally:
            if listener is not None:
                listener.cancel()
                with suppress(asyncio.CancelledError):
                    await listener
            await pubsub.aclose()
        self._logger.info("Unsubscribed from all channels")

    async def _listen(self, pubsub: Any) -> None:
        """Receive loop: one :meth:`dispatch` per ``message``.

        If the subscriber connection fails, subscription state is reset so a
        later :meth:`subscribe` starts over.
        """
        try:
            async for message in pubsub.listen():
                if message.get("type") != "message":
                    continue  # subscribe/unsubscribe confirmations
                self.dispatch(message["channel"], message["data"])
        except (redis.exceptions.RedisError, OSError) as exc:
            reason = str(exc)
        else:
            reason = "subscription stream ended"
        if self._pubsub is not pubsub:
            return  # unsubscribed meanwhile
        self._logger.error("Subscription listener stopped: %s", reason)
        self._listener_error = reason
        self._pubsub = None
        self._listener = None
        self._subscribed = False
        try:
            await pubsub.aclose()
        except (redis.exceptions.RedisError, OSError) as exc:
            self._logger.warning("Error closing failed subscription: %s", exc)

    def dispatch(self, prefixed_channel: str, data: Union[str, bytes]) -> int:
        """Deliver one inbound message to the handlers of its channel.

        Never raises: malformed payloads and handler failures are logged.
        Returns the number of handlers invoked.
        """
        channel = self.unprefix_channel(prefixed_channel)
        handlers = self.registry.get(channel)
        if not handlers:
            return 0

        try:
            event = decode_payload(data)
        except MalformedPayloadError as exc:
            self._logger.error(
                "Dropping malformed message on %s: %s (payload=%r)", channel, exc, exc.raw_payload
            )
            return 0

        for handler in handlers:
            try:
                result = handler(event)
            except Exception:
                self._logger.error("Handler for %s failed", channel, exc_info=True)
                continue
            if inspect.isawaitable(result):
                future = asyncio.ensure_future(result)
                self._pending.add(future)
                future.add_done_callback(partial(self._handler_done, channel))
        return len(handlers)

    def _handler_done(self, channel: str, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        exc = future.exception()
        if exc is not None:
            self._logger.error(
                "Async handler for %s failed", channel, exc_info=(type(exc), exc, exc.__traceback__)
            )

    # ── helpers ─────────────────────────────────────────────────────

    def _require_connected(self) -> None:
        if not self.connected:
            raise NotConnectedError()

    def _client_kwargs(self) -> dict[str, Any]:
        r = self._config.redis
        t = r.transport
        opts = self._config.options
        kwargs: dict[str, Any] = {
            "host": r.host,
            "port": r.port,
            "db": r.db,
            "username": r.username,
            "password": r.password,
            "decode_responses": True,
            "socket_timeout": t.socket_timeout,
            "socket_connect_timeout": t.socket_connect_timeout,
            "socket_keepalive": t.socket_keepalive,
            "health_check_interval": t.health_check_interval,
            "client_name": t.client_name,
            "ssl": t.ssl,
        }
        if opts.enable_retry:
            kwargs["retry"] = Retry(ExponentialBackoff(), opts.max_retries_per_request)
            kwargs["retry_on_error"] = [
                redis.exceptions.ConnectionError,
                redis.exceptions.TimeoutError,
            ]
        else:
            kwargs["retry"] = Retry(NoBackoff(), 0)
        return kwargs

    async def _close_clients(self) -> None:
        for name in ("_subscriber", "_publisher"):
            client = getattr(self, name)
            setattr(self, name, None)
            if client is None:
                continue
            try:
                await client.aclose()
            except (redis.exceptions.RedisError, OSError) as exc:
                self._logger.warning("Error closing Redis connection: %s", exc)

    def _set_state(self, new: ConnectionState) -> None:
        old = self._state
        self._state = new
        self._logger.debug("Connection state: %s → %s", old.value, new.value)

"""The :class:`TriperoClient` facade.

Usage::

    async with TriperoClient({"redis": {"host": "redis-tripero"},
                              "http": {"base_url": "http://tripero:3001"}}) as tripero:

        @tripero.on("trip:completed")
        async def on_trip(event):
            print(event["tripId"], event["distance"])

        await tripero.subscribe()
        await tripero.publish_position(PositionEvent(
            device_id="VEHICLE-001", timestamp=1700000000000,
            latitude=-34.6037, longitude=-58.3816, speed=45,
        ))

Publishing is fire-and-forget: with ``options.throw_on_error`` False (the
default) failures are logged and swallowed so that an unavailable Tripero
never crashes the publishing application.
"""

from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Union

import httpx
import redis.exceptions

from tripero_client import constants
from tripero_client.config import ClientConfig, resolve_config
from tripero_client.envelope import Handler, PubSubEnvelope, RedisFactory
from tripero_client.errors import HttpNotConfiguredError, TriperoError
from tripero_client.log import resolve_logger
from tripero_client.models import (
    IgnitionEvent,
    OdometerSetResponse,
    PositionEvent,
    ReportQuery,
    ServiceHealth,
    StopReport,
    TrackerStatusResponse,
    TransportHealth,
    TripReport,
)
from tripero_client.rest import RestGateway

EventLike = Union[PositionEvent, IgnitionEvent, Mapping[str, Any]]


class TriperoClient:
    """Single entry point for publishing to, listening to, and querying Tripero.

    Parameters
    ----------
    config:
        A :class:`ClientConfig`, a partial mapping (see
        :func:`~tripero_client.config.resolve_config`) or ``None`` for defaults.
    redis_factory:
        Builds the Redis clients; defaults to :class:`redis.asyncio.Redis`.
    http_transport:
        Optional ``httpx`` transport for the REST gateway.
    """

    def __init__(
        self,
        config: ClientConfig | Mapping[str, Any] | None = None,
        *,
        redis_factory: Optional[RedisFactory] = None,
        http_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = resolve_config(config)
        opts = self._config.options
        self._logger = resolve_logger(opts.log_level, opts.logger)
        self._envelope = PubSubEnvelope(self._config, self._logger, redis_factory)

        self._http: Optional[RestGateway] = None
        if self._config.http is not None and self._config.http.base_url:
            self._http = RestGateway(self._config.http, self._logger, transport=http_transport)

    @property
    def config(self) -> ClientConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._envelope.connected

    @property
    def is_subscribed(self) -> bool:
        return self._envelope.subscribed

    @property
    def has_http_client(self) -> bool:
        return self._http is not None

    async def __aenter__(self) -> "TriperoClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.disconnect()

    # ── connection ──────────────────────────────────────────────────

    async def connect(self) -> None:
        """Open the publisher and subscriber connections.

        Calling it while connected logs a warning and does nothing. Connection
        failures are logged and always raised.
        """
        if self._envelope.connected:
            self._logger.warning("Already connected to Redis")
            return

        r = self._config.redis
        try:
            await self._envelope.open()
        except TriperoError as exc:
            self._logger.error("Error connecting to Redis: %s", exc)
            raise
        self._logger.info("Connected to Redis %s:%d db %d", r.host, r.port, r.db)

    async def disconnect(self) -> None:
        """Close both connections and reset connected/subscribed state."""
        await self._envelope.close()
        self._logger.info("Disconnected from Redis")

    async def health(self) -> TransportHealth:
        """Report the Redis connection state, probing it with PING when connected.

        A subscription whose listener died also reports ``error``.
        """
        r = self._config.redis
        if not self._envelope.connected:
            return TransportHealth("disconnected", r.host, r.port, r.db)
        try:
            await self._envelope.ping()
        except (redis.exceptions.RedisError, OSError, TriperoError) as exc:
            return TransportHealth("error", r.host, r.port, r.db, error=str(exc))
        if self._envelope.listener_error is not None:
            return TransportHealth(
                "error", r.host, r.port, r.db,
                error=f"Subscription lost: {self._envelope.listener_error}",
            )
        return TransportHealth("connected", r.host, r.port, r.db)

    # ── publishing ──────────────────────────────────────────────────

    async def publish_position(self, position: EventLike) -> None:
        """Publish one GPS position on ``position:new``."""
        try:
            await self._envelope.publish(constants.POSITION_NEW, position)
        except TriperoError as exc:
            self._handle_error(f"Error publishing to {constants.POSITION_NEW}", exc)
            return
        self._logger.debug("Position published for %s", _device_id(position))

    async def publish_positions(self, positions: Iterable[EventLike]) -> None:
        """Publish several positions in one pipeline, preserving their order.

        The batch succeeds or fails as a whole.
        """
        try:
            sent = await self._envelope.publish_many(constants.POSITION_NEW, positions)
        except TriperoError as exc:
            self._handle_error("Error publishing position batch", exc)
            return
        if self._envelope.connected:
            self._logger.debug("%d positions published in batch", sent)
        else:
            self._logger.debug("%d positions queued while offline", sent)

    async def publish_ignition_event(self, event: EventLike) -> None:
        """Publish an ignition change on ``ignition:changed``."""
        try:
            await self._envelope.publish(constants.IGNITION_CHANGED, event)
        except TriperoError as exc:
            self._handle_error(f"Error publishing to {constants.IGNITION_CHANGED}", exc)
            return
        ignition = event.ignition if isinstance(event, IgnitionEvent) else event.get("ignition")
        self._logger.debug(
            "Ignition %s published for %s", "ON" if ignition else "OFF", _device_id(event)
        )

    # ── subscriptions ───────────────────────────────────────────────

    def on(self, event_type: str, handler: Optional[Handler] = None) -> Any:
        """Register *handler* for *event_type*.

        Without *handler*, returns a decorator::

            @client.on("trip:started")
            def started(event): ...
        """
        if handler is None:
            def decorator(fn: Handler) -> Handler:
                self.on(event_type, fn)
                return fn
            return decorator

        if event_type not in constants.OUTPUT_CHANNELS:
            self._logger.warning("Registering handler for unknown event type %s", event_type)
        self._envelope.registry.add(event_type, handler)
        self._logger.debug("Handler registered for %s", event_type)
        return handler

    def off(self, event_type: str, handler: Handler) -> None:
        """Remove a previously registered handler."""
        self._envelope.registry.remove(event_type, handler)

    async def subscribe(self) -> None:
        """Start receiving every event type that has a handler.

        Raises
        ------
        NotConnectedError
            If called before :meth:`connect`.
        """
        await self._envelope.subscribe()

    async def unsubscribe(self) -> None:
        """Cancel all subscriptions; safe to call when not subscribed."""
        await self._envelope.unsubscribe()

    # ── HTTP API ────────────────────────────────────────────────────

    async def get_tracker_status(self, tracker_id: str) -> TrackerStatusResponse:
        return await self._rest().get_tracker_status(tracker_id)

    async def set_odometer(
        self,
        tracker_id: str,
        initial_odometer: float,
        reason: Optional[str] = None,
    ) -> OdometerSetResponse:
        """Set the initial odometer (metres) of a tracker."""
        return await self._rest().set_odometer(tracker_id, initial_odometer, reason)

    async def get_trips(self, query: Optional[ReportQuery] = None, **filters: Any) -> list[TripReport]:
        """Fetch trip reports for a :class:`ReportQuery` or its keyword fields."""
        return await self._rest().get_trips(query or ReportQuery(**filters))

    async def get_stops(self, query: Optional[ReportQuery] = None, **filters: Any) -> list[StopReport]:
        """Fetch stop reports for a :class:`ReportQuery` or its keyword fields."""
        return await self._rest().get_stops(query or ReportQuery(**filters))

    async def health_http(self) -> ServiceHealth:
        """Health of the Tripero service as reported by its HTTP API."""
        return await self._rest().health()

    # ── internal ────────────────────────────────────────────────────

    def _rest(self) -> RestGateway:
        if self._http is None:
            raise HttpNotConfiguredError()
        return self._http

    def _handle_error(self, message: str, error: Exception) -> None:
        self._logger.error("%s: %s", message, error)
        if self._config.options.throw_on_error:
            raise error


def _device_id(event: EventLike) -> Any:
    if isinstance(event, (PositionEvent, IgnitionEvent)):
        return event.device_id
    return event.get("deviceId")

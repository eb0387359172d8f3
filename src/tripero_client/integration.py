"""FastAPI integration: client lifecycle and handler registration.

Static configuration::

    tripero = TriperoIntegration.for_root({"redis": {"host": "redis-tripero"}})
    app = FastAPI(lifespan=tripero.lifespan)

Configuration resolved at startup from other application state::

    async def tripero_config(app: FastAPI) -> dict:
        settings = app.state.settings
        return {"redis": {"host": settings.redis_host}}

    tripero = TriperoIntegration.for_root_async(tripero_config)

Event handlers are declared per component class and registered when the
application starts::

    class TripListener:
        tripero_events = [
            EventBinding("trip:started", "on_trip_started"),
            EventBinding("trip:completed", "on_trip_completed"),
        ]

        async def on_trip_started(self, event): ...
        async def on_trip_completed(self, event): ...

    tripero.include(TripListener())

Route handlers get the connected client through ``Depends(get_client)``.
"""

from __future__ import annotations

import inspect
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Mapping, NamedTuple, Optional, Union

from fastapi import FastAPI, Request

from tripero_client.client import TriperoClient
from tripero_client.config import ClientConfig

logger = logging.getLogger(__name__)

ConfigSource = Union[ClientConfig, Mapping[str, Any]]
ConfigFactory = Callable[[FastAPI], Union[ConfigSource, Awaitable[ConfigSource]]]


class EventBinding(NamedTuple):
    """Binds a Tripero event type to a method name on a component."""

    event_type: str
    method_name: str


class TriperoIntegration:
    """Owns one :class:`TriperoClient` for the lifetime of a FastAPI app.

    Exactly one of *config* or *factory* must be given. The client is built,
    connected, subscribed and published on ``app.state.tripero`` at startup,
    and disconnected once at shutdown.
    """

    def __init__(
        self,
        config: Optional[ConfigSource] = None,
        *,
        factory: Optional[ConfigFactory] = None,
        client_factory: Callable[[ConfigSource], TriperoClient] = TriperoClient,
    ) -> None:
        if (config is None) == (factory is None):
            raise ValueError("Provide exactly one of config or factory")
        self._config = config
        self._factory = factory
        self._client_factory = client_factory
        self._components: list[Any] = []
        self._client: Optional[TriperoClient] = None
        self._stopped = False

    @classmethod
    def for_root(cls, config: ConfigSource, **kwargs: Any) -> "TriperoIntegration":
        return cls(config, **kwargs)

    @classmethod
    def for_root_async(cls, factory: ConfigFactory, **kwargs: Any) -> "TriperoIntegration":
        return cls(factory=factory, **kwargs)

    @property
    def client(self) -> TriperoClient:
        if self._client is None:
            raise RuntimeError("Tripero client is not started")
        return self._client

    def include(self, *components: Any) -> "TriperoIntegration":
        """Add components whose ``tripero_events`` bindings get registered at startup."""
        self._components.extend(components)
        return self

    async def startup(self, app: Optional[FastAPI] = None) -> TriperoClient:
        """Build and connect the client, register bindings, then subscribe."""
        config = self._config
        if self._factory is not None:
            config = self._factory(app)
            if inspect.isawaitable(config):
                config = await config

        client = self._client_factory(config)
        await client.connect()
        try:
            count = 0
            for component in self._components:
                count += register_handlers(client, component)
            if count:
                await client.subscribe()
        except BaseException:
            await client.disconnect()
            raise

        self._client = client
        self._stopped = False
        if app is not None:
            app.state.tripero = client
        logger.debug("Registered %d Tripero handlers from %d components", count, len(self._components))
        return client

    async def shutdown(self) -> None:
        """Disconnect the client; further calls do nothing."""
        if self._stopped or self._client is None:
            return
        self._stopped = True
        await self._client.disconnect()

    @asynccontextmanager
    async def lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        """FastAPI ``lifespan`` hook."""
        await self.startup(app)
        try:
            yield
        finally:
            await self.shutdown()


def register_handlers(client: TriperoClient, component: Any) -> int:
    """Register every ``tripero_events`` binding of *component* on *client*.

    Returns the number of handlers registered.

    Raises
    ------
    AttributeError
        If a binding names a method the component does not have.
    """
    bindings = getattr(type(component), "tripero_events", ())
    for binding in bindings:
        event_type, method_name = binding
        client.on(event_type, getattr(component, method_name))
    return len(bindings)


def get_client(request: Request) -> TriperoClient:
    """FastAPI dependency returning the connected client."""
    return request.app.state.tripero

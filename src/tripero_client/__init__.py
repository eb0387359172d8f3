"""Python client for the Tripero GPS trip-detection service.

Publishes position and ignition events over Redis pub/sub, dispatches the
trip/stop lifecycle events Tripero emits back, and wraps its HTTP API.
"""

import logging

from tripero_client.client import TriperoClient
from tripero_client.config import (
    ClientConfig,
    ClientOptions,
    HttpConfig,
    RedisConfig,
    TransportOptions,
    load_config,
    resolve_config,
)
from tripero_client.errors import (
    ConfigError,
    HttpNotConfiguredError,
    HttpStatusError,
    HttpTimeoutError,
    MalformedPayloadError,
    NotConnectedError,
    TransportError,
    TriperoError,
)
from tripero_client.models import IgnitionEvent, PositionEvent, ReportQuery

__version__ = "0.4.2"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "ClientConfig",
    "ClientOptions",
    "ConfigError",
    "HttpConfig",
    "HttpNotConfiguredError",
    "HttpStatusError",
    "HttpTimeoutError",
    "IgnitionEvent",
    "MalformedPayloadError",
    "NotConnectedError",
    "PositionEvent",
    "RedisConfig",
    "ReportQuery",
    "TransportError",
    "TransportOptions",
    "TriperoClient",
    "TriperoError",
    "load_config",
    "resolve_config",
]

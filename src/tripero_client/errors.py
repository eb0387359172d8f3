"""Exception hierarchy for the Tripero client.

::

    TriperoError
      ├─ ConfigError            invalid configuration (also a ValueError)
      ├─ NotConnectedError      pub/sub used outside connect()/disconnect()
      ├─ TransportError         Redis or HTTP transport failure
      ├─ HttpStatusError        non-2xx HTTP response
      ├─ HttpTimeoutError       HTTP request exceeded the configured timeout
      ├─ HttpNotConfiguredError HTTP operation without ``http.base_url``
      └─ MalformedPayloadError  inbound message is not a JSON object
"""

from __future__ import annotations


class TriperoError(Exception):
    """Base class for every error raised by this package."""


class ConfigError(TriperoError, ValueError):
    """The supplied configuration is invalid."""


class NotConnectedError(TriperoError):
    """A pub/sub operation was attempted while not connected to Redis."""

    def __init__(self, message: str = "Not connected to Redis") -> None:
        super().__init__(message)


class TransportError(TriperoError):
    """The underlying Redis or HTTP transport failed."""


class HttpStatusError(TriperoError):
    """The Tripero HTTP API answered with a non-success status."""

    def __init__(self, status_code: int, reason: str, body: str) -> None:
        self.status_code = status_code
        self.reason = reason
        self.body = body
        super().__init__(f"HTTP {status_code}: {reason} - {body}")


class HttpTimeoutError(TriperoError):
    """The HTTP request did not complete within the configured timeout."""

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(f"Request timeout after {timeout_ms}ms")


class HttpNotConfiguredError(TriperoError):
    """An HTTP operation was called but no ``http.base_url`` was supplied."""

    def __init__(self) -> None:
        super().__init__(
            "HTTP client not configured. Provide http.base_url in the client configuration."
        )


class MalformedPayloadError(TriperoError):
    """An inbound payload could not be parsed as a JSON object."""

    def __init__(self, message: str, raw_payload: str = "", truncated: bool = False) -> None:
        self.raw_payload = raw_payload
        self.truncated = truncated
        super().__init__(message)

"""Records exchanged with Tripero.

Outbound events (:class:`PositionEvent`, :class:`IgnitionEvent`) are frozen
dataclasses whose fields carry their camelCase wire name in
``field(metadata={"wire": ...})``; :mod:`tripero_client.codec` uses it to
build the JSON payload. Inbound events and HTTP responses are passed
through as plain dicts; the ``TypedDict`` classes below document their shape.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Sequence, TypedDict, Union


TripState = Literal["STOPPED", "IDLE", "MOVING"]


def _wire(name: str) -> Any:
    return field(metadata={"wire": name})


@dataclass(frozen=True)
class PositionEvent:
    """A GPS fix published on ``position:new``.

    ``metadata`` may carry ``tenant_id``, ``client_id``, ``fleet_id`` and any
    other keys; Tripero propagates it to the trips and stops it derives.
    """

    device_id: str = _wire("deviceId")
    timestamp: int = _wire("timestamp")  # Unix milliseconds
    latitude: float = _wire("latitude")
    longitude: float = _wire("longitude")
    speed: float = _wire("speed")  # km/h
    ignition: Optional[bool] = field(default=None, metadata={"wire": "ignition"})
    altitude: Optional[float] = field(default=None, metadata={"wire": "altitude"})
    heading: Optional[float] = field(default=None, metadata={"wire": "heading"})
    accuracy: Optional[float] = field(default=None, metadata={"wire": "accuracy"})
    satellites: Optional[int] = field(default=None, metadata={"wire": "satellites"})
    metadata: Optional[dict[str, Any]] = field(default=None, metadata={"wire": "metadata"})

    def __post_init__(self) -> None:
        _check_coordinates(self.latitude, self.longitude)


@dataclass(frozen=True)
class IgnitionEvent:
    """An ignition transition published on ``ignition:changed``."""

    device_id: str = _wire("deviceId")
    timestamp: int = _wire("timestamp")
    ignition: bool = _wire("ignition")
    latitude: float = _wire("latitude")
    longitude: float = _wire("longitude")

    def __post_init__(self) -> None:
        _check_coordinates(self.latitude, self.longitude)


def _check_coordinates(latitude: float, longitude: float) -> None:
    if not -90 <= latitude <= 90:
        raise ValueError(f"latitude must be within -90..90, got {latitude}")
    if not -180 <= longitude <= 180:
        raise ValueError(f"longitude must be within -180..180, got {longitude}")


@dataclass(frozen=True)
class ReportQuery:
    """Filters for the trip and stop report endpoints.

    ``device_id`` is a single id, a sequence of ids, or ``"all"``.
    ``from_``/``to`` accept :class:`datetime` (naive values are taken as UTC)
    or an already formatted ISO-8601 string.
    """

    device_id: Union[str, Sequence[str]]
    from_: Union[datetime, str]
    to: Union[datetime, str]
    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    fleet_id: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


def format_timestamp(value: Union[datetime, str]) -> str:
    """Render *value* as ``YYYY-MM-DDTHH:MM:SS.mmmZ``; strings pass through."""
    if isinstance(value, str):
        return value
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}Z"


@dataclass(frozen=True)
class TransportHealth:
    """Result of :meth:`TriperoClient.health`.

    ``status`` is ``connected`` (ping answered), ``disconnected`` (never
    connected or disconnected) or ``error`` (connected but ping failed).
    """

    status: Literal["connected", "disconnected", "error"]
    host: str
    port: int
    db: int
    error: Optional[str] = None


# ── inbound event shapes ────────────────────────────────────────────


class GeoPoint(TypedDict):
    type: Literal["Point"]
    coordinates: list[float]  # [longitude, latitude]


class TripStartedEvent(TypedDict, total=False):
    tripId: str
    deviceId: str
    startTime: str
    startLocation: GeoPoint
    detectionMethod: Literal["ignition", "motion"]
    currentState: TripState
    odometer: float
    metadata: dict[str, Any]


class TripCompletedEvent(TypedDict, total=False):
    tripId: str
    deviceId: str
    startTime: str
    endTime: str
    duration: float
    distance: float
    avgSpeed: float
    maxSpeed: float
    stopsCount: int
    startLocation: GeoPoint
    endLocation: GeoPoint
    detectionMethod: Literal["ignition", "motion"]
    currentState: TripState
    odometer: float
    metadata: dict[str, Any]


class StopStartedEvent(TypedDict, total=False):
    stopId: str
    tripId: str
    deviceId: str
    startTime: str
    location: GeoPoint
    reason: Literal["ignition_off", "no_movement", "parking"]
    currentState: TripState
    odometer: float
    metadata: dict[str, Any]


class StopCompletedEvent(StopStartedEvent, total=False):
    endTime: str
    duration: float


class TrackerStateChangedEvent(TypedDict, total=False):
    trackerId: str
    deviceId: str
    previousState: TripState
    currentState: TripState
    timestamp: str
    reason: str
    odometer: dict[str, float]
    lastPosition: dict[str, Any]
    currentTrip: dict[str, Any]


class PositionRejectedEvent(TypedDict, total=False):
    deviceId: str
    timestamp: int
    reason: str
    position: dict[str, Any]


# ── HTTP response shapes ────────────────────────────────────────────


class TrackerStatusResponse(TypedDict, total=False):
    success: bool
    data: dict[str, Any]  # odometer, currentState, lastPosition, statistics, health...


class OdometerSetResponse(TypedDict, total=False):
    success: bool
    message: str
    data: dict[str, Any]  # previousOdometer, newOdometer, odometerOffset, reason...


class TripReport(TypedDict, total=False):
    deviceId: str
    deviceName: Optional[str]
    maxSpeed: float
    averageSpeed: float
    distance: float
    spentFuel: Optional[float]
    duration: float
    startTime: str
    startAddress: Optional[str]
    startLat: float
    startLon: float
    endTime: str
    endAddress: Optional[str]
    endLat: float
    endLon: float
    driverUniqueId: Optional[str]
    driverName: Optional[str]


class StopReport(TypedDict, total=False):
    deviceId: str
    deviceName: Optional[str]
    duration: float
    startTime: str
    endTime: str
    latitude: float
    longitude: float
    address: Optional[str]
    engineHours: Optional[float]
    startOdometer: float
    endOdometer: float


class ServiceHealth(TypedDict, total=False):
    status: str
    timestamp: str
    services: dict[str, dict[str, str]]

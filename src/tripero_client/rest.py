"""HTTP gateway to the Tripero REST API.

Endpoints::

    GET  {base}/trackers/{id}/status
    POST {base}/trackers/{id}/odometer      {"initialOdometer": m, "reason": str}
    GET  {base}/api/reports/trips?deviceId=a,b&from=...&to=...
    GET  {base}/api/reports/stops?...
    GET  {base}/health

Every request is bounded by ``http.timeout_ms``. Non-2xx responses raise
:class:`HttpStatusError`, timeouts raise :class:`HttpTimeoutError`.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional
from urllib.parse import quote

import httpx
import orjson

from tripero_client import constants
from tripero_client.config import HttpConfig
from tripero_client.errors import (
    HttpStatusError,
    HttpTimeoutError,
    MalformedPayloadError,
    TransportError,
)
from tripero_client.models import (
    OdometerSetResponse,
    ReportQuery,
    ServiceHealth,
    StopReport,
    TrackerStatusResponse,
    TripReport,
    format_timestamp,
)


class RestGateway:
    """Thin async client for the Tripero HTTP API.

    Parameters
    ----------
    config:
        HTTP settings; ``base_url`` must be set.
    logger:
        Logger for request tracing and failures.
    transport:
        Optional ``httpx`` transport, e.g. :class:`httpx.MockTransport`.
    """

    def __init__(
        self,
        config: HttpConfig,
        logger: Any,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not config.base_url:
            raise ValueError("HttpConfig.base_url is required for RestGateway")
        self._base_url = config.base_url.rstrip("/")
        self._timeout_ms = config.timeout_ms
        self._headers = {"Content-Type": "application/json", **config.headers}
        self._logger = logger
        self._transport = transport

    @property
    def base_url(self) -> str:
        return self._base_url

    async def get_tracker_status(self, tracker_id: str) -> TrackerStatusResponse:
        return await self._request("GET", f"/trackers/{quote(tracker_id, safe='')}/status")

    async def set_odometer(
        self,
        tracker_id: str,
        initial_odometer: float,
        reason: Optional[str] = None,
    ) -> OdometerSetResponse:
        """Set the tracker's odometer to *initial_odometer* metres."""
        return await self._request(
            "POST",
            f"/trackers/{quote(tracker_id, safe='')}/odometer",
            body={
                "initialOdometer": initial_odometer,
                "reason": reason or constants.DEFAULT_ODOMETER_REASON,
            },
        )

    async def get_trips(self, query: ReportQuery) -> list[TripReport]:
        return await self._request("GET", "/api/reports/trips", params=build_report_params(query))

    async def get_stops(self, query: ReportQuery) -> list[StopReport]:
        return await self._request("GET", "/api/reports/stops", params=build_report_params(query))

    async def health(self) -> ServiceHealth:
        return await self._request("GET", "/health")

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, str]] = None,
        body: Optional[dict[str, Any]] = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        self._logger.debug("HTTP %s %s", method, url)

        try:
            async with httpx.AsyncClient(
                timeout=self._timeout_ms / 1000.0,
                headers=self._headers,
                transport=self._transport,
            ) as http:
                # One deadline for the whole exchange, body included.
                response = await asyncio.wait_for(
                    http.request(
                        method,
                        url,
                        params=params,
                        content=orjson.dumps(body) if body is not None else None,
                    ),
                    self._timeout_ms / 1000.0,
                )
        except (httpx.TimeoutException, asyncio.TimeoutError) as exc:
            self._logger.error("HTTP timeout after %dms: %s %s", self._timeout_ms, method, url)
            raise HttpTimeoutError(self._timeout_ms) from exc
        except httpx.HTTPError as exc:
            self._logger.error("HTTP error: %s %s: %s", method, url, exc)
            raise TransportError(f"HTTP {method} {url} failed: {exc}") from exc

        if not response.is_success:
            self._logger.error("HTTP %d: %s %s", response.status_code, method, url)
            raise HttpStatusError(response.status_code, response.reason_phrase, response.text)

        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as exc:
            raise MalformedPayloadError(
                f"Invalid JSON from {method} {url}: {exc}", raw_payload=response.text[:4096]
            ) from exc


def build_report_params(query: ReportQuery) -> dict[str, str]:
    """Translate a :class:`ReportQuery` into query-string parameters.

    Multiple device ids are joined with commas in the given order; datetimes
    become ``YYYY-MM-DDTHH:MM:SS.mmmZ``; ``metadata`` is JSON-encoded.
    """
    if isinstance(query.device_id, str):
        device_id = query.device_id
    else:
        device_id = ",".join(query.device_id)

    params = {
        "deviceId": device_id,
        "from": format_timestamp(query.from_),
        "to": format_timestamp(query.to),
    }
    if query.tenant_id:
        params["tenantId"] = query.tenant_id
    if query.client_id:
        params["clientId"] = query.client_id
    if query.fleet_id:
        params["fleetId"] = query.fleet_id
    if query.metadata:
        params["metadata"] = orjson.dumps(query.metadata).decode()
    return params

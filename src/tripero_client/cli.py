"""Click CLI for the Tripero client.

Entry point registered in ``pyproject.toml`` as ``tripero``.

Subcommands::

    tripero publish-position DEVICE LAT LON --speed 42   # publish one fix
    tripero publish-ignition DEVICE LAT LON --on|--off   # publish ignition change
    tripero listen [--event trip:completed ...]          # NDJSON events on stdout
    tripero status TRACKER                               # tracker status (HTTP)
    tripero set-odometer TRACKER METERS [--reason R]     # odometer offset (HTTP)
    tripero trips -d DEVICE --from ISO --to ISO          # trip report (HTTP)
    tripero stops -d DEVICE --from ISO --to ISO          # stop report (HTTP)
    tripero health                                       # Redis + HTTP health

Configuration comes from ``--config`` / ``TRIPERO_CONFIG`` when given,
otherwise from ``TRIPERO_*`` environment variables.
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import time
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Optional

import click
import orjson

from tripero_client import __version__, constants
from tripero_client.client import TriperoClient
from tripero_client.config import ClientConfig, config_from_env, load_config, resolve_config
from tripero_client.errors import TriperoError
from tripero_client.log import setup_logging
from tripero_client.models import IgnitionEvent, PositionEvent, ReportQuery
from tripero_client.redactor import collect_secret_values

logger = logging.getLogger("tripero_client")


def _echo_json(obj: Any) -> None:
    click.echo(orjson.dumps(obj, option=orjson.OPT_INDENT_2).decode())


def _run(ctx: click.Context, action: Callable[[TriperoClient], Awaitable[Any]], connect: bool = True) -> Any:
    """Run *action* against a client built from the group's config."""
    cfg: ClientConfig = ctx.obj["config"]

    async def _main() -> Any:
        client = TriperoClient(cfg)
        if not connect:
            return await action(client)
        async with client:
            return await action(client)

    try:
        return asyncio.run(_main())
    except TriperoError as exc:
        click.echo(f"Error: {exc}", err=True)
        raise SystemExit(1) from exc


# ── main CLI group ──────────────────────────────────────────────────


@click.group(invoke_without_command=True)
@click.option("-c", "--config", "config_path", default=None,
              help="JSON config file (default: $TRIPERO_CONFIG, else environment).")
@click.option("--log-level", default=None,
              type=click.Choice(["debug", "info", "warn", "error", "silent"]),
              help="Log verbosity.")
@click.option("--redis-host", default=None, help="Override Redis host.")
@click.option("--redis-port", default=None, type=int, help="Override Redis port.")
@click.option("--http-url", default=None, help="Override Tripero HTTP base URL.")
@click.option("--validate-config", "validate_only", is_flag=True,
              help="Validate config and exit.")
@click.version_option(__version__)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: Optional[str],
    log_level: Optional[str],
    redis_host: Optional[str],
    redis_port: Optional[int],
    http_url: Optional[str],
    validate_only: bool,
) -> None:
    """Publish to, listen to, and query a Tripero trip-detection service."""
    cfg_path = config_path or os.environ.get("TRIPERO_CONFIG")

    try:
        base = load_config(cfg_path) if cfg_path else resolve_config(config_from_env())
        raw: dict[str, Any] = {
            "redis": asdict(base.redis),
            "http": asdict(base.http) if base.http else None,
            "options": {k: v for k, v in asdict(base.options).items() if k != "logger"},
        }
        if redis_host:
            raw["redis"]["host"] = redis_host
        if redis_port:
            raw["redis"]["port"] = redis_port
        if http_url:
            raw["http"] = {**(raw["http"] or {}), "base_url": http_url}
        if log_level:
            raw["options"]["log_level"] = log_level
        cfg = resolve_config(raw)
    except Exception as exc:
        click.echo(f"Config error: {exc}", err=True)
        raise SystemExit(1) from exc

    setup_logging(cfg.options.log_level, collect_secret_values(cfg))

    if validate_only:
        click.echo("Configuration is valid.", err=True)
        raise SystemExit(0)

    ctx.ensure_object(dict)
    ctx.obj["config"] = cfg

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


# ── publishing ──────────────────────────────────────────────────────


# Coordinates south or west are negative and must not parse as options.
@main.command("publish-position", context_settings={"ignore_unknown_options": True})
@click.argument("device_id")
@click.argument("latitude", type=float)
@click.argument("longitude", type=float)
@click.option("--speed", type=float, default=0.0, show_default=True, help="Speed in km/h.")
@click.option("--ignition/--no-ignition", default=None, help="Ignition state.")
@click.option("--heading", type=float, default=None, help="Heading in degrees.")
@click.option("--altitude", type=float, default=None, help="Altitude in metres.")
@click.option("--timestamp", type=int, default=None, help="Unix ms (default: now).")
@click.option("--meta", multiple=True, metavar="KEY=VALUE", help="Metadata entry.")
@click.pass_context
def publish_position(
    ctx: click.Context,
    device_id: str,
    latitude: float,
    longitude: float,
    speed: float,
    ignition: Optional[bool],
    heading: Optional[float],
    altitude: Optional[float],
    timestamp: Optional[int],
    meta: tuple[str, ...],
) -> None:
    """Publish one GPS position."""
    metadata = dict(item.split("=", 1) for item in meta) if meta else None
    try:
        position = PositionEvent(
            device_id=device_id,
            timestamp=timestamp or int(time.time() * 1000),
            latitude=latitude,
            longitude=longitude,
            speed=speed,
            ignition=ignition,
            heading=heading,
            altitude=altitude,
            metadata=metadata,
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    _run(ctx, lambda client: client.publish_position(position))


@main.command("publish-ignition", context_settings={"ignore_unknown_options": True})
@click.argument("device_id")
@click.argument("latitude", type=float)
@click.argument("longitude", type=float)
@click.option("--on/--off", "ignition", required=True, help="New ignition state.")
@click.option("--timestamp", type=int, default=None, help="Unix ms (default: now).")
@click.pass_context
def publish_ignition(
    ctx: click.Context,
    device_id: str,
    latitude: float,
    longitude: float,
    ignition: bool,
    timestamp: Optional[int],
) -> None:
    """Publish an ignition change."""
    try:
        event = IgnitionEvent(
            device_id=device_id,
            timestamp=timestamp or int(time.time() * 1000),
            ignition=ignition,
            latitude=latitude,
            longitude=longitude,
        )
    except ValueError as exc:
        raise click.BadParameter(str(exc)) from exc
    _run(ctx, lambda client: client.publish_ignition_event(event))


# ── listening ───────────────────────────────────────────────────────


@main.command()
@click.option("-e", "--event", "events", multiple=True,
              type=click.Choice(list(constants.OUTPUT_CHANNELS)),
              help="Event type to listen to (default: all).")
@click.option("--max-events", type=int, default=None, help="Exit after N events.")
@click.pass_context
def listen(ctx: click.Context, events: tuple[str, ...], max_events: Optional[int]) -> None:
    """Print received Tripero events as NDJSON on stdout."""
    _run(ctx, lambda client: _listen(client, events or constants.OUTPUT_CHANNELS, max_events))


async def _listen(client: TriperoClient, event_types: tuple[str, ...], max_events: Optional[int]) -> None:
    """Subscribe and write ``{"event": type, "data": payload}`` lines until stopped."""
    loop = asyncio.get_running_loop()
    done = asyncio.Event()
    count = 0

    def _handle_signal() -> None:
        logger.info("Received shutdown signal")
        done.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, _handle_signal)
        except NotImplementedError:
            pass  # Windows

    def _writer(event_type: str) -> Callable[[dict], None]:
        def _write(event: dict) -> None:
            nonlocal count
            if done.is_set():
                return
            line = orjson.dumps({"event": event_type, "data": event}, option=orjson.OPT_APPEND_NEWLINE)
            try:
                sys.stdout.buffer.write(line)
                sys.stdout.buffer.flush()
            except BrokenPipeError:
                logger.warning("stdout broken, consumer likely exited")
                done.set()
                return
            count += 1
            if max_events is not None and count >= max_events:
                done.set()
        return _write

    for event_type in event_types:
        client.on(event_type, _writer(event_type))
    await client.subscribe()
    try:
        await done.wait()
    finally:
        await client.unsubscribe()
        logger.info("Listener shut down (received %d events)", count)


# ── HTTP API ────────────────────────────────────────────────────────


@main.command()
@click.argument("tracker_id")
@click.pass_context
def status(ctx: click.Context, tracker_id: str) -> None:
    """Show the current status of a tracker."""
    _echo_json(_run(ctx, lambda client: client.get_tracker_status(tracker_id), connect=False))


@main.command("set-odometer")
@click.argument("tracker_id")
@click.argument("meters", type=float)
@click.option("--reason", default=None, help="Reason recorded with the change.")
@click.pass_context
def set_odometer(ctx: click.Context, tracker_id: str, meters: float, reason: Optional[str]) -> None:
    """Set the initial odometer of a tracker, in metres."""
    _echo_json(_run(ctx, lambda client: client.set_odometer(tracker_id, meters, reason), connect=False))


def _report_options(fn: Callable) -> Callable:
    for decorator in reversed((
        click.option("-d", "--device-id", "device_ids", multiple=True, required=True,
                     help="Device id (repeatable, or 'all')."),
        click.option("--from", "from_", required=True, help="Range start (ISO-8601)."),
        click.option("--to", "to", required=True, help="Range end (ISO-8601)."),
        click.option("--tenant-id", default=None),
        click.option("--client-id", default=None),
        click.option("--fleet-id", default=None),
        click.option("--metadata", default=None, help="JSON object filter."),
    )):
        fn = decorator(fn)
    return fn


def _report_query(
    device_ids: tuple[str, ...],
    from_: str,
    to: str,
    tenant_id: Optional[str],
    client_id: Optional[str],
    fleet_id: Optional[str],
    metadata: Optional[str],
) -> ReportQuery:
    try:
        meta = orjson.loads(metadata) if metadata else None
    except orjson.JSONDecodeError as exc:
        raise click.BadParameter(f"--metadata is not valid JSON: {exc}") from exc
    return ReportQuery(
        device_id=device_ids[0] if len(device_ids) == 1 else list(device_ids),
        from_=from_,
        to=to,
        tenant_id=tenant_id,
        client_id=client_id,
        fleet_id=fleet_id,
        metadata=meta,
    )


@main.command()
@_report_options
@click.pass_context
def trips(ctx: click.Context, **filters: Any) -> None:
    """List trips in a time range."""
    query = _report_query(**filters)
    _echo_json(_run(ctx, lambda client: client.get_trips(query), connect=False))


@main.command()
@_report_options
@click.pass_context
def stops(ctx: click.Context, **filters: Any) -> None:
    """List stops in a time range."""
    query = _report_query(**filters)
    _echo_json(_run(ctx, lambda client: client.get_stops(query), connect=False))


@main.command()
@click.pass_context
def health(ctx: click.Context) -> None:
    """Check Redis connectivity and, when configured, the HTTP API."""

    async def _health(client: TriperoClient) -> dict[str, Any]:
        try:
            await client.connect()
        except TriperoError as exc:
            logger.warning("Redis unavailable: %s", exc)
        report: dict[str, Any] = {"redis": asdict(await client.health())}
        await client.disconnect()
        if client.has_http_client:
            try:
                report["http"] = await client.health_http()
            except TriperoError as exc:
                report["http"] = {"status": "error", "error": str(exc)}
        return report

    report = _run(ctx, _health, connect=False)
    _echo_json(report)
    if report["redis"]["status"] != "connected":
        raise SystemExit(1)

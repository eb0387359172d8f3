"""Configuration resolution, file loading, and validation.

Every option has a documented default; :func:`resolve_config` merges a
partial mapping over those defaults and returns an immutable
:class:`ClientConfig`.

Resolution order for ``${VAR}`` placeholders in config files:
    CLI overrides → environment variables → raw config value.

``${VAR}`` (no default) raises if unresolvable.
``${VAR:-default}`` falls back to *default*.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Mapping, Optional

import jsonschema
import orjson

from tripero_client import constants
from tripero_client.errors import ConfigError

logger = logging.getLogger(__name__)

_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-(.*?))?\}")

LOG_LEVELS = ("debug", "info", "warn", "error", "silent")

CONFIG_SCHEMA: dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "redis": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "host": {"type": "string", "minLength": 1},
                "port": {"type": ["integer", "string"]},
                "db": {"type": ["integer", "string"]},
                "username": {"type": ["string", "null"]},
                "password": {"type": ["string", "null"]},
                "key_prefix": {"type": "string"},
                "transport": {
                    "type": "object",
                    "additionalProperties": False,
                    "properties": {
                        "socket_timeout": {"type": ["number", "null"]},
                        "socket_connect_timeout": {"type": ["number", "null"]},
                        "socket_keepalive": {"type": "boolean"},
                        "health_check_interval": {"type": "integer", "minimum": 0},
                        "client_name": {"type": ["string", "null"]},
                        "ssl": {"type": "boolean"},
                    },
                },
            },
        },
        "http": {
            "type": ["object", "null"],
            "additionalProperties": False,
            "properties": {
                "base_url": {"type": ["string", "null"]},
                "timeout_ms": {"type": ["integer", "string"]},
                "headers": {
                    "type": "object",
                    "additionalProperties": {"type": "string"},
                },
            },
        },
        "options": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "enable_retry": {"type": "boolean"},
                "enable_offline_queue": {"type": "boolean"},
                "throw_on_error": {"type": "boolean"},
                "log_level": {"enum": list(LOG_LEVELS)},
                "max_retries_per_request": {"type": "integer", "minimum": 0},
            },
        },
    },
}


@dataclass(frozen=True)
class TransportOptions:
    """Extra Redis connection settings, forwarded to ``redis.asyncio.Redis``.

    Attributes
    ----------
    socket_timeout:
        Seconds to wait on a socket read/write before failing.
    socket_connect_timeout:
        Seconds to wait for the TCP connection to be established.
    socket_keepalive:
        Enable TCP keepalive on both connections.
    health_check_interval:
        Seconds between idle-connection health checks (0 disables).
    client_name:
        Name reported by ``CLIENT LIST`` on the Redis server.
    ssl:
        Connect over TLS.
    """

    socket_timeout: Optional[float] = None
    socket_connect_timeout: Optional[float] = None
    socket_keepalive: bool = False
    health_check_interval: int = 0
    client_name: Optional[str] = None
    ssl: bool = False


@dataclass(frozen=True)
class RedisConfig:
    """Redis connection settings."""

    host: str = constants.DEFAULT_REDIS_HOST
    port: int = constants.DEFAULT_REDIS_PORT
    db: int = constants.DEFAULT_REDIS_DB
    username: Optional[str] = None
    password: Optional[str] = None
    key_prefix: str = constants.DEFAULT_KEY_PREFIX
    transport: TransportOptions = field(default_factory=TransportOptions)


@dataclass(frozen=True)
class HttpConfig:
    """Tripero HTTP API settings.

    ``base_url`` may be left unset; HTTP operations then fail with
    :class:`~tripero_client.errors.HttpNotConfiguredError` when called.
    """

    base_url: Optional[str] = None
    timeout_ms: int = constants.DEFAULT_HTTP_TIMEOUT_MS
    headers: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ClientOptions:
    """Behaviour flags."""

    enable_retry: bool = constants.DEFAULT_ENABLE_RETRY
    enable_offline_queue: bool = constants.DEFAULT_ENABLE_OFFLINE_QUEUE
    throw_on_error: bool = constants.DEFAULT_THROW_ON_ERROR
    log_level: str = constants.DEFAULT_LOG_LEVEL
    max_retries_per_request: int = constants.DEFAULT_MAX_RETRIES_PER_REQUEST
    logger: Any = None


@dataclass(frozen=True)
class ClientConfig:
    """Top-level client configuration."""

    redis: RedisConfig = field(default_factory=RedisConfig)
    http: Optional[HttpConfig] = None
    options: ClientOptions = field(default_factory=ClientOptions)


def resolve_config(raw: ClientConfig | Mapping[str, Any] | None = None) -> ClientConfig:
    """Merge *raw* over the defaults and return a validated :class:`ClientConfig`.

    Parameters
    ----------
    raw:
        ``None`` (all defaults), an already-built :class:`ClientConfig`, or a
        mapping with optional ``redis``, ``http`` and ``options`` sections.
        Keys that are not configuration fields are ignored.

    Raises
    ------
    ConfigError
        If a field has an invalid value.
    """
    if isinstance(raw, ClientConfig):
        cfg = raw
    else:
        cfg = _dict_to_config(dict(raw or {}))
    _validate(cfg)
    return cfg


def _known(cls: type, raw: Mapping[str, Any]) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in raw.items() if k in names and v is not None}


def _as_int(name: str, value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from exc


def _dict_to_config(raw: dict[str, Any]) -> ClientConfig:
    """Convert a raw dict into a typed :class:`ClientConfig`."""
    redis_raw = dict(raw.get("redis") or {})
    transport_raw = redis_raw.pop("transport", None) or {}
    http_raw = raw.get("http")
    options_raw = raw.get("options") or {}

    redis_kwargs = _known(RedisConfig, redis_raw)
    for key in ("port", "db"):
        if key in redis_kwargs:
            redis_kwargs[key] = _as_int(f"redis.{key}", redis_kwargs[key])
    redis_cfg = RedisConfig(
        transport=TransportOptions(**_known(TransportOptions, transport_raw)),
        **redis_kwargs,
    )

    http_cfg = None
    if http_raw is not None:
        http_kwargs = _known(HttpConfig, http_raw)
        if "timeout_ms" in http_kwargs:
            http_kwargs["timeout_ms"] = _as_int("http.timeout_ms", http_kwargs["timeout_ms"])
        if "headers" in http_kwargs:
            http_kwargs["headers"] = dict(http_kwargs["headers"])
        http_cfg = HttpConfig(**http_kwargs)

    return ClientConfig(
        redis=redis_cfg,
        http=http_cfg,
        options=ClientOptions(**_known(ClientOptions, options_raw)),
    )


def _validate(cfg: ClientConfig) -> None:
    if not isinstance(cfg.redis.host, str) or not cfg.redis.host.strip():
        raise ConfigError("redis.host must be a non-empty string")
    if not 0 < cfg.redis.port < 65536:
        raise ConfigError(f"redis.port must be between 1 and 65535, got {cfg.redis.port}")
    if cfg.redis.db < 0:
        raise ConfigError(f"redis.db must be >= 0, got {cfg.redis.db}")
    if cfg.http is not None and cfg.http.timeout_ms <= 0:
        raise ConfigError(f"http.timeout_ms must be positive, got {cfg.http.timeout_ms}")
    if cfg.options.log_level not in LOG_LEVELS:
        raise ConfigError(
            f"options.log_level must be one of {', '.join(LOG_LEVELS)}, "
            f"got {cfg.options.log_level!r}"
        )
    if cfg.options.max_retries_per_request < 0:
        raise ConfigError("options.max_retries_per_request must be >= 0")


def _interpolate_value(value: str, overrides: dict[str, str] | None = None) -> str:
    """Replace ``${VAR}`` / ``${VAR:-default}`` in *value*."""

    def _replacer(match: re.Match) -> str:
        var_name = match.group(1)
        default = match.group(2)  # None when no ``:-`` present

        if overrides and var_name in overrides:
            return overrides[var_name]
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default

        raise ConfigError(
            f"Required variable ${{{var_name}}} is not set in environment or CLI overrides"
        )

    return _VAR_RE.sub(_replacer, value)


def _walk_and_interpolate(obj: Any, overrides: dict[str, str] | None = None) -> Any:
    """Recursively interpolate all string values in a JSON-like structure."""
    if isinstance(obj, str):
        return _interpolate_value(obj, overrides)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v, overrides) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item, overrides) for item in obj]
    return obj


def load_config(
    path: str | Path,
    overrides: dict[str, str] | None = None,
) -> ClientConfig:
    """Load, interpolate, validate, and return a client config from JSON.

    Parameters
    ----------
    path:
        Filesystem path to the JSON config file.
    overrides:
        Variable overrides that take precedence over the environment.

    Raises
    ------
    ConfigError
        If a required ``${VAR}`` cannot be resolved or a value is invalid.
    jsonschema.ValidationError
        If the file does not match :data:`CONFIG_SCHEMA`.
    """
    raw: dict[str, Any] = orjson.loads(Path(path).read_bytes())
    interpolated = _walk_and_interpolate(raw, overrides=overrides)

    jsonschema.validate(instance=interpolated, schema=CONFIG_SCHEMA)
    logger.debug("Config passed schema validation")

    return resolve_config(interpolated)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def config_from_env(environ: Mapping[str, str] | None = None) -> dict[str, Any]:
    """Build a raw config mapping from ``TRIPERO_*`` environment variables.

    Unset variables are omitted so that :func:`resolve_config` applies the
    defaults. ``http`` is only present when ``TRIPERO_HTTP_URL`` is set.
    """
    env = os.environ if environ is None else environ

    redis_raw: dict[str, Any] = {}
    for key, var in (
        ("host", "TRIPERO_REDIS_HOST"),
        ("port", "TRIPERO_REDIS_PORT"),
        ("db", "TRIPERO_REDIS_DB"),
        ("username", "TRIPERO_REDIS_USERNAME"),
        ("password", "TRIPERO_REDIS_PASSWORD"),
        ("key_prefix", "TRIPERO_KEY_PREFIX"),
    ):
        if env.get(var) is not None:
            redis_raw[key] = env[var]

    options_raw: dict[str, Any] = {}
    if env.get("TRIPERO_LOG_LEVEL"):
        options_raw["log_level"] = env["TRIPERO_LOG_LEVEL"].lower()
    if env.get("TRIPERO_THROW_ON_ERROR"):
        options_raw["throw_on_error"] = _env_bool(env["TRIPERO_THROW_ON_ERROR"])

    raw: dict[str, Any] = {"redis": redis_raw, "options": options_raw}
    if env.get("TRIPERO_HTTP_URL"):
        http_raw: dict[str, Any] = {"base_url": env["TRIPERO_HTTP_URL"]}
        if env.get("TRIPERO_HTTP_TIMEOUT"):
            http_raw["timeout_ms"] = env["TRIPERO_HTTP_TIMEOUT"]
        raw["http"] = http_raw
    return raw

"""Tests for the config module."""

import jsonschema
import orjson
import pytest

from tripero_client.config import (
    ClientConfig,
    HttpConfig,
    RedisConfig,
    config_from_env,
    load_config,
    resolve_config,
)
from tripero_client.errors import ConfigError


def test_defaults_fill_every_field() -> None:
    """No input → every option resolved to its documented default."""
    cfg = resolve_config()
    assert cfg.redis.host == "localhost"
    assert cfg.redis.port == 6379
    assert cfg.redis.db == 0
    assert cfg.redis.key_prefix == "tripero:"
    assert cfg.http is None
    assert cfg.options.throw_on_error is False
    assert cfg.options.enable_retry is False
    assert cfg.options.enable_offline_queue is False
    assert cfg.options.log_level == "info"
    assert cfg.options.max_retries_per_request == 1


def test_partial_mapping_merged_over_defaults() -> None:
    cfg = resolve_config({
        "redis": {"host": "redis-tripero", "password": "s3cret", "transport": {"ssl": True}},
        "http": {"base_url": "http://tripero:3001"},
        "options": {"throw_on_error": True},
    })
    assert cfg.redis.host == "redis-tripero"
    assert cfg.redis.port == 6379
    assert cfg.redis.password == "s3cret"
    assert cfg.redis.transport.ssl is True
    assert cfg.redis.transport.socket_keepalive is False
    assert cfg.http.base_url == "http://tripero:3001"
    assert cfg.http.timeout_ms == 10000
    assert cfg.options.throw_on_error is True
    assert cfg.options.log_level == "info"


def test_unknown_keys_ignored() -> None:
    cfg = resolve_config({"redis": {"host": "h", "sentinel": True}})
    assert cfg.redis.host == "h"


def test_string_ports_coerced() -> None:
    cfg = resolve_config({"redis": {"port": "6380", "db": "2"}})
    assert cfg.redis.port == 6380
    assert cfg.redis.db == 2


def test_config_is_immutable() -> None:
    cfg = resolve_config()
    with pytest.raises(AttributeError):
        cfg.redis.host = "elsewhere"  # type: ignore[misc]


def test_client_config_passes_through() -> None:
    cfg = ClientConfig(redis=RedisConfig(host="r1"), http=HttpConfig(base_url="http://x"))
    assert resolve_config(cfg) is cfg


@pytest.mark.parametrize("raw", [
    {"redis": {"host": ""}},
    {"redis": {"port": 0}},
    {"redis": {"port": 70000}},
    {"redis": {"db": -1}},
    {"redis": {"port": "not-a-port"}},
    {"http": {"base_url": "http://x", "timeout_ms": 0}},
    {"options": {"log_level": "verbose"}},
])
def test_invalid_values_rejected(raw: dict) -> None:
    with pytest.raises(ConfigError):
        resolve_config(raw)


def test_http_section_without_base_url_is_accepted() -> None:
    """Missing base URL is only an error when an HTTP operation is used."""
    cfg = resolve_config({"http": {"timeout_ms": 5000}})
    assert cfg.http.base_url is None
    assert cfg.http.timeout_ms == 5000


def test_load_config_interpolates_env(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("TRIPERO_TEST_HOST", "redis.internal")
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps({
        "redis": {"host": "${TRIPERO_TEST_HOST}", "port": "${TRIPERO_TEST_PORT:-6390}"},
        "options": {"log_level": "debug"},
    }))
    cfg = load_config(path)
    assert cfg.redis.host == "redis.internal"
    assert cfg.redis.port == 6390
    assert cfg.options.log_level == "debug"


def test_load_config_overrides_beat_env(tmp_path, monkeypatch) -> None:
    monkeypatch.setenv("TRIPERO_TEST_HOST", "from-env")
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps({"redis": {"host": "${TRIPERO_TEST_HOST}"}}))
    cfg = load_config(path, overrides={"TRIPERO_TEST_HOST": "from-cli"})
    assert cfg.redis.host == "from-cli"


def test_load_config_missing_variable(tmp_path, monkeypatch) -> None:
    monkeypatch.delenv("TRIPERO_TEST_UNSET", raising=False)
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps({"redis": {"host": "${TRIPERO_TEST_UNSET}"}}))
    with pytest.raises(ConfigError):
        load_config(path)


def test_load_config_schema_violation(tmp_path) -> None:
    path = tmp_path / "config.json"
    path.write_bytes(orjson.dumps({"redis": {"hots": "typo"}}))
    with pytest.raises(jsonschema.ValidationError):
        load_config(path)


def test_config_from_env() -> None:
    raw = config_from_env({
        "TRIPERO_REDIS_HOST": "redis-tripero-service",
        "TRIPERO_REDIS_PORT": "6380",
        "TRIPERO_KEY_PREFIX": "fleet:",
        "TRIPERO_HTTP_URL": "http://tripero:3001",
        "TRIPERO_HTTP_TIMEOUT": "2500",
        "TRIPERO_LOG_LEVEL": "DEBUG",
        "TRIPERO_THROW_ON_ERROR": "true",
    })
    cfg = resolve_config(raw)
    assert cfg.redis.host == "redis-tripero-service"
    assert cfg.redis.port == 6380
    assert cfg.redis.key_prefix == "fleet:"
    assert cfg.http.base_url == "http://tripero:3001"
    assert cfg.http.timeout_ms == 2500
    assert cfg.options.log_level == "debug"
    assert cfg.options.throw_on_error is True


def test_config_from_env_without_http() -> None:
    assert "http" not in config_from_env({})

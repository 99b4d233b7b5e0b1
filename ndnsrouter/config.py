"""Router settings: fixed tuning constants and environment-driven configuration."""

from __future__ import annotations

import os
import re
import threading
from collections.abc import Callable, Mapping
from dataclasses import MISSING, dataclass, field, fields
from datetime import timedelta
from pathlib import Path
from typing import Any, NamedTuple

from dotenv import load_dotenv

from . import log

# Paths handled by the router itself instead of being proxied.
INTERNAL_PATHS = frozenset({"/servers", "/metrics", "/internal"})

PROXY_TIMEOUT = timedelta(seconds=3)
HEALTH_CHECK_TIMEOUT = timedelta(seconds=2)

MAX_RETRY_ATTEMPTS = 3
RETRY_BACKOFF = timedelta(milliseconds=100)

SCORE_EXCELLENT = 80.0
SCORE_GOOD = 60.0

MAX_CONCURRENT_REQUESTS = 10
COOLDOWN_PERIOD = timedelta(milliseconds=100)

# Share of requests sent to serverless regardless of server scores.
SERVERLESS_FORCE_RATIO = 0.2


class ConfigError(ValueError):
    """The environment does not describe a usable configuration."""


_UNIT_MICROSECONDS = {
    "ns": 0.001,
    "us": 1.0,
    "µs": 1.0,
    "μs": 1.0,
    "ms": 1_000.0,
    "s": 1_000_000.0,
    "m": 60_000_000.0,
    "h": 3_600_000_000.0,
}
_DURATION_PART = re.compile(r"(\d*(?:\.\d*)?)(ns|us|µs|μs|ms|s|m|h)")


def parse_duration(text: str) -> timedelta:
    """Parse a duration such as ``300ms``, ``1.5h`` or ``2h45m``."""
    body = text
    sign = 1
    if body[:1] in ("+", "-"):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return timedelta(0)
    if not body:
        raise ValueError(f"invalid duration {text!r}")

    total = 0.0
    position = 0
    while position < len(body):
        match = _DURATION_PART.match(body, position)
        if match is None or match.group(1) in ("", "."):
            raise ValueError(f"invalid duration {text!r}")
        total += float(match.group(1)) * _UNIT_MICROSECONDS[match.group(2)]
        position = match.end()
    return timedelta(microseconds=sign * total)


_INT_TEXT = re.compile(r"[+-]?\d+")


def _parse_int(text: str) -> int:
    if not _INT_TEXT.fullmatch(text):
        raise ValueError(f"invalid integer {text!r}")
    return int(text)


def _parse_float(text: str) -> float:
    if text != text.strip() or "_" in text:
        raise ValueError(f"invalid number {text!r}")
    return float(text)


def _parse_list(text: str) -> tuple[str, ...]:
    return tuple(text.split(","))


class _Kind(NamedTuple):
    parse: Callable[[str], Any]
    zero: Any


_INT = _Kind(_parse_int, 0)
_FLOAT = _Kind(_parse_float, 0.0)
_STR = _Kind(str, "")
_LIST = _Kind(_parse_list, ())
_DURATION = _Kind(parse_duration, timedelta(0))


def _env(key: str, kind: _Kind, default: Any = MISSING) -> Any:
    return field(default=default, metadata={"env": key, "kind": kind})


@dataclass(frozen=True, kw_only=True)
class RouterConfig:
    """Settings read from the environment; fields without defaults are required."""

    port: int = _env("PORT", _INT)
    app_env: str = _env("APP_ENV", _STR)
    prometheus_url: str = _env("PROMETHEUS_URL", _STR, "http://localhost:9090")

    serverless_servers: tuple[str, ...] = _env("SERVERLESS_SERVERS", _LIST, ())
    serverless_weight: int = _env("SERVERLESS_WEIGHT", _INT, 30)
    onprem_weight: int = _env("ONPREM_WEIGHT", _INT, 70)

    health_check_interval: int = _env("HEALTH_CHECK_INTERVAL", _INT, 30)
    health_check_max_retries: int = _env("HEALTH_CHECK_MAX_RETRIES", _INT, 3)
    health_check_timeout: int = _env("HEALTH_CHECK_TIMEOUT", _INT, 5)

    onprem_servers: tuple[str, ...] = _env("ONPREM_SERVERS", _LIST, ())
    onprem_health_check_interval: timedelta = _env(
        "ONPREM_HEALTH_CHECK_INTERVAL", _DURATION, timedelta(seconds=30)
    )
    onprem_health_check_timeout: timedelta = _env(
        "ONPREM_HEALTH_CHECK_TIMEOUT", _DURATION, timedelta(seconds=5)
    )
    onprem_retry_attempts: int = _env("ONPREM_RETRY_ATTEMPTS", _INT, 3)
    onprem_retry_delay: timedelta = _env("ONPREM_RETRY_DELAY", _DURATION, timedelta(seconds=1))

    cloud_run_url: str = _env("CLOUD_RUN_URL", _STR)
    lambda_url: str = _env("LAMBDA_URL", _STR)
    failover_error_rate: float = _env("FAILOVER_ERROR_RATE", _FLOAT, 50.0)
    failover_response_time: float = _env("FAILOVER_RESPONSE_TIME", _FLOAT, 5000.0)
    failover_cpu_usage: float = _env("FAILOVER_CPU_USAGE", _FLOAT, 90.0)
    failover_memory_usage: float = _env("FAILOVER_MEMORY_USAGE", _FLOAT, 90.0)
    failover_health_score: float = _env("FAILOVER_HEALTH_SCORE", _FLOAT, 30.0)

    weight_onpremise: int = _env("WEIGHT_ONPREMISE", _INT, 70)
    weight_cloud_run: int = _env("WEIGHT_CLOUD_RUN", _INT, 15)
    weight_lambda: int = _env("WEIGHT_LAMBDA", _INT, 15)


def load_config(environ: Mapping[str, str] | None = None) -> RouterConfig:
    """Build a configuration from an environment mapping.

    Unset variables take their defaults; variables set to an empty string take
    the zero value of their type. Raises ``ConfigError`` on a missing required
    variable, an unparsable value, or routing weights that do not sum to 100.
    """
    if environ is None:
        environ = os.environ

    values: dict[str, Any] = {}
    for spec in fields(RouterConfig):
        key = spec.metadata["env"]
        kind: _Kind = spec.metadata["kind"]
        if key not in environ:
            if spec.default is MISSING:
                raise ConfigError(f'required environment variable "{key}" is not set')
            continue
        raw = environ[key]
        if raw == "":
            values[spec.name] = kind.zero
            continue
        try:
            values[spec.name] = kind.parse(raw)
        except ValueError as exc:
            raise ConfigError(f"cannot parse {key}={raw!r}: {exc}") from exc

    config = RouterConfig(**values)
    total = config.weight_onpremise + config.weight_cloud_run + config.weight_lambda
    if total != 100:
        raise ConfigError(f"routing weights must sum to 100, got {total}")
    return config


_instance: RouterConfig | None = None
_lock = threading.Lock()


def get_config() -> RouterConfig:
    """Return the process-wide configuration, loading it on first use.

    A ``.env`` file in the working directory is read first; variables already
    in the environment take precedence over it.
    """
    global _instance
    with _lock:
        if _instance is None:
            env_file = Path.cwd() / ".env"
            if env_file.is_file():
                load_dotenv(dotenv_path=env_file)
            else:
                log.warn("failed to load .env file: %s not found", env_file)
            _instance = load_config(os.environ)
        return _instance


def reset_config() -> None:
    """Forget the cached configuration so the next call reloads it."""
    global _instance
    with _lock:
        _instance = None
"""Data types shared by the router: servers, metrics and API envelopes."""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)


def _format_time(moment: datetime, *, fractional: bool = True) -> str:
    """Render a datetime as RFC 3339 text, using ``Z`` for UTC."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    timespec = "microseconds" if fractional and moment.microsecond else "seconds"
    text = moment.isoformat(timespec=timespec)
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


class ServerStatus(str, Enum):
    """Health state of a registered server."""

    HEALTHY = "healthy"
    WARNING = "warning"
    UNHEALTHY = "unhealthy"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class OptimalServer:
    """The best server seen so far and its score."""

    server_id: str
    score: float


@dataclass
class Metrics:
    """Load figures reported for one server."""

    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    request_rate: float = 0.0
    error_rate: float = 0.0
    latency: float = 0.0
    score: float = 0.0
    timestamp: datetime = ZERO_TIME

    def to_dict(self) -> dict[str, Any]:
        return {
            "cpuUsage": self.cpu_usage,
            "memoryUsage": self.memory_usage,
            "requestRate": self.request_rate,
            "errorRate": self.error_rate,
            "responseTime": self.latency,
            "score": self.score,
            "timestamp": _format_time(self.timestamp),
        }


@dataclass
class Server:
    """A backend the router can forward requests to."""

    server_id: str
    url: str
    current_status: str = ""
    last_updated: datetime = ZERO_TIME
    metrics: Metrics | None = None

    def to_dict(self) -> dict[str, Any]:
        status = self.current_status
        if isinstance(status, ServerStatus):
            status = status.value
        result: dict[str, Any] = {
            "serverId": self.server_id,
            "url": self.url,
            "status": status,
            "lastUpdated": _format_time(self.last_updated),
        }
        if self.metrics is not None:
            result["metrics"] = self.metrics.to_dict()
        return result


@dataclass(frozen=True)
class ServerEntry:
    """One server in an optimal-server report."""

    server_id: str = ""
    cpu_usage: float = 0.0
    memory_usage: float = 0.0
    error_rate: float = 0.0
    response_time: float = 0.0
    score: float = 0.0


@dataclass
class APIResponse:
    """Standard envelope for API replies."""

    success: bool
    message: str = ""
    data: Any = None
    error: str = ""
    time: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"success": self.success}
        if self.message:
            result["message"] = self.message
        if self.data is not None:
            result["data"] = self.data
        if self.error:
            result["error"] = self.error
        result["time"] = self.time
        return result


def new_api_response(success: bool, message: str, data: Any, error: str) -> APIResponse:
    """Build a response stamped with the current local time."""
    now = datetime.now().astimezone().replace(microsecond=0)
    return APIResponse(
        success=success,
        message=message,
        data=data,
        error=error,
        time=_format_time(now, fractional=False),
    )


def _lookup(mapping: Mapping[str, Any], key: str) -> Any:
    """Find a JSON member by name, falling back to a case-insensitive match."""
    if key in mapping:
        return mapping[key]
    folded = key.casefold()
    for name, value in mapping.items():
        if isinstance(name, str) and name.casefold() == folded:
            return value
    return None


def _number(value: Any, name: str) -> float:
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field {name!r} must be a number, got {type(value).__name__}")
    return float(value)


def _string(value: Any, name: str) -> str:
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {name!r} must be a string, got {type(value).__name__}")
    return value


def _mapping(value: Any, name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ValueError(f"field {name!r} must be an object, got {type(value).__name__}")
    return value


def parse_optimal_server_request(payload: Any) -> list[ServerEntry]:
    """Read the server list from an optimal-server report.

    ``payload`` is either raw JSON text or an already decoded object.
    Raises ``ValueError`` when the document does not have the expected shape.
    """
    if isinstance(payload, (bytes, bytearray)):
        payload = payload.decode("utf-8")
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except json.JSONDecodeError as exc:
            raise ValueError(f"invalid JSON: {exc}") from exc
    document = _mapping(payload, "request")
    servers = _lookup(document, "servers")
    if servers is None:
        return []
    if not isinstance(servers, list):
        raise ValueError(f"field 'servers' must be an array, got {type(servers).__name__}")

    entries = []
    for item in servers:
        entry = _mapping(item, "servers[]")
        metrics = _mapping(_lookup(entry, "metrics"), "metrics")
        entries.append(
            ServerEntry(
                server_id=_string(_lookup(entry, "serverId"), "serverId"),
                cpu_usage=_number(_lookup(metrics, "cpuUsage"), "cpuUsage"),
                memory_usage=_number(_lookup(metrics, "memoryUsage"), "memoryUsage"),
                error_rate=_number(_lookup(metrics, "errorRate"), "errorRate"),
                response_time=_number(_lookup(metrics, "responseTime"), "responseTime"),
                score=_number(_lookup(metrics, "score"), "score"),
            )
        )
    return entries
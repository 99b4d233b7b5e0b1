"""HTTP handlers for the router's own management endpoints."""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from aiohttp import web

from . import log
from .models import ZERO_TIME, Metrics, Server, parse_optimal_server_request
from .services import ServerNotFoundError, ServerService

_EXPECTED_FORMAT = """{
    "servers": [
        {
            "serverId": "<server id>",
            "metrics": {
                "cpuUsage": 0.0,
                "memoryUsage": 0.0,
                "errorRate": 0.0,
                "responseTime": 0.0,
                "score": 0.0
            }
        }
    ]
}"""

_RFC3339 = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})T(\d{2}):(\d{2}):(\d{2})(?:\.(\d+))?(Z|[+-]\d{2}:\d{2})"
)


def _failure(message: str, status: int, **extra: Any) -> web.Response:
    return web.json_response({"success": False, "message": message, **extra}, status=status)


def _format_rfc3339(moment: datetime) -> str:
    """Render a datetime at whole-second precision, using ``Z`` for UTC."""
    if moment.tzinfo is None:
        moment = moment.astimezone()
    text = moment.replace(microsecond=0).isoformat()
    if text.endswith("+00:00"):
        text = text[: -len("+00:00")] + "Z"
    return text


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        return ZERO_TIME
    if not isinstance(value, str):
        raise ValueError("field 'timestamp' must be an RFC 3339 string")
    match = _RFC3339.fullmatch(value)
    if match is None:
        raise ValueError(f"invalid timestamp {value!r}")
    year, month, day, hour, minute, second = (int(part) for part in match.groups()[:6])
    fraction = (match.group(7) or "")[:6].ljust(6, "0")
    zone = match.group(8)
    if zone == "Z":
        tzinfo = timezone.utc
    else:
        sign = -1 if zone[0] == "-" else 1
        offset = timedelta(hours=int(zone[1:3]), minutes=int(zone[4:6]))
        tzinfo = timezone(sign * offset)
    return datetime(year, month, day, hour, minute, second, int(fraction), tzinfo=tzinfo)


def _field(document: Mapping[str, Any], key: str) -> Any:
    """Find a member by name, falling back to a case-insensitive match."""
    if key in document:
        return document[key]
    folded = key.casefold()
    for name, value in document.items():
        if isinstance(name, str) and name.casefold() == folded:
            return value
    return None


def _as_string(document: Mapping[str, Any], key: str) -> str:
    value = _field(document, key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"field {key!r} must be a string")
    return value


def _as_float(document: Mapping[str, Any], key: str) -> float:
    value = _field(document, key)
    if value is None:
        return 0.0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"field {key!r} must be a number")
    return float(value)


def _as_int(document: Mapping[str, Any], key: str) -> int:
    value = _field(document, key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"field {key!r} must be an integer")
    return value


async def _read_object(request: web.Request) -> Mapping[str, Any]:
    """Decode the request body as a JSON object; raise ``ValueError`` otherwise."""
    body = await request.read()
    document = json.loads(body)
    if document is None:
        return {}
    if not isinstance(document, Mapping):
        raise ValueError("request body must be a JSON object")
    return document


@dataclass(frozen=True)
class _MetricsReport:
    app_name: str
    server_url: str
    cpu_usage: float
    memory_usage: float
    error_rate: float
    response_time: float
    total_requests: int
    error_requests: int
    timestamp: datetime

    @classmethod
    def from_document(cls, document: Mapping[str, Any]) -> _MetricsReport:
        return cls(
            app_name=_as_string(document, "app_name"),
            server_url=_as_string(document, "server_url"),
            cpu_usage=_as_float(document, "cpu_usage"),
            memory_usage=_as_float(document, "memory_usage"),
            error_rate=_as_float(document, "error_rate"),
            response_time=_as_float(document, "response_time"),
            total_requests=_as_int(document, "total_requests"),
            error_requests=_as_int(document, "error_requests"),
            timestamp=_parse_timestamp(_field(document, "timestamp")),
        )


class InternalController:
    """Handles reports of server metrics sent by the monitoring side."""

    def __init__(self, server_service: ServerService) -> None:
        self._servers = server_service

    async def handle_optimal_server(self, request: web.Request) -> web.Response:
        """Register reported servers, store their metrics and name the best one."""
        body = await request.read()
        text = body.decode("utf-8", errors="replace")
        log.info("received request body (length: %d): %s", len(body), text)

        try:
            entries = parse_optimal_server_request(body)
        except ValueError as exc:
            log.error("failed to parse request: %s", exc)
            log.info("expected request format: %s", _EXPECTED_FORMAT)
            return _failure("invalid request format", 400, error=str(exc), received=text)

        if not entries:
            return _failure("server list is empty", 400)

        best_id = ""
        best_score = -1.0
        log.info("server information received (%d in total):", len(entries))
        for entry in entries:
            log.info("[%s] details:", entry.server_id)
            log.info("  - CPU usage: %.2f%%", entry.cpu_usage)
            log.info("  - memory usage: %.2f%%", entry.memory_usage)
            log.info("  - error rate: %.2f%%", entry.error_rate)
            log.info("  - response time: %.2fms", entry.response_time)
            log.info("  - score: %.2f", entry.score)

            if entry.score > best_score:
                best_id, best_score = entry.server_id, entry.score

            if self._servers.get_server(entry.server_id) is None:
                self._servers.add_server(entry.server_id, entry.server_id)
                log.info("new server registered automatically: %s", entry.server_id)

            metrics = Metrics(
                cpu_usage=entry.cpu_usage,
                memory_usage=entry.memory_usage,
                error_rate=entry.error_rate,
                latency=entry.response_time,
                timestamp=datetime.now().astimezone(),
            )
            try:
                self._servers.update_server_metrics(entry.server_id, metrics)
            except ServerNotFoundError as exc:
                log.error("failed to update metrics (%s): %s", entry.server_id, exc)

        log.info("selected optimal server: %s (score: %.2f)", best_id, best_score)
        return web.json_response(
            {
                "success": True,
                "message": "server information updated",
                "data": {"optimal_server": best_id, "score": best_score},
            }
        )


class MetricsController:
    """Handles metrics pushed by the application servers themselves."""

    def __init__(self, server_service: ServerService) -> None:
        self._servers = server_service

    async def handle_metrics_update(self, request: web.Request) -> web.Response:
        """Store a server's metrics, registering the server first if needed."""
        try:
            report = _MetricsReport.from_document(await _read_object(request))
        except ValueError:
            return _failure("invalid request format", 400)

        log.info("metrics received [%s]:", report.app_name)
        log.info("  - server URL: %s", report.server_url)
        log.info("  - CPU usage: %.2f%%", report.cpu_usage)
        log.info("  - memory usage: %.2f%%", report.memory_usage)
        log.info("  - error rate: %.2f%%", report.error_rate)
        log.info("  - response time: %.2fms", report.response_time)
        log.info("  - total requests: %d", report.total_requests)
        log.info("  - error requests: %d", report.error_requests)
        log.info("  - timestamp: %s", report.timestamp)

        if self._servers.get_server(report.app_name) is None:
            self._servers.add_server(report.app_name, report.server_url)
            log.info(
                "new server registered automatically: %s (%s)",
                report.app_name,
                report.server_url,
            )

        metrics = Metrics(
            cpu_usage=report.cpu_usage,
            memory_usage=report.memory_usage,
            error_rate=report.error_rate,
            latency=report.response_time,
            timestamp=report.timestamp,
        )
        try:
            self._servers.update_server_metrics(report.app_name, metrics)
        except ServerNotFoundError as exc:
            log.error("failed to update metrics (%s): %s", report.app_name, exc)
            return _failure("failed to update metrics", 500)

        return web.json_response({"success": True, "message": "metrics updated"})


def _server_info(server: Server) -> dict[str, Any]:
    status = server.current_status
    info: dict[str, Any] = {
        "serverId": server.server_id,
        "url": server.url,
        "status": getattr(status, "value", status),
        "lastUpdated": _format_rfc3339(server.last_updated),
    }
    if server.metrics is not None:
        info["metrics"] = server.metrics.to_dict()
    return info


class ServerController:
    """Lists, registers and removes backend servers."""

    def __init__(self, server_service: ServerService) -> None:
        self._servers = server_service

    async def handle_servers_status(self, request: web.Request) -> web.Response:
        """Return every registered server with its status and metrics."""
        infos = [_server_info(server) for server in self._servers.all_servers()]
        return web.json_response(
            {"success": True, "message": "server status list", "data": infos}
        )

    async def handle_add_server(self, request: web.Request) -> web.Response:
        """Register the server named by ``serverId`` and ``url`` in the body."""
        try:
            document = await _read_object(request)
            server_id = _as_string(document, "serverId")
            url = _as_string(document, "url")
        except ValueError:
            return _failure("invalid request format", 400)

        if not server_id or not url:
            return _failure("serverId and url are required", 400)

        self._servers.add_server(server_id, url)
        return web.json_response({"success": True, "message": "server registered"})

    async def handle_remove_server(self, request: web.Request) -> web.Response:
        """Remove the server named by the ``serverId`` query parameter."""
        server_id = request.query.get("serverId", "")
        if not server_id:
            return _failure("serverId is required", 400)

        self._servers.remove_server(server_id)
        return web.json_response({"success": True, "message": "server removed"})
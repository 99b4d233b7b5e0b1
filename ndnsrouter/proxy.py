"""Middleware that forwards non-internal requests to a chosen backend."""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
from aiohttp import web

from . import log
from .config import INTERNAL_PATHS, PROXY_TIMEOUT
from .helpers import Generate, PathMatcher
from .models import Server
from .services import ServerService

_HOP_BY_HOP = frozenset(
    {
        "connection",
        "keep-alive",
        "proxy-authenticate",
        "proxy-authorization",
        "te",
        "trailers",
        "transfer-encoding",
        "upgrade",
    }
)
_FORWARDING_HEADERS = ("X-Forwarded-Host", "X-Origin-Host", "X-App-Name", "X-Request-ID")
_REQUEST_SKIP = _HOP_BY_HOP | {"host", "content-length"} | {
    name.lower() for name in _FORWARDING_HEADERS
}
_RESPONSE_SKIP = _HOP_BY_HOP | {"content-length", "content-encoding"}


class ProxyError(Exception):
    """A forwarded request failed or timed out."""


def build_target_url(server_url: str, path: str, query: str = "") -> str:
    """Build the upstream URL for a request.

    The server URL is cut at its first colon and given an ``http://`` scheme
    when it has none; the request path and query are then appended.
    """
    target = server_url.split(":", 1)[0]
    if not target.startswith(("http://", "https://")):
        target = "http://" + target
    url = target + path
    if query:
        url += "?" + query
    return url


async def _exchange(
    session: Any, method: str, url: str, headers: list[tuple[str, str]], body: bytes
) -> web.Response:
    async with session.request(
        method, url, headers=headers, data=body or None, allow_redirects=False
    ) as upstream:
        payload = await upstream.read()
        response_headers = [
            (name, value)
            for name, value in upstream.headers.items()
            if name.lower() not in _RESPONSE_SKIP
        ]
        return web.Response(status=upstream.status, body=payload, headers=response_headers)


async def forward_request(
    request: web.Request,
    server: Server,
    request_id: str,
    session: aiohttp.ClientSession | None = None,
) -> web.Response:
    """Send ``request`` to ``server`` and return the upstream reply.

    Any HTTP reply counts as success. Raises ``ProxyError`` when the upstream
    cannot be reached or does not answer within the proxy timeout.
    """
    url = build_target_url(server.url, request.path, request.query_string)
    headers = [
        (name, value)
        for name, value in request.headers.items()
        if name.lower() not in _REQUEST_SKIP
    ]
    headers += [
        ("X-Forwarded-Host", request.headers.get("Host", "")),
        ("X-Origin-Host", server.server_id),
        ("X-App-Name", server.server_id),
        ("X-Request-ID", request_id),
    ]
    body = await request.read()
    log.info("[%s] proxying: %s -> %s", request_id, request.path, url)

    seconds = PROXY_TIMEOUT.total_seconds()
    try:
        if session is None:
            async with aiohttp.ClientSession() as own_session:
                response = await asyncio.wait_for(
                    _exchange(own_session, request.method, url, headers, body), seconds
                )
        else:
            response = await asyncio.wait_for(
                _exchange(session, request.method, url, headers, body), seconds
            )
    except (asyncio.TimeoutError, TimeoutError) as exc:
        log.error("[%s] proxy request timed out (%s)", request_id, server.server_id)
        raise ProxyError("request timeout") from exc
    except (aiohttp.ClientError, OSError) as exc:
        log.error("[%s] proxy request failed (%s): %s", request_id, server.server_id, exc)
        raise ProxyError(str(exc) or type(exc).__name__) from exc

    log.info("[%s] proxy request succeeded (%s)", request_id, server.server_id)
    return response


def proxy_middleware(
    server_service: ServerService, session: aiohttp.ClientSession | None = None
) -> Any:
    """Create middleware that serves internal paths locally and proxies the rest.

    A failed request to the selected server is retried once on the serverless
    endpoint; if that fails too the client gets a 502 JSON reply.
    """
    paths = PathMatcher(INTERNAL_PATHS)
    ids = Generate()

    @web.middleware
    async def middleware(request: web.Request, handler: Any) -> web.StreamResponse:
        request_id = ids.generate_request_id()
        log.info("[%s] new proxy request: %s %s", request_id, request.method, request.path)

        if paths.is_internal_path(request.path):
            log.info("[%s] internal path (%s), handling locally", request_id, request.path)
            return await handler(request)

        selected = server_service.select_optimal_server()
        log.info(
            "[%s] selected server: %s (score: %.2f)",
            request_id,
            selected.server_id,
            selected.metrics.score if selected.metrics else 0.0,
        )

        try:
            response = await forward_request(request, selected, request_id, session)
        except ProxyError:
            log.warn("[%s] primary server failed, failing over to serverless", request_id)
            fallback = server_service.serverless_server()
            try:
                response = await forward_request(request, fallback, request_id, session)
            except ProxyError:
                log.error("[%s] serverless failover failed", request_id)
                return web.json_response(
                    {"success": False, "message": "all server requests failed"},
                    status=502,
                )

        server_service.finish_using_server(selected.server_id)
        log.info("[%s] proxy request complete", request_id)
        return response

    return middleware
"""Route registration for the router application."""

from __future__ import annotations

from typing import Any

from aiohttp import web

from . import log
from .config import RouterConfig
from .controllers import InternalController, MetricsController, ServerController
from .proxy import proxy_middleware
from .services import ServerService


def _add_route(app: web.Application, method: str, path: str, handler: Any) -> None:
    """Register a route that matches with or without a trailing slash."""
    base = path.rstrip("/") or "/"
    app.router.add_route(method, base, handler)
    if base != "/":
        app.router.add_route(method, base + "/", handler)


def setup_server_routes(app: web.Application, server_service: ServerService) -> None:
    """Register the ``/servers`` management endpoints."""
    controller = ServerController(server_service)
    _add_route(app, "GET", "/servers/", controller.handle_servers_status)
    _add_route(app, "POST", "/servers/add", controller.handle_add_server)
    _add_route(app, "DELETE", "/servers/remove", controller.handle_remove_server)


def setup_metrics_routes(app: web.Application, server_service: ServerService) -> None:
    """Register the ``/metrics`` endpoints."""
    controller = MetricsController(server_service)
    _add_route(app, "POST", "/metrics/update", controller.handle_metrics_update)


def setup_internal_routes(app: web.Application, server_service: ServerService) -> None:
    """Register the ``/internal`` endpoints."""
    controller = InternalController(server_service)
    _add_route(app, "PUT", "/internal/server/optimal", controller.handle_optimal_server)


def setup_routes(app: web.Application, config: RouterConfig) -> ServerService:
    """Install the proxy middleware and all management routes on ``app``.

    Returns the server registry the routes share.
    """
    server_service = ServerService(serverless_servers=config.serverless_servers)
    app.middlewares.append(proxy_middleware(server_service))
    setup_server_routes(app, server_service)
    setup_metrics_routes(app, server_service)
    setup_internal_routes(app, server_service)
    log.info("router setup complete")
    return server_service
"""Application assembly and the command-line entry point."""

from __future__ import annotations

import argparse
import os
import platform
from collections.abc import Sequence
from typing import Any

from aiohttp import web

from . import log
from .config import ConfigError, RouterConfig, get_config
from .routes import setup_routes

APP_NAME = "NDNS Router"
BODY_LIMIT = 10 * 1024 * 1024


async def _set_server_header(request: web.Request, response: web.StreamResponse) -> None:
    response.headers["Server"] = APP_NAME


def create_app(config: RouterConfig) -> web.Application:
    """Build the web application with proxying and management routes."""
    app = web.Application(client_max_size=BODY_LIMIT)
    app.on_response_prepare.append(_set_server_header)
    setup_routes(app, config)
    return app


def system_info() -> dict[str, Any]:
    """Log and return facts about the host and interpreter."""
    info: dict[str, Any] = {
        "platform": platform.system().lower(),
        "machine": platform.machine(),
        "python": platform.python_version(),
        "cpu_count": os.cpu_count(),
    }
    log.info("system: %s/%s", info["platform"], info["machine"])
    log.info("Python version: %s, cores: %s", info["python"], info["cpu_count"])
    try:
        info["cwd"] = os.getcwd()
    except OSError:
        pass
    else:
        log.info("working directory: %s", info["cwd"])
    if hasattr(os, "sched_getaffinity"):
        info["usable_cpus"] = len(os.sched_getaffinity(0))
        log.debug("usable CPUs: %d", info["usable_cpus"])
    return info


def main(argv: Sequence[str] | None = None) -> int:
    """Load the configuration and serve until interrupted."""
    parser = argparse.ArgumentParser(
        prog="ndnsrouter",
        description="Route requests to the best backend, failing over to serverless.",
    )
    parser.parse_args(argv)

    try:
        config = get_config()
    except ConfigError as exc:
        log.fatal("failed to load configuration: %s", exc)
    log.info("configuration loaded (env: %s, port: %d)", config.app_env, config.port)

    system_info()
    app = create_app(config)

    try:
        web.run_app(app, port=config.port, print=None)
    except OSError as exc:
        log.fatal("failed to start server: %s", exc)
    log.info("server shut down")
    return 0
"""Registry of backend servers and the policy that picks one per request."""

from __future__ import annotations

import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol

from . import log
from .config import (
    COOLDOWN_PERIOD,
    MAX_CONCURRENT_REQUESTS,
    SCORE_EXCELLENT,
    SCORE_GOOD,
    SERVERLESS_FORCE_RATIO,
    get_config,
)
from .helpers import Calculate
from .models import Metrics, OptimalServer, Server, ServerStatus


class _RandomSource(Protocol):
    def random_float(self) -> float: ...

    def random_int(self, maximum: int) -> int: ...


class ServerNotFoundError(LookupError):
    """No server is registered under the given id."""

    def __init__(self, server_id: str) -> None:
        super().__init__(f"server does not exist: {server_id}")
        self.server_id = server_id


@dataclass
class ServerState:
    """Usage bookkeeping for one server."""

    active_requests: int = 0
    last_used: float | None = None


class ServerService:
    """Keeps registered servers and chooses where each request should go.

    ``serverless_servers`` lists the fallback endpoints; when ``None`` they are
    read from the process configuration at the time they are needed. ``rng``
    supplies ``random_float`` and ``random_int``; a clock-seeded
    ``Calculate`` is used by default.
    """

    def __init__(
        self,
        serverless_servers: Sequence[str] | None = None,
        rng: _RandomSource | None = None,
    ) -> None:
        self._serverless_servers = (
            None if serverless_servers is None else tuple(serverless_servers)
        )
        self._rng: _RandomSource = Calculate() if rng is None else rng
        self._servers: dict[str, Server] = {}
        self._states: dict[str, ServerState] = {}
        self._optimal: OptimalServer | None = None
        self._lock = threading.RLock()

    @property
    def optimal_server(self) -> OptimalServer | None:
        """The highest-scoring server reported so far."""
        with self._lock:
            return self._optimal

    def add_server(self, server_id: str, url: str) -> None:
        """Register a server, replacing any previous entry with the same id."""
        with self._lock:
            self._servers[server_id] = Server(
                server_id=server_id,
                url=url,
                current_status=ServerStatus.UNKNOWN.value,
                last_updated=datetime.now().astimezone(),
            )
        log.info("server added: %s (%s)", server_id, url)

    def remove_server(self, server_id: str) -> None:
        """Forget a server; unknown ids are ignored."""
        with self._lock:
            self._servers.pop(server_id, None)
        log.info("server removed: %s", server_id)

    def all_servers(self) -> list[Server]:
        with self._lock:
            return list(self._servers.values())

    def healthy_servers(self) -> list[Server]:
        with self._lock:
            return [
                server
                for server in self._servers.values()
                if server.current_status == ServerStatus.HEALTHY.value
            ]

    def get_server(self, server_id: str) -> Server | None:
        with self._lock:
            return self._servers.get(server_id)

    def update_server_metrics(self, server_id: str, metrics: Metrics) -> None:
        """Store fresh metrics for a server and track the best score seen."""
        with self._lock:
            server = self._servers.get(server_id)
            if server is None:
                raise ServerNotFoundError(server_id)
            server.metrics = metrics
            server.last_updated = datetime.now().astimezone()
            if self._optimal is None or metrics.score > self._optimal.score:
                self._optimal = OptimalServer(server_id=server_id, score=metrics.score)
                log.info("new optimal server: %s (score: %.2f)", server_id, metrics.score)

    def _can_use(self, server_id: str) -> bool:
        state = self._states.get(server_id)
        if state is None:
            self._states[server_id] = ServerState()
            return True
        if state.active_requests >= MAX_CONCURRENT_REQUESTS:
            return False
        if (
            state.last_used is not None
            and time.monotonic() - state.last_used < COOLDOWN_PERIOD.total_seconds()
        ):
            return False
        return True

    def _start_using(self, server_id: str) -> None:
        state = self._states.setdefault(server_id, ServerState())
        state.active_requests += 1
        state.last_used = time.monotonic()

    def finish_using_server(self, server_id: str) -> None:
        """Release one active request slot of a server."""
        with self._lock:
            state = self._states.get(server_id)
            if state is not None and state.active_requests > 0:
                state.active_requests -= 1

    def select_optimal_server(self) -> Server:
        """Pick a server for the next request.

        A fixed share of requests goes to serverless outright. Otherwise a
        random available server is taken from the excellent tier, then the
        good tier; with neither, the serverless endpoint is used.
        """
        if self._rng.random_float() < SERVERLESS_FORCE_RATIO:
            log.info("forcing serverless (load distribution)")
            return self.serverless_server()

        with self._lock:
            excellent: list[Server] = []
            good: list[Server] = []
            for server in self._servers.values():
                if not self._can_use(server.server_id) or server.metrics is None:
                    continue
                if server.metrics.score >= SCORE_EXCELLENT:
                    excellent.append(server)
                elif server.metrics.score >= SCORE_GOOD:
                    good.append(server)

            if excellent:
                selected = excellent[self._rng.random_int(len(excellent))]
                tier = "excellent"
            elif good:
                selected = good[self._rng.random_int(len(good))]
                tier = "good"
            else:
                log.info("no suitable server, switching to serverless")
                return self.serverless_server()

            log.info(
                "%s server selected: %s (score: %.2f)",
                tier,
                selected.server_id,
                selected.metrics.score if selected.metrics else 0.0,
            )
            self._start_using(selected.server_id)
            return selected

    def serverless_server(self) -> Server:
        """Return the first configured serverless endpoint as a full-score server."""
        servers = self._serverless_servers
        if servers is None:
            servers = get_config().serverless_servers
        if not servers:
            raise LookupError("no serverless servers configured")
        target = servers[0]
        return Server(server_id=target, url=target, metrics=Metrics(score=100.0))
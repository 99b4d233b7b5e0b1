"""Small helpers: randomness, request ids, round-robin counters and path checks."""

from __future__ import annotations

import random
import threading
import time
from collections.abc import Iterable, Sequence
from datetime import datetime

from .log import Log

_UINT32 = 1 << 32


class Calculate:
    """Random numbers from a private generator, seeded from the clock by default."""

    def __init__(self, seed: int | None = None) -> None:
        self._random = random.Random(time.time_ns() if seed is None else seed)

    def random_float(self) -> float:
        """Return a float in [0, 1)."""
        return self._random.random()

    def random_int(self, maximum: int) -> int:
        """Return an int in [0, maximum), or 0 when ``maximum`` is not positive."""
        if maximum <= 0:
            return 0
        return self._random.randrange(maximum)


class _Counter:
    """Thread-safe counter that wraps at ``modulus``."""

    def __init__(self, modulus: int | None = None) -> None:
        self._value = 0
        self._modulus = modulus
        self._lock = threading.Lock()

    def increment(self) -> int:
        with self._lock:
            self._value += 1
            if self._modulus is not None:
                self._value %= self._modulus
            return self._value


def _wrapped_index(counter: _Counter, length: int) -> int:
    value = counter.increment()
    return (value - 1) % _UINT32 % length


class Generate:
    """Request ids and a shared round-robin index."""

    def __init__(self) -> None:
        self._requests = _Counter()
        self._index = _Counter(_UINT32)

    def generate_request_id(self) -> str:
        """Return an id of the form ``REQ-YYYYMMDD-HHMMSS-NNNNNN``."""
        count = self._requests.increment()
        return f"REQ-{datetime.now():%Y%m%d-%H%M%S}-{count:06d}"

    def next_round_robin_index(self, length: int) -> int:
        """Return the next index in [0, length), or -1 when ``length`` is not positive."""
        if length <= 0:
            return -1
        return _wrapped_index(self._index, length)


class RoundRobin:
    """Cycles through items in order."""

    def __init__(self) -> None:
        self._index = _Counter(_UINT32)

    def next_item(self, items: Sequence[str]) -> str:
        """Return the next item, or an empty string when there are none."""
        if not items:
            return ""
        return items[_wrapped_index(self._index, len(items))]

    def next_index(self, length: int) -> int:
        """Return the next index in [0, length), or -1 when ``length`` is not positive."""
        if length <= 0:
            return -1
        return _wrapped_index(self._index, length)


class PathMatcher:
    """Recognises paths that the router serves itself."""

    def __init__(self, internal_paths: Iterable[str]) -> None:
        self._prefixes = tuple(internal_paths)

    def is_internal_path(self, path: str) -> bool:
        """True when ``path`` starts with any internal prefix."""
        return any(path.startswith(prefix) for prefix in self._prefixes)


class Utils:
    """Bundle of the logging, path, random and id helpers."""

    def __init__(self, internal_paths: Iterable[str]) -> None:
        self.log = Log()
        self.paths = PathMatcher(internal_paths)
        self.calculate = Calculate()
        self.generate = Generate()
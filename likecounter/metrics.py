"""Bounded in-memory request metrics."""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import dataclass
from threading import Lock


@dataclass(slots=True)
class RouteStats:
    count: int = 0
    total_latency_ms: int = 0


class RequestMetrics:
    """Per-route request counts and latency, evicting least recently seen routes."""

    def __init__(self, *, max_entries: int = 2048) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be >= 1")
        self._max_entries = max_entries
        self._routes: OrderedDict[str, RouteStats] = OrderedDict()
        self._lock = Lock()

    def record(self, key: str, latency_ms: int) -> None:
        with self._lock:
            stats = self._routes.get(key)
            if stats is None:
                if len(self._routes) >= self._max_entries:
                    self._routes.popitem(last=False)
                stats = self._routes[key] = RouteStats()
            else:
                self._routes.move_to_end(key)
            stats.count += 1
            stats.total_latency_ms += max(latency_ms, 0)

    def snapshot(self) -> dict[str, dict[str, int]]:
        with self._lock:
            return {
                key: {
                    "count": stats.count,
                    "avg_latency_ms": stats.total_latency_ms // stats.count,
                }
                for key, stats in self._routes.items()
            }

    def clear(self) -> None:
        with self._lock:
            self._routes.clear()

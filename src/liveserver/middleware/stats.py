"""
Request counters behind ``LiveServerManager.get_server_stats()``.

Workers update the counters concurrently, so every update goes through a
lock. Reads return a consistent snapshot.
"""

import threading
import time
from dataclasses import dataclass
from typing import Optional

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


@dataclass(frozen=True)
class StatsSnapshot:
    requests: int
    errors: int
    bytes_sent: int
    last_activity: Optional[float]


class RequestStats:
    def __init__(self):
        self._lock = threading.Lock()
        self._requests = 0
        self._errors = 0
        self._bytes_sent = 0
        self._last_activity: Optional[float] = None

    def record(self, status: int, body_size: int) -> None:
        with self._lock:
            self._requests += 1
            if status >= 400:
                self._errors += 1
            self._bytes_sent += body_size
            self._last_activity = time.time()

    def record_failure(self) -> None:
        """A request whose handler raised (answered 500 by the server)."""
        with self._lock:
            self._requests += 1
            self._errors += 1
            self._last_activity = time.time()

    def snapshot(self) -> StatsSnapshot:
        with self._lock:
            return StatsSnapshot(
                requests=self._requests,
                errors=self._errors,
                bytes_sent=self._bytes_sent,
                last_activity=self._last_activity,
            )

    def reset(self) -> None:
        with self._lock:
            self._requests = 0
            self._errors = 0
            self._bytes_sent = 0
            self._last_activity = None


class StatsMiddleware(Middleware):
    """Counts every request that reaches the router, and its outcome."""

    def __init__(self, stats: Optional[RequestStats] = None):
        self.stats = stats or RequestStats()

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        try:
            response = next(request)
        except Exception:
            self.stats.record_failure()
            raise
        self.stats.record(int(response.status), len(response.body))
        return response

"""
=============================================================================
MIDDLEWARE
=============================================================================

    base.py      Middleware ABC and MiddlewarePipeline
    logging.py   access log lines (liveserver.access)
    stats.py     request / error counters for server stats
    cors.py      Access-Control-* headers (``cors`` option)

=============================================================================
"""

from .base import Middleware, MiddlewarePipeline, NextHandler
from .logging import LoggingMiddleware, RequestLog
from .cors import CORSMiddleware, CORSConfig
from .stats import StatsMiddleware, RequestStats, StatsSnapshot

__all__ = [
    "Middleware",
    "MiddlewarePipeline",
    "NextHandler",
    "LoggingMiddleware",
    "RequestLog",
    "CORSMiddleware",
    "CORSConfig",
    "StatsMiddleware",
    "RequestStats",
    "StatsSnapshot",
]

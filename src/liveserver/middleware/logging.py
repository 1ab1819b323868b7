"""
=============================================================================
ACCESS LOGGING
=============================================================================

One line per request on the ``liveserver.access`` logger:

    127.0.0.1 - - [18/Oct/2026:14:02:11 +0000] "GET /css/site.css" 304 0 0.41ms

A dev server reloads pages constantly, so access lines go out at DEBUG by
default. ``verbose=True`` raises them to INFO, where the CLI's default log
level shows them.

=============================================================================
"""

import time
import logging
from dataclasses import dataclass

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse


logger = logging.getLogger("liveserver.access")


@dataclass
class RequestLog:
    method: str
    path: str
    client_ip: str
    status_code: int
    content_length: int
    duration_ms: float
    timestamp: str

    def to_text(self) -> str:
        """Apache-style access line with the handling time appended."""
        return (
            f'{self.client_ip} - - [{self.timestamp}] '
            f'"{self.method} {self.path}" {self.status_code} '
            f'{self.content_length} {self.duration_ms:.2f}ms'
        )


class LoggingMiddleware(Middleware):
    """
    Request logging middleware. Add it first so it times the whole chain.

        pipeline.add(LoggingMiddleware(verbose=config.verbose))
    """

    def __init__(self, verbose: bool = False):
        self.verbose = verbose
        self.log_level = logging.INFO if verbose else logging.DEBUG

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        start_time = time.time()

        try:
            response = next(request)
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"Request failed: {request.method} {request.path} "
                f"- {type(e).__name__}: {e} ({duration_ms:.2f}ms)"
            )
            raise

        if logger.isEnabledFor(self.log_level):
            entry = RequestLog(
                method=request.method,
                path=request.path,
                client_ip=request.client_address[0] or "-",
                status_code=int(response.status),
                content_length=len(response.body),
                duration_ms=(time.time() - start_time) * 1000,
                timestamp=time.strftime("%d/%b/%Y:%H:%M:%S %z"),
            )
            logger.log(self.log_level, entry.to_text())

        return response

"""
=============================================================================
CORS MIDDLEWARE
=============================================================================

Enabled with the ``cors`` option so pages served from another origin (a
second dev server, a file:// page, a framework proxy) can fetch files from
this one.

    Browser (other origin)                  Live server
    ──────────────────────                  ───────────
    OPTIONS /data.json            ───►      204 + Access-Control-Allow-*
    Origin: http://localhost:3000

    GET /data.json                ───►      200 + Access-Control-Allow-Origin: *

The server only serves files, so the allowed methods are the read-only ones.

=============================================================================
"""

from typing import Optional, List
from dataclasses import dataclass, field

from .base import Middleware, NextHandler
from ..http.request import HTTPRequest
from ..http.response import HTTPResponse, ResponseBuilder, HTTPStatus


@dataclass
class CORSConfig:
    allow_origins: List[str] = field(default_factory=lambda: ["*"])
    allow_methods: List[str] = field(default_factory=lambda: ["GET", "HEAD", "OPTIONS"])
    allow_headers: List[str] = field(default_factory=lambda: ["Content-Type", "If-None-Match", "X-Requested-With"])
    allow_credentials: bool = False
    max_age: int = 86400


class CORSMiddleware(Middleware):
    """Answers preflights and adds Access-Control-* headers."""

    def __init__(self, config: Optional[CORSConfig] = None):
        self.config = config or CORSConfig()

    def __call__(self, request: HTTPRequest, next: NextHandler) -> HTTPResponse:
        origin = request.headers.get("origin", "")

        if request.method == "OPTIONS":
            return self._handle_preflight(request, origin)

        response = next(request)
        self._add_cors_headers(response, origin)
        return response

    def _handle_preflight(self, request: HTTPRequest, origin: str) -> HTTPResponse:
        response = ResponseBuilder().status(HTTPStatus.NO_CONTENT).build()
        self._add_cors_headers(response, origin)

        if request.headers.get("access-control-request-method"):
            response.headers["Access-Control-Allow-Methods"] = ", ".join(self.config.allow_methods)

        if request.headers.get("access-control-request-headers"):
            response.headers["Access-Control-Allow-Headers"] = ", ".join(self.config.allow_headers)

        response.headers["Access-Control-Max-Age"] = str(self.config.max_age)
        return response

    def _add_cors_headers(self, response: HTTPResponse, origin: str):
        """
        "*" is echoed as "*" unless credentials are allowed, in which case
        the request's own Origin is echoed (browsers reject "*" there).
        """
        if "*" in self.config.allow_origins:
            if self.config.allow_credentials:
                allowed_origin = origin or "*"
            else:
                allowed_origin = "*"
        elif origin in self.config.allow_origins:
            allowed_origin = origin
        else:
            return

        response.headers["Access-Control-Allow-Origin"] = allowed_origin

        if self.config.allow_credentials:
            response.headers["Access-Control-Allow-Credentials"] = "true"

        vary = response.headers.get("Vary", "")
        if "Origin" not in vary:
            response.headers["Vary"] = f"{vary}, Origin".lstrip(", ")

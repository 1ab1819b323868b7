"""
=============================================================================
HTTP RESPONSE BUILDER
=============================================================================

Builds HTTP/1.1 responses.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     HTTP RESPONSE STRUCTURE                         │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    HTTP/1.1 200 OK\r\n                       ← status line          │
    │    Content-Type: text/html; charset=utf-8\r\n                       │
    │    Content-Length: 1532\r\n                  ← always set           │
    │    ETag: "5f1c-18c2a"\r\n                                           │
    │    Cache-Control: no-cache\r\n                                      │
    │    Date: Sun, 18 Oct 2026 12:00:00 GMT\r\n   ← auto-added           │
    │    Server: LiveServer/1.0\r\n                ← auto-added           │
    │    \r\n                                                             │
    │    <!DOCTYPE html> ...                       ← body                 │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

HEAD responses are serialized with ``include_body=False``: the headers,
Content-Length included, describe the GET response, but no body follows.

=============================================================================
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Dict, Union

from .status_codes import HTTPStatus


# Statuses that never carry a body (RFC 7230 §3.3.3)
_BODYLESS = {HTTPStatus.SWITCHING_PROTOCOLS, HTTPStatus.NO_CONTENT, HTTPStatus.NOT_MODIFIED}


@dataclass
class HTTPResponse:
    """
    An HTTP response to be sent to the client.

    Use ResponseBuilder or the helpers at the bottom of this module to
    construct one.
    """

    status: HTTPStatus = HTTPStatus.OK
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    version: str = "HTTP/1.1"

    @property
    def status_line(self) -> str:
        return f"{self.version} {int(self.status)} {self.status.phrase}"

    def set_header(self, name: str, value: str) -> "HTTPResponse":
        self.headers[name] = value
        return self

    def get_header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive lookup over the response headers."""
        lowered = name.lower()
        for key, value in self.headers.items():
            if key.lower() == lowered:
                return value
        return default

    def to_bytes(self, server_name: str = "LiveServer/1.0", include_body: bool = True) -> bytes:
        """
        Serialize for socket.sendall().

        Content-Length, Date and Server are added when missing.

        Args:
            server_name: Value for the Server header.
            include_body: False for HEAD requests.
        """
        response_headers = dict(self.headers)
        bodyless = self.status in _BODYLESS

        if "Content-Length" not in response_headers and not bodyless:
            response_headers["Content-Length"] = str(len(self.body))

        if "Date" not in response_headers:
            response_headers["Date"] = format_http_date(datetime.now(timezone.utc))

        if "Server" not in response_headers:
            response_headers["Server"] = server_name

        lines = [self.status_line]
        for name, value in response_headers.items():
            lines.append(f"{name}: {value}")
        lines.append("")

        head = "\r\n".join(lines).encode("latin-1", errors="replace") + b"\r\n"
        if not include_body or bodyless:
            return head
        return head + self.body


class ResponseBuilder:
    """
    Fluent builder for HTTP responses.

        response = (ResponseBuilder()
            .status(HTTPStatus.OK)
            .content_type("text/css; charset=utf-8")
            .etag('"5f1c-18c2a"')
            .no_cache()
            .body(data)
            .build())
    """

    def __init__(self, server_name: str = "LiveServer/1.0"):
        self._status = HTTPStatus.OK
        self._headers: Dict[str, str] = {}
        self._body = b""
        self._server_name = server_name

    def status(self, status: HTTPStatus) -> "ResponseBuilder":
        self._status = status
        return self

    def header(self, name: str, value: str) -> "ResponseBuilder":
        self._headers[name] = value
        return self

    def content_type(self, content_type: str) -> "ResponseBuilder":
        self._headers["Content-Type"] = content_type
        return self

    def body(self, body: Union[str, bytes]) -> "ResponseBuilder":
        self._body = body.encode("utf-8") if isinstance(body, str) else body
        return self

    def text(self, text: str, content_type: str = "text/plain; charset=utf-8") -> "ResponseBuilder":
        self._headers["Content-Type"] = content_type
        self._body = text.encode("utf-8")
        return self

    def html(self, html: str) -> "ResponseBuilder":
        return self.text(html, "text/html; charset=utf-8")

    def redirect(self, location: str, permanent: bool = False) -> "ResponseBuilder":
        """301 if ``permanent`` else 302, with a Location header."""
        self._status = HTTPStatus.MOVED_PERMANENTLY if permanent else HTTPStatus.FOUND
        self._headers["Location"] = location
        return self

    def no_cache(self) -> "ResponseBuilder":
        """
        ``Cache-Control: no-cache``: the browser may store the file but must
        revalidate (ETag) before every use, so an edited file is never
        served stale after a reload.
        """
        self._headers["Cache-Control"] = "no-cache"
        return self

    def etag(self, tag: str) -> "ResponseBuilder":
        self._headers["ETag"] = tag
        return self

    def last_modified(self, timestamp: float) -> "ResponseBuilder":
        self._headers["Last-Modified"] = format_http_date(
            datetime.fromtimestamp(timestamp, tz=timezone.utc)
        )
        return self

    def build(self) -> HTTPResponse:
        return HTTPResponse(
            status=self._status,
            headers=self._headers,
            body=self._body,
        )

    def to_bytes(self) -> bytes:
        return self.build().to_bytes(self._server_name)


def format_http_date(dt: datetime) -> str:
    """
    RFC 7231 HTTP-date, always in GMT.

        >>> format_http_date(datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc))
        'Thu, 01 Jan 2026 12:00:00 GMT'
    """
    days = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    months = ["Jan", "Feb", "Mar", "Apr", "May", "Jun",
              "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

    dt = dt.astimezone(timezone.utc)
    return (
        f"{days[dt.weekday()]}, "
        f"{dt.day:02d} {months[dt.month - 1]} {dt.year} "
        f"{dt.hour:02d}:{dt.minute:02d}:{dt.second:02d} GMT"
    )


# =============================================================================
# CONVENIENCE FUNCTIONS
# =============================================================================
#
#     return not_found(f"{request.path} not found")
#     return redirect(request.path + "/", permanent=True)
#
# Error bodies are short plain-text pages; the browser shows them as-is.
#
# =============================================================================

def _error(status: HTTPStatus, message: str) -> HTTPResponse:
    text = f"{int(status)} {status.phrase}\n"
    if message and message != status.phrase:
        text += f"\n{message}\n"
    return ResponseBuilder().status(status).text(text).build()


def redirect(location: str, permanent: bool = False) -> HTTPResponse:
    return ResponseBuilder().redirect(location, permanent).build()


def not_modified(etag: Optional[str] = None) -> HTTPResponse:
    builder = ResponseBuilder().status(HTTPStatus.NOT_MODIFIED).no_cache()
    if etag:
        builder.etag(etag)
    return builder.build()


def forbidden(message: str = "Forbidden") -> HTTPResponse:
    return _error(HTTPStatus.FORBIDDEN, message)


def not_found(message: str = "Not Found") -> HTTPResponse:
    return _error(HTTPStatus.NOT_FOUND, message)


def method_not_allowed(allowed_methods: list[str]) -> HTTPResponse:
    """405 with the Allow header required by RFC 7231."""
    response = _error(HTTPStatus.METHOD_NOT_ALLOWED, f"Allowed: {', '.join(allowed_methods)}")
    response.set_header("Allow", ", ".join(allowed_methods))
    return response


def error_response(status: HTTPStatus, message: str = "") -> HTTPResponse:
    """Plain-text error page for any status."""
    return _error(status, message or status.phrase)


def internal_error(message: str = "Internal Server Error") -> HTTPResponse:
    return _error(HTTPStatus.INTERNAL_SERVER_ERROR, message)


def service_unavailable(message: str = "Server is busy, try again") -> HTTPResponse:
    response = _error(HTTPStatus.SERVICE_UNAVAILABLE, message)
    response.set_header("Retry-After", "1")
    return response

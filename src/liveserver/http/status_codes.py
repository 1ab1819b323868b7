"""
=============================================================================
HTTP STATUS CODES
=============================================================================

The status codes a static development server actually sends.

    ┌────────┬───────────────────────────────────────────────────────────┐
    │  101   │ Switching Protocols - reload channel WebSocket upgrade   │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  200   │ OK                  - file served                        │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  301   │ Moved Permanently   - "/docs" → "/docs/"                 │
    │  304   │ Not Modified        - ETag still matches                 │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  400   │ Bad Request         - unparseable request                │
    │  403   │ Forbidden           - path escapes the served root       │
    │  404   │ Not Found           - missing file                       │
    │  405   │ Method Not Allowed  - anything but GET/HEAD/OPTIONS      │
    │  413   │ Payload Too Large   - request over max_request_size      │
    ├────────┼───────────────────────────────────────────────────────────┤
    │  500   │ Internal Error      - handler raised                     │
    │  503   │ Service Unavailable - worker pool saturated              │
    └────────┴───────────────────────────────────────────────────────────┘

=============================================================================
"""

from enum import IntEnum


class HTTPStatus(IntEnum):
    """
    HTTP status codes and reason phrases.

    IntEnum, so members compare equal to plain integers:

        >>> HTTPStatus.OK == 200
        True
        >>> HTTPStatus.NOT_MODIFIED.phrase
        'Not Modified'
    """

    # 1xx
    SWITCHING_PROTOCOLS = 101

    # 2xx
    OK = 200
    NO_CONTENT = 204

    # 3xx
    MOVED_PERMANENTLY = 301
    FOUND = 302
    NOT_MODIFIED = 304

    # 4xx
    BAD_REQUEST = 400
    FORBIDDEN = 403
    NOT_FOUND = 404
    METHOD_NOT_ALLOWED = 405
    REQUEST_TIMEOUT = 408
    PAYLOAD_TOO_LARGE = 413
    UPGRADE_REQUIRED = 426

    # 5xx
    INTERNAL_SERVER_ERROR = 500
    NOT_IMPLEMENTED = 501
    SERVICE_UNAVAILABLE = 503
    HTTP_VERSION_NOT_SUPPORTED = 505

    @property
    def phrase(self) -> str:
        """Reason phrase for the status line (``HTTP/1.1 404 Not Found``)."""
        return _STATUS_PHRASES.get(self, "Unknown")

    @property
    def is_success(self) -> bool:
        return 200 <= self < 300

    @property
    def is_redirect(self) -> bool:
        return 300 <= self < 400

    @property
    def is_error(self) -> bool:
        """4xx or 5xx. Counted as errors by the stats middleware."""
        return self >= 400


_STATUS_PHRASES = {
    HTTPStatus.SWITCHING_PROTOCOLS: "Switching Protocols",
    HTTPStatus.OK: "OK",
    HTTPStatus.NO_CONTENT: "No Content",
    HTTPStatus.MOVED_PERMANENTLY: "Moved Permanently",
    HTTPStatus.FOUND: "Found",
    HTTPStatus.NOT_MODIFIED: "Not Modified",
    HTTPStatus.BAD_REQUEST: "Bad Request",
    HTTPStatus.FORBIDDEN: "Forbidden",
    HTTPStatus.NOT_FOUND: "Not Found",
    HTTPStatus.METHOD_NOT_ALLOWED: "Method Not Allowed",
    HTTPStatus.REQUEST_TIMEOUT: "Request Timeout",
    HTTPStatus.PAYLOAD_TOO_LARGE: "Payload Too Large",
    HTTPStatus.UPGRADE_REQUIRED: "Upgrade Required",
    HTTPStatus.INTERNAL_SERVER_ERROR: "Internal Server Error",
    HTTPStatus.NOT_IMPLEMENTED: "Not Implemented",
    HTTPStatus.SERVICE_UNAVAILABLE: "Service Unavailable",
    HTTPStatus.HTTP_VERSION_NOT_SUPPORTED: "HTTP Version Not Supported",
}

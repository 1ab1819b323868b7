"""
=============================================================================
HTTP REQUEST PARSER
=============================================================================

Parses raw HTTP/1.1 request bytes into HTTPRequest objects.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                     HTTP REQUEST STRUCTURE                          │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │    GET /css/site.css?v=3 HTTP/1.1\r\n        ← request line         │
    │    Host: 127.0.0.1:5500\r\n                  ← headers              │
    │    If-None-Match: "5f1c-18c2a"\r\n                                  │
    │    \r\n                                      ← separator            │
    │    (body, Content-Length bytes)                                     │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The reload channel arrives through the same parser: a WebSocket handshake is
an ordinary GET with ``Upgrade: websocket``. HTTPRequest.is_websocket_upgrade
tells the server to hand the connection over instead of routing it.

Paths are URL-decoded here but NOT checked for "..": the static handler
resolves them against the served root and answers 403 for anything that
escapes it.

=============================================================================
"""

from dataclasses import dataclass, field
from typing import Dict
from urllib.parse import parse_qs, urlparse, unquote
import re


class HTTPParseError(Exception):
    """
    Raised when HTTP request parsing fails.

    Carries the status code to answer with:
        400 Bad Request                 - malformed syntax
        405 Method Not Allowed          - unknown method
        413 Payload Too Large           - request over the size limit
        505 HTTP Version Not Supported  - not HTTP/1.0 or HTTP/1.1
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class HTTPRequest:
    """
    A parsed HTTP request.

    Attributes:
        method:         HTTP method, uppercase.
        path:           URL-decoded path without the query string. A
                        trailing slash is preserved ("/docs/" != "/docs").
        version:        "HTTP/1.1" or "HTTP/1.0".
        headers:        Header names lowercased.
        query_params:   "?a=1&a=2" → {"a": ["1", "2"]}
        body:           Raw body bytes.
        path_params:    Values captured by the router (":name" / "*name").
        client_address: (ip, port) of the client.
        raw:            The original request bytes. The reload channel feeds
                        these to the WebSocket handshake.
    """

    method: str
    path: str
    version: str = "HTTP/1.1"
    headers: Dict[str, str] = field(default_factory=dict)
    query_params: Dict[str, list[str]] = field(default_factory=dict)
    body: bytes = b""
    path_params: Dict[str, str] = field(default_factory=dict)
    client_address: tuple[str, int] = ("", 0)
    raw: bytes = b""

    @property
    def host(self) -> str:
        return self.headers.get("host", "")

    @property
    def content_length(self) -> int:
        try:
            return int(self.headers.get("content-length", 0))
        except ValueError:
            return 0

    @property
    def is_keep_alive(self) -> bool:
        """
        HTTP/1.1 keeps the connection unless ``Connection: close``.
        HTTP/1.0 closes it unless ``Connection: keep-alive``.
        """
        connection = self.headers.get("connection", "").lower()
        if self.version == "HTTP/1.1":
            return "close" not in connection
        return "keep-alive" in connection

    @property
    def is_websocket_upgrade(self) -> bool:
        """
        ``Upgrade: websocket`` plus an ``upgrade`` token in Connection.

        Browsers send ``Connection: keep-alive, Upgrade``, so the Connection
        header is matched by token, not by equality.
        """
        if self.method != "GET":
            return False
        if self.headers.get("upgrade", "").strip().lower() != "websocket":
            return False
        tokens = [t.strip().lower() for t in self.headers.get("connection", "").split(",")]
        return "upgrade" in tokens

    def get_header(self, name: str, default: str = "") -> str:
        """Case-insensitive header lookup."""
        return self.headers.get(name.lower(), default)


class RequestParser:
    """
    Parses raw request bytes into HTTPRequest objects.

    Steps: size check, split head/body at CRLFCRLF, request line, headers,
    body by Content-Length.

    Usage:
        parser = RequestParser(max_request_size=config.max_request_size)
        request = parser.parse(data, conn.address)
    """

    VALID_METHODS = {
        "GET",
        "HEAD",
        "POST",
        "PUT",
        "DELETE",
        "PATCH",
        "OPTIONS",
        "TRACE",
        "CONNECT",
    }

    REQUEST_LINE_PATTERN = re.compile(r"^([A-Z]+) ([^ ]+) (HTTP/\d\.\d)$")
    HEADER_PATTERN = re.compile(r"^([^:]+):\s*(.*)$")

    def __init__(self, max_request_size: int = 10 * 1024 * 1024):
        self.max_request_size = max_request_size

    def parse(
        self,
        data: bytes,
        client_address: tuple[str, int] = ("", 0)
    ) -> HTTPRequest:
        """
        Parse one complete request.

        Raises:
            HTTPParseError: The request is malformed or too large.
        """
        if len(data) > self.max_request_size:
            raise HTTPParseError(f"Request too large: {len(data)} bytes", status_code=413)

        header_end = data.find(b"\r\n\r\n")
        if header_end == -1:
            raise HTTPParseError("Incomplete request: no header terminator")

        # latin-1 never fails and keeps every byte; header values are ASCII in practice
        header_section = data[:header_end].decode("latin-1")
        body = data[header_end + 4:]

        lines = header_section.split("\r\n")
        if not lines or not lines[0]:
            raise HTTPParseError("Empty request")

        method, path, query_params, version = self._parse_request_line(lines[0])
        headers = self._parse_headers(lines[1:])

        try:
            content_length = int(headers.get("content-length", 0))
        except ValueError:
            raise HTTPParseError("Invalid Content-Length header")

        if content_length < 0:
            raise HTTPParseError("Invalid Content-Length header")
        if len(body) < content_length:
            raise HTTPParseError(
                f"Incomplete body: expected {content_length} bytes, got {len(body)}"
            )

        return HTTPRequest(
            method=method,
            path=path,
            version=version,
            headers=headers,
            query_params=query_params,
            body=body[:content_length],
            client_address=client_address,
            raw=data,
        )

    def _parse_request_line(
        self,
        line: str
    ) -> tuple[str, str, Dict[str, list[str]], str]:
        match = self.REQUEST_LINE_PATTERN.match(line)
        if not match:
            raise HTTPParseError(f"Invalid request line: {line!r}")

        method, uri, version = match.groups()

        if method not in self.VALID_METHODS:
            raise HTTPParseError(f"Invalid method: {method}", status_code=405)

        if version not in ("HTTP/1.0", "HTTP/1.1"):
            raise HTTPParseError(f"Unsupported HTTP version: {version}", status_code=505)

        parsed = urlparse(uri)
        path = unquote(parsed.path) or "/"
        if not path.startswith("/"):
            raise HTTPParseError(f"Invalid request target: {uri!r}")
        if "\x00" in path:
            raise HTTPParseError("Invalid path: contains NUL byte")

        query_params = parse_qs(parsed.query, keep_blank_values=True)
        return method, path, query_params, version

    def _parse_headers(self, lines: list[str]) -> Dict[str, str]:
        """
        Header lines into a dict with lowercase names.

        Obsolete line folding is joined onto the previous header; repeated
        headers are combined with ", ".
        """
        headers: Dict[str, str] = {}
        current_name = None

        for line in lines:
            if not line:
                continue

            if line[0] in (" ", "\t"):
                if current_name is not None:
                    headers[current_name] += " " + line.strip()
                continue

            match = self.HEADER_PATTERN.match(line)
            if not match:
                continue

            name, value = match.groups()
            name = name.strip().lower()
            value = value.strip()
            current_name = name

            if name in headers:
                headers[name] += ", " + value
            else:
                headers[name] = value

        return headers


def parse_request(
    data: bytes,
    client_address: tuple[str, int] = ("", 0),
    max_size: int = 10 * 1024 * 1024
) -> HTTPRequest:
    """One-shot parse with a throwaway RequestParser."""
    return RequestParser(max_request_size=max_size).parse(data, client_address)

"""
Unit tests for HTTP response building.
"""

from datetime import datetime, timezone

from liveserver.http.response import (
    HTTPResponse,
    ResponseBuilder,
    not_found,
    not_modified,
    forbidden,
    method_not_allowed,
    internal_error,
    service_unavailable,
    redirect,
    format_http_date,
)
from liveserver.http.status_codes import HTTPStatus


class TestHTTPResponse:
    """Tests for HTTPResponse class."""

    def test_status_line(self):
        """Test status line generation."""
        response = HTTPResponse(status=HTTPStatus.OK)
        assert response.status_line == "HTTP/1.1 200 OK"

        response = HTTPResponse(status=HTTPStatus.NOT_FOUND)
        assert response.status_line == "HTTP/1.1 404 Not Found"

    def test_to_bytes_includes_headers(self):
        """Test that to_bytes includes all headers."""
        response = HTTPResponse(
            status=HTTPStatus.OK,
            headers={"X-Custom": "value"},
            body=b"test",
        )

        result = response.to_bytes()

        assert b"HTTP/1.1 200 OK\r\n" in result
        assert b"X-Custom: value\r\n" in result
        assert b"Content-Length: 4\r\n" in result
        assert b"Server: LiveServer/1.0\r\n" in result
        assert result.endswith(b"\r\n\r\ntest")

    def test_to_bytes_without_body_for_head(self):
        """HEAD responses keep Content-Length but drop the body."""
        response = HTTPResponse(body=b"hello world")
        result = response.to_bytes(include_body=False)

        assert b"Content-Length: 11\r\n" in result
        assert result.endswith(b"\r\n\r\n")

    def test_not_modified_has_no_body(self):
        """304 carries neither a body nor Content-Length."""
        result = not_modified('"abc"').to_bytes()

        assert result.startswith(b"HTTP/1.1 304 Not Modified\r\n")
        assert b"Content-Length" not in result
        assert b'ETag: "abc"\r\n' in result
        assert result.endswith(b"\r\n\r\n")

    def test_get_header_case_insensitive(self):
        response = HTTPResponse(headers={"Content-Type": "text/html"})
        assert response.get_header("content-type") == "text/html"
        assert response.get_header("x-missing", "none") == "none"

    def test_set_header_chaining(self):
        """Test method chaining for headers."""
        response = (HTTPResponse()
            .set_header("X-One", "1")
            .set_header("X-Two", "2"))

        assert response.headers["X-One"] == "1"
        assert response.headers["X-Two"] == "2"


class TestResponseBuilder:
    """Tests for ResponseBuilder class."""

    def test_html_body(self):
        """Test HTML body."""
        html = "<html><body>Hello</body></html>"
        response = ResponseBuilder().html(html).build()

        assert response.headers["Content-Type"] == "text/html; charset=utf-8"
        assert response.body == html.encode()

    def test_text_body(self):
        """Test plain text body."""
        response = ResponseBuilder().text("Hello, World!").build()

        assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
        assert response.body == b"Hello, World!"

    def test_redirect(self):
        """Test redirect response."""
        response = ResponseBuilder().redirect("/new-location").build()

        assert response.status == HTTPStatus.FOUND
        assert response.headers["Location"] == "/new-location"

    def test_redirect_permanent(self):
        response = redirect("/docs/", permanent=True)
        assert response.status == HTTPStatus.MOVED_PERMANENTLY

    def test_caching_headers(self):
        """ETag, Last-Modified and no-cache for static files."""
        response = (ResponseBuilder()
            .etag('"1-2"')
            .last_modified(0)
            .no_cache()
            .build())

        assert response.headers["ETag"] == '"1-2"'
        assert response.headers["Last-Modified"] == "Thu, 01 Jan 1970 00:00:00 GMT"
        assert response.headers["Cache-Control"] == "no-cache"


class TestHelpers:
    """Tests for the convenience constructors."""

    def test_error_bodies_are_plain_text(self):
        response = not_found("File not found: /x")

        assert response.status == HTTPStatus.NOT_FOUND
        assert response.headers["Content-Type"].startswith("text/plain")
        assert b"404 Not Found" in response.body
        assert b"File not found: /x" in response.body

    def test_forbidden(self):
        assert forbidden().status == HTTPStatus.FORBIDDEN

    def test_method_not_allowed_sets_allow(self):
        response = method_not_allowed(["GET", "HEAD"])

        assert response.status == HTTPStatus.METHOD_NOT_ALLOWED
        assert response.headers["Allow"] == "GET, HEAD"

    def test_internal_error(self):
        assert internal_error().status == HTTPStatus.INTERNAL_SERVER_ERROR

    def test_service_unavailable_retry_after(self):
        response = service_unavailable()
        assert response.status == HTTPStatus.SERVICE_UNAVAILABLE
        assert response.headers["Retry-After"] == "1"


def test_format_http_date():
    dt = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert format_http_date(dt) == "Thu, 01 Jan 2026 12:00:00 GMT"

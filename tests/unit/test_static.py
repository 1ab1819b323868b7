"""
Unit tests for the static file handler.
"""

import os
from pathlib import Path

import pytest

from liveserver.handlers import StaticFileHandler
from liveserver.http.injection import SNIPPET_MARKER
from liveserver.http.mime_types import get_content_type, get_mime_type, is_html
from liveserver.http.request import HTTPRequest
from liveserver.http.status_codes import HTTPStatus


def make_request(path: str, headers: dict = None, method: str = "GET") -> HTTPRequest:
    return HTTPRequest(method=method, path=path, headers=headers or {}, client_address=("127.0.0.1", 1))


@pytest.fixture
def handler(site_dir: Path) -> StaticFileHandler:
    return StaticFileHandler(site_dir)


class TestStaticFileHandler:
    """Tests for StaticFileHandler.handle()."""

    def test_root_serves_default_document_with_snippet(self, handler):
        response = handler.handle(make_request("/"))

        assert response.status == HTTPStatus.OK
        assert response.headers["Content-Type"] == "text/html; charset=utf-8"
        body = response.body.decode()
        assert body.count(SNIPPET_MARKER) == 1
        assert body.index(SNIPPET_MARKER) < body.index("</body>")

    def test_custom_default_document(self, site_dir):
        (site_dir / "about.html").write_text("<body>About</body>", encoding="utf-8")
        handler = StaticFileHandler(site_dir, default_file="about.html")

        response = handler.handle(make_request("/"))
        assert b"About" in response.body

    def test_missing_default_falls_back_to_index(self, site_dir):
        handler = StaticFileHandler(site_dir, default_file="/missing.html")

        response = handler.handle(make_request("/"))
        assert response.status == HTTPStatus.OK
        assert b"Hello" in response.body

    def test_non_html_served_unmodified(self, handler, site_dir):
        response = handler.handle(make_request("/style.css"))

        assert response.status == HTTPStatus.OK
        assert response.headers["Content-Type"] == "text/css; charset=utf-8"
        assert response.body == (site_dir / "style.css").read_bytes()

    def test_missing_file_is_404(self, handler):
        response = handler.handle(make_request("/nope.html"))
        assert response.status == HTTPStatus.NOT_FOUND

    def test_directory_with_slash_serves_index(self, handler):
        response = handler.handle(make_request("/docs/"))

        assert response.status == HTTPStatus.OK
        assert b"Docs" in response.body
        assert SNIPPET_MARKER.encode() in response.body

    def test_directory_without_slash_redirects(self, handler):
        response = handler.handle(make_request("/docs"))

        assert response.status == HTTPStatus.MOVED_PERMANENTLY
        assert response.headers["Location"] == "/docs/"

    def test_directory_without_index_is_404(self, handler, site_dir):
        (site_dir / "empty").mkdir()
        response = handler.handle(make_request("/empty/"))
        assert response.status == HTTPStatus.NOT_FOUND

    def test_directory_listing_when_enabled(self, site_dir):
        (site_dir / "assets").mkdir()
        (site_dir / "assets" / "logo <1>.png").write_bytes(b"\x89PNG")
        handler = StaticFileHandler(site_dir, enable_directory_listing=True)

        response = handler.handle(make_request("/assets/"))

        assert response.status == HTTPStatus.OK
        assert b"logo &lt;1&gt;.png" in response.body
        assert SNIPPET_MARKER.encode() in response.body

    def test_traversal_is_forbidden(self, handler):
        response = handler.handle(make_request("/../outside.txt"))
        assert response.status == HTTPStatus.FORBIDDEN

    def test_etag_revalidation(self, handler):
        first = handler.handle(make_request("/style.css"))
        etag = first.headers["ETag"]

        second = handler.handle(make_request("/style.css", {"if-none-match": etag}))

        assert second.status == HTTPStatus.NOT_MODIFIED
        assert second.body == b""

    def test_no_cache_header(self, handler):
        response = handler.handle(make_request("/index.html"))
        assert response.headers["Cache-Control"] == "no-cache"
        assert "Last-Modified" in response.headers

    def test_invalid_utf8_html_served_raw(self, handler, site_dir):
        raw = b"<html><body>\xff\xfe broken</body></html>"
        (site_dir / "latin.html").write_bytes(raw)

        response = handler.handle(make_request("/latin.html"))

        assert response.status == HTTPStatus.OK
        assert response.body == raw

    def test_injection_disabled(self, site_dir):
        handler = StaticFileHandler(site_dir, inject_reload=False)
        response = handler.handle(make_request("/"))
        assert SNIPPET_MARKER.encode() not in response.body

    def test_edited_file_gets_new_etag(self, handler, site_dir):
        etag = handler.handle(make_request("/style.css")).headers["ETag"]

        path = site_dir / "style.css"
        path.write_text("body { color: blue; }\n", encoding="utf-8")
        stat = path.stat()
        os.utime(path, ns=(stat.st_atime_ns, stat.st_mtime_ns + 1_000_000_000))

        assert handler.handle(make_request("/style.css")).headers["ETag"] != etag

    def test_missing_root_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            StaticFileHandler(tmp_path / "does-not-exist")


class TestMimeTypes:
    """Tests for content type inference."""

    def test_known_extensions(self):
        assert get_mime_type("style.CSS") == "text/css"
        assert get_mime_type("logo.png") == "image/png"

    def test_unknown_extension(self):
        assert get_mime_type("data.xyz") == "application/octet-stream"

    def test_charset_only_for_text(self):
        assert get_content_type("a.txt") == "text/plain; charset=utf-8"
        assert get_content_type("a.png") == "image/png"

    def test_is_html(self):
        assert is_html("index.HTML")
        assert is_html("old.htm")
        assert not is_html("style.css")

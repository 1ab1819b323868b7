"""
pytest configuration and fixtures.
"""

import socket
import sys
import time
import urllib.error
import urllib.request
from pathlib import Path
from typing import Callable, Generator

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from liveserver import LiveServerManager, ServerConfig, CertificateStore
from liveserver.http.response import HTTPResponse, ResponseBuilder
from liveserver.http.status_codes import HTTPStatus


INDEX_HTML = """<!DOCTYPE html>
<html>
<head><title>Test Site</title></head>
<body>
<h1>Hello</h1>
</body>
</html>
"""


@pytest.fixture
def sample_get_request() -> bytes:
    """Sample HTTP GET request."""
    return (
        b"GET /docs/index.html?page=1&limit=10 HTTP/1.1\r\n"
        b"Host: localhost:5500\r\n"
        b"User-Agent: pytest\r\n"
        b"Accept: text/html\r\n"
        b"Connection: keep-alive\r\n"
        b"\r\n"
    )


@pytest.fixture
def sample_upgrade_request() -> bytes:
    """Browser-style WebSocket upgrade request."""
    return (
        b"GET / HTTP/1.1\r\n"
        b"Host: localhost:5500\r\n"
        b"Connection: keep-alive, Upgrade\r\n"
        b"Upgrade: websocket\r\n"
        b"Sec-WebSocket-Version: 13\r\n"
        b"Sec-WebSocket-Key: dGhlIHNhbXBsZSBub25jZQ==\r\n"
        b"\r\n"
    )


@pytest.fixture
def free_port() -> int:
    """Get a free port for testing."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


@pytest.fixture
def busy_port() -> Generator[int, None, None]:
    """A port held by a listening socket for the duration of the test."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        s.listen(1)
        yield s.getsockname()[1]


@pytest.fixture
def site_dir(tmp_path: Path) -> Path:
    """A small static site: index.html, a stylesheet, a sub-directory."""
    site = tmp_path / "site"
    site.mkdir()
    (site / "index.html").write_text(INDEX_HTML, encoding="utf-8")
    (site / "style.css").write_text("body { color: red; }\n", encoding="utf-8")
    docs = site / "docs"
    docs.mkdir()
    (docs / "index.html").write_text("<html><body>Docs</body></html>", encoding="utf-8")
    (docs / "notes.txt").write_text("plain notes", encoding="utf-8")
    return site


@pytest.fixture
def cert_store(tmp_path: Path) -> CertificateStore:
    """Certificate store rooted in a temporary directory."""
    return CertificateStore(tmp_path / "certs")


@pytest.fixture
def config() -> ServerConfig:
    """Default test server configuration."""
    return ServerConfig(
        host="127.0.0.1",
        port=0,  # Let OS pick a free port
        min_workers=2,
        max_workers=8,
        timeout=5.0,
        batch_delay=0.25,
    )


@pytest.fixture
def manager(site_dir: Path, config: ServerConfig, cert_store: CertificateStore) -> Generator[LiveServerManager, None, None]:
    """Manager serving site_dir; always stopped after the test."""
    mgr = LiveServerManager(workspace_root=str(site_dir), defaults=config, cert_store=cert_store)
    yield mgr
    mgr.stop()


def http_get(url: str, headers: dict = None, method: str = "GET", context=None, timeout: float = 5.0):
    """
    Fetch ``url``; returns (status, headers, body) without raising on 4xx/5xx.
    """
    request = urllib.request.Request(url, headers=headers or {}, method=method)
    try:
        with urllib.request.urlopen(request, timeout=timeout, context=context) as response:
            return response.status, response.headers, response.read()
    except urllib.error.HTTPError as e:
        return e.code, e.headers, e.read()


def text_response(text: str = "") -> HTTPResponse:
    """A 200 plain-text response for handlers in tests."""
    return ResponseBuilder().status(HTTPStatus.OK).text(text).build()


def wait_for(predicate: Callable[[], bool], timeout: float = 3.0, interval: float = 0.02) -> bool:
    """Poll ``predicate`` until it is true or ``timeout`` passes."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()

"""
=============================================================================
STATIC FILE HANDLER
=============================================================================

Serves the project directory and injects the reload snippet into HTML.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    GET /docs/guide.html                             │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. "/" → default document (config.default_file)                  │
    │   2. resolve against root, follow symlinks                          │
    │   3. still inside root?            no  → 403                        │
    │   4. directory?                                                     │
    │        no trailing slash           → 301 to "/docs/"               │
    │        index.html present          → serve it                       │
    │        listing enabled             → HTML listing                   │
    │        otherwise                   → 404                            │
    │   5. missing                       → 404                            │
    │   6. If-None-Match == ETag         → 304                            │
    │   7. HTML?  decode + inject snippet (on failure: raw bytes)         │
    │   8. 200 with Content-Type, ETag, Cache-Control: no-cache           │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
CACHING IN A DEV SERVER
=============================================================================

Files change constantly while a developer works, so nothing is cached
without asking: ``Cache-Control: no-cache`` makes the browser revalidate
with If-None-Match on every load. The ETag is built from the file's
mtime (nanoseconds) and size, so a save produces a new tag and a reload
always sees the edit, while untouched images and scripts come back as
cheap 304s.

=============================================================================
"""

import html
import logging
from pathlib import Path
from urllib.parse import quote

from ..http.request import HTTPRequest
from ..http.response import (
    HTTPResponse,
    ResponseBuilder,
    HTTPStatus,
    forbidden,
    internal_error,
    not_found,
    not_modified,
    redirect,
)
from ..http.mime_types import get_content_type, is_html
from ..http.injection import inject_reload_script


logger = logging.getLogger(__name__)


class StaticFileHandler:
    """
    Handler for the served root directory.

    Usage:
        static = StaticFileHandler(root, default_file="/index.html")
        router.get("/*path")(static.handle)
        router.head("/*path")(static.handle)
    """

    def __init__(
        self,
        root_dir: str | Path,
        default_file: str = "/index.html",
        index_file: str = "index.html",
        enable_directory_listing: bool = False,
        inject_reload: bool = True,
    ):
        """
        Args:
            root_dir: Served directory. Nothing outside it is ever read.
            default_file: Document answered for "/" (relative to root).
            index_file: Served for other directory requests.
            enable_directory_listing: List directories without an index.
            inject_reload: Add the reload snippet to HTML responses.
        """
        self.root_dir = Path(root_dir).resolve()
        self.default_file = "/" + default_file.lstrip("/") if default_file else ""
        self.index_file = index_file
        self.enable_directory_listing = enable_directory_listing
        self.inject_reload = inject_reload

        if not self.root_dir.is_dir():
            raise ValueError(f"Served root directory does not exist: {root_dir}")

    def handle(self, request: HTTPRequest) -> HTTPResponse:
        full_path = self._resolve(request.path)
        if full_path is None:
            logger.warning(f"Path traversal attempt from {request.client_address[0]}: {request.path}")
            return forbidden("Access denied")

        if full_path.is_dir():
            if not request.path.endswith("/"):
                return redirect(quote(request.path) + "/", permanent=True)

            index_path = full_path / self.index_file
            if index_path.is_file():
                full_path = index_path
            elif self.enable_directory_listing:
                return self._directory_listing(full_path, request.path)
            else:
                return not_found(f"No {self.index_file} in {request.path}")

        if not full_path.is_file():
            return not_found(f"File not found: {request.path}")

        return self._serve_file(full_path, request)

    def _resolve(self, url_path: str) -> Path | None:
        """
        Map a URL path to a filesystem path inside the root.

        Returns:
            The resolved path (which may not exist), or None if it escapes
            the root.
        """
        if url_path == "/" and self.default_file:
            candidate = self._inside_root(self.default_file)
            if candidate is not None and candidate.is_file():
                return candidate
            # Default document missing: fall back to the root's own index

        return self._inside_root(url_path)

    def _inside_root(self, url_path: str) -> Path | None:
        relative = url_path.lstrip("/")
        try:
            full_path = (self.root_dir / relative).resolve()
            full_path.relative_to(self.root_dir)
        except (ValueError, OSError):
            return None
        return full_path

    def _serve_file(self, path: Path, request: HTTPRequest) -> HTTPResponse:
        try:
            stat = path.stat()
            etag = f'"{stat.st_mtime_ns:x}-{stat.st_size:x}"'

            if request.headers.get("if-none-match", "") == etag:
                return not_modified(etag)

            content = path.read_bytes()
        except PermissionError:
            return forbidden("Permission denied")
        except OSError as e:
            logger.error(f"Error reading {path}: {e}")
            return internal_error("Failed to read file")

        if self.inject_reload and is_html(path):
            content = self._inject(path, content)

        return (ResponseBuilder()
            .status(HTTPStatus.OK)
            .content_type(get_content_type(path))
            .etag(etag)
            .last_modified(stat.st_mtime)
            .no_cache()
            .body(content)
            .build())

    def _inject(self, path: Path, content: bytes) -> bytes:
        """Injected page, or the raw bytes if the file is not valid UTF-8."""
        try:
            page = content.decode("utf-8")
        except UnicodeDecodeError as e:
            logger.warning(f"Serving {path.name} without live reload: {e}")
            return content
        return inject_reload_script(page).encode("utf-8")

    def _directory_listing(self, path: Path, url_path: str) -> HTTPResponse:
        entries = []
        if path != self.root_dir:
            entries.append('<li><a href="../">../</a></li>')

        try:
            children = sorted(path.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower()))
        except OSError as e:
            logger.error(f"Cannot list {path}: {e}")
            return forbidden("Cannot list directory")

        for entry in children:
            name = entry.name + ("/" if entry.is_dir() else "")
            entries.append(f'<li><a href="{quote(name)}">{html.escape(name)}</a></li>')

        title = html.escape(url_path)
        page = f"""<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>Index of {title}</title>
    <style>
        body {{ font-family: monospace; padding: 20px; }}
        ul {{ list-style: none; padding: 0; }}
        li {{ padding: 4px 0; }}
    </style>
</head>
<body>
    <h1>Index of {title}</h1>
    <ul>
        {''.join(entries)}
    </ul>
</body>
</html>
"""
        if self.inject_reload:
            page = inject_reload_script(page)
        return ResponseBuilder().html(page).no_cache().build()

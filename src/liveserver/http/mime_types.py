"""
=============================================================================
CONTENT TYPE INFERENCE
=============================================================================

Maps file extensions to MIME types for the static file handler.

The table covers what turns up in a front-end project directory: markup,
styles, scripts, images, fonts, media, source maps and WebAssembly.
Anything else is served as application/octet-stream.

    get_content_type("app.mjs")     → "text/javascript; charset=utf-8"
    get_content_type("logo.svg")    → "image/svg+xml; charset=utf-8"
    get_content_type("font.woff2")  → "font/woff2"

=============================================================================
"""

from pathlib import Path
from typing import Optional


MIME_TYPES = {
    # Markup and text
    ".html": "text/html",
    ".htm": "text/html",
    ".css": "text/css",
    ".js": "text/javascript",
    ".mjs": "text/javascript",
    ".cjs": "text/javascript",
    ".json": "application/json",
    ".webmanifest": "application/manifest+json",
    ".xml": "application/xml",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".csv": "text/csv",
    ".map": "application/json",
    # Images
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".ico": "image/x-icon",
    ".webp": "image/webp",
    ".avif": "image/avif",
    ".bmp": "image/bmp",
    # Fonts
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".otf": "font/otf",
    # Media
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    # Other
    ".pdf": "application/pdf",
    ".zip": "application/zip",
    ".wasm": "application/wasm",
}

DEFAULT_MIME_TYPE = "application/octet-stream"

HTML_EXTENSIONS = frozenset({".html", ".htm"})

_TEXT_APPLICATION_TYPES = {
    "application/json",
    "application/manifest+json",
    "application/xml",
    "image/svg+xml",
}


def get_mime_type(path: str | Path, default: Optional[str] = None) -> str:
    """
    MIME type for a file name, by extension (case-insensitive).

        >>> get_mime_type("style.CSS")
        'text/css'
        >>> get_mime_type("data.xyz")
        'application/octet-stream'
    """
    extension = Path(path).suffix.lower()
    return MIME_TYPES.get(extension, default or DEFAULT_MIME_TYPE)


def is_text_type(mime_type: str) -> bool:
    return mime_type.startswith("text/") or mime_type in _TEXT_APPLICATION_TYPES


def is_html(path: str | Path) -> bool:
    """True for files that get the reload snippet injected."""
    return Path(path).suffix.lower() in HTML_EXTENSIONS


def get_content_type(path: str | Path, charset: str = "utf-8") -> str:
    """Content-Type header value, with a charset for text types."""
    mime_type = get_mime_type(path)
    if is_text_type(mime_type):
        return f"{mime_type}; charset={charset}"
    return mime_type

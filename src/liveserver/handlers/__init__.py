"""Request handlers."""

from .static import StaticFileHandler

__all__ = ["StaticFileHandler"]

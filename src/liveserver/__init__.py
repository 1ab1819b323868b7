"""
=============================================================================
LIVESERVER
=============================================================================

A static development server that reloads the browser when files change.

    ┌─────────────────────────────────────────────────────────────────────┐
    │  LiveServerManager   start / stop / restart, port negotiation,     │
    │                      HTTPS fallback, events and error reporting    │
    ├─────────────────────────────────────────────────────────────────────┤
    │  HTTPServer          listener, worker pool, middleware, routing    │
    │  StaticFileHandler   files from the root, reload snippet in HTML   │
    │  ReloadChannel       WebSocket clients, "reload" broadcast         │
    │  ChangeDetector      watchdog events, ignore globs, debounce       │
    │  CertificateStore    self-signed certificates per domain           │
    └─────────────────────────────────────────────────────────────────────┘

Usage:

    from liveserver import LiveServerManager

    manager = LiveServerManager(workspace_root="site")
    response = manager.start()
    print(response.data.local_url)
    ...
    manager.stop()

=============================================================================
"""

__version__ = "1.0.0"

from .config import ServerConfig, HTTPSOptions, DEFAULT_IGNORE_PATTERNS
from .errors import (
    ErrorCode,
    ServerError,
    LiveServerError,
    AlreadyRunningError,
    NoWorkspaceError,
    PortInUseError,
    PortExhaustedError,
    StartupTimeoutError,
    CertificateError,
)
from .events import ServerEvent, ServerEventType, EventBus, ErrorReporter, LoggingErrorReporter
from .certificates import CertificateInfo, CertificateStore, create_ssl_context
from .watcher import ChangeDetector, ChangeType, FileChangeEvent, Subscription
from .reload import ReloadChannel
from .server import HTTPServer
from .manager import LiveServerManager, ServerInfo, ServerStats, ServerResponse, ServerPhase

__all__ = [
    "__version__",
    "ServerConfig",
    "HTTPSOptions",
    "DEFAULT_IGNORE_PATTERNS",
    "ErrorCode",
    "ServerError",
    "LiveServerError",
    "AlreadyRunningError",
    "NoWorkspaceError",
    "PortInUseError",
    "PortExhaustedError",
    "StartupTimeoutError",
    "CertificateError",
    "ServerEvent",
    "ServerEventType",
    "EventBus",
    "ErrorReporter",
    "LoggingErrorReporter",
    "CertificateInfo",
    "CertificateStore",
    "create_ssl_context",
    "ChangeDetector",
    "ChangeType",
    "FileChangeEvent",
    "Subscription",
    "ReloadChannel",
    "HTTPServer",
    "LiveServerManager",
    "ServerInfo",
    "ServerStats",
    "ServerResponse",
    "ServerPhase",
]

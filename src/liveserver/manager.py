"""
=============================================================================
SERVER LIFECYCLE MANAGER
=============================================================================

The single entry point callers use. Owns at most one running server.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                          start()                                    │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   1. merge options over defaults, resolve the served root          │
    │   2. HTTPS? ── CertificateStore ── failure ──► fall back to HTTP   │
    │   3. choose a port (negotiate upward, or fail with a suggestion)   │
    │   4. HTTPServer: middleware + static handler + reload upgrades     │
    │   5. bind and wait for the accept loop (startup timeout)           │
    │   6. ChangeDetector ── batch ──► ReloadChannel.broadcast()         │
    │   7. record ServerState, emit server-started                       │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

    IDLE ──start()──► STARTING ──► RUNNING ──stop()──► STOPPING ──► IDLE
                          │
                          └──────► FAILED ──start()──► STARTING ...

Every public operation returns a ServerResponse instead of raising for
expected failures. Errors also go to the injected ErrorReporter and out as
a server-error event.

=============================================================================
"""

import logging
import os
import threading
import time
from dataclasses import asdict, dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .certificates import CertificateInfo, CertificateStore, create_ssl_context
from .config import ServerConfig
from .core import negotiate_port, suggest_port
from .errors import (
    AlreadyRunningError,
    ErrorCode,
    LiveServerError,
    NoWorkspaceError,
    PortInUseError,
    ServerError,
    classify_os_error,
)
from .events import ErrorReporter, EventBus, EventListener, LoggingErrorReporter, ServerEventType
from .handlers import StaticFileHandler
from .middleware import CORSMiddleware, LoggingMiddleware, RequestStats, StatsMiddleware
from .reload import ReloadChannel
from .server import HTTPServer
from .utils import generate_urls, get_relative_path
from .watcher import ChangeDetector, FileChangeEvent, Subscription


logger = logging.getLogger(__name__)

RESTART_SETTLE_DELAY = 0.1


class ServerPhase(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    FAILED = "failed"
    STOPPING = "stopping"


# =============================================================================
# RESULT TYPES
# =============================================================================

@dataclass(frozen=True)
class ServerInfo:
    """Read-only view of the running server, computed on demand."""

    port: int
    local_url: str
    network_url: str
    is_running: bool
    start_time: float
    root: str
    protocol: str = "http"
    connections: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ServerStats:
    uptime: float
    requests: int
    errors: int
    connections: int
    reloads: int
    bytes_sent: int = 0
    last_activity: Optional[float] = None
    workers: Dict[str, int] = field(default_factory=dict)
    """Worker pool counters: workers, busy, queued, completed, failed."""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ServerResponse:
    """
    Result of a public manager operation.

    ``data`` carries the operation's payload (ServerInfo, ServerStats, ...)
    on success; ``error`` is set on failure.
    """

    success: bool
    message: str
    data: Any = None
    error: Optional[ServerError] = None

    @classmethod
    def ok(cls, message: str, data: Any = None) -> "ServerResponse":
        return cls(success=True, message=message, data=data)

    @classmethod
    def failure(cls, error: ServerError) -> "ServerResponse":
        return cls(success=False, message=error.message, error=error)


# =============================================================================
# RUNTIME STATE
# =============================================================================

@dataclass
class ServerState:
    """
    Everything one running server holds. Owned by the manager; the other
    components only receive the pieces they work with.
    """

    config: ServerConfig
    server: HTTPServer
    channel: ReloadChannel
    detector: ChangeDetector
    subscription: Optional[Subscription]
    stats: RequestStats
    port: int
    file_path: str = ""
    certificate: Optional[CertificateInfo] = None
    start_time: float = field(default_factory=time.time)
    reloads: int = 0


# =============================================================================
# MANAGER
# =============================================================================

class LiveServerManager:
    """
    Server Lifecycle Manager.

    Usage:
        manager = LiveServerManager(workspace_root="/path/to/site")
        manager.subscribe(lambda event: print(event.type, event.data))

        response = manager.start(options={"port": 5500})
        if response.success:
            print(response.data.local_url)
        ...
        manager.stop()

    Independent instances do not share anything except, optionally, a
    CertificateStore passed to both.
    """

    def __init__(
        self,
        workspace_root: Optional[str] = None,
        defaults: Optional[ServerConfig] = None,
        cert_store: Optional[CertificateStore] = None,
        error_reporter: Optional[ErrorReporter] = None,
        events: Optional[EventBus] = None,
    ):
        self.workspace_root = workspace_root
        self._defaults = defaults or ServerConfig()
        self._cert_store = cert_store
        self._reporter = error_reporter or LoggingErrorReporter()
        self._events = events or EventBus()

        self._lock = threading.RLock()
        self._counter_lock = threading.Lock()
        self._state: Optional[ServerState] = None
        self._phase = ServerPhase.IDLE
        self._last_start: Tuple[Optional[str], Optional[Mapping[str, Any]]] = (None, None)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def phase(self) -> ServerPhase:
        return self._phase

    @property
    def defaults(self) -> ServerConfig:
        return self._defaults

    @property
    def events(self) -> EventBus:
        return self._events

    @property
    def cert_store(self) -> CertificateStore:
        if self._cert_store is None:
            self._cert_store = CertificateStore()
        return self._cert_store

    def subscribe(self, listener: EventListener):
        """Receive ServerEvents. Returns an unsubscribe callable."""
        return self._events.subscribe(listener)

    def is_running(self) -> bool:
        return self._state is not None

    # =========================================================================
    # START
    # =========================================================================

    def start(
        self,
        file_hint_path: Optional[str] = None,
        options: Optional[Mapping[str, Any]] = None,
    ) -> ServerResponse:
        """
        Start serving.

        Args:
            file_hint_path: A file the user had open. Used to pick the
                            default document and, without a workspace, the
                            served root.
            options: Overrides merged over the defaults (snake_case or
                     camelCase keys, nested ``https`` mapping).

        Returns:
            ServerResponse with ServerInfo as ``data`` on success. Failure
            codes: ALREADY_RUNNING, NO_WORKSPACE, PORT_IN_USE,
            PORT_EXHAUSTED, STARTUP_TIMEOUT, INVALID_CONFIG, ...
        """
        with self._lock:
            if self._state is not None:
                return self._fail("start", AlreadyRunningError(self._state.port))

            self._last_start = (file_hint_path, dict(options) if options else None)
            self._phase = ServerPhase.STARTING

            try:
                state = self._start(file_hint_path, options)
            except LiveServerError as e:
                self._phase = ServerPhase.FAILED
                return self._fail("start", e)
            except (TypeError, ValueError) as e:
                self._phase = ServerPhase.FAILED
                return self._fail("start", LiveServerError(str(e), ErrorCode.INVALID_CONFIG))
            except OSError as e:
                self._phase = ServerPhase.FAILED
                return self._fail("start", LiveServerError(str(e), classify_os_error(e)))

            self._state = state
            self._phase = ServerPhase.RUNNING

        info = self.get_server_info().data
        logger.info(f"Live server running at {info.local_url}")
        self._events.emit(
            ServerEventType.SERVER_STARTED,
            port=info.port,
            local_url=info.local_url,
            network_url=info.network_url,
            protocol=info.protocol,
        )
        return ServerResponse.ok(f"Server started on port {info.port}", info)

    def _start(self, file_hint_path: Optional[str], options: Optional[Mapping[str, Any]]) -> ServerState:
        config = ServerConfig.from_options(options, self._defaults)
        root = self._resolve_root(config, file_hint_path)

        file_path = ""
        if file_hint_path and os.path.isfile(file_hint_path):
            file_path = get_relative_path(root, file_hint_path)
        default_file = "/" + file_path if file_path else config.default_file

        config = replace(config, root=root, default_file=default_file)
        config.validate()

        ssl_context, certificate = None, None
        if config.https.enabled:
            ssl_context, certificate = self._acquire_tls(config)
            if ssl_context is None:
                config = replace(config, https=replace(config.https, enabled=False))

        port = self._choose_port(config)

        stats = RequestStats()
        server = HTTPServer(config, ssl_context)
        server.use(LoggingMiddleware(verbose=config.verbose))
        server.use(StatsMiddleware(stats))
        if config.cors:
            server.use(CORSMiddleware())

        static = StaticFileHandler(root, default_file=config.default_file)
        server.get("/*path")(static.handle)
        server.head("/*path")(static.handle)

        channel = ReloadChannel()
        server.on_upgrade(channel.accept)

        try:
            bound = server.start(port)
        except PortInUseError as e:
            # Lost the race between probe and bind
            raise PortInUseError(port, suggest_port(config.host, port, config.port_attempts)) from e

        detector = ChangeDetector()
        state = ServerState(
            config=config,
            server=server,
            channel=channel,
            detector=detector,
            subscription=None,
            stats=stats,
            port=bound,
            file_path=file_path,
            certificate=certificate,
        )
        state.subscription = detector.on_change(lambda batch: self._on_batch(state, batch))

        try:
            detector.start(
                root,
                config.ignored,
                batch_events=config.batch_events,
                batch_delay=config.batch_delay,
                use_polling=config.use_polling,
            )
        except Exception:
            channel.close_all()
            server.shutdown()
            raise

        return state

    def _resolve_root(self, config: ServerConfig, file_hint_path: Optional[str]) -> str:
        """Explicit root, then the workspace, then the hint file's directory."""
        candidate = config.root or self.workspace_root
        if not candidate and file_hint_path:
            candidate = os.path.dirname(os.path.abspath(file_hint_path))

        if not candidate:
            raise NoWorkspaceError()
        if not os.path.isdir(candidate):
            raise NoWorkspaceError(candidate)
        return os.path.realpath(candidate)

    def _acquire_tls(self, config: ServerConfig):
        """
        Certificate and SSLContext for an HTTPS start.

        Returns (None, None) when HTTPS cannot be used; the caller then
        serves plain HTTP.
        """
        https = config.https
        try:
            info = self.cert_store.get_certificate(
                https.domain,
                cert_path=https.cert_path,
                key_path=https.key_path,
                generate_if_missing=https.auto_generate_cert,
            )
            if info is None:
                logger.warning("No certificate available, falling back to HTTP")
                return None, None
            context = create_ssl_context(info)
        except Exception as e:
            logger.warning(f"HTTPS setup failed, falling back to HTTP: {e}")
            self._reporter.report(
                ServerError(code=ErrorCode.CERTIFICATE_ERROR, message=str(e)),
                operation="start",
                component="certificates",
            )
            return None, None

        if info.is_self_signed and https.warn_on_self_signed:
            self._events.emit(
                ServerEventType.CERTIFICATE_SELF_SIGNED_WARNING,
                domain=info.domain,
                cert_path=info.cert_path,
            )
        return context, info

    def _choose_port(self, config: ServerConfig) -> int:
        requested = config.listen_port
        if requested == 0:
            return 0

        if config.auto_port:
            port = negotiate_port(config.host, requested, config.port_attempts)
            if port != requested:
                self._events.emit(ServerEventType.PORT_IN_USE, port=requested, suggested_port=port)
            return port

        # Without negotiation the bind itself reports a busy port
        return requested

    def _on_batch(self, state: ServerState, batch: List[FileChangeEvent]) -> None:
        delivered = state.channel.broadcast()
        with self._counter_lock:
            state.reloads += 1
        logger.debug(f"{len(batch)} change(s), reload sent to {delivered} client(s)")

    # =========================================================================
    # STOP / RESTART
    # =========================================================================

    def stop(self) -> ServerResponse:
        """
        Stop the server. Stopping a stopped manager succeeds and does nothing.

        Order: watcher, reload clients, listener, state. Each step is
        best-effort; the state is always cleared.
        """
        with self._lock:
            state = self._state
            if state is None:
                return ServerResponse.ok("Server is not running")

            self._phase = ServerPhase.STOPPING
            try:
                for step, action in (
                    ("watcher", state.detector.stop),
                    ("reload", state.channel.close_all),
                    ("listener", state.server.shutdown),
                ):
                    try:
                        action()
                    except Exception as e:
                        logger.exception(f"Error stopping {step}: {e}")
                        self._reporter.report(
                            ServerError(code=classify_os_error(e), message=str(e)),
                            operation="stop",
                            component=step,
                        )
            finally:
                self._state = None
                self._phase = ServerPhase.IDLE

        logger.info(f"Live server on port {state.port} stopped")
        self._events.emit(ServerEventType.SERVER_STOPPED, port=state.port)
        return ServerResponse.ok("Server stopped", {"port": state.port})

    def restart(self) -> ServerResponse:
        """stop(), a short settle delay, then start() with the last arguments."""
        file_hint_path, options = self._last_start
        self.stop()
        time.sleep(RESTART_SETTLE_DELAY)
        return self.start(file_hint_path, options)

    # =========================================================================
    # INSPECTION
    # =========================================================================

    def get_server_info(self) -> ServerResponse:
        state = self._state
        if state is None:
            return self._fail_quietly("Server is not running")

        urls = generate_urls(state.port, state.file_path, state.config.protocol, state.config.host)
        info = ServerInfo(
            port=state.port,
            local_url=urls["local"],
            network_url=urls["network"],
            is_running=True,
            start_time=state.start_time,
            root=state.config.root,
            protocol=state.config.protocol,
            connections=state.channel.connection_count,
        )
        return ServerResponse.ok("Server is running", info)

    def get_server_stats(self) -> ServerResponse:
        state = self._state
        if state is None:
            return self._fail_quietly("Server is not running")

        snapshot = state.stats.snapshot()
        stats = ServerStats(
            uptime=time.time() - state.start_time,
            requests=snapshot.requests,
            errors=snapshot.errors,
            connections=state.channel.connection_count,
            reloads=state.reloads,
            bytes_sent=snapshot.bytes_sent,
            last_activity=snapshot.last_activity,
            workers=state.server.pool_stats,
        )
        return ServerResponse.ok("Server stats", stats)

    # =========================================================================
    # CONFIGURATION
    # =========================================================================

    def update_config(self, partial: Mapping[str, Any]) -> ServerResponse:
        """
        Merge ``partial`` into the defaults for the next start().

        A running server keeps its configuration; the response says so.
        """
        try:
            updated = ServerConfig.from_options(partial, self._defaults)
            updated.validate()
        except (TypeError, ValueError) as e:
            return self._fail("update_config", LiveServerError(str(e), ErrorCode.INVALID_CONFIG))

        self._defaults = updated
        if self.is_running():
            return ServerResponse.ok("Configuration updated; restart the server to apply it", updated)
        return ServerResponse.ok("Configuration updated", updated)

    # =========================================================================
    # ERRORS
    # =========================================================================

    def _fail(self, operation: str, exc: LiveServerError) -> ServerResponse:
        error = exc.to_error()
        self._reporter.report(error, operation=operation, component="manager")
        self._events.emit(ServerEventType.SERVER_ERROR, code=error.code.value, message=error.message)
        return ServerResponse.failure(error)

    @staticmethod
    def _fail_quietly(message: str) -> ServerResponse:
        return ServerResponse.failure(ServerError(code=ErrorCode.GENERIC_ERROR, message=message))

"""
=============================================================================
HTTP SERVER
=============================================================================

The listener handle the manager holds while running: one listening socket,
a worker pool, the middleware pipeline around the router, and a hook for
WebSocket upgrades.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   SocketServer (accept thread)                                      │
    │        │ Connection                                                 │
    │        ▼                                                            │
    │   WorkerPool ──► _process_connection                                │
    │                      │                                              │
    │                      ├── TLS handshake (HTTPS only)                 │
    │                      ├── read + parse request                       │
    │                      ├── Upgrade: websocket ──► upgrade handler     │
    │                      └── middleware ──► router ──► response         │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

start() returns once the accept loop is running, or raises if that does not
happen within ``startup_timeout``. shutdown() never blocks on a slow client:
open connections are aborted rather than drained.

=============================================================================
"""

import logging
import ssl
import threading
from typing import Callable, Dict, Optional

from .config import ServerConfig
from .core import Connection, SocketServer, WorkerPool
from .errors import StartupTimeoutError
from .http import (
    HTTPParseError,
    HTTPRequest,
    HTTPResponse,
    HTTPStatus,
    RequestParser,
    Router,
    error_response,
    internal_error,
    service_unavailable,
)
from .middleware import Middleware, MiddlewarePipeline


logger = logging.getLogger(__name__)

UpgradeHandler = Callable[[Connection, HTTPRequest], bool]


class HTTPServer:
    """
    Threaded HTTP/1.1 server with static routes and WebSocket hand-off.

    Usage:
        server = HTTPServer(config, ssl_context=None)
        server.use(LoggingMiddleware())

        @server.get("/*path")
        def static(request):
            return handler.handle(request)

        server.on_upgrade(channel.accept)
        port = server.start(5500)
        ...
        server.shutdown()
    """

    def __init__(self, config: Optional[ServerConfig] = None, ssl_context: Optional[ssl.SSLContext] = None):
        self.config = config or ServerConfig()
        self.config.validate()

        self.ssl_context = ssl_context
        self._socket_server = SocketServer(self.config)
        self._pool = WorkerPool(
            min_workers=self.config.min_workers,
            max_workers=self.config.max_workers,
        )
        self._parser = RequestParser(max_request_size=self.config.max_request_size)
        self._router = Router()
        self._middleware = MiddlewarePipeline()
        self._handler: Optional[Callable[[HTTPRequest], HTTPResponse]] = None
        self._upgrade_handler: Optional[UpgradeHandler] = None

        self._ready = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._running = False

        self._connections: Dict[str, Connection] = {}
        self._connections_lock = threading.Lock()

    # =========================================================================
    # REGISTRATION
    # =========================================================================

    def use(self, middleware: Middleware) -> "HTTPServer":
        """Add middleware. Runs in the order added, outermost first."""
        self._middleware.add(middleware)
        return self

    @property
    def router(self) -> Router:
        return self._router

    def get(self, path: str, **kwargs):
        return self._router.get(path, **kwargs)

    def head(self, path: str, **kwargs):
        return self._router.head(path, **kwargs)

    def on_upgrade(self, handler: UpgradeHandler) -> None:
        """
        Route ``Upgrade: websocket`` requests to ``handler``.

        The handler takes ownership of the connection and returns whether it
        accepted the upgrade. Without a handler, upgrade requests are served
        as plain GETs.
        """
        self._upgrade_handler = handler

    # =========================================================================
    # STATE
    # =========================================================================

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> Optional[int]:
        return self._socket_server.port

    @property
    def is_secure(self) -> bool:
        return self.ssl_context is not None

    @property
    def active_connections(self) -> int:
        with self._connections_lock:
            return len(self._connections)

    @property
    def pool_stats(self) -> dict:
        return self._pool.stats

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self, port: Optional[int] = None) -> int:
        """
        Bind and start accepting in a background thread.

        Args:
            port: Port to bind. Defaults to ``config.listen_port``.

        Returns:
            The bound port.

        Raises:
            PortInUseError: The port is taken.
            StartupTimeoutError: The accept loop did not start in time.
            RuntimeError: Already started.
        """
        if self._thread is not None:
            raise RuntimeError("Server already started")

        bound = self._socket_server.bind(self.config.listen_port if port is None else port)

        self._handler = self._middleware.wrap(self._router.handle)
        self._pool.start()
        self._running = True

        self._thread = threading.Thread(
            target=self._socket_server.serve_forever,
            args=(self._handle_connection, self._announce_ready),
            name=f"http-accept-{bound}",
            daemon=True,
        )
        self._thread.start()

        if not self._ready.wait(self.config.startup_timeout):
            logger.error(f"Listener on port {bound} did not start within {self.config.startup_timeout}s")
            self.shutdown()
            raise StartupTimeoutError(self.config.startup_timeout)

        scheme = "https" if self.is_secure else "http"
        logger.info(f"Serving {scheme}://{self.config.host}:{bound}")
        return bound

    def _announce_ready(self) -> None:
        self._ready.set()

    def shutdown(self, timeout: float = 2.0) -> None:
        """
        Stop accepting, drop open connections, stop the workers.

        Safe to call more than once and before start().
        """
        self._running = False
        self._socket_server.shutdown()

        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        # Accept loop may never have run (startup timeout)
        self._socket_server.close()

        with self._connections_lock:
            connections = list(self._connections.values())
            self._connections.clear()
        for conn in connections:
            conn.abort()
        if connections:
            logger.debug(f"Aborted {len(connections)} open connection(s)")

        self._pool.shutdown(timeout=timeout)
        self._thread = None
        self._ready.clear()

    # =========================================================================
    # CONNECTION HANDLING
    # =========================================================================

    def _track(self, conn: Connection) -> None:
        with self._connections_lock:
            self._connections[conn.id] = conn

    def _untrack(self, conn: Connection) -> None:
        with self._connections_lock:
            self._connections.pop(conn.id, None)

    def _handle_connection(self, conn: Connection) -> None:
        """Hand an accepted connection to a worker (accept thread)."""
        self._track(conn)
        if self._pool.submit(self._process_connection, conn):
            return

        logger.warning(f"[{conn.id}] Worker pool full, rejecting connection")
        self._untrack(conn)
        # Over TLS the client cannot read a plaintext 503
        if self.ssl_context is None:
            conn.send_bytes(service_unavailable().to_bytes(self.config.server_name))
        conn.close()

    def _process_connection(self, conn: Connection) -> None:
        """
        Serve one connection (worker thread).

        Keep-alive loop: read, parse, dispatch, respond, repeat until the
        client closes, asks to close, or upgrades to WebSocket.
        """
        try:
            if self.ssl_context is not None and not conn.start_tls(self.ssl_context):
                conn.abort()
                return

            with conn:
                self._serve(conn)
        finally:
            self._untrack(conn)

    def _serve(self, conn: Connection) -> None:
        while self._running:
            try:
                raw_request = conn.read_request()
            except TimeoutError:
                self._send_error(conn, HTTPStatus.REQUEST_TIMEOUT, "Request timeout")
                return
            except ValueError as e:
                self._send_error(conn, HTTPStatus.PAYLOAD_TOO_LARGE, str(e))
                return
            except OSError as e:
                logger.debug(f"[{conn.id}] Read failed: {e}")
                return

            if raw_request is None:
                return

            try:
                request = self._parser.parse(raw_request, conn.address)
            except HTTPParseError as e:
                self._send_error(conn, e.status_code, str(e))
                return

            if request.is_websocket_upgrade and self._upgrade_handler is not None:
                self._untrack(conn)
                try:
                    self._upgrade_handler(conn, request)
                except Exception as e:
                    logger.exception(f"[{conn.id}] Upgrade handler failed: {e}")
                    conn.abort()
                return

            response = self._dispatch(conn, request)
            keep_alive = request.is_keep_alive and self.config.keep_alive

            if keep_alive:
                response.headers.setdefault("Connection", "keep-alive")
                response.headers.setdefault("Keep-Alive", f"timeout={int(self.config.keep_alive_timeout)}")
            else:
                response.headers["Connection"] = "close"

            data = response.to_bytes(self.config.server_name, include_body=request.method != "HEAD")
            if not conn.send_bytes(data) or not keep_alive:
                return

            conn.set_keep_alive()

    def _dispatch(self, conn: Connection, request: HTTPRequest) -> HTTPResponse:
        try:
            return self._handler(request)
        except Exception as e:
            logger.exception(f"[{conn.id}] Handler error for {request.method} {request.path}: {e}")
            return internal_error()

    def _send_error(self, conn: Connection, status: int, message: str) -> None:
        response = error_response(HTTPStatus(status), message)
        response.headers["Connection"] = "close"
        conn.send_bytes(response.to_bytes(self.config.server_name))

"""
=============================================================================
LISTENING SOCKET
=============================================================================

Owns the listening TCP socket: bind, accept loop, shutdown.

=============================================================================
BIND AND SERVE ARE SEPARATE STEPS
=============================================================================

    server = SocketServer(config)
    port = server.bind(5500)          # raises right away if the port is taken
    thread = Thread(target=server.serve_forever, args=(handler, on_ready))
    thread.start()                    # on_ready fires once accepting begins
    ...
    server.shutdown()                 # accept loop exits within ~1 second

Binding synchronously lets the caller see "address in use" as an exception
in its own thread. Serving in a background thread keeps start() bounded.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         Accept Loop                                 │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   while running:                                                    │
    │       accept()        ── 1 second timeout so `running` is polled    │
    │       Connection()    ── wrap the client socket                     │
    │       handler(conn)   ── HTTPServer hands it to a worker            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The loop itself never reads from a client. TLS handshakes and request
parsing happen in worker threads.

=============================================================================
"""

import errno
import socket
import logging
import threading
from typing import Optional, Callable, Tuple

from ..config import ServerConfig
from ..errors import PortInUseError
from .connection import Connection
from .ports import address_family, set_reuse_options


logger = logging.getLogger(__name__)

ACCEPT_POLL_INTERVAL = 1.0


class SocketServer:
    """
    Low-level TCP listener.

    Usage:
        server = SocketServer(config)
        server.bind(config.listen_port)
        server.serve_forever(handle_connection)  # Blocks until shutdown()
    """

    def __init__(self, config: ServerConfig):
        self.config = config
        self._socket: Optional[socket.socket] = None
        self._port: Optional[int] = None
        self._running = False
        self._shutdown_event = threading.Event()
        self._lock = threading.Lock()

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def port(self) -> Optional[int]:
        """The bound port (resolved from the OS when 0 was requested)."""
        return self._port

    @property
    def address(self) -> Tuple[str, Optional[int]]:
        return (self.config.host, self._port)

    def _create_socket(self) -> socket.socket:
        sock = socket.socket(address_family(self.config.host), socket.SOCK_STREAM)
        set_reuse_options(sock)

        # Low latency for small responses and WebSocket frames
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)

        sock.settimeout(ACCEPT_POLL_INTERVAL)
        return sock

    def bind(self, port: int) -> int:
        """
        Create the listening socket and bind it to ``host:port``.

        Args:
            port: Port to bind. 0 lets the OS choose.

        Returns:
            The bound port.

        Raises:
            PortInUseError: The address is already in use.
            OSError: Any other bind failure (e.g. permission denied).
        """
        with self._lock:
            if self._socket is not None:
                raise RuntimeError(f"Already bound to port {self._port}")

            sock = self._create_socket()
            try:
                sock.bind((self.config.host, port))
                sock.listen(self.config.backlog)
            except OSError as e:
                sock.close()
                if e.errno == errno.EADDRINUSE:
                    logger.warning(f"Port {port} is already in use on {self.config.host}")
                    raise PortInUseError(port) from e
                logger.error(f"Failed to bind to {self.config.host}:{port}: {e}")
                raise

            self._socket = sock
            self._port = sock.getsockname()[1]

        logger.debug(f"Bound listener to {self.config.host}:{self._port}")
        return self._port

    def serve_forever(
        self,
        connection_handler: Callable[[Connection], None],
        on_ready: Optional[Callable[[], None]] = None,
    ) -> None:
        """
        Accept connections until shutdown() is called.

        Args:
            connection_handler: Receives each accepted Connection. Must not
                                block; HTTPServer submits it to a worker.
            on_ready: Called once, right before the first accept().
        """
        if self._socket is None:
            raise RuntimeError("bind() must be called before serve_forever()")

        # Single use: a shutdown requested before serving started wins
        if self._shutdown_event.is_set():
            self.close()
            return

        self._running = True
        logger.info(f"Server listening on {self.config.host}:{self._port}")

        try:
            if on_ready is not None:
                on_ready()
            self._accept_loop(connection_handler)
        finally:
            self.close()

    def _accept_loop(self, connection_handler: Callable[[Connection], None]):
        while self._running:
            try:
                client_socket, client_address = self._socket.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self._running:
                    logger.error(f"Accept error: {e}")
                break

            logger.debug(f"Accepted connection from {client_address[0]}:{client_address[1]}")

            conn = Connection(
                socket=client_socket,
                address=client_address[:2],
                buffer_size=self.config.buffer_size,
                timeout=self.config.timeout,
                keep_alive_timeout=self.config.keep_alive_timeout,
                max_request_size=self.config.max_request_size,
            )

            try:
                connection_handler(conn)
            except Exception as e:
                logger.exception(f"[{conn.id}] Connection handler failed: {e}")
                conn.abort()

    def shutdown(self):
        """
        Ask the accept loop to stop. Safe to call from any thread, and more
        than once.
        """
        if self._running:
            logger.info("Shutting down listener...")
        self._running = False
        self._shutdown_event.set()

    def close(self):
        """Release the listening socket."""
        with self._lock:
            if self._socket is not None:
                try:
                    self._socket.close()
                except OSError:
                    pass
                self._socket = None
                logger.info(f"Listener on port {self._port} closed")
        self._running = False
        self._shutdown_event.set()

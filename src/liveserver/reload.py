"""
=============================================================================
RELOAD CHANNEL
=============================================================================

The WebSocket side of live reload.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                                                                      │
    │   browser tab ── GET / (Upgrade: websocket) ──► HTTPServer worker   │
    │                                                     │                │
    │                                   channel.accept(conn, request)     │
    │                                                     │                │
    │                        ┌────────────────────────────┘                │
    │                        ▼                                             │
    │   registry { id → ReloadClient }   +   one reader thread per client │
    │                        ▲                                             │
    │                        │ broadcast("reload")                        │
    │   ChangeDetector batch ┘                                             │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The reload channel shares the HTTP port: the handshake arrives as an ordinary
request and the worker hands the socket over. The protocol itself (handshake
validation, framing, ping/pong, closing handshake) is the Sans-I/O
``websockets.server.ServerProtocol``; this module only moves bytes between it
and the socket.

Registry rules:
    - A client is registered before its 101 response is sent, under the
      client's own lock, so a broadcast racing the handshake waits for the
      handshake and then delivers.
    - The reader thread removes its client when the socket closes, from
      either side.
    - broadcast() works on a snapshot and skips any client that is not
      OPEN. A client closing mid-broadcast is skipped, never an error.

The only message the server sends is the text ``reload``. Anything the
browser sends is read and discarded.

=============================================================================
"""

import logging
import selectors
import socket
import ssl
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from websockets.frames import CloseCode
from websockets.http11 import Request
from websockets.protocol import State
from websockets.server import ServerProtocol

from .core.connection import Connection
from .http.request import HTTPRequest
from .http.response import service_unavailable


logger = logging.getLogger(__name__)

RELOAD_MESSAGE = "reload"
READ_POLL_INTERVAL = 1.0
CLOSE_TIMEOUT = 2.0


@dataclass
class ReloadClient:
    """
    One browser tab's reload connection.

    Every use of ``protocol`` and every write to the socket happens under
    ``lock``; the protocol object is not thread-safe.
    """

    connection: Connection
    protocol: ServerProtocol
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    connected_at: float = field(default_factory=time.time)
    lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    reader: Optional[threading.Thread] = field(default=None, repr=False)
    _stop: threading.Event = field(default_factory=threading.Event, repr=False)

    @property
    def address(self) -> tuple[str, int]:
        return self.connection.address

    @property
    def is_open(self) -> bool:
        return self.protocol.state is State.OPEN

    def send_text(self, message: str) -> bool:
        """
        Send one text message.

        Returns:
            False if the client is not OPEN or the write failed.
        """
        with self.lock:
            if self.protocol.state is not State.OPEN:
                return False
            self.protocol.send_text(message.encode("utf-8"))
            return self._flush_locked()

    def close(self, code: int = CloseCode.GOING_AWAY, reason: str = "") -> None:
        """Start the closing handshake. The reader finishes it."""
        with self.lock:
            if self.protocol.state is State.OPEN:
                self.protocol.send_close(code, reason)
                self._flush_locked()

    def abort(self) -> None:
        """Drop the TCP connection without a closing handshake."""
        self._stop.set()
        self.connection.abort()

    def _flush_locked(self) -> bool:
        for data in self.protocol.data_to_send():
            if data:
                if not self.connection.send_bytes(data):
                    return False
            else:
                # Empty chunk: the protocol wants the write side closed
                self.connection.shutdown_write()
        return True


class ReloadChannel:
    """
    Registry of reload clients plus broadcast.

    Usage:
        channel = ReloadChannel()
        server.on_upgrade(channel.accept)
        ...
        channel.broadcast()          # after a change batch
        channel.close_all()          # on shutdown
    """

    def __init__(self, message: str = RELOAD_MESSAGE):
        self.message = message
        self._clients: Dict[str, ReloadClient] = {}
        self._lock = threading.Lock()
        self._accepting = True
        self.total_connections = 0

    # =========================================================================
    # REGISTRY
    # =========================================================================

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._clients)

    def clients(self) -> List[ReloadClient]:
        with self._lock:
            return list(self._clients.values())

    def _register(self, client: ReloadClient) -> bool:
        """Add ``client`` unless close_all() has already run."""
        with self._lock:
            if not self._accepting:
                return False
            self._clients[client.id] = client
            self.total_connections += 1
        logger.debug(f"Reload client {client.id} connected from {client.address[0]}")
        return True

    def _unregister(self, client: ReloadClient) -> None:
        with self._lock:
            removed = self._clients.pop(client.id, None)
        if removed is not None:
            logger.debug(f"Reload client {client.id} disconnected")

    # =========================================================================
    # HANDSHAKE
    # =========================================================================

    def accept(self, conn: Connection, request: HTTPRequest) -> bool:
        """
        Take over ``conn`` and complete the WebSocket handshake.

        The channel owns the connection from here on whether or not the
        handshake succeeds; the caller must not close it.

        Returns:
            True if the client was registered.
        """
        conn.detach()

        if not self._accepting:
            self._refuse(conn)
            return False

        protocol = ServerProtocol(logger=logger)
        protocol.receive_data(request.raw)
        events = protocol.events_received()

        if not events or not isinstance(events[0], Request):
            # The protocol has already queued a 400 response
            self._reject(conn, protocol)
            return False

        response = protocol.accept(events[0])
        if protocol.handshake_exc is not None:
            logger.debug(f"[{conn.id}] WebSocket handshake rejected: {protocol.handshake_exc}")
            protocol.send_response(response)
            self._reject(conn, protocol)
            return False

        client = ReloadClient(connection=conn, protocol=protocol)
        with client.lock:
            if not self._register(client):
                # close_all() ran while the handshake was in progress
                self._refuse(conn)
                return False
            protocol.send_response(response)
            sent = client._flush_locked()

        if not sent:
            self._unregister(client)
            conn.abort()
            return False

        client.reader = threading.Thread(
            target=self._read_loop,
            args=(client,),
            name=f"reload-{client.id}",
            daemon=True,
        )
        client.reader.start()
        return True

    def _refuse(self, conn: Connection) -> None:
        conn.send_bytes(service_unavailable("Server is shutting down").to_bytes())
        conn.close()

    def _reject(self, conn: Connection, protocol: ServerProtocol) -> None:
        for data in protocol.data_to_send():
            if data:
                conn.send_bytes(data)
        conn.close()

    # =========================================================================
    # READER
    # =========================================================================

    def _read_loop(self, client: ReloadClient) -> None:
        """
        Feed incoming bytes to the protocol until the connection ends.

        Pings are answered and the closing handshake is completed by the
        protocol; the loop only flushes what it queues.
        """
        conn = client.connection
        sock = conn.socket
        close_deadline: Optional[float] = None

        try:
            sock.settimeout(READ_POLL_INTERVAL)
            with selectors.DefaultSelector() as selector:
                selector.register(sock, selectors.EVENT_READ)

                while not client._stop.is_set():
                    if close_deadline is not None and time.time() > close_deadline:
                        logger.debug(f"Reload client {client.id} did not finish closing")
                        break

                    pending = isinstance(sock, ssl.SSLSocket) and sock.pending() > 0
                    if not pending and not selector.select(READ_POLL_INTERVAL):
                        continue

                    with client.lock:
                        try:
                            data = sock.recv(conn.buffer_size)
                        except socket.timeout:
                            continue
                        except OSError:
                            data = b""

                        if data:
                            client.protocol.receive_data(data)
                        else:
                            client.protocol.receive_eof()

                        # Incoming messages carry no meaning for the reload channel
                        client.protocol.events_received()
                        client._flush_locked()

                        if client.protocol.close_expected() and close_deadline is None:
                            close_deadline = time.time() + CLOSE_TIMEOUT

                        if not data or client.protocol.state is State.CLOSED:
                            break
        except (OSError, ValueError) as e:
            # ValueError: selector on a socket that was closed under us
            logger.debug(f"Reload client {client.id} reader stopped: {e}")
        finally:
            self._unregister(client)
            conn.abort()

    # =========================================================================
    # BROADCAST / SHUTDOWN
    # =========================================================================

    def broadcast(self, message: Optional[str] = None) -> int:
        """
        Send ``message`` (default ``reload``) to every OPEN client.

        Returns:
            Number of clients the message was written to.
        """
        text = self.message if message is None else message
        delivered = 0

        for client in self.clients():
            if not client.is_open:
                continue
            try:
                if client.send_text(text):
                    delivered += 1
            except Exception as e:
                # A protocol error on one client must not stop the others
                logger.debug(f"Broadcast to {client.id} failed: {e}")

        if delivered:
            logger.debug(f"Broadcast {text!r} to {delivered} client(s)")
        return delivered

    def close_all(self, timeout: float = CLOSE_TIMEOUT) -> None:
        """
        Close every client and stop accepting new ones.

        Clients get a 1001 (going away) close frame; any that have not
        finished the closing handshake by ``timeout`` are dropped.
        """
        # Stopping registration and taking the snapshot under one lock means
        # no client can register after the snapshot and be missed
        with self._lock:
            self._accepting = False
            clients = list(self._clients.values())

        for client in clients:
            try:
                client.close(CloseCode.GOING_AWAY, "Server shutting down")
            except Exception as e:
                logger.debug(f"Close of {client.id} failed: {e}")

        deadline = time.time() + timeout
        for client in clients:
            if client.reader is not None:
                client.reader.join(timeout=max(0.0, deadline - time.time()))
            if client.reader is None or client.reader.is_alive():
                client.abort()

        with self._lock:
            self._clients.clear()

        if clients:
            logger.info(f"Closed {len(clients)} reload connection(s)")

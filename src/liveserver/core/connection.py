"""
=============================================================================
CLIENT CONNECTION
=============================================================================

Wraps one accepted client socket.

A connection starts life as an HTTP connection. It may be:

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    WHAT HAPPENS TO A CONNECTION                     │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   accept() ──► Connection                                           │
    │                    │                                                 │
    │                    ├──► start_tls()     (HTTPS only, in the worker) │
    │                    │                                                 │
    │                    ├──► read_request()  ◄──┐  keep-alive loop       │
    │                    │    send_bytes()    ───┘                         │
    │                    │                                                 │
    │                    ├──► close()         plain HTTP ends here        │
    │                    │                                                 │
    │                    └──► detach()        WebSocket upgrade: the      │
    │                                         reload channel now owns     │
    │                                         the socket                  │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

The TLS handshake runs in the worker thread, never in the accept loop, so a
slow or broken client cannot hold up other connections.

=============================================================================
"""

import socket
import ssl
import time
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional
import uuid


logger = logging.getLogger(__name__)


class ConnectionState(Enum):
    NEW = "new"
    READING = "reading"
    PROCESSING = "processing"
    WRITING = "writing"
    KEEP_ALIVE = "keep_alive"
    UPGRADED = "upgraded"      # Handed to the reload channel
    CLOSING = "closing"
    CLOSED = "closed"


@dataclass
class Connection:
    """
    One client connection.

    Attributes:
        socket: The client socket (replaced by an SSLSocket after start_tls).
        address: Client's (ip, port) tuple.
        id: Short unique identifier used in log lines.
        state: Current connection state.
        created_at: Timestamp when the connection was accepted.
        last_activity: Timestamp of last read or write.
        requests_handled: Number of requests read on this connection.
    """

    socket: socket.socket
    address: tuple[str, int]

    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    state: ConnectionState = ConnectionState.NEW
    created_at: float = field(default_factory=time.time)
    last_activity: float = field(default_factory=time.time)
    requests_handled: int = 0

    buffer_size: int = 8192
    timeout: Optional[float] = 30.0
    keep_alive_timeout: float = 5.0
    max_request_size: int = 10 * 1024 * 1024

    _buffer: bytes = field(default=b"", repr=False)

    def __post_init__(self):
        self.socket.setblocking(True)
        if self.timeout:
            self.socket.settimeout(self.timeout)

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_closed(self) -> bool:
        return self.state == ConnectionState.CLOSED

    @property
    def is_secure(self) -> bool:
        return isinstance(self.socket, ssl.SSLSocket)

    # =========================================================================
    # TLS
    # =========================================================================

    def start_tls(self, context: ssl.SSLContext) -> bool:
        """
        Perform the server side of the TLS handshake.

        Args:
            context: Server SSLContext with the certificate chain loaded.

        Returns:
            True on success. False if the client went away or spoke
            something other than TLS (e.g. plain HTTP to the HTTPS port).
        """
        try:
            self.socket = context.wrap_socket(self.socket, server_side=True)
            return True
        except (ssl.SSLError, OSError) as e:
            logger.debug(f"[{self.id}] TLS handshake failed: {e}")
            return False

    # =========================================================================
    # READING
    # =========================================================================

    def read_request(self) -> Optional[bytes]:
        """
        Read one complete HTTP request from the socket.

        Buffers until the header terminator, then reads Content-Length
        bytes of body. Bytes past the end of the request stay buffered for
        the next call.

        Returns:
            Complete request bytes, or None if the peer closed the
            connection (or went quiet between keep-alive requests).

        Raises:
            TimeoutError: The first request did not arrive in time.
            ValueError: The request exceeds max_request_size.
        """
        self.state = ConnectionState.READING
        self.last_activity = time.time()

        if self.requests_handled > 0:
            self.socket.settimeout(self.keep_alive_timeout)

        try:
            while b"\r\n\r\n" not in self._buffer:
                chunk = self._recv()
                if not chunk:
                    return None

                self._buffer += chunk
                if len(self._buffer) > self.max_request_size:
                    raise ValueError(f"Request too large: {len(self._buffer)} bytes")

            header_end = self._buffer.find(b"\r\n\r\n")
            body_start = header_end + 4
            content_length = self._parse_content_length(self._buffer[:header_end])

            while len(self._buffer) - body_start < content_length:
                chunk = self._recv()
                if not chunk:
                    break

                self._buffer += chunk
                if len(self._buffer) > self.max_request_size:
                    raise ValueError(f"Request too large: {len(self._buffer)} bytes")

            request_end = body_start + content_length
            request_data = self._buffer[:request_end]
            self._buffer = self._buffer[request_end:]

            self.requests_handled += 1
            self.last_activity = time.time()
            return request_data

        except socket.timeout:
            # Quiet keep-alive connections are normal; a silent first request is not
            if self.requests_handled > 0:
                logger.debug(f"[{self.id}] Keep-alive timeout")
                return None
            raise TimeoutError("Request read timeout")

        finally:
            if not self.is_closed:
                try:
                    self.socket.settimeout(self.timeout)
                except OSError:
                    pass

    def _recv(self) -> bytes:
        try:
            data = self.socket.recv(self.buffer_size)
            self.last_activity = time.time()
            return data
        except (ConnectionResetError, BrokenPipeError, ssl.SSLError):
            return b""

    def _parse_content_length(self, headers: bytes) -> int:
        try:
            header_str = headers.decode("utf-8", errors="replace").lower()
            for line in header_str.split("\r\n"):
                if line.startswith("content-length:"):
                    return int(line.split(":", 1)[1].strip())
        except (ValueError, IndexError):
            pass
        return 0

    # =========================================================================
    # WRITING
    # =========================================================================

    def send_bytes(self, data: bytes) -> bool:
        """
        Send all of ``data``.

        Returns:
            True if sent, False if the connection is gone.
        """
        if self.state != ConnectionState.UPGRADED:
            self.state = ConnectionState.WRITING
        try:
            self.socket.sendall(data)
            self.last_activity = time.time()
            return True
        except OSError as e:
            logger.debug(f"[{self.id}] Send failed: {e}")
            return False

    def shutdown_write(self) -> None:
        """Half-close: send FIN, keep reading."""
        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

    # =========================================================================
    # OWNERSHIP / CLOSING
    # =========================================================================

    def detach(self) -> None:
        """
        Mark the connection as handed over to another owner.

        The worker that read the upgrade request must not close it after
        this; the new owner is responsible for calling close().
        """
        self.state = ConnectionState.UPGRADED

    @property
    def is_detached(self) -> bool:
        return self.state == ConnectionState.UPGRADED

    def close(self, drain: bool = True) -> None:
        """
        Close the connection.

        Sends FIN, drains whatever the client still had in flight (so the
        kernel does not answer it with RST), then releases the socket.

        Args:
            drain: Read and discard pending input before closing. Owners
                   with a reader thread on the socket pass False.
        """
        if self.state == ConnectionState.CLOSED:
            return

        self.state = ConnectionState.CLOSING

        try:
            self.socket.shutdown(socket.SHUT_WR)
        except OSError:
            pass

        if drain:
            try:
                self.socket.settimeout(0.5)
                while self.socket.recv(1024):
                    pass
            except (socket.timeout, OSError):
                pass

        try:
            self.socket.close()
        except OSError:
            pass

        self.state = ConnectionState.CLOSED
        logger.debug(f"[{self.id}] Connection closed after {self.requests_handled} requests")

    def abort(self) -> None:
        """Close immediately in both directions, unblocking any reader."""
        try:
            self.socket.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.socket.close()
        except OSError:
            pass
        self.state = ConnectionState.CLOSED

    def set_keep_alive(self):
        self.state = ConnectionState.KEEP_ALIVE

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.is_detached:
            self.close()
        return False

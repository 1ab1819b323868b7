"""
=============================================================================
PORT NEGOTIATION
=============================================================================

Finds a port the listener can bind.

    ┌─────────────────────────────────────────────────────────────────────┐
    │                    negotiate_port(5500, attempts=10)                │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   5500  probe ✗  (another dev server)                               │
    │   5501  probe ✗                                                     │
    │   5502  probe ✓  ──► return 5502                                    │
    │                                                                      │
    │   Candidates only ever go UP from the requested port, and at most   │
    │   `attempts` of them are tried. If all fail: PortExhaustedError.    │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

A probe is a transient bind + close with the same socket options the real
listener uses, so "probe says free" and "bind succeeds" agree except when
another process grabs the port in between. That race is reported as
PortInUseError by the listener itself.

=============================================================================
"""

import logging
import socket
from typing import Optional

from ..errors import PortExhaustedError


logger = logging.getLogger(__name__)

MAX_PORT = 65535


def address_family(host: str) -> socket.AddressFamily:
    """AF_INET6 for IPv6 literals, AF_INET otherwise."""
    return socket.AF_INET6 if ":" in host else socket.AF_INET


def set_reuse_options(sock: socket.socket) -> None:
    """
    Allow rebinding a port still in TIME_WAIT, without allowing two live
    listeners on the same port.

    SO_REUSEPORT is never set: a second server must not bind a port that is
    already serving. Windows gives SO_REUSEADDR that meaning as well, so
    SO_EXCLUSIVEADDRUSE is used there.
    """
    exclusive = getattr(socket, "SO_EXCLUSIVEADDRUSE", None)
    if exclusive is not None:
        sock.setsockopt(socket.SOL_SOCKET, exclusive, 1)
    else:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)


def is_port_available(host: str, port: int) -> bool:
    """
    Probe whether ``port`` can be bound on ``host``.

    The probe socket is closed before returning.
    """
    try:
        with socket.socket(address_family(host), socket.SOCK_STREAM) as probe:
            set_reuse_options(probe)
            probe.bind((host, port))
            probe.listen(1)
        return True
    except OSError:
        return False


def negotiate_port(host: str, start_port: int, attempts: int = 10) -> int:
    """
    Return the first available port in ``[start_port, start_port + attempts)``.

    Args:
        host: Bind address.
        start_port: Requested port. Never goes below this.
        attempts: Maximum number of candidates to probe.

    Raises:
        PortExhaustedError: No candidate was available.
    """
    last_port = min(start_port + attempts - 1, MAX_PORT)
    for candidate in range(start_port, last_port + 1):
        if is_port_available(host, candidate):
            if candidate != start_port:
                logger.info(f"Port {start_port} is busy, using {candidate}")
            return candidate
        logger.debug(f"Port {candidate} is busy")

    raise PortExhaustedError(start_port, attempts)


def suggest_port(host: str, busy_port: int, attempts: int = 10) -> Optional[int]:
    """Next free port above ``busy_port``, or None if none is found."""
    try:
        return negotiate_port(host, busy_port + 1, attempts)
    except PortExhaustedError:
        return None

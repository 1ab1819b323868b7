"""
=============================================================================
CORE NETWORKING
=============================================================================

    ┌─────────────────────────────────────────────────────────────────────┐
    │  PORTS          probe-bind and bounded port negotiation             │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ chosen port
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  SOCKET SERVER  listening socket + accept loop (background thread) │
    └─────────────────────────────────────────────────────────────────────┘
                                    │ new connections
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  WORKER POOL    bounded threads, one connection each               │
    └─────────────────────────────────────────────────────────────────────┘
                                    │
                                    ▼
    ┌─────────────────────────────────────────────────────────────────────┐
    │  CONNECTION     buffered reads, TLS upgrade, close / detach         │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

from .connection import Connection, ConnectionState
from .ports import is_port_available, negotiate_port, suggest_port
from .socket_server import SocketServer
from .worker_pool import WorkerPool

__all__ = [
    "Connection",
    "ConnectionState",
    "SocketServer",
    "WorkerPool",
    "is_port_available",
    "negotiate_port",
    "suggest_port",
]

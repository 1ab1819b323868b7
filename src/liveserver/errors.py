"""
=============================================================================
ERRORS
=============================================================================

Structured errors for the live-reload server.

=============================================================================
TWO SHAPES OF THE SAME ERROR
=============================================================================

Inside the package, failures are EXCEPTIONS. They carry a machine-readable
ErrorCode the same way HTTPParseError carries a status code:

    raise PortInUseError(5500, suggested_port=5501)

At the manager's public boundary they become DATA. Every public operation
returns a ServerResponse, and a failed one holds a ServerError:

    ServerResponse(
        success=False,
        message="Port 5500 is already in use",
        error=ServerError(code=ErrorCode.PORT_IN_USE, ...),
    )

    ┌─────────────────────────────────────────────────────────────────────┐
    │                         ERROR TAXONOMY                              │
    ├─────────────────────────────────────────────────────────────────────┤
    │                                                                      │
    │   CALLER PRECONDITION      ALREADY_RUNNING, NO_WORKSPACE            │
    │     └── surfaced immediately, never retried                         │
    │                                                                      │
    │   RESOURCE CONTENTION      PORT_IN_USE, PORT_EXHAUSTED,             │
    │                            STARTUP_TIMEOUT                          │
    │     └── recoverable; caller may retry with another port             │
    │                                                                      │
    │   DEGRADABLE               CERTIFICATE_ERROR                        │
    │     └── logged; HTTPS falls back to HTTP                            │
    │                                                                      │
    └─────────────────────────────────────────────────────────────────────┘

=============================================================================
"""

import errno
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    """Machine-readable error codes returned to callers."""

    ALREADY_RUNNING = "ALREADY_RUNNING"
    NO_WORKSPACE = "NO_WORKSPACE"
    PORT_IN_USE = "PORT_IN_USE"
    PORT_EXHAUSTED = "PORT_EXHAUSTED"
    STARTUP_TIMEOUT = "STARTUP_TIMEOUT"
    PERMISSION_DENIED = "PERMISSION_DENIED"
    FILE_NOT_FOUND = "FILE_NOT_FOUND"
    CERTIFICATE_ERROR = "CERTIFICATE_ERROR"
    INVALID_CONFIG = "INVALID_CONFIG"
    GENERIC_ERROR = "GENERIC_ERROR"

    @property
    def is_recoverable(self) -> bool:
        """Whether retrying (e.g. on another port) can succeed."""
        return self in (
            ErrorCode.PORT_IN_USE,
            ErrorCode.PORT_EXHAUSTED,
            ErrorCode.STARTUP_TIMEOUT,
        )


@dataclass(frozen=True)
class ServerError:
    """Error record returned inside a failed ServerResponse."""

    code: ErrorCode
    message: str
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code.value,
            "message": self.message,
            "details": dict(self.details),
            "timestamp": self.timestamp,
        }


# =============================================================================
# EXCEPTIONS
# =============================================================================

class LiveServerError(Exception):
    """
    Base exception for expected server failures.

    Carries an ErrorCode so the manager can turn it into a ServerResponse
    without inspecting exception types.
    """

    code: ErrorCode = ErrorCode.GENERIC_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details or {}

    def to_error(self) -> ServerError:
        return ServerError(code=self.code, message=self.message, details=self.details)


class AlreadyRunningError(LiveServerError):
    code = ErrorCode.ALREADY_RUNNING

    def __init__(self, port: int):
        super().__init__(f"Server is already running on port {port}", details={"port": port})
        self.port = port


class NoWorkspaceError(LiveServerError):
    code = ErrorCode.NO_WORKSPACE

    def __init__(self, root: Optional[str] = None):
        if root:
            message = f"Root directory does not exist: {root}"
        else:
            message = "No workspace folder is open"
        super().__init__(message, details={"root": root})


class PortInUseError(LiveServerError):
    """The port was busy at bind time, even after probing."""

    code = ErrorCode.PORT_IN_USE

    def __init__(self, port: int, suggested_port: Optional[int] = None):
        super().__init__(
            f"Port {port} is already in use",
            details={"port": port, "suggested_port": suggested_port},
        )
        self.port = port
        self.suggested_port = suggested_port


class PortExhaustedError(LiveServerError):
    code = ErrorCode.PORT_EXHAUSTED

    def __init__(self, start_port: int, attempts: int):
        last = start_port + attempts - 1
        super().__init__(
            f"No available port in range {start_port}-{last}",
            details={"start_port": start_port, "attempts": attempts},
        )
        self.start_port = start_port
        self.attempts = attempts


class StartupTimeoutError(LiveServerError):
    code = ErrorCode.STARTUP_TIMEOUT

    def __init__(self, timeout: float):
        super().__init__(
            f"Server did not start accepting connections within {timeout:g}s",
            details={"timeout": timeout},
        )
        self.timeout = timeout


class CertificateError(LiveServerError):
    code = ErrorCode.CERTIFICATE_ERROR


# =============================================================================
# OS ERROR CLASSIFICATION
# =============================================================================

_ERRNO_CODES = {
    errno.EADDRINUSE: ErrorCode.PORT_IN_USE,
    errno.EACCES: ErrorCode.PERMISSION_DENIED,
    errno.EPERM: ErrorCode.PERMISSION_DENIED,
    errno.ENOENT: ErrorCode.FILE_NOT_FOUND,
}


def classify_os_error(exc: BaseException) -> ErrorCode:
    """
    Map an exception to an ErrorCode.

    LiveServerErrors keep their own code; OSErrors are classified by errno;
    anything else is GENERIC_ERROR.
    """
    if isinstance(exc, LiveServerError):
        return exc.code
    if isinstance(exc, OSError) and exc.errno in _ERRNO_CODES:
        return _ERRNO_CODES[exc.errno]
    return ErrorCode.GENERIC_ERROR

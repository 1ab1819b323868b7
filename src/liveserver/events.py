"""
Outbound events and error reporting.

The manager never talks to the UI directly. It publishes ServerEvents on an
EventBus and hands structured errors to an injected ErrorReporter; the UI
layer subscribes to whichever it needs.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from .errors import ServerError


logger = logging.getLogger(__name__)


class ServerEventType(str, Enum):
    SERVER_STARTED = "server-started"
    SERVER_STOPPED = "server-stopped"
    SERVER_ERROR = "server-error"
    PORT_IN_USE = "port-in-use"
    CERTIFICATE_SELF_SIGNED_WARNING = "certificate-self-signed-warning"


@dataclass(frozen=True)
class ServerEvent:
    """
    One outbound event.

    Payloads by type:
        server-started        port, local_url, network_url, protocol
        server-stopped        port
        server-error          code, message
        port-in-use           port, suggested_port
        certificate-self-signed-warning   domain, cert_path
    """

    type: ServerEventType
    data: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)


EventListener = Callable[[ServerEvent], None]


class EventBus:
    """
    Synchronous publish/subscribe for ServerEvents.

    Listeners run on the emitting thread. A listener that raises is logged
    and skipped; the remaining listeners still receive the event.
    """

    def __init__(self):
        self._listeners: List[EventListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """
        Register a listener.

        Returns:
            A callable that removes the listener again.
        """
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def emit(self, event_type: ServerEventType, **data: Any) -> ServerEvent:
        event = ServerEvent(type=event_type, data=data)
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.exception(f"Event listener failed on {event_type.value}: {e}")
        return event

    def __len__(self) -> int:
        return len(self._listeners)


# =============================================================================
# ERROR REPORTING
# =============================================================================

class ErrorReporter(ABC):
    """
    Receives structured errors from the components that produce them.

    Implementations decide what "reporting" means: logging, a toast in an
    editor, a test double that records calls.
    """

    @abstractmethod
    def report(self, error: ServerError, operation: str, component: str = "server") -> None:
        """
        Report one error.

        Args:
            error: The structured error.
            operation: What was being attempted ("start", "stop", ...).
            component: Which component failed.
        """


class LoggingErrorReporter(ErrorReporter):
    """Logs errors and keeps the most recent ones for inspection."""

    def __init__(self, max_entries: int = 100, logger_name: str = "liveserver.errors"):
        self._log = logging.getLogger(logger_name)
        self._recent: Deque[Dict[str, Any]] = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def report(self, error: ServerError, operation: str, component: str = "server") -> None:
        level = logging.WARNING if error.code.is_recoverable else logging.ERROR
        self._log.log(level, f"[{component}] {operation} failed ({error.code.value}): {error.message}")
        with self._lock:
            self._recent.append({"operation": operation, "component": component, **error.to_dict()})

    def recent(self, limit: Optional[int] = None) -> List[Dict[str, Any]]:
        """Most recent errors, oldest first."""
        with self._lock:
            entries = list(self._recent)
        return entries[-limit:] if limit else entries

    def clear(self) -> None:
        with self._lock:
            self._recent.clear()

"""
Unit tests for errors, the event bus and error reporting.
"""

import errno

from liveserver.errors import (
    AlreadyRunningError,
    ErrorCode,
    LiveServerError,
    NoWorkspaceError,
    PortExhaustedError,
    PortInUseError,
    StartupTimeoutError,
    classify_os_error,
)
from liveserver.events import EventBus, LoggingErrorReporter, ServerEventType


class TestErrors:
    """Tests for the exception hierarchy."""

    def test_codes(self):
        assert AlreadyRunningError(5500).code == ErrorCode.ALREADY_RUNNING
        assert NoWorkspaceError().code == ErrorCode.NO_WORKSPACE
        assert PortInUseError(5500).code == ErrorCode.PORT_IN_USE
        assert PortExhaustedError(5500, 10).code == ErrorCode.PORT_EXHAUSTED
        assert StartupTimeoutError(5.0).code == ErrorCode.STARTUP_TIMEOUT

    def test_port_in_use_details(self):
        error = PortInUseError(5500, suggested_port=5501).to_error()

        assert error.code == ErrorCode.PORT_IN_USE
        assert error.details == {"port": 5500, "suggested_port": 5501}
        assert "5500" in error.message

    def test_port_exhausted_message_names_range(self):
        assert "5500-5509" in str(PortExhaustedError(5500, 10))

    def test_explicit_code_overrides_class_code(self):
        error = LiveServerError("bad", ErrorCode.INVALID_CONFIG)
        assert error.code == ErrorCode.INVALID_CONFIG

    def test_recoverable_codes(self):
        assert ErrorCode.PORT_IN_USE.is_recoverable
        assert ErrorCode.PORT_EXHAUSTED.is_recoverable
        assert not ErrorCode.ALREADY_RUNNING.is_recoverable
        assert not ErrorCode.NO_WORKSPACE.is_recoverable

    def test_to_dict(self):
        data = NoWorkspaceError("/missing").to_error().to_dict()

        assert data["code"] == "NO_WORKSPACE"
        assert data["details"] == {"root": "/missing"}
        assert "timestamp" in data


class TestClassifyOSError:

    def test_errno_mapping(self):
        assert classify_os_error(OSError(errno.EADDRINUSE, "in use")) == ErrorCode.PORT_IN_USE
        assert classify_os_error(OSError(errno.EACCES, "denied")) == ErrorCode.PERMISSION_DENIED
        assert classify_os_error(OSError(errno.ENOENT, "missing")) == ErrorCode.FILE_NOT_FOUND

    def test_unknown_errors(self):
        assert classify_os_error(OSError(errno.EIO, "io")) == ErrorCode.GENERIC_ERROR
        assert classify_os_error(RuntimeError("boom")) == ErrorCode.GENERIC_ERROR

    def test_live_server_error_keeps_code(self):
        assert classify_os_error(PortInUseError(1)) == ErrorCode.PORT_IN_USE


class TestEventBus:
    """Tests for EventBus."""

    def test_emit_reaches_subscribers(self):
        bus = EventBus()
        received = []
        bus.subscribe(received.append)

        event = bus.emit(ServerEventType.SERVER_STARTED, port=5500)

        assert received == [event]
        assert event.data == {"port": 5500}
        assert event.type.value == "server-started"

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(received.append)

        unsubscribe()
        bus.emit(ServerEventType.SERVER_STOPPED, port=5500)

        assert received == []
        assert len(bus) == 0

    def test_failing_listener_does_not_block_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("listener bug")

        bus.subscribe(broken)
        bus.subscribe(received.append)
        bus.emit(ServerEventType.SERVER_ERROR, code="X", message="y")

        assert len(received) == 1


class TestLoggingErrorReporter:

    def test_keeps_recent_errors(self):
        reporter = LoggingErrorReporter(max_entries=2)
        for port in (1, 2, 3):
            reporter.report(PortInUseError(port).to_error(), operation="start")

        recent = reporter.recent()
        assert [entry["details"]["port"] for entry in recent] == [2, 3]
        assert recent[0]["operation"] == "start"
        assert recent[0]["component"] == "server"

    def test_clear(self):
        reporter = LoggingErrorReporter()
        reporter.report(NoWorkspaceError().to_error(), operation="start", component="manager")
        reporter.clear()
        assert reporter.recent() == []

"""
Integration tests for the server lifecycle manager.

Each test starts a real server on an OS-chosen port (``port=0``) unless it
is testing port negotiation, serves the ``site_dir`` fixture and stops it
again.
"""

import argparse
import ssl

import pytest
from websockets.exceptions import ConnectionClosed
from websockets.sync.client import connect

from liveserver import (
    ErrorCode,
    LiveServerManager,
    ServerEventType,
    ServerPhase,
)
from liveserver.__main__ import build_parser, options_from_args
from liveserver.http.injection import SNIPPET_MARKER
from liveserver.server import HTTPServer

from conftest import http_get, wait_for


def base_url(response) -> str:
    info = response.data
    return f"{info.protocol}://127.0.0.1:{info.port}"


@pytest.fixture
def events(manager):
    received = []
    manager.subscribe(received.append)
    return received


def event_types(events):
    return [event.type for event in events]


class TestStartStop:

    def test_start_returns_info(self, manager, site_dir, events):
        response = manager.start()

        assert response.success, response.message
        info = response.data
        assert info.is_running
        assert info.port > 0
        assert info.root == str(site_dir.resolve())
        assert info.local_url == f"http://localhost:{info.port}/"
        assert manager.phase == ServerPhase.RUNNING
        assert event_types(events) == [ServerEventType.SERVER_STARTED]
        assert events[0].data["port"] == info.port

    def test_start_twice(self, manager):
        first = manager.start()
        second = manager.start()

        assert first.success
        assert not second.success
        assert second.error.code == ErrorCode.ALREADY_RUNNING
        # The running server is untouched
        assert http_get(base_url(first) + "/")[0] == 200

    def test_stop(self, manager, events):
        port = manager.start().data.port
        response = manager.stop()

        assert response.success
        assert response.data == {"port": port}
        assert not manager.is_running()
        assert manager.phase == ServerPhase.IDLE
        assert event_types(events)[-1] == ServerEventType.SERVER_STOPPED

    def test_stop_when_stopped(self, manager, events):
        response = manager.stop()

        assert response.success
        assert events == []

    def test_stop_releases_port_for_restart(self, manager, free_port):
        assert manager.start(options={"port": free_port}).success
        manager.stop()

        again = manager.start(options={"port": free_port, "auto_port": False})
        assert again.success
        assert again.data.port == free_port

    def test_restart(self, manager, free_port):
        manager.start(options={"port": free_port})

        response = manager.restart()

        assert response.success
        assert response.data.port == free_port
        assert manager.is_running()

    def test_info_and_stats_when_stopped(self, manager):
        assert not manager.get_server_info().success
        assert not manager.get_server_stats().success


class TestWorkspace:

    def test_no_workspace(self, config, cert_store):
        manager = LiveServerManager(defaults=config, cert_store=cert_store)
        response = manager.start()

        assert response.error.code == ErrorCode.NO_WORKSPACE
        assert manager.phase == ServerPhase.FAILED
        assert not manager.is_running()

    def test_missing_root(self, manager, tmp_path):
        response = manager.start(options={"root": str(tmp_path / "missing")})
        assert response.error.code == ErrorCode.NO_WORKSPACE

    def test_root_from_file_hint(self, config, cert_store, site_dir):
        manager = LiveServerManager(defaults=config, cert_store=cert_store)
        try:
            response = manager.start(str(site_dir / "docs" / "index.html"))

            assert response.success
            assert response.data.root == str((site_dir / "docs").resolve())
            assert response.data.local_url.endswith("/index.html")
        finally:
            manager.stop()

    def test_file_hint_becomes_default_document(self, manager, site_dir):
        response = manager.start(str(site_dir / "docs" / "index.html"))

        assert response.data.local_url.endswith("/docs/index.html")
        status, _, body = http_get(base_url(response) + "/")
        assert status == 200
        assert b"Docs" in body

    def test_invalid_options(self, manager):
        response = manager.start(options={"port": 70000})

        assert response.error.code == ErrorCode.INVALID_CONFIG
        assert manager.phase == ServerPhase.FAILED

    @pytest.mark.parametrize("port", ["not-a-port", None, [8080]])
    def test_wrongly_typed_options(self, manager, port):
        """Bad option types come back as INVALID_CONFIG, never as an exception."""
        response = manager.start(options={"port": port})

        assert not response.success
        assert response.error.code == ErrorCode.INVALID_CONFIG
        assert manager.phase == ServerPhase.FAILED
        assert not manager.is_running()

    def test_string_port_accepted(self, manager):
        response = manager.start(options={"port": "0"})

        assert response.success, response.message
        assert response.data.port > 0


class TestPorts:

    def test_negotiates_past_busy_port(self, manager, busy_port, events):
        response = manager.start(options={"port": busy_port})

        assert response.success
        assert response.data.port > busy_port
        port_events = [e for e in events if e.type == ServerEventType.PORT_IN_USE]
        assert port_events[0].data == {"port": busy_port, "suggested_port": response.data.port}

    def test_exhausted(self, manager, busy_port):
        response = manager.start(options={"port": busy_port, "port_attempts": 1})

        assert response.error.code == ErrorCode.PORT_EXHAUSTED
        assert not manager.is_running()

    def test_busy_without_negotiation(self, manager, busy_port, events):
        response = manager.start(options={"port": busy_port, "autoPort": False})

        assert response.error.code == ErrorCode.PORT_IN_USE
        assert response.error.details["port"] == busy_port
        suggested = response.error.details["suggested_port"]
        assert suggested is None or suggested > busy_port
        assert event_types(events) == [ServerEventType.SERVER_ERROR]

    def test_startup_timeout(self, manager, monkeypatch):
        monkeypatch.setattr(HTTPServer, "_announce_ready", lambda self: None)

        response = manager.start(options={"startup_timeout": 0.2})

        assert response.error.code == ErrorCode.STARTUP_TIMEOUT
        assert manager.phase == ServerPhase.FAILED
        assert not manager.is_running()


class TestServing:

    def test_html_gets_reload_snippet(self, manager):
        response = manager.start()
        status, headers, body = http_get(base_url(response) + "/")

        assert status == 200
        assert headers["Content-Type"].startswith("text/html")
        text = body.decode("utf-8")
        assert text.count(SNIPPET_MARKER) == 1
        assert text.index(SNIPPET_MARKER) < text.rindex("</body>")
        assert int(headers["Content-Length"]) == len(body)

    def test_non_html_untouched(self, manager, site_dir):
        response = manager.start()
        status, _, body = http_get(base_url(response) + "/style.css")

        assert status == 200
        assert body == (site_dir / "style.css").read_bytes()

    def test_missing_file(self, manager):
        response = manager.start()
        assert http_get(base_url(response) + "/nope.html")[0] == 404

    def test_cors_option(self, manager):
        response = manager.start(options={"cors": True})
        _, headers, _ = http_get(base_url(response) + "/style.css", headers={"Origin": "http://a.test"})

        assert "Access-Control-Allow-Origin" in headers

    def test_stats(self, manager):
        response = manager.start()
        http_get(base_url(response) + "/")
        http_get(base_url(response) + "/nope.html")

        stats = manager.get_server_stats().data
        assert stats.requests == 2
        assert stats.errors == 1
        assert stats.reloads == 0
        assert stats.uptime >= 0

    def test_stats_include_worker_pool(self, manager):
        response = manager.start()
        http_get(base_url(response) + "/")

        workers = manager.get_server_stats().data.workers
        assert set(workers) == {"workers", "busy", "queued", "completed", "failed"}
        assert workers["workers"] >= 1
        assert wait_for(lambda: manager.get_server_stats().data.workers["completed"] >= 1)


class TestLiveReload:

    def test_change_triggers_one_reload(self, manager, site_dir):
        response = manager.start()
        ws_url = f"ws://127.0.0.1:{response.data.port}/"

        with connect(ws_url, open_timeout=5) as client:
            assert wait_for(lambda: manager.get_server_info().data.connections == 1)

            (site_dir / "style.css").write_text("body { color: blue; }\n")

            assert client.recv(timeout=5) == "reload"
            with pytest.raises(TimeoutError):
                client.recv(timeout=0.8)

        assert wait_for(lambda: manager.get_server_stats().data.reloads == 1)

    def test_ignored_change_no_reload(self, manager, site_dir):
        response = manager.start()
        (site_dir / "node_modules").mkdir()

        with connect(f"ws://127.0.0.1:{response.data.port}/", open_timeout=5) as client:
            (site_dir / "node_modules" / "dep.js").write_text("x")
            with pytest.raises(TimeoutError):
                client.recv(timeout=1.0)

    def test_stop_closes_reload_clients(self, manager):
        response = manager.start()

        with connect(f"ws://127.0.0.1:{response.data.port}/", open_timeout=5) as client:
            manager.stop()
            with pytest.raises(ConnectionClosed):
                client.recv(timeout=3)


class TestHTTPS:

    @staticmethod
    def insecure_context() -> ssl.SSLContext:
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        return context

    def test_generated_certificate(self, manager, events):
        response = manager.start(options={"https": {"enabled": True}})

        assert response.success
        assert response.data.protocol == "https"
        assert response.data.local_url.startswith("https://")
        assert ServerEventType.CERTIFICATE_SELF_SIGNED_WARNING in event_types(events)

        status, _, body = http_get(base_url(response) + "/", context=self.insecure_context())
        assert status == 200
        assert SNIPPET_MARKER.encode() in body

    def test_wss_reload_channel(self, manager):
        response = manager.start(options={"https": True})
        url = f"wss://127.0.0.1:{response.data.port}/"

        with connect(url, ssl=self.insecure_context(), open_timeout=5) as client:
            assert wait_for(lambda: manager.get_server_info().data.connections == 1)
            manager._state.channel.broadcast()
            assert client.recv(timeout=3) == "reload"

    def test_falls_back_to_http(self, manager, tmp_path):
        response = manager.start(options={
            "https": {
                "enabled": True,
                "cert_path": str(tmp_path / "missing.crt"),
                "key_path": str(tmp_path / "missing.key"),
                "auto_generate_cert": False,
            },
        })

        assert response.success
        assert response.data.protocol == "http"
        assert http_get(base_url(response) + "/")[0] == 200

    def test_self_signed_warning_can_be_silenced(self, manager, events):
        manager.start(options={"https": {"enabled": True, "warnOnSelfSigned": False}})
        assert ServerEventType.CERTIFICATE_SELF_SIGNED_WARNING not in event_types(events)


class TestUpdateConfig:

    def test_applies_on_next_start(self, manager):
        response = manager.update_config({"cors": True})

        assert response.success
        assert manager.defaults.cors

    def test_running_server_keeps_its_config(self, manager):
        manager.start()
        response = manager.update_config({"verbose": True})

        assert response.success
        assert "restart" in response.message

    def test_rejects_invalid(self, manager):
        response = manager.update_config({"port": -1})

        assert response.error.code == ErrorCode.INVALID_CONFIG
        assert manager.defaults.port == 0


class TestIndependentManagers:

    def test_two_managers_two_servers(self, manager, config, cert_store, tmp_path):
        other_root = tmp_path / "other"
        other_root.mkdir()
        (other_root / "index.html").write_text("<html><body>Other</body></html>")
        other = LiveServerManager(workspace_root=str(other_root), defaults=config, cert_store=cert_store)

        try:
            first = manager.start()
            second = other.start()

            assert first.success and second.success
            assert first.data.port != second.data.port
            assert b"Other" in http_get(base_url(second) + "/")[2]
            assert b"Hello" in http_get(base_url(first) + "/")[2]
        finally:
            other.stop()


class TestCommandLine:

    def parse(self, *argv) -> dict:
        return options_from_args(build_parser().parse_args(list(argv)))

    def test_no_flags_no_options(self):
        assert self.parse() == {}

    def test_flags(self, tmp_path):
        options = self.parse("--root", str(tmp_path), "-p", "3000", "--cors", "--no-auto-port")

        assert options == {
            "root": str(tmp_path),
            "port": 3000,
            "cors": True,
            "auto_port": False,
        }

    def test_https_flags(self):
        options = self.parse("--https", "--domain", "dev.test", "--https-port", "8443")
        assert options["https"] == {"enabled": True, "port": 8443, "domain": "dev.test"}

    def test_parser_returns_namespace(self):
        assert isinstance(build_parser().parse_args([]), argparse.Namespace)

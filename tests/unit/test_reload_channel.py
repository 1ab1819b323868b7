"""
Tests for the WebSocket reload channel, driven by the websockets client.
"""

import socket

import pytest
from websockets.exceptions import ConnectionClosed, InvalidHandshake
from websockets.sync.client import connect

from liveserver import reload
from liveserver.reload import RELOAD_MESSAGE, ReloadChannel
from liveserver.server import HTTPServer

from conftest import wait_for


@pytest.fixture
def channel():
    return ReloadChannel()


@pytest.fixture
def ws_url(config, channel):
    server = HTTPServer(config)
    server.on_upgrade(channel.accept)
    port = server.start()
    yield f"ws://127.0.0.1:{port}/"
    channel.close_all(timeout=0.5)
    server.shutdown()


class TestHandshake:

    def test_client_registered(self, channel, ws_url):
        with connect(ws_url, open_timeout=5):
            assert channel.connection_count == 1
            assert channel.total_connections == 1

    def test_disconnect_removes_client(self, channel, ws_url):
        with connect(ws_url, open_timeout=5):
            pass

        assert wait_for(lambda: channel.connection_count == 0)

    def test_invalid_handshake_rejected(self, channel, ws_url):
        port = int(ws_url.rsplit(":", 1)[1].strip("/"))
        request = (
            b"GET / HTTP/1.1\r\n"
            b"Host: localhost\r\n"
            b"Connection: Upgrade\r\n"
            b"Upgrade: websocket\r\n"
            b"\r\n"
        )
        with socket.create_connection(("127.0.0.1", port), timeout=5) as s:
            s.sendall(request)
            reply = s.recv(4096)

        assert reply.startswith(b"HTTP/1.1 400")
        assert channel.connection_count == 0

    def test_raw_upgrade_request(self, channel, ws_url, sample_upgrade_request):
        port = int(ws_url.rsplit(":", 1)[1].strip("/"))
        with socket.create_connection(("127.0.0.1", port), timeout=5) as s:
            s.sendall(sample_upgrade_request)
            reply = s.recv(4096)

            assert reply.startswith(b"HTTP/1.1 101")
            assert b"s3pPLMBiTxaQ9kYGzzhZRbK+xOo=" in reply
            assert wait_for(lambda: channel.connection_count == 1)


class TestBroadcast:

    def test_every_client_gets_reload(self, channel, ws_url):
        with connect(ws_url, open_timeout=5) as a, connect(ws_url, open_timeout=5) as b:
            assert channel.broadcast() == 2

            assert a.recv(timeout=2) == RELOAD_MESSAGE
            assert b.recv(timeout=2) == RELOAD_MESSAGE

    def test_one_message_per_broadcast(self, channel, ws_url):
        with connect(ws_url, open_timeout=5) as client:
            channel.broadcast()

            assert client.recv(timeout=2) == RELOAD_MESSAGE
            with pytest.raises(TimeoutError):
                client.recv(timeout=0.3)

    def test_no_clients(self, channel):
        assert channel.broadcast() == 0

    def test_client_messages_ignored(self, channel, ws_url):
        with connect(ws_url, open_timeout=5) as client:
            client.send("hello server")
            client.ping()

            assert channel.broadcast() == 1
            assert client.recv(timeout=2) == RELOAD_MESSAGE

    def test_closed_client_skipped(self, channel, ws_url):
        with connect(ws_url, open_timeout=5) as staying:
            leaving = connect(ws_url, open_timeout=5)
            leaving.close()
            assert wait_for(lambda: channel.connection_count == 1)

            assert channel.broadcast() == 1
            assert staying.recv(timeout=2) == RELOAD_MESSAGE


class TestCloseAll:

    def test_clients_get_going_away(self, channel, ws_url):
        with connect(ws_url, open_timeout=5) as client:
            channel.close_all(timeout=1.0)

            with pytest.raises(ConnectionClosed) as exc_info:
                client.recv(timeout=2)

        assert exc_info.value.rcvd.code == 1001
        assert channel.connection_count == 0

    def test_new_clients_refused_after_close(self, channel, ws_url):
        channel.close_all()

        with pytest.raises(InvalidHandshake):
            connect(ws_url, open_timeout=5)

    def test_close_during_handshake_refuses_client(self, channel, ws_url, monkeypatch):
        """A handshake that straddles close_all() must not leave a registered client."""

        class ClosingProtocol(reload.ServerProtocol):
            def accept(self, request):
                channel.close_all(timeout=0.1)
                return super().accept(request)

        monkeypatch.setattr(reload, "ServerProtocol", ClosingProtocol)

        with pytest.raises(InvalidHandshake):
            connect(ws_url, open_timeout=5)

        assert channel.connection_count == 0
        assert channel.total_connections == 0

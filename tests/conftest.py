from __future__ import annotations

import socket

import pytest

from relayd.client import RelayClient
from relayd.codec import make_framer
from relayd.config import RelayRuntimeConfig
from relayd.connection import Connection
from relayd.events import EventQueue
from relayd.service import RelayServer

TIMEOUT = 5.0


class Peer:
    """The far end of a socketpair-backed Connection, read synchronously."""

    def __init__(self, sock: socket.socket, framing: str) -> None:
        self.sock = sock
        self.sock.settimeout(TIMEOUT)
        self.framer = make_framer(framing)
        self._pending: list[str] = []

    def recv(self) -> str:
        while not self._pending:
            data = self.sock.recv(4096)
            if not data:
                raise ConnectionError("peer closed")
            self._pending.extend(self.framer.feed(data))
        return self._pending.pop(0)

    def send(self, text: str) -> None:
        self.sock.sendall(self.framer.encode(text))

    def assert_silent(self, wait: float = 0.2) -> None:
        assert not self._pending
        self.sock.settimeout(wait)
        try:
            data = self.sock.recv(4096)
        except socket.timeout:
            return
        finally:
            self.sock.settimeout(TIMEOUT)
        raise AssertionError(f"unexpected data: {data!r}")


@pytest.fixture
def make_pair():
    """Build a ``(Connection, Peer)`` over a socketpair."""
    socks: list[socket.socket] = []

    def _make(identifier: str, framing: str = "line") -> tuple[Connection, Peer]:
        a, b = socket.socketpair()
        socks.extend((a, b))
        return Connection(a, identifier, make_framer(framing)), Peer(b, framing)

    yield _make

    for s in socks:
        s.close()


@pytest.fixture
def start_server():
    servers: list[RelayServer] = []

    def _start(**overrides) -> tuple[RelayServer, EventQueue]:
        opts = {"host": "127.0.0.1", "port": 0, "framing": "line"}
        opts.update(overrides)
        server = RelayServer(RelayRuntimeConfig(**opts))
        inbox = EventQueue()
        server.events.subscribe(inbox)
        server.start()
        servers.append(server)
        return server, inbox

    yield _start

    for server in servers:
        server.stop()


@pytest.fixture
def make_client():
    clients: list[RelayClient] = []

    def _make(framing: str = "line") -> tuple[RelayClient, EventQueue]:
        client = RelayClient(framing=framing)
        inbox = EventQueue()
        client.events.subscribe(inbox)
        clients.append(client)
        return client, inbox

    yield _make

    for client in clients:
        client.close()

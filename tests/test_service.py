import errno
import socket
import threading
import time

import pytest

from relayd.config import RelayRuntimeConfig
from relayd.events import Connected, Disconnected, MessageReceived, RosterChanged
from relayd.service import ListenError, RelayServer

TIMEOUT = 5.0


def wait_until(predicate, timeout: float = TIMEOUT) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


def _connect(server, client) -> str:
    host, port = server.address
    return client.connect(host, port)


def _message(content: str, origin: str | None = None):
    def _match(ev) -> bool:
        if not isinstance(ev, MessageReceived) or ev.content != content:
            return False
        return origin is None or ev.origin == origin

    return _match


def test_broadcast_and_disconnect_scenario(start_server, make_client) -> None:
    server, server_inbox = start_server()
    client1, inbox1 = make_client()
    client2, inbox2 = make_client()

    id1 = _connect(server, client1)
    server_inbox.wait_for(lambda e: isinstance(e, Connected) and e.identifier == id1)
    id2 = _connect(server, client2)
    server_inbox.wait_for(lambda e: isinstance(e, Connected) and e.identifier == id2)

    inbox1.wait_for(lambda e: isinstance(e, RosterChanged) and id2 in e.identifiers)
    assert client1.peers == [id2]

    assert client1.send_all("hello")

    ev = server_inbox.wait_for(_message("hello", origin=id1))
    assert ev.identifier == id1
    ev = inbox2.wait_for(_message("hello", origin=id1))
    assert ev.origin == id1

    client2.close()
    server_inbox.wait_for(lambda e: isinstance(e, Disconnected) and e.identifier == id2)
    roster = inbox1.wait_for(lambda e: isinstance(e, RosterChanged))
    assert id2 not in roster.identifiers
    assert client1.peers == []
    assert server.connected_ids() == [id1]


def test_roster_excludes_receiver(start_server, make_client) -> None:
    server, _ = start_server()
    client1, inbox1 = make_client()
    client2, inbox2 = make_client()

    id1 = _connect(server, client1)
    inbox1.wait_for(lambda e: isinstance(e, RosterChanged))
    id2 = _connect(server, client2)

    roster2 = inbox2.wait_for(lambda e: isinstance(e, RosterChanged))
    assert roster2.identifiers == (id1,)
    roster_msg = inbox2.wait_for(lambda e: isinstance(e, MessageReceived))
    assert roster_msg.content == f"CLIENTES:{id1}"

    inbox1.wait_for(lambda e: isinstance(e, RosterChanged) and e.identifiers == (id2,))


def test_directed_message_end_to_end(start_server, make_client) -> None:
    server, server_inbox = start_server()
    c1, inbox1 = make_client()
    c2, inbox2 = make_client()
    c3, inbox3 = make_client()

    id1 = _connect(server, c1)
    id2 = _connect(server, c2)
    id3 = _connect(server, c3)
    wait_until(lambda: len(server.connected_ids()) == 3)
    inbox3.wait_for(lambda e: isinstance(e, RosterChanged) and set(e.identifiers) == {id1, id2})

    assert c3.send_to(id2, "only you")

    inbox2.wait_for(_message("only you", origin=id3))
    server_inbox.wait_for(_message("only you", origin=id3))
    with pytest.raises(TimeoutError):
        inbox1.wait_for(_message("only you"), timeout=0.3)
    with pytest.raises(TimeoutError):
        inbox3.wait_for(_message("only you"), timeout=0.1)


def test_registry_tracks_live_connections(start_server, make_client) -> None:
    server, _ = start_server()
    clients = []
    for _ in range(5):
        client, _inbox = make_client()
        _connect(server, client)
        clients.append(client)

    wait_until(lambda: len(server.connected_ids()) == 5)
    ids = server.connected_ids()
    assert len(set(ids)) == 5
    assert set(ids) == {c.identifier for c in clients}

    for client in clients[::2]:
        client.close()

    live = {c.identifier for c in clients[1::2]}
    wait_until(lambda: set(server.connected_ids()) == live)
    assert len(server.connected_ids()) == len(live)
    assert server.stats_manager.get("connects") == 5
    wait_until(lambda: server.stats_manager.get("disconnects") == 3)


def test_server_announce(start_server, make_client) -> None:
    server, _ = start_server(server_name="relay")
    c1, inbox1 = make_client()
    c2, inbox2 = make_client()
    id1 = _connect(server, c1)
    _connect(server, c2)
    wait_until(lambda: len(server.connected_ids()) == 2)

    server.announce("welcome all")
    inbox1.wait_for(_message("welcome all", origin="relay"))
    inbox2.wait_for(_message("welcome all", origin="relay"))

    assert server.announce("just you", target=id1)
    inbox1.wait_for(_message("just you", origin="relay"))
    assert not server.announce("nobody", target="10.0.0.1:1")


def test_raw_framing_interoperates_for_short_messages(start_server, make_client) -> None:
    server, server_inbox = start_server(framing="raw")
    client, inbox = make_client(framing="raw")
    ident = _connect(server, client)

    inbox.wait_for(lambda e: isinstance(e, RosterChanged))
    assert client.send_all("hi there")

    server_inbox.wait_for(_message("hi there", origin=ident))
    inbox.wait_for(_message("hi there", origin=ident))


def test_bind_failure_is_reported(start_server) -> None:
    server, _ = start_server()
    _, port = server.address

    clash = RelayServer(RelayRuntimeConfig(host="127.0.0.1", port=port))
    with pytest.raises(ListenError):
        clash.start()
    assert clash.address is None


def test_accept_loop_survives_a_failed_registration(start_server, make_client) -> None:
    server, server_inbox = start_server()
    original = server._on_accept
    calls = []

    def flaky(sock, addr) -> None:
        calls.append(addr)
        if len(calls) == 1:
            raise RuntimeError("registration failed")
        original(sock, addr)

    server._on_accept = flaky

    host, port = server.address
    doomed = socket.create_connection((host, port), timeout=TIMEOUT)
    # The failed registration closes the accepted socket.
    assert doomed.recv(16) == b""
    doomed.close()

    client, _ = make_client()
    ident = _connect(server, client)
    server_inbox.wait_for(lambda e: isinstance(e, Connected) and e.identifier == ident)
    assert server.stats_manager.get("accept_errors") == 1


def test_stop_closes_every_connection(start_server, make_client) -> None:
    server, _ = start_server()
    c1, inbox1 = make_client()
    c2, inbox2 = make_client()
    _connect(server, c1)
    _connect(server, c2)
    wait_until(lambda: len(server.connected_ids()) == 2)

    server.stop()

    inbox1.wait_for(lambda e: isinstance(e, Disconnected))
    inbox2.wait_for(lambda e: isinstance(e, Disconnected))
    assert server.connected_ids() == []
    assert not server.running
    assert "clients: total=0 connects=2 disconnects=2" in server.format_stats()


class _FailingListener:
    """Stands in for a listening socket whose accept() always fails."""

    def __init__(self) -> None:
        self.calls = 0

    def accept(self):
        self.calls += 1
        raise OSError(errno.EMFILE, "Too many open files")

    def fileno(self) -> int:
        return 3


def test_accept_errors_back_off_between_retries() -> None:
    server = RelayServer(RelayRuntimeConfig(host="127.0.0.1", port=0))
    listener = _FailingListener()
    server._listener = listener

    thread = threading.Thread(target=server._accept_loop, daemon=True)
    thread.start()
    time.sleep(0.35)
    server._shutdown.set()
    thread.join(TIMEOUT)

    assert not thread.is_alive()
    assert 1 <= listener.calls <= 10
    assert server.stats_manager.get("accept_errors") == listener.calls

from __future__ import annotations

import logging
import signal
import socket
import threading
import time

from .codec import make_framer
from .config import RelayRuntimeConfig, validate_config
from .connection import Connection
from .directive import RosterUpdate, encode_directive, format_forwarded
from .events import Connected, Disconnected, EventPublisher, RosterChanged
from .reader import ConnectionReader
from .registry import ConnectionRegistry
from .router import MessageRouter
from .stats import StatsManager
from .util import format_identifier, normalize_identifier


class ListenError(RuntimeError):
    """The server could not bind or listen on its configured address."""


class RelayServer:
    def __init__(self, config: RelayRuntimeConfig) -> None:
        validate_config(config)
        self.config = config
        self.log = logging.getLogger("relayd.hub")

        self._shutdown = threading.Event()

        # The registry carries its own lock; it is the only state shared
        # between the listener and the reader threads.
        self.registry = ConnectionRegistry()

        # Orders roster pushes: a later snapshot never reaches peers before an earlier one.
        self._roster_lock = threading.Lock()

        self.events = EventPublisher()

        self.stats_manager = StatsManager()

        # Message router for the TO:/CLIENTES: grammar
        self.router = MessageRouter(self)

        self._listener: socket.socket | None = None
        self._listener_thread: threading.Thread | None = None

    @property
    def address(self) -> tuple[str, int] | None:
        """The bound ``(host, port)``, once started."""
        if self._listener is None:
            return None
        host, port = self._listener.getsockname()[:2]
        return host, port

    @property
    def running(self) -> bool:
        return self._listener is not None and not self._shutdown.is_set()

    def connected_ids(self) -> list[str]:
        return self.registry.snapshot_ids()

    def _make_framer(self):
        return make_framer(
            self.config.framing,
            recv_buffer_size=self.config.recv_buffer_size,
            max_frame_bytes=self.config.max_frame_bytes,
        )

    def start(self) -> None:
        if self._listener is not None:
            raise RuntimeError("server already started")

        host = self.config.host
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, int(self.config.port)))
            sock.listen(int(self.config.backlog))
        except OSError as e:
            sock.close()
            self.log.error(
                "Listen failed host=%s port=%s err=%s", host, self.config.port, e
            )
            raise ListenError(f"cannot listen on {host}:{self.config.port}: {e}") from e

        self._listener = sock
        self._shutdown.clear()
        self.stats_manager.set_start_time()

        self._listener_thread = threading.Thread(
            target=self._accept_loop,
            name="relayd-listener",
            daemon=True,
        )
        self._listener_thread.start()

        bound_host, bound_port = self.address or (host, self.config.port)
        self.log.info(
            "Relay listening host=%s port=%s framing=%s",
            bound_host,
            bound_port,
            self.config.framing,
        )

    def _accept_loop(self) -> None:
        listener = self._listener
        if listener is None:
            return

        while not self._shutdown.is_set():
            try:
                sock, addr = listener.accept()
            except OSError as e:
                if self._shutdown.is_set() or listener.fileno() < 0:
                    break
                self.stats_manager.inc("accept_errors")
                self.log.warning("Accept failed err=%s", e)
                # Persistent failures such as EMFILE would otherwise spin.
                self._shutdown.wait(0.1)
                continue

            try:
                self._on_accept(sock, addr)
            except Exception:
                self.stats_manager.inc("accept_errors")
                self.log.exception("Failed to register connection from %s", addr)
                try:
                    sock.close()
                except OSError:
                    pass

        self.log.debug("Accept loop stopped")

    def _on_accept(self, sock: socket.socket, addr) -> None:
        identifier = format_identifier(addr)
        conn = Connection(sock, identifier, self._make_framer())

        # Registered before the reader starts: present iff its reader runs.
        self.registry.insert(identifier, conn)
        self.stats_manager.inc("connects")
        self.log.info("Connection established identifier=%s", identifier)
        self.events.publish(Connected(identifier))

        reader = ConnectionReader(
            conn,
            on_message=self.router.route,
            on_closed=self._on_closed,
            on_bytes=lambda n: self.stats_manager.inc("bytes_in", n),
        )
        try:
            reader.start()
        except RuntimeError:
            self.registry.remove(identifier, conn)
            conn.close()
            self.events.publish(Disconnected(identifier))
            raise

        self.push_roster()

    def _on_closed(self, conn: Connection) -> None:
        removed = self.registry.remove(conn.identifier, conn)
        if removed is None:
            return

        self.stats_manager.inc("disconnects")
        self.log.info("Connection closed identifier=%s", conn.identifier)
        self.events.publish(Disconnected(conn.identifier))

        if not self._shutdown.is_set():
            self.push_roster()

    def _send(self, conn: Connection, text: str) -> bool:
        n = conn.send(text)
        if n <= 0:
            self.stats_manager.inc("send_errors")
            return False
        self.stats_manager.inc("bytes_out", n)
        return True

    def push_roster(self) -> None:
        """Send every connection the identifiers of all the others."""
        with self._roster_lock:
            ids = self.registry.snapshot_ids()

            def _push(conn: Connection) -> None:
                others = tuple(i for i in ids if i != conn.identifier)
                self._send(conn, encode_directive(RosterUpdate(others)))

            self.registry.for_each(_push)
        self.stats_manager.inc("roster_pushes")
        self.events.publish(RosterChanged(self.config.server_name, identifiers=tuple(ids)))

    def broadcast(self, text: str) -> int:
        """Send ``text`` to every registered connection; returns deliveries."""
        delivered = 0

        def _deliver(conn: Connection) -> None:
            nonlocal delivered
            if self._send(conn, text):
                delivered += 1

        self.registry.for_each(_deliver)
        self.stats_manager.inc("msgs_forwarded", delivered)
        return delivered

    def send_to(self, identifier: str, text: str) -> bool:
        """Send ``text`` to one connection; False if it is not registered."""
        ident = normalize_identifier(identifier)
        conn = self.registry.get(ident) if ident is not None else None
        if conn is None:
            return False
        if self._send(conn, text):
            self.stats_manager.inc("msgs_forwarded")
        return True

    def announce(self, content: str, target: str | None = None) -> bool:
        """Send server-originated text to one peer, or to all when no target."""
        text = format_forwarded(self.config.server_name, content)
        if target is None:
            self.broadcast(text)
            return True
        return self.send_to(target, text)

    def format_stats(self) -> str:
        return self.stats_manager.format_stats(clients_total=len(self.registry))

    def run_forever(self) -> None:
        if self._listener is None:
            self.start()

        signal.signal(signal.SIGINT, lambda *_: self.stop())
        signal.signal(signal.SIGTERM, lambda *_: self.stop())

        while not self._shutdown.is_set():
            time.sleep(0.25)

    def stop(self, timeout: float = 2.0) -> None:
        if self._shutdown.is_set():
            return
        self._shutdown.set()

        listener = self._listener
        if listener is not None:
            try:
                # Wakes the listener thread out of accept().
                listener.shutdown(socket.SHUT_RDWR)
            except OSError:
                pass
            try:
                listener.close()
            except OSError:
                pass

        conns = self.registry.close_all()

        for conn in conns:
            if conn.reader is not None and conn.reader is not threading.current_thread():
                conn.reader.join(timeout)

        if self._listener_thread is not None and self._listener_thread is not threading.current_thread():
            self._listener_thread.join(timeout)

        self.log.info("Relay stopped connections_closed=%s", len(conns))

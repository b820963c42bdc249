from __future__ import annotations

import logging
import socket
import threading

from .codec import make_framer
from .connection import Connection
from .constants import FRAMING_RAW, MAX_FRAME_BYTES
from .directive import (
    Broadcast,
    Directed,
    Directive,
    MalformedDirectiveError,
    Plain,
    RosterUpdate,
    encode_directive,
    parse_directive,
    parse_forwarded,
)
from .events import (
    Connected,
    Disconnected,
    EventPublisher,
    MalformedMessage,
    MessageReceived,
    RosterChanged,
)
from .reader import ConnectionReader
from .util import format_identifier


class RelayClient:
    """
    Client side of the relay: one outbound connection and its reader.

    Keeps ``peers``, the addressable identifiers from the latest roster push
    (never including this client's own identifier), and raises the same
    events as the server.
    """

    def __init__(
        self,
        *,
        framing: str = FRAMING_RAW,
        recv_buffer_size: int | None = None,
        max_frame_bytes: int = MAX_FRAME_BYTES,
    ) -> None:
        self.log = logging.getLogger("relayd.client")
        self.events = EventPublisher()
        self.framing = framing
        self.recv_buffer_size = recv_buffer_size
        self.max_frame_bytes = max_frame_bytes

        self._lock = threading.Lock()
        self._peers: list[str] = []
        self.connection: Connection | None = None
        self.remote_identifier: str | None = None

    @property
    def identifier(self) -> str | None:
        """This client's own ``ip:port``, as the server knows it."""
        if self.connection is None:
            return None
        return self.connection.identifier

    @property
    def connected(self) -> bool:
        return self.connection is not None and not self.connection.closed

    @property
    def peers(self) -> list[str]:
        with self._lock:
            return list(self._peers)

    def connect(self, host: str, port: int, timeout: float | None = None) -> str:
        """Connect to a relay server; returns this client's identifier."""
        if self.connected:
            raise RuntimeError("already connected")

        sock = socket.create_connection((host, int(port)), timeout=timeout)
        # The reader blocks without a deadline.
        sock.settimeout(None)

        identifier = format_identifier(sock.getsockname())
        self.remote_identifier = format_identifier(sock.getpeername())
        framer = make_framer(
            self.framing,
            recv_buffer_size=self.recv_buffer_size,
            max_frame_bytes=self.max_frame_bytes,
        )
        conn = Connection(sock, identifier, framer)
        with self._lock:
            self._peers = []
        self.connection = conn

        self.log.info(
            "Connected identifier=%s server=%s", identifier, self.remote_identifier
        )
        self.events.publish(Connected(identifier))

        ConnectionReader(
            conn,
            on_message=self._on_message,
            on_closed=self._on_closed,
            name=f"relayd-client-{identifier}",
        ).start()
        return identifier

    def send(self, directive: Directive) -> bool:
        conn = self.connection
        if conn is None or conn.closed:
            return False
        try:
            text = encode_directive(directive)
        except ValueError as e:
            self.log.debug("Not sending invalid directive err=%s", e)
            return False
        return conn.send(text) > 0

    def send_to(self, target: str, content: str) -> bool:
        return self.send(Directed(target, content))

    def send_all(self, content: str) -> bool:
        return self.send(Broadcast(content))

    def close(self, timeout: float = 2.0) -> None:
        conn = self.connection
        if conn is None:
            return
        conn.close()
        if conn.reader is not None and conn.reader is not threading.current_thread():
            conn.reader.join(timeout)

    def _on_message(self, identifier: str, text: str) -> None:
        try:
            directive = parse_directive(text)
        except MalformedDirectiveError as e:
            self.log.debug("Dropping malformed message from server err=%s", e)
            self.events.publish(MalformedMessage(identifier, raw=text, reason=str(e)))
            return

        if isinstance(directive, RosterUpdate):
            self._apply_roster(identifier, directive)
            self.events.publish(
                MessageReceived(identifier, directive=directive, content=text)
            )
            return

        if isinstance(directive, Plain):
            forwarded = parse_forwarded(directive.content)
            if forwarded is not None:
                origin, content = forwarded
                self.events.publish(
                    MessageReceived(
                        identifier, directive=directive, content=content, origin=origin
                    )
                )
                return

        content = getattr(directive, "content", text)
        self.events.publish(
            MessageReceived(identifier, directive=directive, content=content)
        )

    def _apply_roster(self, identifier: str, roster: RosterUpdate) -> None:
        own = identifier
        peers: list[str] = []
        for ident in roster.identifiers:
            if ident == own or ident in peers:
                continue
            peers.append(ident)

        with self._lock:
            self._peers = peers

        self.log.debug("Roster updated peers=%s", len(peers))
        self.events.publish(RosterChanged(identifier, identifiers=tuple(peers)))

    def _on_closed(self, conn: Connection) -> None:
        with self._lock:
            self._peers = []
        self.log.info("Connection finished identifier=%s", conn.identifier)
        self.events.publish(Disconnected(conn.identifier))

from __future__ import annotations

import logging
import socket
import threading

from .codec import Framer, FramingError


class Connection:
    """
    One live TCP transport and the state that belongs to it.

    Every send goes through ``send``, which holds this connection's own lock
    so concurrent directives never interleave bytes on the wire.
    """

    def __init__(self, sock: socket.socket, identifier: str, framer: Framer) -> None:
        self.sock = sock
        self.identifier = identifier
        self.framer = framer
        self.reader: threading.Thread | None = None
        self.log = logging.getLogger("relayd.connection")

        self._send_lock = threading.Lock()
        self._closed = threading.Event()

    def __repr__(self) -> str:
        state = "closed" if self.closed else "open"
        return f"<Connection {self.identifier} {state}>"

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def send(self, text: str) -> int:
        """Frame and send ``text``; returns bytes written, 0 on failure."""
        try:
            payload = self.framer.encode(text)
        except FramingError as e:
            self.log.warning("Not sending to %s: %s", self.identifier, e)
            return 0

        with self._send_lock:
            if self.closed:
                return 0
            try:
                self.sock.sendall(payload)
            except OSError as e:
                self.log.warning(
                    "Send failed identifier=%s bytes=%s err=%s",
                    self.identifier,
                    len(payload),
                    e,
                )
                return 0
        return len(payload)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        try:
            # Unblocks a reader parked in recv().
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        try:
            self.sock.close()
        except OSError:
            pass

from __future__ import annotations

import logging
import threading
from typing import Callable

from .codec import FramingError
from .connection import Connection


class ConnectionReader:
    """
    Blocking receive loop for one connection, run on its own thread.

    Decoded messages go to ``on_message(identifier, text)``. When the loop
    ends, for whatever reason, the socket is closed and
    ``on_closed(connection)`` runs exactly once on the reader thread.
    """

    def __init__(
        self,
        connection: Connection,
        *,
        on_message: Callable[[str, str], None],
        on_closed: Callable[[Connection], None],
        on_bytes: Callable[[int], None] | None = None,
        name: str | None = None,
    ) -> None:
        self.connection = connection
        self.on_message = on_message
        self.on_closed = on_closed
        self.on_bytes = on_bytes
        self.log = logging.getLogger("relayd.reader")
        self.thread = threading.Thread(
            target=self.run,
            name=name or f"relayd-reader-{connection.identifier}",
            daemon=True,
        )

    def start(self) -> threading.Thread:
        self.connection.reader = self.thread
        self.thread.start()
        return self.thread

    def run(self) -> None:
        conn = self.connection
        try:
            self._loop()
        finally:
            conn.close()
            try:
                self.on_closed(conn)
            except Exception:
                self.log.exception("Close handler failed identifier=%s", conn.identifier)

    def _loop(self) -> None:
        conn = self.connection
        while True:
            try:
                data = conn.sock.recv(conn.framer.read_size)
            except OSError as e:
                if conn.closed:
                    self.log.debug("Reader stopped on closed socket identifier=%s", conn.identifier)
                else:
                    self.log.warning(
                        "Unexpected receive error identifier=%s err=%s",
                        conn.identifier,
                        e,
                    )
                return

            if not data:
                self.log.debug("Peer closed identifier=%s", conn.identifier)
                return

            if self.on_bytes is not None:
                self.on_bytes(len(data))

            try:
                messages = conn.framer.feed(data)
            except FramingError as e:
                self.log.warning(
                    "Framing error identifier=%s err=%s; closing",
                    conn.identifier,
                    e,
                )
                return

            for text in messages:
                try:
                    self.on_message(conn.identifier, text)
                except Exception:
                    self.log.exception("Message handler failed identifier=%s", conn.identifier)

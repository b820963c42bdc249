from __future__ import annotations

import logging
import threading
from typing import Callable

from .connection import Connection


class DuplicateConnectionError(KeyError):
    """An identifier is already registered to a live connection."""


class ConnectionRegistry:
    """
    Maps connection identifiers to live connections.

    This is the only shared mutable state of a relay server. All access goes
    through these methods, which take the registry's own lock; callers never
    lock around them. Iteration works on a point-in-time copy, so a broadcast
    may miss a connection that joins mid-way or reach one that just left
    (sending to a closed connection is a no-op).
    """

    def __init__(self) -> None:
        self.log = logging.getLogger("relayd.registry")
        self._lock = threading.Lock()
        # dicts keep insertion order, which snapshot_ids() relies on.
        self._conns: dict[str, Connection] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._conns)

    def __contains__(self, identifier: object) -> bool:
        with self._lock:
            return identifier in self._conns

    def insert(self, identifier: str, connection: Connection) -> None:
        with self._lock:
            if identifier in self._conns:
                raise DuplicateConnectionError(identifier)
            self._conns[identifier] = connection

    def remove(
        self, identifier: str, connection: Connection | None = None
    ) -> Connection | None:
        """
        Remove and return the entry for ``identifier``.

        With ``connection`` given, only that exact connection is removed, so a
        late removal cannot evict a newer connection under the same identifier.
        """
        with self._lock:
            current = self._conns.get(identifier)
            if current is None:
                return None
            if connection is not None and current is not connection:
                return None
            return self._conns.pop(identifier)

    def get(self, identifier: str) -> Connection | None:
        with self._lock:
            return self._conns.get(identifier)

    def snapshot_ids(self) -> list[str]:
        with self._lock:
            return list(self._conns.keys())

    def snapshot(self) -> list[Connection]:
        with self._lock:
            return list(self._conns.values())

    def for_each(self, fn: Callable[[Connection], None]) -> int:
        """Apply ``fn`` to every connection; returns how many calls succeeded."""
        ok = 0
        for conn in self.snapshot():
            try:
                fn(conn)
                ok += 1
            except Exception:
                self.log.exception("Per-connection call failed identifier=%s", conn.identifier)
        return ok

    def close_all(self) -> list[Connection]:
        """Close every registered transport; readers then exit on their own."""
        conns = self.snapshot()
        for conn in conns:
            conn.close()
        return conns

"""Statistics tracking and reporting for the relay."""

from __future__ import annotations

import threading
import time


class StatsManager:
    """
    Lifetime counters for a relay server.

    Tracks:
    - Connects, disconnects and failed accepts
    - Bytes and messages in/out
    - Broadcast and directed deliveries
    - Malformed messages and unknown targets
    - Per-recipient send failures
    - Roster pushes
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()

        self.started_wall_time: float | None = None
        self.started_monotonic: float | None = None

        self._counters: dict[str, int] = {
            "connects": 0,
            "disconnects": 0,
            "accept_errors": 0,
            "bytes_in": 0,
            "bytes_out": 0,
            "msgs_in": 0,
            "pkts_bad": 0,
            "broadcasts": 0,
            "directed": 0,
            "msgs_forwarded": 0,
            "unknown_target": 0,
            "send_errors": 0,
            "roster_pushes": 0,
        }

    def set_start_time(self) -> None:
        """Set the start time for uptime calculations."""
        self.started_wall_time = time.time()
        self.started_monotonic = time.monotonic()

    def inc(self, key: str, delta: int = 1) -> None:
        with self._lock:
            self._counters[key] = int(self._counters.get(key, 0)) + int(delta)

    def get(self, key: str) -> int:
        with self._lock:
            return int(self._counters.get(key, 0))

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return dict(self._counters)

    def uptime_s(self) -> float:
        if self.started_monotonic is None:
            return 0.0
        return time.monotonic() - self.started_monotonic

    def format_stats(self, *, clients_total: int = 0) -> str:
        """Format current statistics as a human-readable string."""
        from . import __version__

        c = self.snapshot()

        lines: list[str] = []
        lines.append(f"relayd {__version__} stats")
        lines.append(f"uptime_s={self.uptime_s():.1f}")
        lines.append(
            "clients: total={} connects={} disconnects={} accept_errors={}".format(
                clients_total,
                c.get("connects", 0),
                c.get("disconnects", 0),
                c.get("accept_errors", 0),
            )
        )
        lines.append(
            "io: msgs_in={} pkts_bad={} bytes_in={} bytes_out={}".format(
                c.get("msgs_in", 0),
                c.get("pkts_bad", 0),
                c.get("bytes_in", 0),
                c.get("bytes_out", 0),
            )
        )
        lines.append(
            "routing: broadcasts={} directed={} msgs_fwd={} unknown_target={} send_errors={} roster_pushes={}".format(
                c.get("broadcasts", 0),
                c.get("directed", 0),
                c.get("msgs_forwarded", 0),
                c.get("unknown_target", 0),
                c.get("send_errors", 0),
                c.get("roster_pushes", 0),
            )
        )

        return "\n".join(lines)

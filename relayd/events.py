"""Typed lifecycle and data events raised by the relay core.

UIs and other collaborators either subscribe a callback (invoked on the
thread that raised the event) or attach an ``EventQueue`` and drain it on
whatever thread they own.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from dataclasses import dataclass, field
from typing import Callable

from .directive import Directive


@dataclass(frozen=True)
class Event:
    identifier: str
    timestamp: float = field(default_factory=time.time, compare=False, kw_only=True)


@dataclass(frozen=True)
class Connected(Event):
    pass


@dataclass(frozen=True)
class Disconnected(Event):
    pass


@dataclass(frozen=True)
class MessageReceived(Event):
    """A decoded message arrived on connection ``identifier``.

    ``origin`` names the peer that authored ``content``: the sender itself on
    the server, the relayed author on a client.
    """

    directive: Directive
    content: str
    origin: str | None = None


@dataclass(frozen=True)
class RosterChanged(Event):
    identifiers: tuple[str, ...] = ()


@dataclass(frozen=True)
class MalformedMessage(Event):
    raw: str
    reason: str


@dataclass(frozen=True)
class RecipientNotFound(Event):
    target: str
    content: str


Observer = Callable[[Event], None]


class EventPublisher:
    def __init__(self) -> None:
        self.log = logging.getLogger("relayd.events")
        self._lock = threading.Lock()
        self._observers: list[Observer] = []

    def subscribe(self, observer: Observer) -> Callable[[], None]:
        """Register an observer; returns a callable that unsubscribes it."""
        with self._lock:
            self._observers.append(observer)

        def _unsubscribe() -> None:
            self.unsubscribe(observer)

        return _unsubscribe

    def unsubscribe(self, observer: Observer) -> None:
        with self._lock:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass

    def publish(self, event: Event) -> None:
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(event)
            except Exception:
                self.log.exception(
                    "Observer failed event=%s identifier=%s",
                    type(event).__name__,
                    event.identifier,
                )


class EventQueue:
    """Observer that buffers events for a consumer thread."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: queue.Queue[Event] = queue.Queue(maxsize=maxsize)

    def __call__(self, event: Event) -> None:
        self._queue.put(event)

    def get(self, timeout: float | None = None) -> Event:
        """Block until an event is available; raises ``queue.Empty`` on timeout."""
        return self._queue.get(timeout=timeout)

    def drain(self, max_batch_size: int = 100) -> list[Event]:
        """Get queued events without blocking."""
        events: list[Event] = []
        try:
            while len(events) < max_batch_size:
                events.append(self._queue.get_nowait())
        except queue.Empty:
            pass
        return events

    def wait_for(
        self,
        predicate: Callable[[Event], bool],
        timeout: float = 5.0,
    ) -> Event:
        """Consume events until one matches ``predicate``.

        Non-matching events are discarded. Raises ``TimeoutError`` when the
        deadline passes first.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TimeoutError("no matching event")
            try:
                event = self._queue.get(timeout=remaining)
            except queue.Empty as e:
                raise TimeoutError("no matching event") from e
            if predicate(event):
                return event

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .directive import (
    Broadcast,
    Directed,
    MalformedDirectiveError,
    Plain,
    RosterUpdate,
    format_forwarded,
    parse_directive,
)
from .events import MalformedMessage, MessageReceived, RecipientNotFound

if TYPE_CHECKING:
    from .service import RelayServer


class MessageRouter:
    """
    Interprets messages received by the relay server and dispatches them.

    - ``TO:ALL|...`` is relayed to every registered connection
    - ``TO:<ip>:<port>|...`` is relayed to that connection only
    - roster pushes and plain text are handed to observers, never re-routed
    - malformed directives and unknown targets raise diagnostic events
    """

    def __init__(self, hub: RelayServer) -> None:
        self.hub = hub
        self.log = logging.getLogger("relayd.router")

    def route(self, identifier: str, text: str) -> None:
        """Main entry point for one decoded message from ``identifier``."""
        self.hub.stats_manager.inc("msgs_in")

        try:
            directive = parse_directive(text)
        except MalformedDirectiveError as e:
            self.hub.stats_manager.inc("pkts_bad")
            self.log.debug(
                "Dropping malformed message identifier=%s chars=%s err=%s",
                identifier,
                len(text),
                e,
            )
            self.hub.events.publish(MalformedMessage(identifier, raw=text, reason=str(e)))
            return

        if self.log.isEnabledFor(logging.DEBUG):
            self.log.debug(
                "RX identifier=%s directive=%s chars=%s",
                identifier,
                type(directive).__name__,
                len(text),
            )

        if isinstance(directive, Broadcast):
            self._handle_broadcast(identifier, directive)
        elif isinstance(directive, Directed):
            self._handle_directed(identifier, directive)
        elif isinstance(directive, RosterUpdate):
            # Rosters flow server to client; a client sending one is just noise.
            self.hub.events.publish(
                MessageReceived(
                    identifier,
                    directive=directive,
                    content=text,
                    origin=identifier,
                )
            )
        elif isinstance(directive, Plain):
            self.hub.events.publish(
                MessageReceived(
                    identifier,
                    directive=directive,
                    content=directive.content,
                    origin=identifier,
                )
            )

    def _handle_broadcast(self, identifier: str, directive: Broadcast) -> None:
        self.hub.stats_manager.inc("broadcasts")
        self.hub.events.publish(
            MessageReceived(
                identifier,
                directive=directive,
                content=directive.content,
                origin=identifier,
            )
        )
        self.hub.broadcast(format_forwarded(identifier, directive.content))

    def _handle_directed(self, identifier: str, directive: Directed) -> None:
        self.hub.stats_manager.inc("directed")
        self.hub.events.publish(
            MessageReceived(
                identifier,
                directive=directive,
                content=directive.content,
                origin=identifier,
            )
        )
        delivered = self.hub.send_to(
            directive.target, format_forwarded(identifier, directive.content)
        )
        if not delivered:
            self.hub.stats_manager.inc("unknown_target")
            self.log.info(
                "Recipient not found sender=%s target=%s",
                identifier,
                directive.target,
            )
            self.hub.events.publish(
                RecipientNotFound(
                    identifier,
                    target=directive.target,
                    content=directive.content,
                )
            )

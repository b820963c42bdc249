from __future__ import annotations

from dataclasses import dataclass

from .constants import (
    FORWARD_DELIM,
    FORWARD_PREFIX,
    P_ROSTER,
    P_TO,
    ROSTER_DELIM,
    TARGET_ALL,
    TARGET_DELIM,
)
from .util import normalize_identifier


class MalformedDirectiveError(ValueError):
    """Raised when text claims to be a directive but cannot be parsed."""


@dataclass(frozen=True)
class Broadcast:
    content: str


@dataclass(frozen=True)
class Directed:
    target: str
    content: str


@dataclass(frozen=True)
class RosterUpdate:
    identifiers: tuple[str, ...]


@dataclass(frozen=True)
class Plain:
    content: str


Directive = Broadcast | Directed | RosterUpdate | Plain


def parse_directive(text: str) -> Directive:
    if not isinstance(text, str):
        raise TypeError("directive text must be a string")

    if text.startswith(P_TO):
        sep = text.find(TARGET_DELIM)
        if sep < 0:
            raise MalformedDirectiveError("missing target delimiter")

        target = text[len(P_TO) : sep]
        content = text[sep + 1 :]

        if target == TARGET_ALL:
            return Broadcast(content)

        ident = normalize_identifier(target)
        if ident is None:
            raise MalformedDirectiveError(f"invalid target {target!r}")
        return Directed(ident, content)

    if text.startswith(P_ROSTER):
        items = text[len(P_ROSTER) :].split(ROSTER_DELIM)
        return RosterUpdate(tuple(i.strip() for i in items if i.strip()))

    return Plain(text)


def encode_directive(directive: Directive) -> str:
    if isinstance(directive, Broadcast):
        return f"{P_TO}{TARGET_ALL}{TARGET_DELIM}{directive.content}"
    if isinstance(directive, Directed):
        ident = normalize_identifier(directive.target)
        if ident is None:
            raise ValueError(f"invalid target {directive.target!r}")
        return f"{P_TO}{ident}{TARGET_DELIM}{directive.content}"
    if isinstance(directive, RosterUpdate):
        return P_ROSTER + ROSTER_DELIM.join(directive.identifiers)
    if isinstance(directive, Plain):
        return directive.content
    raise TypeError(f"not a directive: {type(directive).__name__}")


def format_forwarded(sender: str, content: str) -> str:
    return f"{FORWARD_PREFIX}{sender}{FORWARD_DELIM}{content}"


def parse_forwarded(text: str) -> tuple[str, str] | None:
    """Split relayed text into ``(sender, content)``.

    The sender may itself contain ``:`` (identifiers do), so split on the
    first ``": "`` after the prefix.
    """
    if not text.startswith(FORWARD_PREFIX):
        return None
    rest = text[len(FORWARD_PREFIX) :]
    sender, sep, content = rest.partition(FORWARD_DELIM)
    if not sep or not sender:
        return None
    return sender, content

from __future__ import annotations

import ipaddress
import os


def expand_path(p: str) -> str:
    return os.path.expanduser(os.path.expandvars(p))


def format_identifier(address) -> str:
    """Render a socket address tuple as the ``ip:port`` wire identifier."""
    host, port = address[0], int(address[1])
    if ":" in str(host):
        return f"[{host}]:{port}"
    return f"{host}:{port}"


def normalize_identifier(value) -> str | None:
    """Parse an ``ip:port`` token; returns its canonical form or None."""
    if not isinstance(value, str):
        return None

    s = value.strip()
    if not s:
        return None

    if s.startswith("["):
        host, sep, port_text = s[1:].partition("]:")
        if not sep:
            return None
    else:
        # A bare IPv6 address would be ambiguous without brackets.
        if s.count(":") != 1:
            return None
        host, _, port_text = s.partition(":")

    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return None

    if not port_text.isdigit():
        return None
    port = int(port_text)
    if port > 65535:
        return None

    return format_identifier((str(addr), port))


def parse_identifier(value) -> tuple[str, int] | None:
    """Split a valid identifier into ``(host, port)``."""
    ident = normalize_identifier(value)
    if ident is None:
        return None
    host, _, port = ident.rpartition(":")
    return host.strip("[]"), int(port)

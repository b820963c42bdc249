"""Wire framing for relay connections.

The reference peers put no boundaries on the byte stream: each receive of at
most 100 bytes is treated as one message. ``RawFramer`` keeps that behavior
for compatibility, so a long message arrives split across several messages
and back-to-back messages may arrive merged. ``LineFramer`` and
``LengthPrefixFramer`` give every message an explicit boundary; both ends of
a connection must use the same mode.
"""

from __future__ import annotations

from .constants import (
    FRAMED_RECV_BUFFER,
    FRAMING_LENGTH,
    FRAMING_LINE,
    FRAMING_RAW,
    LENGTH_PREFIX_BYTES,
    MAX_FRAME_BYTES,
    RAW_RECV_BUFFER,
    TEXT_ENCODING,
)


class FramingError(ValueError):
    """The peer sent bytes that violate the framing in use."""


def encode(text: str) -> bytes:
    return text.encode(TEXT_ENCODING)


def decode(b: bytes) -> str:
    return b.decode(TEXT_ENCODING, errors="replace")


class RawFramer:
    mode = FRAMING_RAW

    def __init__(self, read_size: int = RAW_RECV_BUFFER) -> None:
        if read_size <= 0:
            raise ValueError("read_size must be positive")
        self.read_size = int(read_size)

    def encode(self, text: str) -> bytes:
        return encode(text)

    def feed(self, data: bytes) -> list[str]:
        if not data:
            return []
        return [decode(data)]


class LineFramer:
    mode = FRAMING_LINE

    def __init__(
        self,
        read_size: int = FRAMED_RECV_BUFFER,
        max_frame_bytes: int = MAX_FRAME_BYTES,
    ) -> None:
        if read_size <= 0:
            raise ValueError("read_size must be positive")
        self.read_size = int(read_size)
        self.max_frame_bytes = int(max_frame_bytes)
        self._buf = bytearray()

    @staticmethod
    def escape(text: str) -> str:
        return text.replace("\\", "\\\\").replace("\n", "\\n")

    @staticmethod
    def unescape(text: str) -> str:
        out: list[str] = []
        i = 0
        while i < len(text):
            ch = text[i]
            if ch == "\\" and i + 1 < len(text):
                nxt = text[i + 1]
                if nxt == "n":
                    out.append("\n")
                    i += 2
                    continue
                if nxt == "\\":
                    out.append("\\")
                    i += 2
                    continue
            out.append(ch)
            i += 1
        return "".join(out)

    def encode(self, text: str) -> bytes:
        payload = encode(self.escape(text) + "\n")
        if len(payload) - 1 > self.max_frame_bytes:
            raise FramingError(
                f"line of {len(payload) - 1} bytes exceeds limit {self.max_frame_bytes}"
            )
        return payload

    def feed(self, data: bytes) -> list[str]:
        self._buf.extend(data)
        messages: list[str] = []
        while True:
            idx = self._buf.find(b"\n")
            if idx < 0:
                break
            line = bytes(self._buf[:idx])
            del self._buf[: idx + 1]
            messages.append(self.unescape(decode(line)))
        # Whatever is left has no terminator yet.
        if len(self._buf) > self.max_frame_bytes:
            raise FramingError(
                f"unterminated line of {len(self._buf)} bytes exceeds limit {self.max_frame_bytes}"
            )
        return messages

    @property
    def pending(self) -> int:
        return len(self._buf)


class LengthPrefixFramer:
    mode = FRAMING_LENGTH

    def __init__(
        self,
        read_size: int = FRAMED_RECV_BUFFER,
        max_frame_bytes: int = MAX_FRAME_BYTES,
    ) -> None:
        if read_size <= 0:
            raise ValueError("read_size must be positive")
        self.read_size = int(read_size)
        self.max_frame_bytes = int(max_frame_bytes)
        self._buf = bytearray()

    def encode(self, text: str) -> bytes:
        payload = encode(text)
        if len(payload) > self.max_frame_bytes:
            raise FramingError(
                f"frame of {len(payload)} bytes exceeds limit {self.max_frame_bytes}"
            )
        return len(payload).to_bytes(LENGTH_PREFIX_BYTES, "big") + payload

    def feed(self, data: bytes) -> list[str]:
        self._buf.extend(data)
        messages: list[str] = []
        while len(self._buf) >= LENGTH_PREFIX_BYTES:
            size = int.from_bytes(self._buf[:LENGTH_PREFIX_BYTES], "big")
            if size > self.max_frame_bytes:
                raise FramingError(
                    f"frame of {size} bytes exceeds limit {self.max_frame_bytes}"
                )
            end = LENGTH_PREFIX_BYTES + size
            if len(self._buf) < end:
                break
            payload = bytes(self._buf[LENGTH_PREFIX_BYTES:end])
            del self._buf[:end]
            messages.append(decode(payload))
        return messages

    @property
    def pending(self) -> int:
        return len(self._buf)


Framer = RawFramer | LineFramer | LengthPrefixFramer


def make_framer(
    mode: str,
    *,
    recv_buffer_size: int | None = None,
    max_frame_bytes: int = MAX_FRAME_BYTES,
) -> Framer:
    m = str(mode).strip().lower()
    if m == FRAMING_RAW:
        return RawFramer(recv_buffer_size or RAW_RECV_BUFFER)
    if m == FRAMING_LINE:
        return LineFramer(
            recv_buffer_size or FRAMED_RECV_BUFFER, max_frame_bytes=max_frame_bytes
        )
    if m == FRAMING_LENGTH:
        return LengthPrefixFramer(
            recv_buffer_size or FRAMED_RECV_BUFFER, max_frame_bytes=max_frame_bytes
        )
    raise ValueError(f"unknown framing mode {mode!r}")

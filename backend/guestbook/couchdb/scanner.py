"""
Guestbook Backend: Feed Byte Scanner
=====================================

What:  Low-level reader over a streamed HTTP body.
How:   Buffers one chunk at a time from any iterable of `bytes` (normally
       `httpx.Response.iter_bytes()`), and offers the handful of primitives
       the feed parsers need: skip whitespace, peek, match literal tokens,
       read one complete JSON object, and read a trailing sequence token.
Who:   Owned by a single feed parser; never shared between feeds.

Error mapping:
    - Transport failures raised while pulling a chunk → TransportIOError
    - Running out of bytes in the middle of a token    → TransportIOError
    - Bytes that do not match the expected grammar     → ProtocolError
    - A quoted sequence token with broken escapes      → DecodeError
    - An object larger than `max_object_size`          → ProtocolError

Whitespace is exactly space, tab, CR and LF. Nothing else is skipped.
"""

import json
from typing import Iterable, Iterator, Optional

import httpx

from guestbook.couchdb.boundary import MAX_OBJECT_SIZE, ObjectBoundaryFSM, QUOTE, BACKSLASH
from guestbook.couchdb.errors import DecodeError, ProtocolError, TransportIOError
from guestbook.couchdb.events import SequenceValue

WHITESPACE = frozenset(b" \t\r\n")
MINUS = ord("-")
DIGITS = frozenset(b"0123456789")


class ByteScanner:
    """
    Buffered byte reader with token-level helpers.

    The scanner pulls chunks lazily, so at most one chunk plus the object
    currently being framed is held in memory regardless of feed length.
    """

    def __init__(self, chunks: Iterable[bytes], max_object_size: int = MAX_OBJECT_SIZE) -> None:
        self._chunks: Iterator[bytes] = iter(chunks)
        self._buf = b""
        self._pos = 0
        self._eof = False
        self._fsm = ObjectBoundaryFSM(max_object_size)

    # ── Buffer management ─────────────────────────────────────────────────

    def _fill(self) -> bool:
        """Make sure at least one unread byte is buffered. False at end of stream."""
        while self._pos >= len(self._buf):
            if self._eof:
                return False
            try:
                chunk = next(self._chunks)
            except StopIteration:
                self._eof = True
                return False
            except (httpx.HTTPError, httpx.StreamError, OSError) as exc:
                raise TransportIOError(
                    f"error reading from stream: {exc}",
                    context={"error_type": type(exc).__name__},
                ) from exc
            self._buf = chunk
            self._pos = 0
        return True

    def read_byte(self) -> int:
        """Consume one byte. Raises TransportIOError at end of stream."""
        if not self._fill():
            raise TransportIOError("unexpected end of stream")
        b = self._buf[self._pos]
        self._pos += 1
        return b

    def _unread_byte(self) -> None:
        # Only valid directly after read_byte(), which leaves _pos >= 1.
        self._pos -= 1

    def _peek_raw(self) -> Optional[int]:
        """Next byte without skipping whitespace or consuming; None at end of stream."""
        if not self._fill():
            return None
        return self._buf[self._pos]

    def read_exact(self, n: int) -> bytes:
        out = bytearray()
        while len(out) < n:
            if not self._fill():
                raise TransportIOError(
                    "unexpected end of stream",
                    context={"wanted": n, "got": len(out)},
                )
            take = min(n - len(out), len(self._buf) - self._pos)
            out += self._buf[self._pos:self._pos + take]
            self._pos += take
        return bytes(out)

    # ── Token primitives ──────────────────────────────────────────────────

    def skip_whitespace_and_read_byte(self) -> int:
        """Discard whitespace and return the first significant byte (consumed)."""
        while True:
            b = self.read_byte()
            if b not in WHITESPACE:
                return b

    def peek(self) -> int:
        """Next significant byte, left in the stream."""
        b = self.skip_whitespace_and_read_byte()
        self._unread_byte()
        return b

    def skip_byte(self) -> None:
        self.read_byte()

    def match_tokens(self, *tokens: str) -> None:
        """
        Consume each literal token in order, skipping whitespace before each.

        Raises ProtocolError with the bytes actually found on the first mismatch.
        """
        for token in tokens:
            expected = token.encode("ascii")
            first = self.skip_whitespace_and_read_byte()
            found = bytes([first]) + self.read_exact(len(expected) - 1)
            if found != expected:
                raise ProtocolError(
                    f"unexpected token: found {found!r}, want {token!r}",
                    found=found,
                    expected=token,
                )

    # ── Composite reads ───────────────────────────────────────────────────

    def read_object(self) -> bytes:
        """Read exactly one JSON object and return its raw bytes."""
        fsm = self._fsm
        fsm.start(self.skip_whitespace_and_read_byte())
        while not fsm.feed(self.read_byte()):
            pass
        return fsm.value()

    def read_sequence_token(self) -> SequenceValue:
        """
        Read a sequence value: a quoted string (escapes decoded) or an integer.

        Only the token itself is consumed; whatever follows stays in the stream.
        """
        first = self.skip_whitespace_and_read_byte()
        if first == QUOTE:
            return self._read_quoted(first)
        if first == MINUS or first in DIGITS:
            digits = bytearray([first])
            while True:
                nxt = self._peek_raw()
                if nxt is None or nxt not in DIGITS:
                    break
                digits.append(self.read_byte())
            try:
                return int(digits)
            except ValueError:
                raise ProtocolError(
                    f"invalid sequence number {bytes(digits)!r}",
                    found=bytes(digits),
                    expected="sequence value",
                )
        raise ProtocolError(
            f"invalid character {bytes([first])!r} at start of sequence value",
            found=bytes([first]),
            expected="sequence value",
        )

    def _read_quoted(self, opening: int) -> str:
        raw = bytearray([opening])
        escaped = False
        while True:
            b = self.read_byte()
            raw.append(b)
            if escaped:
                escaped = False
            elif b == BACKSLASH:
                escaped = True
            elif b == QUOTE:
                break
        try:
            return json.loads(raw.decode("utf-8"))
        except ValueError as exc:
            raise DecodeError(
                f"invalid quoted sequence value: {exc}",
                context={"raw": bytes(raw)},
            ) from exc

    def skip_whitespace(self) -> bool:
        """Discard whitespace. False if the stream ended cleanly before anything else."""
        while True:
            b = self._peek_raw()
            if b is None:
                return False
            if b not in WHITESPACE:
                return True
            self._pos += 1

"""
Guestbook Backend: JSON Object Boundary State Machine
======================================================

What:  Finds where one JSON object ends in a byte stream without parsing it.
How:   Tracks brace nesting, string contents and escapes with a small state
       machine plus an explicit stack of saved states. Every byte fed in is
       appended to a buffer; once the outermost `}` is seen the buffer holds
       exactly one syntactically complete object, ready for `json.loads`.
Who:   Used by `ByteScanner.read_object()` for every feed mode.

State Machine:
    IN_OBJECT         `}` → pop (done when the stack is empty)
                      `{` → push, stay IN_OBJECT
                      `"` → push, enter IN_STRING
                      other → IN_OBJECT
    IN_STRING         `\\` → IN_STRING_ESCAPE
                      `"` → pop
                      other → IN_STRING
    IN_STRING_ESCAPE  any → IN_STRING (the escaped byte is not interpreted)

    Arrays need no state of their own: brackets never change the nesting
    that matters for locating the closing brace.
"""

import enum
from typing import List, Optional

from guestbook.couchdb.errors import ProtocolError

OPEN_BRACE = ord("{")
CLOSE_BRACE = ord("}")
QUOTE = ord('"')
BACKSLASH = ord("\\")

# Largest single object accepted from a feed (16 MiB).
MAX_OBJECT_SIZE = 16 * 1024 * 1024


class ScanState(enum.Enum):
    IN_OBJECT = "in_object"
    IN_STRING = "in_string"
    IN_STRING_ESCAPE = "in_string_escape"


class ObjectBoundaryFSM:
    """
    Accumulates the bytes of a single JSON object.

    Usage:
        fsm = ObjectBoundaryFSM()
        fsm.start(first_byte)          # must be `{`
        while not fsm.done:
            fsm.feed(read_byte())
        raw = fsm.value()

    One instance can be reused for consecutive objects; `start()` resets it.
    """

    def __init__(self, max_size: int = MAX_OBJECT_SIZE) -> None:
        self._max_size = max_size
        self._state: Optional[ScanState] = None
        self._stack: List[ScanState] = []
        self._buffer = bytearray()

    @property
    def state(self) -> Optional[ScanState]:
        """Current state, or None once the object is complete."""
        return self._state

    @property
    def depth(self) -> int:
        return len(self._stack)

    @property
    def done(self) -> bool:
        return self._state is None

    def start(self, first: int) -> None:
        """Begin a new object. `first` is the byte at the object's start."""
        if first != OPEN_BRACE:
            raise ProtocolError(
                f"invalid character {bytes([first])!r} at start of JSON object",
                found=bytes([first]),
                expected="{",
            )
        self._buffer.clear()
        self._stack.clear()
        self._buffer.append(first)
        self._state = ScanState.IN_OBJECT

    def feed(self, byte: int) -> bool:
        """
        Consume one byte. Returns True when the object is complete.

        Feeding after completion is a programming error. An object growing
        past `max_size` bytes raises ProtocolError.
        """
        if self._state is None:
            raise RuntimeError("feed() called on a completed object")
        if len(self._buffer) >= self._max_size:
            raise ProtocolError(f"JSON object exceeds {self._max_size} bytes")
        self._buffer.append(byte)
        self._state = self._transition(self._state, byte)
        return self._state is None

    def value(self) -> bytes:
        """The accumulated bytes of the current object."""
        return bytes(self._buffer)

    # ── Transitions ───────────────────────────────────────────────────────

    def _transition(self, state: ScanState, byte: int) -> Optional[ScanState]:
        if state is ScanState.IN_OBJECT:
            if byte == CLOSE_BRACE:
                return self._pop()
            if byte == OPEN_BRACE:
                return self._push(ScanState.IN_OBJECT)
            if byte == QUOTE:
                return self._push(ScanState.IN_STRING)
            return ScanState.IN_OBJECT

        if state is ScanState.IN_STRING:
            if byte == BACKSLASH:
                return ScanState.IN_STRING_ESCAPE
            if byte == QUOTE:
                return self._pop()
            return ScanState.IN_STRING

        # IN_STRING_ESCAPE
        return ScanState.IN_STRING

    def _push(self, next_state: ScanState) -> ScanState:
        # The current state is saved; IN_STRING_ESCAPE never pushes, so the
        # stack only ever holds IN_OBJECT entries.
        self._stack.append(self._state)  # type: ignore[arg-type]
        return next_state

    def _pop(self) -> Optional[ScanState]:
        if not self._stack:
            return None
        return self._stack.pop()

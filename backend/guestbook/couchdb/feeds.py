"""
Guestbook Backend: Streaming Feed Iterators
============================================

What:  Iterators over CouchDB's `_changes` and `_db_updates` feeds.
How:   A `Feed` owns the streamed HTTP response and delegates decoding to a
       `FeedParser` strategy picked when the feed is opened:

       PollFeedParser        feed=normal|longpoll (or unset). The body is one
                             document: {"results":[{...},{...}],"last_seq":N}.
                             Events are framed one object at a time by the
                             byte scanner, so the array is never held whole.
       ContinuousFeedParser  feed=continuous. Whitespace-separated JSON objects
                             until a {"last_seq": ...} object or the
                             connection drops.
       DatabaseUpdatesParser _db_updates, always continuous; a clean end of
                             stream simply ends the feed.

Iteration contract:
    feed = db.changes({"feed": "continuous", "since": "now"})
    while feed.advance():
        handle(feed.event)
    if feed.last_error:
        ...  # reopen with since=feed.seq if desired

    `advance()` returns True while an event is available. `event` is valid
    until the next call. After the final False the feed is closed and
    `last_error` holds the failure, or None for a clean end.

Lifecycle:
    Open → (Reading)* → Ended. `ended` never goes back to False. The
    connection is closed exactly once: at end of stream, on the first error,
    or on an explicit `close()`, which is idempotent. Errors are not retried;
    callers reopen a new feed.

Threading:
    A feed is driven by one thread. `advance()` blocks on I/O and must not
    run concurrently with `close()`.
"""

import enum
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Generic, Iterator, Optional, Protocol, TypeVar

from guestbook.couchdb.errors import (
    ConfigurationError,
    CouchDBError,
    TransportIOError,
)
from guestbook.couchdb.events import (
    ChangeEvent,
    DatabaseUpdate,
    SequenceValue,
    decode_json_object,
)
from guestbook.couchdb.scanner import ByteScanner

logger = logging.getLogger(__name__)

CLOSE_BRACKET = ord("]")
COMMA = ord(",")

EventT = TypeVar("EventT")


class Closeable(Protocol):
    def close(self) -> None: ...


class FeedMode(str, enum.Enum):
    POLL = "poll"
    CONTINUOUS = "continuous"


def resolve_feed_mode(options: Optional[Dict[str, Any]]) -> FeedMode:
    """
    Map the `feed` option to a parsing strategy.

    Unset, "normal" and "longpoll" all produce a single bounded document.
    Anything other than those or "continuous" is rejected before a request
    is made.
    """
    value = (options or {}).get("feed")
    if value is None or value in ("normal", "longpoll"):
        return FeedMode.POLL
    if value == "continuous":
        return FeedMode.CONTINUOUS
    raise ConfigurationError(
        f'unsupported value for option "feed": {value!r}',
        option="feed",
        value=value,
    )


# ══════════════════════════════════════════════════════════════════════════
# Parser Strategies
# ══════════════════════════════════════════════════════════════════════════

class FeedParser(ABC, Generic[EventT]):
    """
    Decoding strategy behind a feed.

    Contract:
        - next_event() returns the next event, or None once the feed has
          ended cleanly (the terminal marker was read).
        - Any failure is raised as a CouchDBError subclass. The parser does
          not close anything; the owning Feed does.
        - last_seq holds the terminal sequence value once it has been read.
    """

    def __init__(self, scanner: ByteScanner) -> None:
        self.scanner = scanner
        self.last_seq: Optional[SequenceValue] = None

    @abstractmethod
    def next_event(self) -> Optional[EventT]:
        ...


class PollFeedParser(FeedParser[ChangeEvent]):
    """Parses {"results":[...],"last_seq":N} one array element at a time."""

    PREFIX = ("{", '"results"', ":", "[")
    SUFFIX = (",", '"last_seq"', ":")

    def __init__(self, scanner: ByteScanner) -> None:
        super().__init__(scanner)
        self._first = True

    def open(self) -> None:
        """Position the scanner on the first element of the results array."""
        self.scanner.match_tokens(*self.PREFIX)

    def next_event(self) -> Optional[ChangeEvent]:
        nxt = self.scanner.peek()
        if nxt == CLOSE_BRACKET:
            self.scanner.skip_byte()
            self.scanner.match_tokens(*self.SUFFIX)
            self.last_seq = self.scanner.read_sequence_token()
            return None
        if nxt == COMMA and not self._first:
            self.scanner.skip_byte()
        self._first = False
        return ChangeEvent.from_json(self.scanner.read_object())


class _ObjectStreamParser(FeedParser[EventT]):
    """
    Shared framing for streamed feeds: whitespace-separated JSON objects.

    Objects may share a line or span several; blank heartbeat lines are
    just whitespace.
    """

    def read_row(self) -> Optional[Dict[str, Any]]:
        """Next object in the stream; None at a clean end of stream."""
        if not self.scanner.skip_whitespace():
            return None
        return decode_json_object(self.scanner.read_object())


def _terminal_sequence(row: Dict[str, Any]) -> Optional[SequenceValue]:
    value = row.get("last_seq")
    if isinstance(value, (int, str)) and not isinstance(value, bool):
        return value
    return None


def _is_terminal(row: Dict[str, Any]) -> bool:
    value = row.get("last_seq")
    return value is not None and value is not False


class ContinuousFeedParser(_ObjectStreamParser[ChangeEvent]):
    """
    Parses a continuous `_changes` feed.

    The server is expected to keep the connection open; a closed stream
    without a preceding {"last_seq": ...} object is reported as an error.
    """

    def next_event(self) -> Optional[ChangeEvent]:
        row = self.read_row()
        if row is None:
            raise TransportIOError("continuous feed closed by server")
        if _is_terminal(row):
            self.last_seq = _terminal_sequence(row)
            return None
        return ChangeEvent.from_row(row)


class DatabaseUpdatesParser(_ObjectStreamParser[DatabaseUpdate]):
    """Parses the `_db_updates` feed. End of stream ends the feed cleanly."""

    def next_event(self) -> Optional[DatabaseUpdate]:
        row = self.read_row()
        if row is None:
            return None
        if _is_terminal(row):
            self.last_seq = _terminal_sequence(row)
            return None
        return DatabaseUpdate.from_row(row)


# ══════════════════════════════════════════════════════════════════════════
# Feeds
# ══════════════════════════════════════════════════════════════════════════

class Feed(Generic[EventT]):
    """
    Iterator state shared by all feeds.

    Owns `conn` (the streamed response) exclusively from construction on.
    """

    def __init__(self, conn: Closeable, parser: FeedParser[EventT]) -> None:
        self._conn = conn
        self._parser = parser
        self._event: Optional[EventT] = None
        self._last_error: Optional[CouchDBError] = None
        self._ended = False
        self._closed = False

    @property
    def event(self) -> Optional[EventT]:
        """The current event; only meaningful after advance() returned True."""
        return self._event

    @property
    def last_error(self) -> Optional[CouchDBError]:
        return self._last_error

    @property
    def ended(self) -> bool:
        return self._ended

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def last_seq(self) -> Optional[SequenceValue]:
        """Terminal sequence value sent by the server, once the feed has ended."""
        return self._parser.last_seq

    def advance(self) -> bool:
        """Decode the next event. False once the feed has ended or failed."""
        if self._ended:
            return False
        self._event = None
        try:
            event = self._parser.next_event()
        except CouchDBError as exc:
            self._last_error = exc
            logger.warning(
                "%s ended with %s: %s",
                type(self).__name__,
                type(exc).__name__,
                exc.message,
            )
            self.close()
            return False
        except Exception:
            logger.exception("%s failed unexpectedly", type(self).__name__)
            self.close()
            raise

        self._last_error = None
        if event is None:
            logger.debug("%s reached its end (last_seq=%r)", type(self).__name__, self.last_seq)
            self.close()
            return False
        self._event = event
        return True

    def close(self) -> None:
        """Terminate the feed and release its connection. Safe to call repeatedly."""
        self._ended = True
        if self._closed:
            return
        self._closed = True
        self._conn.close()
        logger.debug("%s connection closed", type(self).__name__)

    def __iter__(self) -> Iterator[EventT]:
        """Yield events until the end; a terminal error is re-raised."""
        while self.advance():
            yield self._event  # type: ignore[misc]
        if self._last_error is not None:
            raise self._last_error

    def __enter__(self) -> "Feed[EventT]":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()


class ChangesFeed(Feed[ChangeEvent]):
    """Iterator over a database's `_changes` feed."""

    def __init__(
        self,
        conn: Closeable,
        parser: FeedParser[ChangeEvent],
        database: Optional[str] = None,
    ) -> None:
        super().__init__(conn, parser)
        self.database = database

    @classmethod
    def open(
        cls,
        conn: Closeable,
        chunks: Any,
        mode: FeedMode,
        database: Optional[str] = None,
    ) -> "ChangesFeed":
        """
        Build a feed over an already-sent streaming response.

        In poll mode the `{"results":[` prefix is matched here; on mismatch
        the connection is closed before the error propagates.
        """
        scanner = ByteScanner(chunks)
        parser: FeedParser[ChangeEvent]
        if mode is FeedMode.POLL:
            poll = PollFeedParser(scanner)
            try:
                poll.open()
            except Exception:
                conn.close()
                raise
            parser = poll
        else:
            parser = ContinuousFeedParser(scanner)
        logger.debug("Opened %s changes feed for %s", mode.value, database)
        return cls(conn, parser, database=database)

    @property
    def document_id(self) -> str:
        return self._event.document_id if self._event else ""

    @property
    def seq(self) -> Optional[SequenceValue]:
        """Sequence of the current event, or the terminal value after the end."""
        if self._event is not None:
            return self._event.sequence
        return self.last_seq


class DatabaseUpdatesFeed(Feed[DatabaseUpdate]):
    """Iterator over the server-wide `_db_updates` feed."""

    @classmethod
    def open(cls, conn: Closeable, chunks: Any) -> "DatabaseUpdatesFeed":
        return cls(conn, DatabaseUpdatesParser(ByteScanner(chunks)))

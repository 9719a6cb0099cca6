"""
Guestbook Backend: Changes Feed Tests
======================================

What:  Poll and continuous `_changes` decoding, feed lifecycle, `_db_updates`.
How:   Feeds are built directly over in-memory chunks with a mock connection,
       or end to end through `Database.changes()` against a MockTransport.

What we test:
    ✅ Poll mode: N events then a clean end carrying last_seq
    ✅ Poll mode framing: nested braces and escaped quotes inside strings
    ✅ Continuous mode: terminal marker, heartbeats, unexpected close
    ✅ Continuous framing: objects sharing a line or spanning several
    ✅ Errors end the feed, close the connection once and stay in last_error
    ✅ Unsupported feed modes are rejected before any request
    ✅ `_db_updates` ends cleanly at end of stream
"""

import json
import logging
from unittest.mock import MagicMock

import httpx
import pytest

from conftest import StreamBody, chunked
from guestbook.couchdb import (
    ChangeEvent,
    ChangesFeed,
    ConfigurationError,
    DatabaseUpdatesFeed,
    DecodeError,
    FeedMode,
    ProtocolError,
    TransportIOError,
)
from guestbook.couchdb.feeds import Feed, resolve_feed_mode


def poll_payload(rows, last_seq, pretty=False) -> bytes:
    if pretty:
        body = '{"results":[\n' + ",\n".join(json.dumps(r) for r in rows) + "\n],\n"
        return (body + f'"last_seq":{json.dumps(last_seq)},"pending":0}}\n').encode()
    return json.dumps({"results": rows, "last_seq": last_seq}, separators=(",", ":")).encode()


def open_poll(conn, data: bytes, size: int = 7) -> ChangesFeed:
    return ChangesFeed.open(conn, chunked(data, size), FeedMode.POLL, database="mydb")


def open_continuous(conn, data: bytes, size: int = 5) -> ChangesFeed:
    return ChangesFeed.open(conn, chunked(data, size), FeedMode.CONTINUOUS, database="mydb")


# ══════════════════════════════════════════════════════════════════════════
# Poll mode
# ══════════════════════════════════════════════════════════════════════════

class TestPollFeed:

    def test_single_event_then_last_seq(self, mock_conn):
        data = b'{"results":[{"id":"doc1","changes":[{"rev":"1-a"}]}],"last_seq":5}'
        feed = open_poll(mock_conn, data)

        assert feed.advance() is True
        assert feed.event.document_id == "doc1"
        assert feed.event.revisions == ["1-a"]
        assert feed.document_id == "doc1"

        assert feed.advance() is False
        assert feed.last_error is None
        assert feed.ended is True
        assert feed.last_seq == 5
        assert feed.seq == 5
        mock_conn.close.assert_called_once()

    @pytest.mark.parametrize("count", [0, 1, 3, 25])
    @pytest.mark.parametrize("pretty", [False, True])
    def test_n_events(self, mock_conn, count, pretty):
        rows = [
            {"seq": i + 1, "id": f"doc{i}", "changes": [{"rev": f"{i}-x"}]}
            for i in range(count)
        ]
        feed = open_poll(mock_conn, poll_payload(rows, count, pretty=pretty), size=3)

        seen = []
        while feed.advance():
            seen.append(feed.event.document_id)

        assert seen == [f"doc{i}" for i in range(count)]
        assert feed.last_error is None
        assert feed.last_seq == count

    def test_string_sequences(self, mock_conn):
        rows = [{"seq": "1-g1AAAA", "id": "a", "changes": [{"rev": "1-a"}]}]
        feed = open_poll(mock_conn, poll_payload(rows, "1-g1AAAA"))
        assert feed.advance()
        assert feed.seq == "1-g1AAAA"
        assert not feed.advance()
        assert feed.last_seq == "1-g1AAAA"

    def test_nested_braces_inside_strings(self, mock_conn):
        data = (
            b'{"results":[{"id":"a","note":"{nested}","changes":[]},'
            b'{"id":"b","note":"}{","changes":[]}],"last_seq":2}'
        )
        feed = open_poll(mock_conn, data, size=1)
        ids = [event.document_id for event in feed]
        assert ids == ["a", "b"]

    def test_escaped_quote_inside_string(self, mock_conn):
        data = b'{"results":[{"id":"a","note":"a\\"b}","changes":[]}],"last_seq":1}'
        feed = open_poll(mock_conn, data)
        assert feed.advance()
        assert feed.event.document_id == "a"
        assert not feed.advance()
        assert feed.last_error is None

    def test_include_docs_snapshot(self, mock_conn):
        rows = [{"id": "v1", "seq": 1, "changes": [{"rev": "1-a"}], "doc": {"_id": "v1", "name": "Bob"}}]
        feed = open_poll(mock_conn, poll_payload(rows, 1))
        assert feed.advance()
        assert feed.event.load_document() == {"_id": "v1", "name": "Bob"}

    def test_malformed_prefix_closes_connection(self, mock_conn):
        with pytest.raises(ProtocolError):
            open_poll(mock_conn, b'[{"id":"a"}]')
        mock_conn.close.assert_called_once()

    def test_truncated_body_is_transport_error(self, mock_conn):
        feed = open_poll(mock_conn, b'{"results":[{"id":"a","changes":[]},{"id":"b"')
        assert feed.advance()
        assert not feed.advance()
        assert isinstance(feed.last_error, TransportIOError)
        assert feed.ended
        mock_conn.close.assert_called_once()

    def test_bad_suffix_is_protocol_error(self, mock_conn):
        feed = open_poll(mock_conn, b'{"results":[],"pending":0}')
        assert not feed.advance()
        assert isinstance(feed.last_error, ProtocolError)

    @pytest.mark.parametrize("row", [
        b'{"id":"a","deleted":"maybe"}',
        b'{"id":"a","deleted":"yes"}',
        b'{"id":"a","seq":true}',
        b'{"id":5,"seq":1}',
        b'{"id":"a","changes":[{"rev":1}]}',
    ])
    def test_wrong_field_type_is_decode_error(self, mock_conn, row):
        feed = open_poll(mock_conn, b'{"results":[' + row + b'],"last_seq":1}')
        assert not feed.advance()
        assert isinstance(feed.last_error, DecodeError)
        mock_conn.close.assert_called_once()


# ══════════════════════════════════════════════════════════════════════════
# Continuous mode
# ══════════════════════════════════════════════════════════════════════════

class TestContinuousFeed:

    def test_event_then_terminal_marker(self, mock_conn):
        data = b'{"id":"x","seq":1,"changes":[]}\n{"last_seq":1}\n'
        feed = open_continuous(mock_conn, data)

        assert feed.advance()
        assert feed.event.document_id == "x"
        assert feed.event.sequence == 1
        assert feed.event.revisions == []

        assert not feed.advance()
        assert feed.ended
        assert feed.last_error is None
        assert feed.last_seq == 1
        assert not feed.advance()
        mock_conn.close.assert_called_once()

    def test_heartbeats_are_skipped(self, mock_conn):
        data = b'\n\n{"id":"a","seq":1,"changes":[{"rev":"1-a"}]}\n\n{"id":"b","seq":2,"deleted":true,"changes":[{"rev":"2-b"}]}\n{"last_seq":2}\n'
        events = list(open_continuous(mock_conn, data, size=4))
        assert [e.document_id for e in events] == ["a", "b"]
        assert events[1].deleted is True

    def test_close_without_marker_is_an_error(self, mock_conn):
        feed = open_continuous(mock_conn, b'{"id":"a","seq":1,"changes":[]}\n')
        assert feed.advance()
        assert not feed.advance()
        assert isinstance(feed.last_error, TransportIOError)
        mock_conn.close.assert_called_once()

    def test_iteration_reraises_terminal_error(self, mock_conn):
        feed = open_continuous(mock_conn, b'{"id":"a","seq":1,"changes":[]}\n{"id":,}\n')
        seen = []
        with pytest.raises(DecodeError):
            for event in feed:
                seen.append(event.document_id)
        assert seen == ["a"]

    def test_close_is_idempotent(self, mock_conn):
        feed = open_continuous(mock_conn, b'{"id":"a","seq":1,"changes":[]}\n')
        feed.close()
        feed.close()
        assert feed.closed
        assert not feed.advance()
        assert feed.last_error is None
        mock_conn.close.assert_called_once()

    def test_context_manager_closes(self, mock_conn):
        with open_continuous(mock_conn, b'{"id":"a","seq":1,"changes":[]}\n') as feed:
            assert feed.advance()
        assert feed.closed
        mock_conn.close.assert_called_once()

    def test_objects_sharing_a_line(self, mock_conn):
        data = b'{"id":"x","seq":1,"changes":[]} {"id":"y","seq":2,"changes":[]}{"last_seq":2}\n'
        feed = open_continuous(mock_conn, data)
        assert [event.document_id for event in feed] == ["x", "y"]
        assert feed.last_error is None
        assert feed.last_seq == 2

    def test_object_spanning_lines(self, mock_conn):
        data = b'{"id":"x",\n "seq":1,\n "changes":[\n  {"rev":"1-a"}\n ]}\n{\n"last_seq":1\n}\n'
        feed = open_continuous(mock_conn, data, size=3)
        assert feed.advance()
        assert feed.event.revisions == ["1-a"]
        assert not feed.advance()
        assert feed.last_error is None
        assert feed.last_seq == 1

    def test_non_object_is_protocol_error(self, mock_conn):
        feed = open_continuous(mock_conn, b'{"id":"a","seq":1,"changes":[]}\nnot json\n')
        assert feed.advance()
        assert not feed.advance()
        assert isinstance(feed.last_error, ProtocolError)
        mock_conn.close.assert_called_once()

    def test_unexpected_exception_is_logged_and_propagates(self, mock_conn, caplog):
        parser = MagicMock()
        parser.next_event.side_effect = RuntimeError("boom")
        feed = Feed(mock_conn, parser)

        with caplog.at_level(logging.ERROR, logger="guestbook.couchdb.feeds"):
            with pytest.raises(RuntimeError):
                feed.advance()

        assert feed.closed
        assert feed.last_error is None
        mock_conn.close.assert_called_once()
        assert any(
            record.levelno == logging.ERROR and record.exc_info for record in caplog.records
        )


class TestChangeEventRoundTrip:

    @pytest.mark.parametrize("row", [
        {"id": "a", "seq": 3, "changes": [{"rev": "1-a"}, {"rev": "1-b"}]},
        {"id": "b", "seq": "7-g1AAA", "changes": [{"rev": "2-c"}], "deleted": True},
    ])
    def test_round_trip(self, row):
        event = ChangeEvent.from_row(row)
        again = ChangeEvent.from_row(event.to_row())
        assert again == event
        assert event.to_row() == row

    def test_change_entry_without_rev(self):
        with pytest.raises(DecodeError):
            ChangeEvent.from_row({"id": "a", "changes": [{"x": 1}]})


# ══════════════════════════════════════════════════════════════════════════
# Feed mode selection and end-to-end through the client
# ══════════════════════════════════════════════════════════════════════════

class TestFeedMode:

    @pytest.mark.parametrize("options,expected", [
        (None, FeedMode.POLL),
        ({}, FeedMode.POLL),
        ({"feed": "normal"}, FeedMode.POLL),
        ({"feed": "longpoll"}, FeedMode.POLL),
        ({"feed": "continuous"}, FeedMode.CONTINUOUS),
    ])
    def test_resolve(self, options, expected):
        assert resolve_feed_mode(options) is expected

    def test_unsupported_mode_sends_nothing(self, couch_client, fake_couch):
        with pytest.raises(ConfigurationError) as exc_info:
            couch_client.db("mydb").changes({"feed": "eventsource"})
        assert exc_info.value.option == "feed"
        assert fake_couch.requests == []


class TestDatabaseChanges:

    def test_continuous_over_http(self, couch_client, fake_couch):
        body = StreamBody([b'{"id":"a","seq":1,', b'"changes":[{"rev":"1-a"}]}\n{"last', b'_seq":1}\n'])
        fake_couch.route("GET", "/mydb/_changes", httpx.Response(200, stream=body))

        feed = couch_client.db("mydb").changes(
            {"feed": "continuous", "since": "now", "include_docs": True, "heartbeat": 30000}
        )
        events = list(feed)

        assert [e.document_id for e in events] == ["a"]
        assert body.closed
        params = fake_couch.last.url.params
        assert params["feed"] == "continuous"
        assert params["include_docs"] == "true"
        assert params["heartbeat"] == "30000"
        assert feed.database == "mydb"

    def test_poll_malformed_prefix_over_http(self, couch_client, fake_couch):
        body = StreamBody([b'[{"id":"a"}]'])
        fake_couch.route("GET", "/mydb/_changes", httpx.Response(200, stream=body))

        with pytest.raises(ProtocolError):
            couch_client.db("mydb").changes()
        assert body.closed

    def test_error_status_raises_response_error(self, couch_client, fake_couch):
        from guestbook.couchdb import ResponseError, is_not_found

        with pytest.raises(ResponseError) as exc_info:
            couch_client.db("missing").changes()
        assert is_not_found(exc_info.value)


class TestDatabaseUpdates:

    def test_clean_end_of_stream(self, couch_client, fake_couch):
        body = StreamBody([
            b'{"db_name":"mydb","type":"created","seq":"1-a"}\n',
            b'\n{"db_name":"mydb","type":"updated","seq":"2-b"}\n',
        ])
        fake_couch.route("GET", "/_db_updates", httpx.Response(200, stream=body))
        options = {"since": "now"}

        feed = couch_client.db_updates(options)
        updates = list(feed)

        assert [(u.db_name, u.event_type) for u in updates] == [("mydb", "created"), ("mydb", "updated")]
        assert feed.last_error is None
        assert body.closed
        assert fake_couch.last.url.params["feed"] == "continuous"
        assert options == {"since": "now"}

    def test_open_directly(self, mock_conn):
        feed = DatabaseUpdatesFeed.open(mock_conn, [b'{"db_name":"a","type":"deleted"}\n{"last_seq":"9-z"}\n'])
        assert feed.advance()
        assert feed.event.event_type == "deleted"
        assert not feed.advance()
        assert feed.last_seq == "9-z"

    def test_coerced_values_are_rejected(self, mock_conn):
        feed = DatabaseUpdatesFeed.open(mock_conn, [b'{"db_name":"a","type":"created","ok":"true"}'])
        assert not feed.advance()
        assert isinstance(feed.last_error, DecodeError)
        mock_conn.close.assert_called_once()

"""
Guestbook Backend: CouchDB Client Package
==========================================

What:  A small blocking CouchDB client with a streaming `_changes` reader.
How:   `CouchDBClient` and `Database` issue plain JSON requests through a
       shared httpx transport. `Database.changes()` returns a `ChangesFeed`
       that decodes events one at a time while the response is still
       arriving, in either poll or continuous mode.

Module Inventory:
    - errors.py:      exception hierarchy and status predicates
    - http.py:        transport, path building, option encoding
    - client.py:      CouchDBClient, Database, Security
    - attachments.py: Attachment record
    - boundary.py:    state machine that frames one JSON object in a byte stream
    - scanner.py:     buffered token reader over the streamed body
    - events.py:      ChangeEvent and DatabaseUpdate models
    - feeds.py:       feed iterators and their parsing strategies
"""

from guestbook.couchdb.attachments import Attachment
from guestbook.couchdb.client import CouchDBClient, Database, Members, Security
from guestbook.couchdb.errors import (
    ConfigurationError,
    CouchDBError,
    DecodeError,
    ProtocolError,
    ResponseError,
    TransportIOError,
    has_status,
    is_conflict,
    is_not_found,
    is_unauthorized,
)
from guestbook.couchdb.events import ChangeEvent, DatabaseUpdate
from guestbook.couchdb.feeds import ChangesFeed, DatabaseUpdatesFeed, FeedMode

__all__ = [
    "Attachment",
    "ChangeEvent",
    "ChangesFeed",
    "ConfigurationError",
    "CouchDBClient",
    "CouchDBError",
    "Database",
    "DatabaseUpdate",
    "DatabaseUpdatesFeed",
    "DecodeError",
    "FeedMode",
    "Members",
    "ProtocolError",
    "ResponseError",
    "Security",
    "TransportIOError",
    "has_status",
    "is_conflict",
    "is_not_found",
    "is_unauthorized",
]

"""
Guestbook Backend: CouchDB Client Exception Hierarchy
======================================================

What:  Errors raised by the vendored CouchDB client and its feed reader.
How:   Every error carries a message and an optional context dict, the same
       shape as the application-level errors in `guestbook.exceptions`.
Who:   Raised by `guestbook.couchdb`; translated to HTTP responses by the
       global handlers registered in `guestbook.main`.

Exception Hierarchy:
    CouchDBError (base)
    ├── ResponseError        → server answered with HTTP status >= 400
    ├── ProtocolError        → feed bytes do not match the expected token grammar
    ├── DecodeError          → a complete object failed to decode (also ValueError)
    ├── TransportIOError     → transport failure or unexpected end of stream (also IOError)
    └── ConfigurationError   → unsupported option value (also ValueError)

Feed semantics:
    ProtocolError, DecodeError and TransportIOError are fatal to a feed. The feed
    ends, closes its connection and keeps the error in `Feed.last_error`.
    Nothing is retried inside the client.
"""

from typing import Any, Dict, Optional


class CouchDBError(Exception):
    """
    Base exception for all client errors.

    Attributes:
        message:  Human-readable description
        context:  Extra debug info (logged server-side, never returned to API clients)
    """

    def __init__(
        self,
        message: str = "CouchDB client error",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ResponseError(CouchDBError):
    """
    The server replied with a status code >= 400.

    CouchDB reports API-level errors as `{"error": <code>, "reason": <text>}`.
    Both are empty for HEAD requests, which carry no body.
    """

    def __init__(
        self,
        method: str,
        url: str,
        status_code: int,
        error_code: str = "",
        reason: str = "",
    ):
        self.method = method
        self.url = url
        self.status_code = status_code
        self.error_code = error_code
        self.reason = reason
        if error_code:
            message = f"{method} {url}: ({status_code}) {error_code}: {reason}"
        else:
            message = f"{method} {url}: {status_code}"
        super().__init__(
            message=message,
            context={
                "status_code": status_code,
                "error": error_code,
                "reason": reason,
            },
        )


class ProtocolError(CouchDBError):
    """
    The feed byte stream does not match the expected token grammar.

    Carries the bytes that were found and the token that was expected so a
    malformed response can be diagnosed from the log line alone.
    """

    def __init__(
        self,
        message: str = "Unexpected token in feed",
        found: Optional[bytes] = None,
        expected: Optional[str] = None,
    ):
        ctx: Dict[str, Any] = {}
        if found is not None:
            ctx["found"] = found
        if expected is not None:
            ctx["expected"] = expected
        super().__init__(message=message, context=ctx)
        self.found = found
        self.expected = expected


class DecodeError(CouchDBError, ValueError):
    """A byte range framed as one JSON object could not be decoded."""

    def __init__(
        self,
        message: str = "Could not decode feed object",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class TransportIOError(CouchDBError, IOError):
    """
    The underlying transport failed, or the stream ended where more bytes
    were required. Network-level closes and truncated bodies both land here.
    """

    def __init__(
        self,
        message: str = "Transport failure while reading from CouchDB",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ConfigurationError(CouchDBError, ValueError):
    """An option holds a value the client cannot handle, e.g. an unknown feed mode."""

    def __init__(
        self,
        message: str = "Invalid client configuration",
        option: Optional[str] = None,
        value: Any = None,
    ):
        ctx: Dict[str, Any] = {}
        if option is not None:
            ctx["option"] = option
            ctx["value"] = value
        super().__init__(message=message, context=ctx)
        self.option = option
        self.value = value


# ── Status predicates ─────────────────────────────────────────────────────

def has_status(err: BaseException, status_code: int) -> bool:
    """True when `err` is a ResponseError with the given status code."""
    return isinstance(err, ResponseError) and err.status_code == status_code


def is_not_found(err: BaseException) -> bool:
    return has_status(err, 404)


def is_unauthorized(err: BaseException) -> bool:
    return has_status(err, 401)


def is_conflict(err: BaseException) -> bool:
    return has_status(err, 409)

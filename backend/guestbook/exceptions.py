"""
Guestbook Backend: Custom Exception Hierarchy
==============================================

What:  Application-level exceptions for the guestbook API.
Why:   Services translate low-level client failures into these so the global
       handlers in main.py can pick the HTTP status without knowing CouchDB.
How:   Each exception carries a message and an optional context dict.
       Context is logged server-side and only returned for client errors.

Exception Hierarchy:
    GuestbookError (base)
    ├── ValidationError           → 400 Bad Request (client can fix)
    ├── DatabaseError             → 500 Internal Server Error
    └── DatabaseUnavailableError  → 503 Service Unavailable (retry later)

Client-side errors from `guestbook.couchdb.errors` that escape a service are
handled separately in main.py.
"""

from typing import Any, Dict, Optional


class GuestbookError(Exception):
    """
    Base exception for all guestbook application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(GuestbookError):
    """
    Raised when client input fails a business rule.

    HTTP: 400 Bad Request. Schema-level problems are caught earlier by
    FastAPI and answered with 422.
    """

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class DatabaseError(GuestbookError):
    """
    The database answered, but with an error.

    HTTP: 500. The message returned to the client is generic; the CouchDB
    error code and reason stay in the server log.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseUnavailableError(GuestbookError):
    """
    The database could not be reached after all retries, or is not configured.

    HTTP: 503 Service Unavailable.
    """

    def __init__(
        self,
        message: str = "The database is temporarily unavailable",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)

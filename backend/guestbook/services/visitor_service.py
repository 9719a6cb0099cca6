"""
Guestbook Backend: Visitor Service
===================================

What:  Records visitors and lists them back.
How:   The CouchDB client is blocking, so each call runs in Starlette's
       threadpool. Reads are retried with tenacity on any transport failure.
       Writes are retried only when the connection was never established,
       since a POST that reached CouchDB may already have stored the
       document. Whatever still fails is translated into the application
       exception hierarchy.
Who:   Called by routes/visitors.py.

Error translation:
    TransportIOError (after retries) → DatabaseUnavailableError (503)
    ResponseError                    → DatabaseError (500)
    No database configured           → DatabaseUnavailableError on write,
                                       empty list on read
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from starlette.concurrency import run_in_threadpool
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from guestbook.config import settings
from guestbook.couchdb import Database, ResponseError, TransportIOError
from guestbook.exceptions import (
    DatabaseError,
    DatabaseUnavailableError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def _retrying(condition):
    return retry(
        retry=condition,
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )


def _never_sent(exc: BaseException) -> bool:
    """True for transport failures raised before the request left the client."""
    return isinstance(exc, TransportIOError) and isinstance(
        exc.__cause__, (httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout)
    )


_retry_transport_errors = _retrying(retry_if_exception_type(TransportIOError))
_retry_unsent_writes = _retrying(retry_if_exception(_never_sent))


class VisitorService:
    """
    Business logic for the guestbook.

    Stateless: the database handle is passed in on every call.
    """

    async def add_visitor(self, db: Optional[Database], name: str) -> str:
        """
        Store `{"name": name}` as a new document and return the greeting.

        Raises:
            ValidationError:          name is blank
            DatabaseUnavailableError: no database, or unreachable after retries
            DatabaseError:            CouchDB rejected the write
        """
        if not name.strip():
            raise ValidationError("Name must not be blank", field="name")
        if db is None:
            raise DatabaseUnavailableError("The database is not configured")

        start_time = time.perf_counter()
        doc_id, rev = await self._call(self._post_visitor, db, name)
        logger.info(
            "Recorded visitor as %s (rev %s) in %.0fms",
            doc_id,
            rev,
            (time.perf_counter() - start_time) * 1000,
        )
        return f"Hello {name}"

    async def list_visitors(self, db: Optional[Database]) -> List[Dict[str, Any]]:
        """All visitor rows including their documents; empty without a database."""
        if db is None:
            return []
        data = await self._call(self._fetch_all, db)
        rows = data.get("rows", []) if isinstance(data, dict) else []
        logger.debug("Fetched %d visitor rows", len(rows))
        return rows

    # ── Blocking calls (run in the threadpool) ────────────────────────────

    @_retry_unsent_writes
    def _post_visitor(self, db: Database, name: str):
        return db.post({"name": name})

    @_retry_transport_errors
    def _fetch_all(self, db: Database) -> Dict[str, Any]:
        return db.all_docs({"include_docs": True})

    async def _call(self, func, *args):
        try:
            return await run_in_threadpool(func, *args)
        except TransportIOError as e:
            logger.error("Database unreachable: %s", e)
            raise DatabaseUnavailableError(context=dict(e.context)) from e
        except ResponseError as e:
            raise DatabaseError(
                context={
                    "status_code": e.status_code,
                    "error": e.error_code,
                    "reason": e.reason,
                },
            ) from e


visitor_service = VisitorService()

"""
Guestbook Backend: Database Client Lifecycle
=============================================

What:  Process-wide CouchDB client, startup bootstrap and FastAPI dependency.
How:   The client is built lazily from settings on first use and shared by
       every request (httpx pools connections internally). The guestbook
       database is created at startup if it does not exist yet.
Who:   main.py calls ensure_database()/close_client() from the lifespan;
       routes receive a `Database` through `Depends(get_database)`.
"""

import logging
import threading
from typing import Optional

from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from guestbook.config import settings
from guestbook.couchdb import CouchDBClient, Database, TransportIOError
from guestbook.exceptions import DatabaseUnavailableError

logger = logging.getLogger(__name__)

_client: Optional[CouchDBClient] = None
_client_lock = threading.Lock()


def get_client() -> CouchDBClient:
    """The shared client. Raises DatabaseUnavailableError when CLOUDANT_URL is unset."""
    global _client
    if not settings.database_configured:
        raise DatabaseUnavailableError("The database is not configured")
    with _client_lock:
        if _client is None:
            _client = CouchDBClient(
                settings.cloudant_url,
                timeout=settings.couchdb_timeout,
                feed_timeout=settings.feed_read_timeout,
            )
            logger.info("CouchDB client created for %s", _client.url)
        return _client


def get_database() -> Optional[Database]:
    """
    FastAPI dependency yielding the guestbook database handle.

    Returns None when no database is configured so that read-only routes can
    degrade gracefully; write paths reject None themselves.
    """
    if not settings.database_configured:
        return None
    return get_client().db(settings.database_name)


@retry(
    retry=retry_if_exception_type(TransportIOError),
    stop=stop_after_attempt(settings.retry_max_attempts),
    wait=wait_exponential_jitter(
        initial=settings.retry_min_wait,
        max=settings.retry_max_wait,
        jitter=1,
    ),
    before_sleep=before_sleep_log(logger, logging.WARNING),
    reraise=True,
)
def ensure_database() -> Database:
    """Create the guestbook database unless it exists. Blocking; retried on transport errors."""
    db = get_client().ensure_db(settings.database_name)
    logger.info("Database %s is ready", db.name)
    return db


def close_client() -> None:
    """Close the shared client, if one was created. Called at shutdown."""
    global _client
    with _client_lock:
        if _client is not None:
            _client.close()
            _client = None
            logger.info("CouchDB client closed")

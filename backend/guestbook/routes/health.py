"""
Guestbook Backend: Health Check Route
======================================

What:  Health check endpoint for monitoring and load balancer checks.
How:   Pings the CouchDB server with a HEAD request.

Status levels:
    healthy:   database reachable
    degraded:  no database configured (front end still served)
    unhealthy: database configured but unreachable
"""

import logging
import time

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from guestbook import __version__
from guestbook.config import settings
from guestbook.couchdb import CouchDBError
from guestbook.database import get_client
from guestbook.schemas.visitor import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
)
async def health_check() -> HealthResponse:
    """Ping the database and report aggregate status. Always answers 200."""
    db_status = "connected"
    overall = "healthy"

    if not settings.database_configured:
        db_status = "not_configured"
        overall = "degraded"
    else:
        try:
            await run_in_threadpool(get_client().ping)
        except CouchDBError as e:
            db_status = "disconnected"
            overall = "unhealthy"
            logger.warning("Health check: database unreachable: %s", e.message)

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )

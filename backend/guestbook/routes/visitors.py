"""
Guestbook Backend: Visitor Route Handlers
==========================================

What:  POST /api/visitors (record a visitor) and GET /api/visitors (list them).
How:   Validates the body with Pydantic, delegates to VisitorService.
Who:   Called by the static front end's form and visitor list.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from guestbook.couchdb import Database
from guestbook.database import get_database
from guestbook.schemas.visitor import ErrorResponse, VisitorCreate, VisitorRow
from guestbook.services.visitor_service import visitor_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Visitors"])


@router.post(
    "/visitors",
    response_class=PlainTextResponse,
    responses={
        200: {"description": "Greeting for the new visitor", "content": {"text/plain": {}}},
        400: {"description": "Blank name", "model": ErrorResponse},
        500: {"description": "Database rejected the write", "model": ErrorResponse},
        503: {"description": "Database unavailable", "model": ErrorResponse},
    },
    summary="Record a visitor",
)
async def add_visitor(
    payload: VisitorCreate,
    db: Optional[Database] = Depends(get_database),
) -> str:
    """Store the visitor's name and greet them, e.g. `Hello Bob`."""
    return await visitor_service.add_visitor(db, payload.name)


@router.get(
    "/visitors",
    response_model=List[VisitorRow],
    responses={
        500: {"description": "Database error", "model": ErrorResponse},
        503: {"description": "Database unavailable", "model": ErrorResponse},
    },
    summary="List recorded visitors",
    description=(
        "Returns every document in the guestbook database as `_all_docs` rows "
        "with the document included. Empty when no database is configured."
    ),
)
async def list_visitors(
    db: Optional[Database] = Depends(get_database),
) -> List[VisitorRow]:
    rows = await visitor_service.list_visitors(db)
    return [VisitorRow.model_validate(row) for row in rows]

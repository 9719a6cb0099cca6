"""
Guestbook Backend: Pydantic Schemas (API Request/Response Models)
==================================================================

What:  Pydantic models defining the shape of API requests and responses.
Why:   Validation on input and a documented contract in the OpenAPI schema.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class VisitorCreate(BaseModel):
    """Body of POST /api/visitors."""

    name: str = Field(min_length=1, max_length=200, description="Visitor name")

    model_config = {
        "json_schema_extra": {"examples": [{"name": "Bob"}]},
    }


class VisitorRow(BaseModel):
    """
    One row of `_all_docs?include_docs=true`.

    Extra fields CouchDB may add are passed through untouched.
    """

    id: str = Field(description="Document ID")
    key: str = Field(description="Row key (equal to the document ID)")
    value: Dict[str, Any] = Field(default_factory=dict, description="Row value, holds the revision")
    doc: Optional[Dict[str, Any]] = Field(default=None, description="The visitor document")

    model_config = {"extra": "allow"}


class ErrorResponse(BaseModel):
    """
    Standard error response format for all API errors.

    Every error response has the same shape, so the front end can handle
    all errors in one place.
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[Dict[str, Any]] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request ID for support correlation")


class HealthResponse(BaseModel):
    """Returned by GET /health."""

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected, not_configured")
    uptime_seconds: float = Field(description="Seconds since service started")

"""
Common schema types used across the API.
"""

from typing import Any, List, Optional

from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
    code: Optional[str] = None
    request_id: Optional[str] = None
    errors: Optional[List[Any]] = None


class QueuedResponse(BaseModel):
    """Returned with 202 when the requested work is not ready yet."""

    queued: bool = True
    message: str
    ticket_id: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str
    database: str = "connected"
    ai_configured: bool = False
    generation_jobs_pending: int = 0

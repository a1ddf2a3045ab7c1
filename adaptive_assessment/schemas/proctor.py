"""
Pydantic schemas for the proctoring API.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from adaptive_assessment.kernel.models.proctor_log import ViolationType


class ViolationEventRequest(BaseModel):
    """A client-reported proctoring event."""

    violation_type: ViolationType
    details: Dict[str, Any] = Field(default_factory=dict)


class ViolationEventResponse(BaseModel):
    log_id: uuid.UUID
    severity: str
    proctor_summary: Dict[str, int]
    invalidated: bool
    status: str


class ProctorLogResponse(BaseModel):
    id: uuid.UUID
    violation_type: str
    severity: str
    details: Dict[str, Any] = {}
    timestamp: datetime


class ProctorLogListResponse(BaseModel):
    session_id: uuid.UUID
    logs: List[ProctorLogResponse]
    limit: int
    offset: int


class ProctorSummaryResponse(BaseModel):
    session_id: uuid.UUID
    proctor_summary: Dict[str, int]
    by_type: Dict[str, int] = {}
    invalidated: bool
    status: str
    risk_threshold: int


class OverrideRequest(BaseModel):
    """Instructor override: "invalidate" or "restore" with a reason."""

    action: str
    reason: str


class OverrideResponse(BaseModel):
    session_id: uuid.UUID
    status: str
    invalidated: bool
    proctor_summary: Dict[str, int]
    override: Optional[Dict[str, Any]] = None

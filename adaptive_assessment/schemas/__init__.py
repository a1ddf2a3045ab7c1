"""
Pydantic schemas for API request/response validation.
"""

from adaptive_assessment.schemas.assessment import (
    AnswerRequest,
    AnswerResponse,
    CurrentItemResponse,
    FinishResponse,
    SessionDetailsResponse,
    SessionSummary,
    StartSessionRequest,
    StartSessionResponse,
)
from adaptive_assessment.schemas.common import ErrorResponse, HealthResponse, QueuedResponse
from adaptive_assessment.schemas.items import ItemCreateRequest, ItemResponse, ItemUpdateRequest
from adaptive_assessment.schemas.mastery import MasteryProfileResponse
from adaptive_assessment.schemas.proctor import (
    OverrideRequest,
    OverrideResponse,
    ViolationEventRequest,
    ViolationEventResponse,
)

__all__ = [
    "AnswerRequest",
    "AnswerResponse",
    "CurrentItemResponse",
    "FinishResponse",
    "SessionDetailsResponse",
    "SessionSummary",
    "StartSessionRequest",
    "StartSessionResponse",
    "ErrorResponse",
    "HealthResponse",
    "QueuedResponse",
    "ItemCreateRequest",
    "ItemResponse",
    "ItemUpdateRequest",
    "MasteryProfileResponse",
    "OverrideRequest",
    "OverrideResponse",
    "ViolationEventRequest",
    "ViolationEventResponse",
]

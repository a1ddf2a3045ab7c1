"""
Pydantic schemas for the assessment session API.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from adaptive_assessment.kernel.models.session import SessionMode


class StartSessionRequest(BaseModel):
    """Start a new assessment session."""

    mode: SessionMode = SessionMode.FORMATIVE
    topics: List[str] = Field(default_factory=list)
    limit: int = Field(default=6, ge=1, le=50)
    proctored: bool = False
    difficulty: Optional[List[int]] = Field(
        default=None,
        description="Explicit difficulty buckets (1-5); overrides the mode mapping",
    )


class StartSessionResponse(BaseModel):
    """A newly started session."""

    session_id: uuid.UUID
    item_ids: List[uuid.UUID]
    current_index: int
    total: int
    mode: str
    status: str
    proctored: bool
    proctor_config: Optional[Dict[str, Any]] = None


class SessionSummary(BaseModel):
    id: uuid.UUID
    mode: str
    status: str
    current_index: int
    total: int
    score: Optional[int] = None
    proctored: bool
    invalidated: bool
    proctor_summary: Dict[str, int] = Field(default_factory=dict)
    created_at: datetime
    completed_at: Optional[datetime] = None


class ItemViewSchema(BaseModel):
    """Item as shown while answering (no answer key)."""

    id: uuid.UUID
    item_type: str
    question: str
    choices: List[str] = []
    hints: List[str] = []
    difficulty: int
    bloom: Optional[str] = None
    topics: List[str] = []


class CurrentItemResponse(BaseModel):
    session_id: uuid.UUID
    current_index: int
    total: int
    item: ItemViewSchema


class AnswerRequest(BaseModel):
    """
    Answer for the current item.

    `answer_index` selects a choice for mcq items when `answer` is omitted.
    """

    answer: Any = None
    answer_index: Optional[int] = None
    time_taken_ms: int = Field(default=0, ge=0)


class AnswerResponse(BaseModel):
    is_correct: bool
    score: float
    explanation: str
    current_index: int
    has_more: bool
    needs_manual_grading: bool = False


class FinishResponse(BaseModel):
    session_id: uuid.UUID
    score: int
    total: int
    correct: int
    completed_at: Optional[datetime] = None
    already_completed: bool = False


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class SessionStatisticsSchema(BaseModel):
    total: int
    correct: int
    incorrect: int
    unanswered: int
    accuracy: int
    score: int


class ItemResultSchema(BaseModel):
    index: int
    item_id: uuid.UUID
    question: str
    item_type: str
    choices: List[str] = []
    correct_answer: Any = None
    explanation: str = ""
    topics: List[str] = []
    difficulty: Optional[int] = None
    bloom: Optional[str] = None
    attempt: Optional[Dict[str, Any]] = None


class SessionDetailsResponse(BaseModel):
    """Per-item review of a session."""

    session: SessionSummary
    statistics: SessionStatisticsSchema
    errors_by_topic: Dict[str, List[Dict[str, Any]]] = {}
    results: List[ItemResultSchema] = []


class RecommendationSchema(BaseModel):
    topic: str
    action: str
    resources: List[str] = []
    practice_suggestions: List[str] = []


class RemediationResponse(BaseModel):
    remediation: str
    weak_topics: List[str] = []
    recommendations: List[RecommendationSchema] = []
    next_steps: List[str] = []
    generated: bool = False


class SessionEventSchema(BaseModel):
    id: uuid.UUID
    event_type: str
    user_id: Optional[uuid.UUID] = None
    payload: Dict[str, Any] = {}
    created_at: datetime


class SessionHistoryResponse(BaseModel):
    """Audit trail for one session, newest first."""

    session_id: uuid.UUID
    events: List[SessionEventSchema]
    limit: int
    offset: int


# --- generated batches ------------------------------------------------------

class GenerateAssessmentRequest(BaseModel):
    topic: str = Field(min_length=1, max_length=255)
    count: int = Field(default=10, ge=1, le=50)


class BatchResponse(BaseModel):
    id: uuid.UUID
    topic: str
    title: str
    status: str
    validated: bool
    item_count: int
    created_at: datetime
    published_at: Optional[datetime] = None


class GenerateAssessmentResponse(BaseModel):
    batch: BatchResponse
    item_ids: List[uuid.UUID]
    errors: List[str] = []

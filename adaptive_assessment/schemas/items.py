"""
Pydantic schemas for item bank authoring.
"""

import uuid
from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, Field

from adaptive_assessment.kernel.models.item import BloomLevel, GradingMethod, ItemType


class ItemCreateRequest(BaseModel):
    item_type: ItemType
    question: str = Field(min_length=1)
    choices: List[str] = []
    answer: Any
    grading_method: Optional[GradingMethod] = None
    difficulty: int = Field(default=3, ge=1, le=5)
    bloom: Optional[BloomLevel] = None
    topics: List[str] = []
    skills: List[str] = []
    hints: List[str] = []
    explanation: str = ""


class ItemUpdateRequest(BaseModel):
    """Partial update; omitted fields keep their value."""

    item_type: Optional[ItemType] = None
    question: Optional[str] = Field(default=None, min_length=1)
    choices: Optional[List[str]] = None
    answer: Optional[Any] = None
    grading_method: Optional[GradingMethod] = None
    difficulty: Optional[int] = Field(default=None, ge=1, le=5)
    bloom: Optional[BloomLevel] = None
    topics: Optional[List[str]] = None
    skills: Optional[List[str]] = None
    hints: Optional[List[str]] = None
    explanation: Optional[str] = None


class ItemResponse(BaseModel):
    """Full item, including the answer key (authoring view)."""

    id: uuid.UUID
    item_type: str
    question: str
    choices: List[str]
    answer: Any
    grading_method: str
    difficulty: int
    bloom: Optional[str] = None
    topics: List[str]
    skills: List[str]
    hints: List[str]
    explanation: str
    ai_generated: bool
    batch_id: Optional[uuid.UUID] = None
    created_at: datetime
    updated_at: datetime

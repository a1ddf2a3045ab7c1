"""
Pydantic schemas for mastery API.
"""

import uuid
from typing import Dict

from pydantic import BaseModel


class MasteryRecordSchema(BaseModel):
    mastery: float
    attempts: int
    streak: int
    time_on_task_ms: int


class MasteryProfileResponse(BaseModel):
    """The caller's mastery per attempted topic."""

    user_id: uuid.UUID
    topics: Dict[str, MasteryRecordSchema]

"""
Attempt model - one graded answer.
"""

import uuid
from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import Boolean, DateTime, Float, ForeignKey, Integer, JSON, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from adaptive_assessment.kernel.models.base import Base, generate_uuid, utc_now


class Attempt(Base):
    """Immutable record of a graded answer. One per (session, item)."""

    __tablename__ = "attempts"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("assessment_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("items.id"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)

    is_correct: Mapped[bool] = mapped_column(Boolean, nullable=False)
    user_answer: Mapped[Any] = mapped_column(JSON, nullable=True)
    score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    grading_details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    explanation: Mapped[str] = mapped_column(Text, nullable=False, default="")
    needs_manual_grading: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    time_taken_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Proctor events logged shortly before the answer was submitted
    proctor_log_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        UniqueConstraint("session_id", "item_id", name="uq_attempts_session_item"),
    )

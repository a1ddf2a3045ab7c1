"""
Assessment session model - one test-taking instance.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, List, Optional

from sqlalchemy import Boolean, DateTime, Index, Integer, JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from adaptive_assessment.kernel.models.base import Base, TimestampMixin, generate_uuid


class SessionMode(str, Enum):
    DIAGNOSTIC = "diagnostic"
    FORMATIVE = "formative"
    SUMMATIVE = "summative"
    PROCTORED = "proctored"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    INVALIDATED = "invalidated"


class AssessmentSession(Base, TimestampMixin):
    """
    A student's run through a fixed, ordered list of items.

    `item_ids` is fixed at creation and `current_index` only ever moves
    forward by one per graded answer. Proctoring counters live in their own
    columns so violation ingestion can increment them in a single UPDATE.
    """

    __tablename__ = "assessment_sessions"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    mode: Mapped[SessionMode] = mapped_column(String(20), nullable=False)
    item_ids: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    current_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[SessionStatus] = mapped_column(
        String(20),
        nullable=False,
        default=SessionStatus.ACTIVE,
    )
    score: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    # Proctoring
    proctored: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    proctor_config: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)
    tab_switch_allowance: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    minor_violations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    major_violations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_violations: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tab_switch_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    invalidated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    invalidated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    # Selection metadata, requested topics, last override
    session_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSON,
        nullable=False,
        default=dict,
    )

    __table_args__ = (
        Index("ix_assessment_sessions_user_created", "user_id", "created_at"),
    )

    @property
    def total_items(self) -> int:
        return len(self.item_ids or [])

    @property
    def has_more(self) -> bool:
        return self.current_index < self.total_items

    def proctor_summary(self) -> dict[str, int]:
        return {
            "minor_violations": self.minor_violations,
            "major_violations": self.major_violations,
            "total_violations": self.total_violations,
            "tab_switch_count": self.tab_switch_count,
            "risk_score": self.risk_score,
        }

    def __repr__(self) -> str:
        return f"<AssessmentSession {self.id} {self.status} {self.current_index}/{self.total_items}>"

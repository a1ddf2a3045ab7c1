"""
Mastery model - per-user, per-topic competence estimate.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from adaptive_assessment.kernel.models.base import Base, TimestampMixin, generate_uuid


class TopicMastery(Base, TimestampMixin):
    """
    Mastery record for one (user, topic).
    Created lazily on the first graded attempt in the topic; never deleted.
    """

    __tablename__ = "topic_mastery"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    topic: Mapped[str] = mapped_column(String(255), nullable=False)

    mastery: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    time_on_task_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_active_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    __table_args__ = (UniqueConstraint("user_id", "topic", name="uq_topic_mastery_user_topic"),)

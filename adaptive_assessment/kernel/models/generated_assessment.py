"""
Generated assessment batches produced by the question generator.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional

from sqlalchemy import Boolean, DateTime, Index, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from adaptive_assessment.kernel.models.base import Base, TimestampMixin, generate_uuid

if TYPE_CHECKING:
    from adaptive_assessment.kernel.models.item import Item


class BatchStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    FAILED = "failed"


class GeneratedAssessment(Base, TimestampMixin):
    """
    One generation run for a topic.

    `items` holds the parsed item dicts exactly as the generator produced
    them; bank Items materialized from the batch point back here through
    `Item.batch_id`.
    """

    __tablename__ = "generated_assessments"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    topic: Mapped[str] = mapped_column(String(255), nullable=False)
    topic_key: Mapped[str] = mapped_column(String(255), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    items: Mapped[List[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    raw_response: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    validated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    status: Mapped[BatchStatus] = mapped_column(
        String(20),
        nullable=False,
        default=BatchStatus.DRAFT,
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)
    published_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    published_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)

    linked_items: Mapped[List["Item"]] = relationship(back_populates="batch")

    __table_args__ = (
        Index("ix_generated_assessments_topic_status", "topic_key", "status"),
        Index("ix_generated_assessments_created", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<GeneratedAssessment {self.topic!r} {self.status}>"

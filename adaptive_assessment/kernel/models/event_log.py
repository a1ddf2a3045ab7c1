"""
Immutable event log for audit trail.

Session lifecycle changes, proctoring decisions and instructor overrides are
recorded here in the same transaction as the change itself.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, String, func, Index, JSON, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from adaptive_assessment.kernel.models.base import Base, generate_uuid, utc_now


class EventType(str, Enum):
    """All event types for the audit log."""

    # Session lifecycle
    SESSION_STARTED = "session.started"
    SESSION_COMPLETED = "session.completed"
    SESSION_CANCELLED = "session.cancelled"
    SESSION_INVALIDATED = "session.invalidated"
    SESSION_RESTORED = "session.restored"

    # Proctoring
    PROCTOR_AUTO_INVALIDATED = "proctor.auto_invalidated"
    PROCTOR_OVERRIDE = "proctor.override"

    # Item bank
    ITEM_CREATED = "item.created"
    ITEM_UPDATED = "item.updated"

    # Generation
    BATCH_GENERATED = "batch.generated"
    BATCH_PUBLISHED = "batch.published"
    PLACEHOLDERS_CREATED = "batch.placeholders_created"


class EntityType(str, Enum):
    SESSION = "assessment_session"
    ITEM = "item"
    BATCH = "generated_assessment"


class EventLog(Base):
    """
    Immutable audit event log.

    Append-only: rows are never updated or deleted.
    """

    __tablename__ = "event_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        primary_key=True,
        default=generate_uuid,
    )
    event_type: Mapped[EventType] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    entity_type: Mapped[EntityType] = mapped_column(
        String(50),
        nullable=False,
    )
    entity_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(),
        nullable=False,
        index=True,
    )
    # System events (auto-invalidation, background generation) have no actor
    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(),
        nullable=True,
        index=True,
    )
    payload: Mapped[dict] = mapped_column(
        JSON,
        nullable=False,
        default=dict,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_event_logs_entity", "entity_type", "entity_id"),
        Index("ix_event_logs_type_time", "event_type", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<EventLog {self.event_type} {self.entity_type}:{self.entity_id}>"

"""
Event Store service for append-only audit logging.

State changes that matter for review (session lifecycle, proctoring
decisions, overrides, item authoring, batch publication) are logged here in
the same transaction as the change.
"""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, and_, desc
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_assessment.kernel.models.event_log import EntityType, EventLog, EventType


class EventStore:
    """
    Service for managing the immutable event log.

    Usage:
        event_store = EventStore(session)
        await event_store.log(
            event_type=EventType.SESSION_STARTED,
            entity_type=EntityType.SESSION,
            entity_id=assessment_session.id,
            user_id=actor_id,
            payload={"mode": "formative", "item_count": 6},
        )
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def log(
        self,
        event_type: EventType,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> EventLog:
        """
        Append an event to the audit log.

        The row is only added to the session; the caller's transaction
        commits it together with the change it describes.

        Args:
            event_type: The type of event
            entity_type: The type of entity the event is about
            entity_id: The ID of the entity
            user_id: The acting user (None for system events)
            payload: Additional event data

        Returns:
            The created EventLog record
        """
        if payload:
            payload = self._serialize_payload(payload)

        event = EventLog(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            payload=payload or {},
        )
        self.session.add(event)
        return event

    async def get_entity_history(
        self,
        entity_type: EntityType,
        entity_id: uuid.UUID,
        event_types: Optional[List[EventType]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[EventLog]:
        """
        Get the event history for a specific entity, newest first.
        """
        query = select(EventLog).where(
            and_(
                EventLog.entity_type == EntityType(entity_type).value,
                EventLog.entity_id == entity_id,
            )
        )
        if event_types:
            query = query.where(EventLog.event_type.in_([EventType(t).value for t in event_types]))

        query = query.order_by(desc(EventLog.created_at)).offset(offset).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    def _serialize_payload(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Convert payload values to JSON-serializable types."""
        return {key: self._serialize_value(value) for key, value in payload.items()}

    def _serialize_value(self, value: Any) -> Any:
        if isinstance(value, uuid.UUID):
            return str(value)
        if isinstance(value, datetime):
            return value.isoformat()
        if isinstance(value, dict):
            return self._serialize_payload(value)
        if isinstance(value, (list, tuple)):
            return [self._serialize_value(v) for v in value]
        return value

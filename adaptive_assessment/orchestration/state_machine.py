"""
State machine for the AssessmentSession lifecycle.

    active -> completed     normal finish (session owner)
    active -> cancelled     explicit cancel (owner or instructor)
    active -> invalidated   proctoring breach or instructor override
    invalidated -> active   instructor override "restore"

No other transition is legal.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_assessment.exceptions import InvalidTransition
from adaptive_assessment.kernel.events.event_store import EventStore
from adaptive_assessment.kernel.models.base import utc_now
from adaptive_assessment.kernel.models.event_log import EntityType, EventType
from adaptive_assessment.kernel.models.session import AssessmentSession, SessionStatus


class TransitionActor(str, Enum):
    """Who is driving a status change."""
    OWNER = "owner"
    INSTRUCTOR = "instructor"
    PROCTORING = "proctoring"


# (from_status, to_status) -> actors that may trigger it
_TRANSITIONS: Dict[Tuple[str, str], Set[TransitionActor]] = {
    (SessionStatus.ACTIVE.value, SessionStatus.COMPLETED.value): {TransitionActor.OWNER},
    (SessionStatus.ACTIVE.value, SessionStatus.CANCELLED.value): {
        TransitionActor.OWNER,
        TransitionActor.INSTRUCTOR,
    },
    (SessionStatus.ACTIVE.value, SessionStatus.INVALIDATED.value): {
        TransitionActor.PROCTORING,
        TransitionActor.INSTRUCTOR,
    },
    (SessionStatus.INVALIDATED.value, SessionStatus.ACTIVE.value): {TransitionActor.INSTRUCTOR},
}

_EVENT_FOR_TARGET = {
    SessionStatus.COMPLETED.value: EventType.SESSION_COMPLETED,
    SessionStatus.CANCELLED.value: EventType.SESSION_CANCELLED,
    SessionStatus.INVALIDATED.value: EventType.SESSION_INVALIDATED,
    SessionStatus.ACTIVE.value: EventType.SESSION_RESTORED,
}


def _status_value(status: SessionStatus | str) -> str:
    return status.value if isinstance(status, SessionStatus) else str(status)


def valid_transitions(from_status: SessionStatus | str) -> List[str]:
    """Target statuses reachable from `from_status`."""
    source = _status_value(from_status)
    return sorted({t for (f, t) in _TRANSITIONS if f == source})


def can_transition(
    actor: TransitionActor,
    from_status: SessionStatus | str,
    to_status: SessionStatus | str,
) -> bool:
    """Check if `actor` may move a session from_status -> to_status."""
    allowed = _TRANSITIONS.get((_status_value(from_status), _status_value(to_status)), set())
    return actor in allowed


class SessionStateMachine:
    """Applies status transitions to sessions with audit logging."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.event_store = EventStore(session)

    async def transition(
        self,
        assessment_session: AssessmentSession,
        to_status: SessionStatus,
        actor: TransitionActor,
        actor_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
        at: Optional[datetime] = None,
    ) -> AssessmentSession:
        """
        Move a session to `to_status`.

        Raises:
            InvalidTransition: transition not in the table for this actor
        """
        from_status = _status_value(assessment_session.status)
        target = _status_value(to_status)
        if not can_transition(actor, from_status, target):
            raise InvalidTransition(
                f"Invalid transition: {from_status} -> {target} by {actor.value}",
                from_status=from_status,
                to_status=target,
            )

        at = at or utc_now()
        assessment_session.status = SessionStatus(target)
        if target == SessionStatus.COMPLETED.value:
            assessment_session.completed_at = at
        elif target == SessionStatus.INVALIDATED.value:
            assessment_session.invalidated = True
            assessment_session.invalidated_at = at
        elif target == SessionStatus.ACTIVE.value:
            assessment_session.invalidated = False
            assessment_session.invalidated_at = None

        payload = {"from_status": from_status, "to_status": target, "actor": actor.value}
        if reason:
            payload["reason"] = reason
        await self.event_store.log(
            event_type=_EVENT_FOR_TARGET[target],
            entity_type=EntityType.SESSION,
            entity_id=assessment_session.id,
            user_id=actor_id,
            payload=payload,
        )
        return assessment_session

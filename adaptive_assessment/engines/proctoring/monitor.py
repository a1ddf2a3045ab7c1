"""
Proctoring Integrity Monitor.

Severity rules:
- devtools_opened, page_exit_attempt: always major
- tab_switch: major once the session's tab-switch count has reached the
  allowance, minor before that
- everything else: minor

risk_score = majors * 5 + minors. Reaching the threshold while the session
is active invalidates it; only an instructor override can restore it.

Counter increments, the severity decision for tab switches, the risk score
and the conditional status change all happen in one UPDATE ... RETURNING so
bursts of events for the same session cannot lose increments.
"""

import uuid
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import and_, case, func, literal, select, true, update, DateTime
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_assessment.exceptions import (
    OverrideValidationError,
    SessionNotFound,
    SessionNotProctored,
)
from adaptive_assessment.kernel.events.event_store import EventStore
from adaptive_assessment.kernel.models.base import ensure_utc, utc_now
from adaptive_assessment.kernel.models.event_log import EntityType, EventType
from adaptive_assessment.kernel.models.proctor_log import ProctorLog, Severity, ViolationType
from adaptive_assessment.kernel.models.session import AssessmentSession, SessionStatus
from adaptive_assessment.logging_config import get_logger
from adaptive_assessment.orchestration.state_machine import SessionStateMachine, TransitionActor

logger = get_logger(__name__)

ALWAYS_MAJOR = frozenset({ViolationType.DEVTOOLS_OPENED, ViolationType.PAGE_EXIT_ATTEMPT})
MAJOR_WEIGHT = 5
MINOR_WEIGHT = 1


class ViolationOutcome(BaseModel):
    """Result of recording one violation."""

    log_id: uuid.UUID
    severity: Severity
    proctor_summary: Dict[str, int]
    invalidated: bool
    status: SessionStatus


def classify_violation(
    violation_type: ViolationType,
    tab_switch_count: int,
    allowance: int,
) -> Severity:
    """
    Severity of a violation given the tab-switch count *before* this event.
    """
    if violation_type in ALWAYS_MAJOR:
        return Severity.MAJOR
    if violation_type == ViolationType.TAB_SWITCH and tab_switch_count >= allowance:
        return Severity.MAJOR
    return Severity.MINOR


def risk_score(major_violations: int, minor_violations: int) -> int:
    return major_violations * MAJOR_WEIGHT + minor_violations * MINOR_WEIGHT


class ProctorMonitor:
    """Violation ingestion, log queries and instructor overrides."""

    OVERRIDE_ACTIONS = ("invalidate", "restore")

    def __init__(self, session: AsyncSession, risk_threshold: int = 20):
        self.session = session
        self.risk_threshold = risk_threshold
        self.event_store = EventStore(session)

    async def record_violation(
        self,
        session_id: uuid.UUID,
        violation_type: ViolationType | str,
        details: Optional[Dict[str, Any]] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> ViolationOutcome:
        """
        Record a violation for a proctored session.

        With `user_id`, the session must belong to that user.

        Raises:
            SessionNotFound: unknown session (or not owned by `user_id`)
            SessionNotProctored: session is not proctored
        """
        vtype = ViolationType(violation_type)
        owner = await self.session.execute(
            select(AssessmentSession.user_id, AssessmentSession.proctored)
            .where(AssessmentSession.id == session_id)
        )
        row = owner.one_or_none()
        if row is None or (user_id is not None and row.user_id != user_id):
            raise SessionNotFound()
        if not row.proctored:
            raise SessionNotProctored()

        now = utc_now()
        S = AssessmentSession
        if vtype in ALWAYS_MAJOR:
            major_inc = literal(1)
        elif vtype == ViolationType.TAB_SWITCH:
            major_inc = case((S.tab_switch_count >= S.tab_switch_allowance, 1), else_=0)
        else:
            major_inc = literal(0)

        new_major = S.major_violations + major_inc
        new_minor = S.minor_violations + (1 - major_inc)
        new_risk = new_major * MAJOR_WEIGHT + new_minor * MINOR_WEIGHT
        trips = and_(S.status == SessionStatus.ACTIVE.value, new_risk >= self.risk_threshold)

        stmt = (
            update(S)
            .where(S.id == session_id)
            .values(
                major_violations=new_major,
                minor_violations=new_minor,
                total_violations=S.total_violations + 1,
                tab_switch_count=S.tab_switch_count + (1 if vtype == ViolationType.TAB_SWITCH else 0),
                risk_score=new_risk,
                status=case((trips, SessionStatus.INVALIDATED.value), else_=S.status),
                invalidated=case((trips, true()), else_=S.invalidated),
                invalidated_at=case(
                    (trips, literal(now, type_=DateTime(timezone=True))),
                    else_=S.invalidated_at,
                ),
                updated_at=now,
            )
            .returning(
                S.minor_violations,
                S.major_violations,
                S.total_violations,
                S.tab_switch_count,
                S.tab_switch_allowance,
                S.risk_score,
                S.status,
                S.invalidated,
                S.invalidated_at,
            )
            .execution_options(synchronize_session=False)
        )
        counters = (await self.session.execute(stmt)).one()

        if vtype in ALWAYS_MAJOR or (
            vtype == ViolationType.TAB_SWITCH
            and counters.tab_switch_count > counters.tab_switch_allowance
        ):
            severity = Severity.MAJOR
        else:
            severity = Severity.MINOR

        log = ProctorLog(
            session_id=session_id,
            user_id=row.user_id,
            violation_type=vtype,
            severity=severity,
            details=details or {},
            timestamp=now,
        )
        self.session.add(log)

        newly_invalidated = ensure_utc(counters.invalidated_at) == now
        if newly_invalidated:
            await self.event_store.log(
                event_type=EventType.PROCTOR_AUTO_INVALIDATED,
                entity_type=EntityType.SESSION,
                entity_id=session_id,
                payload={
                    "risk_score": counters.risk_score,
                    "threshold": self.risk_threshold,
                    "trigger": vtype.value,
                },
            )
            logger.warning(
                "Session invalidated by proctoring",
                extra={"session_id": str(session_id), "risk_score": counters.risk_score},
            )

        await self.session.flush()

        summary = {
            "minor_violations": counters.minor_violations,
            "major_violations": counters.major_violations,
            "total_violations": counters.total_violations,
            "tab_switch_count": counters.tab_switch_count,
            "risk_score": counters.risk_score,
        }
        logger.info(
            "Proctor violation recorded",
            extra={"session_id": str(session_id), "violation_type": vtype.value, "severity": severity.value},
        )
        return ViolationOutcome(
            log_id=log.id,
            severity=severity,
            proctor_summary=summary,
            invalidated=bool(counters.invalidated),
            status=SessionStatus(counters.status),
        )

    async def override(
        self,
        session_id: uuid.UUID,
        action: str,
        reason: str,
        actor_id: uuid.UUID,
    ) -> AssessmentSession:
        """
        Instructor override of a session's invalidation.

        invalidate: active -> invalidated (already-invalidated sessions just
            get the new reason recorded)
        restore: clears the invalidated flag; status returns to active only
            if it was invalidated

        Raises:
            OverrideValidationError: unknown action or blank reason
            SessionNotFound: unknown session
            InvalidTransition: e.g. invalidating a completed session
        """
        if action not in self.OVERRIDE_ACTIONS:
            raise OverrideValidationError(f"Unknown override action: {action}")
        reason = (reason or "").strip()
        if not reason:
            raise OverrideValidationError("Override reason is required")

        result = await self.session.execute(
            select(AssessmentSession)
            .where(AssessmentSession.id == session_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        assessment_session = result.scalar_one_or_none()
        if assessment_session is None:
            raise SessionNotFound()

        now = utc_now()
        machine = SessionStateMachine(self.session)
        status = assessment_session.status
        if action == "invalidate":
            if status == SessionStatus.INVALIDATED:
                assessment_session.invalidated = True
            else:
                await machine.transition(
                    assessment_session,
                    SessionStatus.INVALIDATED,
                    TransitionActor.INSTRUCTOR,
                    actor_id=actor_id,
                    reason=reason,
                    at=now,
                )
        else:
            if status == SessionStatus.INVALIDATED:
                await machine.transition(
                    assessment_session,
                    SessionStatus.ACTIVE,
                    TransitionActor.INSTRUCTOR,
                    actor_id=actor_id,
                    reason=reason,
                    at=now,
                )
            else:
                assessment_session.invalidated = False

        override_record = {
            "action": action,
            "reason": reason,
            "actor_id": str(actor_id),
            "timestamp": now.isoformat(),
        }
        # Reassign so the JSON column is marked dirty
        metadata = dict(assessment_session.session_metadata or {})
        metadata["override"] = override_record
        metadata["override_history"] = list(metadata.get("override_history", [])) + [override_record]
        assessment_session.session_metadata = metadata

        await self.event_store.log(
            event_type=EventType.PROCTOR_OVERRIDE,
            entity_type=EntityType.SESSION,
            entity_id=assessment_session.id,
            user_id=actor_id,
            payload=override_record,
        )
        await self.session.flush()
        await self.session.refresh(assessment_session)

        logger.info(
            "Proctor override applied",
            extra={"session_id": str(session_id), "action": action, "actor_id": str(actor_id)},
        )
        return assessment_session

    async def get_session_logs(
        self,
        session_id: uuid.UUID,
        limit: int = 50,
        offset: int = 0,
        violation_type: Optional[ViolationType] = None,
        severity: Optional[Severity] = None,
        user_id: Optional[uuid.UUID] = None,
    ) -> List[ProctorLog]:
        """Proctor logs for a session, newest first."""
        await self._load_session(session_id, user_id)
        q = select(ProctorLog).where(ProctorLog.session_id == session_id)
        if violation_type:
            q = q.where(ProctorLog.violation_type == ViolationType(violation_type).value)
        if severity:
            q = q.where(ProctorLog.severity == Severity(severity).value)
        q = q.order_by(ProctorLog.timestamp.desc()).offset(offset).limit(limit)
        result = await self.session.execute(q)
        return list(result.scalars().all())

    async def get_summary(
        self,
        session_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """Counters plus a per-type breakdown of the session's violations."""
        assessment_session = await self._load_session(session_id, user_id)
        by_type = await self.session.execute(
            select(ProctorLog.violation_type, func.count(ProctorLog.id))
            .where(ProctorLog.session_id == session_id)
            .group_by(ProctorLog.violation_type)
        )
        return {
            "proctor_summary": assessment_session.proctor_summary(),
            "by_type": {vtype: count for vtype, count in by_type.all()},
            "invalidated": assessment_session.invalidated,
            "status": assessment_session.status,
            "risk_threshold": self.risk_threshold,
        }

    async def _load_session(
        self,
        session_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> AssessmentSession:
        q = (
            select(AssessmentSession)
            .where(AssessmentSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        if user_id is not None:
            q = q.where(AssessmentSession.user_id == user_id)
        assessment_session = (await self.session.execute(q)).scalar_one_or_none()
        if assessment_session is None:
            raise SessionNotFound()
        return assessment_session

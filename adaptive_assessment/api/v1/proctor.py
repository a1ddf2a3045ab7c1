"""
Proctoring endpoints - violation events, logs, summary and overrides.
"""

import uuid
from typing import Optional

from fastapi import APIRouter, Query

from adaptive_assessment.api.deps import CurrentActor, InstructorActor, Proctor
from adaptive_assessment.kernel.models.proctor_log import Severity, ViolationType
from adaptive_assessment.schemas.proctor import (
    OverrideRequest,
    OverrideResponse,
    ProctorLogListResponse,
    ProctorLogResponse,
    ProctorSummaryResponse,
    ViolationEventRequest,
    ViolationEventResponse,
)

router = APIRouter()


def _enum_val(e) -> str:
    return e.value if hasattr(e, "value") else str(e)


@router.post("/sessions/{session_id}/events", response_model=ViolationEventResponse)
async def report_violation(
    session_id: uuid.UUID,
    request: ViolationEventRequest,
    actor: CurrentActor,
    monitor: Proctor,
):
    """Record a client-side proctoring event for the caller's session."""
    outcome = await monitor.record_violation(
        session_id,
        request.violation_type,
        request.details,
        user_id=actor.id,
    )
    return ViolationEventResponse(
        log_id=outcome.log_id,
        severity=outcome.severity.value,
        proctor_summary=outcome.proctor_summary,
        invalidated=outcome.invalidated,
        status=outcome.status.value,
    )


@router.get("/sessions/{session_id}/logs", response_model=ProctorLogListResponse)
async def get_logs(
    session_id: uuid.UUID,
    actor: CurrentActor,
    monitor: Proctor,
    violation_type: Optional[ViolationType] = None,
    severity: Optional[Severity] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """Violation log, newest first. Students see only their own sessions."""
    logs = await monitor.get_session_logs(
        session_id,
        limit=limit,
        offset=offset,
        violation_type=violation_type,
        severity=severity,
        user_id=None if actor.is_instructor else actor.id,
    )
    return ProctorLogListResponse(
        session_id=session_id,
        logs=[
            ProctorLogResponse(
                id=log.id,
                violation_type=_enum_val(log.violation_type),
                severity=_enum_val(log.severity),
                details=log.details or {},
                timestamp=log.timestamp,
            )
            for log in logs
        ],
        limit=limit,
        offset=offset,
    )


@router.get("/sessions/{session_id}/summary", response_model=ProctorSummaryResponse)
async def get_summary(
    session_id: uuid.UUID,
    actor: CurrentActor,
    monitor: Proctor,
):
    summary = await monitor.get_summary(
        session_id,
        user_id=None if actor.is_instructor else actor.id,
    )
    return ProctorSummaryResponse(
        session_id=session_id,
        proctor_summary=summary["proctor_summary"],
        by_type={_enum_val(k): v for k, v in summary["by_type"].items()},
        invalidated=summary["invalidated"],
        status=_enum_val(summary["status"]),
        risk_threshold=summary["risk_threshold"],
    )


@router.post("/sessions/{session_id}/override", response_model=OverrideResponse)
async def override_session(
    session_id: uuid.UUID,
    request: OverrideRequest,
    actor: InstructorActor,
    monitor: Proctor,
):
    """Invalidate or restore a session (instructor/admin, reason required)."""
    s = await monitor.override(session_id, request.action, request.reason, actor.id)
    return OverrideResponse(
        session_id=s.id,
        status=_enum_val(s.status),
        invalidated=s.invalidated,
        proctor_summary=s.proctor_summary(),
        override=(s.session_metadata or {}).get("override"),
    )

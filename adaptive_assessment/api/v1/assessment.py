"""
Assessment session endpoints - start, answer, finish, review, generation.
"""

import uuid
from typing import List, Optional, Union

from fastapi import APIRouter, Query, Response, status

from adaptive_assessment.api.deps import (
    AppSettings,
    CurrentActor,
    Generator,
    InstructorActor,
    Leases,
    SessionService,
)
from adaptive_assessment.kernel.models.generated_assessment import BatchStatus, GeneratedAssessment
from adaptive_assessment.kernel.models.session import AssessmentSession, SessionStatus
from adaptive_assessment.schemas.assessment import (
    AnswerRequest,
    AnswerResponse,
    BatchResponse,
    CancelRequest,
    CurrentItemResponse,
    FinishResponse,
    GenerateAssessmentRequest,
    GenerateAssessmentResponse,
    ItemResultSchema,
    RemediationResponse,
    SessionDetailsResponse,
    SessionEventSchema,
    SessionHistoryResponse,
    SessionStatisticsSchema,
    SessionSummary,
    StartSessionRequest,
    StartSessionResponse,
)
from adaptive_assessment.schemas.common import QueuedResponse

router = APIRouter()


def _enum_val(e) -> str:
    """Safely get enum value (SQLite may return str)."""
    return e.value if hasattr(e, "value") else str(e)


def _session_summary(s: AssessmentSession) -> SessionSummary:
    return SessionSummary(
        id=s.id,
        mode=_enum_val(s.mode),
        status=_enum_val(s.status),
        current_index=s.current_index,
        total=s.total_items,
        score=s.score,
        proctored=s.proctored,
        invalidated=s.invalidated,
        proctor_summary=s.proctor_summary(),
        created_at=s.created_at,
        completed_at=s.completed_at,
    )


def _batch_response(batch: GeneratedAssessment, item_count: Optional[int] = None) -> BatchResponse:
    return BatchResponse(
        id=batch.id,
        topic=batch.topic,
        title=batch.title,
        status=_enum_val(batch.status),
        validated=batch.validated,
        item_count=item_count if item_count is not None else len(batch.items or []),
        created_at=batch.created_at,
        published_at=batch.published_at,
    )


@router.post(
    "/start",
    response_model=Union[StartSessionResponse, QueuedResponse],
    status_code=status.HTTP_201_CREATED,
)
async def start_session(
    request: StartSessionRequest,
    actor: CurrentActor,
    service: SessionService,
    response: Response,
):
    """
    Start a session. Answers 202 with `queued: true` while questions for the
    requested topics are still being generated.
    """
    outcome = await service.start_session(
        actor.id,
        mode=request.mode,
        topics=request.topics,
        limit=request.limit,
        proctored=request.proctored,
        difficulty=request.difficulty,
    )
    if outcome.queued:
        response.status_code = status.HTTP_202_ACCEPTED
        return QueuedResponse(
            message=outcome.message,
            ticket_id=str(outcome.ticket_id) if outcome.ticket_id else None,
        )

    s = outcome.session
    return StartSessionResponse(
        session_id=s.id,
        item_ids=[uuid.UUID(i) for i in s.item_ids],
        current_index=s.current_index,
        total=s.total_items,
        mode=_enum_val(s.mode),
        status=_enum_val(s.status),
        proctored=s.proctored,
        proctor_config=s.proctor_config,
    )


@router.get("/sessions", response_model=List[SessionSummary])
async def list_sessions(
    actor: CurrentActor,
    service: SessionService,
    status_filter: Optional[SessionStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=50),
):
    """The caller's sessions, newest first."""
    sessions = await service.list_sessions(actor.id, status=status_filter, limit=limit)
    return [_session_summary(s) for s in sessions]


@router.get("/sessions/{session_id}/current", response_model=CurrentItemResponse)
async def get_current_item(
    session_id: uuid.UUID,
    actor: CurrentActor,
    service: SessionService,
):
    current = await service.get_current_item(session_id, actor.id)
    return CurrentItemResponse.model_validate(current.model_dump())


@router.post("/sessions/{session_id}/answer", response_model=AnswerResponse)
async def submit_answer(
    session_id: uuid.UUID,
    request: AnswerRequest,
    actor: CurrentActor,
    service: SessionService,
):
    """Grade the answer to the current item and advance."""
    outcome = await service.submit_answer(
        session_id,
        actor.id,
        answer=request.answer,
        answer_index=request.answer_index,
        time_taken_ms=request.time_taken_ms,
    )
    return AnswerResponse(**outcome.model_dump())


@router.post("/sessions/{session_id}/finish", response_model=FinishResponse)
async def finish_session(
    session_id: uuid.UUID,
    actor: CurrentActor,
    service: SessionService,
):
    outcome = await service.finish_session(session_id, actor.id)
    return FinishResponse(**outcome.model_dump())


@router.post("/sessions/{session_id}/cancel", response_model=SessionSummary)
async def cancel_session(
    session_id: uuid.UUID,
    actor: CurrentActor,
    service: SessionService,
    request: Optional[CancelRequest] = None,
):
    """Cancel an active session. Instructors may cancel any session."""
    s = await service.cancel_session(
        session_id,
        actor.id,
        as_instructor=actor.is_instructor,
        reason=request.reason if request else None,
    )
    return _session_summary(s)


@router.get("/sessions/{session_id}/details", response_model=SessionDetailsResponse)
async def get_session_details(
    session_id: uuid.UUID,
    actor: CurrentActor,
    service: SessionService,
):
    """Per-item results and statistics. Instructors may view any session."""
    details = await service.session_details(
        session_id,
        None if actor.is_instructor else actor.id,
    )
    return SessionDetailsResponse(
        session=_session_summary(details.session),
        statistics=SessionStatisticsSchema(**details.statistics.model_dump()),
        errors_by_topic=details.errors_by_topic,
        results=[ItemResultSchema(**r.model_dump()) for r in details.results],
    )


@router.get("/sessions/{session_id}/remediation", response_model=RemediationResponse)
async def get_remediation(
    session_id: uuid.UUID,
    actor: CurrentActor,
    service: SessionService,
):
    plan = await service.remediation(session_id, actor.id)
    return RemediationResponse.model_validate(plan.model_dump())


@router.get("/sessions/{session_id}/history", response_model=SessionHistoryResponse)
async def get_session_history(
    session_id: uuid.UUID,
    _: InstructorActor,
    service: SessionService,
    limit: int = Query(default=100, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
):
    """Audit trail of lifecycle, proctoring and override events (instructor/admin)."""
    events = await service.session_history(session_id, limit=limit, offset=offset)
    return SessionHistoryResponse(
        session_id=session_id,
        events=[
            SessionEventSchema(
                id=event.id,
                event_type=_enum_val(event.event_type),
                user_id=event.user_id,
                payload=event.payload or {},
                created_at=event.created_at,
            )
            for event in events
        ],
        limit=limit,
        offset=offset,
    )


# --- generated batches (instructor) -----------------------------------------

@router.post(
    "/generate",
    response_model=GenerateAssessmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def generate_assessment(
    request: GenerateAssessmentRequest,
    actor: InstructorActor,
    generator: Generator,
    leases: Leases,
    settings: AppSettings,
):
    """Generate a draft batch of questions for a topic."""
    batch, items, errors = await generator.generate_assessment(
        request.topic,
        request.count,
        actor.id,
        leases,
        cooldown_seconds=settings.generation_cooldown_seconds,
    )
    return GenerateAssessmentResponse(
        batch=_batch_response(batch, item_count=len(items)),
        item_ids=[item.id for item in items],
        errors=errors,
    )


@router.get("/batches", response_model=List[BatchResponse])
async def list_batches(
    _: InstructorActor,
    generator: Generator,
    topic: Optional[str] = None,
    status_filter: Optional[BatchStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=100),
):
    batches = await generator.list_batches(topic=topic, status=status_filter, limit=limit)
    return [_batch_response(b) for b in batches]


@router.post("/batches/{batch_id}/publish", response_model=BatchResponse)
async def publish_batch(
    batch_id: uuid.UUID,
    actor: InstructorActor,
    generator: Generator,
):
    """Publish a draft batch so selection can use its items."""
    batch = await generator.publish_batch(batch_id, actor.id)
    return _batch_response(batch, item_count=await generator.linked_count(batch.id))

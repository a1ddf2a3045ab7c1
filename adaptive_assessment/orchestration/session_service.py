"""
Assessment Session Service - drives a session from start to finish.

start -> (current item -> answer) x N -> finish

Answer submissions for one session are serialized by an in-process lock;
across processes the (session, item) unique constraint and a conditional
UPDATE on current_index make sure an index is graded and advanced once.
"""

import asyncio
import uuid
import weakref
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_assessment.config import Settings
from adaptive_assessment.engines.grading import GradingContext, GradingEngine, answer_payload, parse_answer
from adaptive_assessment.engines.mastery import MasteryTracker, round_half_up
from adaptive_assessment.engines.remediation import Mistake, RemediationPlan, RemediationService
from adaptive_assessment.engines.selection.coordinator import ItemSelectionCoordinator
from adaptive_assessment.exceptions import (
    AnswerValidationError,
    DuplicateSubmission,
    ItemNotFound,
    NoCurrentItem,
    SessionAlreadyCompleted,
    SessionCancelled,
    SessionInvalidated,
    SessionNotFound,
)
from adaptive_assessment.kernel.events.event_store import EventStore
from adaptive_assessment.kernel.models.attempt import Attempt
from adaptive_assessment.kernel.models.base import utc_now
from adaptive_assessment.kernel.models.event_log import EntityType, EventLog, EventType
from adaptive_assessment.kernel.models.item import Item, ItemType
from adaptive_assessment.kernel.models.proctor_log import ProctorLog
from adaptive_assessment.kernel.models.session import AssessmentSession, SessionMode, SessionStatus
from adaptive_assessment.logging_config import get_logger
from adaptive_assessment.orchestration.state_machine import SessionStateMachine, TransitionActor

logger = get_logger(__name__)

PROXIMATE_PROCTOR_WINDOW = timedelta(seconds=10)
QUEUED_MESSAGE = "Preparing questions. Please wait and retry."

# session id -> lock; entries disappear once no request holds them
_session_locks: "weakref.WeakValueDictionary[uuid.UUID, asyncio.Lock]" = weakref.WeakValueDictionary()


def session_lock(session_id: uuid.UUID) -> asyncio.Lock:
    lock = _session_locks.get(session_id)
    if lock is None:
        lock = asyncio.Lock()
        _session_locks[session_id] = lock
    return lock


def _status(value: Any) -> str:
    return value.value if hasattr(value, "value") else str(value)


# --- results ----------------------------------------------------------------

class StartOutcome(BaseModel):
    queued: bool = False
    message: Optional[str] = None
    session: Optional[Any] = None
    ticket_id: Optional[uuid.UUID] = None


class ItemView(BaseModel):
    """An item as shown to the student (no answer)."""

    id: uuid.UUID
    item_type: str
    question: str
    choices: List[str]
    hints: List[str]
    difficulty: int
    bloom: Optional[str] = None
    topics: List[str]


class CurrentItem(BaseModel):
    session_id: uuid.UUID
    current_index: int
    total: int
    item: ItemView


class AnswerOutcome(BaseModel):
    is_correct: bool
    score: float
    explanation: str
    current_index: int
    has_more: bool
    needs_manual_grading: bool = False


class FinishOutcome(BaseModel):
    session_id: uuid.UUID
    score: int
    total: int
    correct: int
    completed_at: Optional[datetime] = None
    already_completed: bool = False


class SessionStatistics(BaseModel):
    total: int
    correct: int
    incorrect: int
    unanswered: int
    accuracy: int
    score: int


class ItemResult(BaseModel):
    index: int
    item_id: uuid.UUID
    question: str
    item_type: str
    choices: List[str]
    correct_answer: Any
    explanation: str
    topics: List[str]
    difficulty: Optional[int] = None
    bloom: Optional[str] = None
    attempt: Optional[Dict[str, Any]] = None


class SessionDetails(BaseModel):
    session: Any
    statistics: SessionStatistics
    errors_by_topic: Dict[str, List[Dict[str, Any]]] = Field(default_factory=dict)
    results: List[ItemResult] = Field(default_factory=list)


def item_view(item: Item) -> ItemView:
    return ItemView(
        id=item.id,
        item_type=_status(item.item_type),
        question=item.question,
        choices=list(item.choices or []),
        hints=list(item.hints or []),
        difficulty=item.difficulty,
        bloom=_status(item.bloom) if item.bloom else None,
        topics=list(item.topics or []),
    )


def default_proctor_config(allowance: int) -> Dict[str, Any]:
    return {
        "allow_tab_switch_count": allowance,
        "block_tab_switch": True,
        "block_copy_paste": True,
        "block_right_click": True,
        "require_snapshots": False,
        "snapshot_interval_sec": 0,
    }


class AssessmentSessionService:
    """Session lifecycle operations for students and instructors."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        coordinator: ItemSelectionCoordinator,
        grading: GradingEngine,
        remediation: Optional[RemediationService] = None,
    ):
        self.session = session
        self.settings = settings
        self.coordinator = coordinator
        self.grading = grading
        self.remediation_service = remediation or RemediationService()
        self.mastery = MasteryTracker(session, expected_ms=settings.expected_answer_ms)
        self.state_machine = SessionStateMachine(session)
        self.event_store = EventStore(session)

    # --- lookups ------------------------------------------------------------

    async def get_session(
        self,
        session_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
        for_update: bool = False,
    ) -> AssessmentSession:
        """
        Load a session; with `user_id`, only if that user owns it.

        Raises:
            SessionNotFound
        """
        q = (
            select(AssessmentSession)
            .where(AssessmentSession.id == session_id)
            .execution_options(populate_existing=True)
        )
        if user_id is not None:
            q = q.where(AssessmentSession.user_id == user_id)
        if for_update:
            q = q.with_for_update()
        result = await self.session.execute(q)
        assessment_session = result.scalar_one_or_none()
        if assessment_session is None:
            raise SessionNotFound()
        return assessment_session

    async def _items_by_id(self, item_ids: List[str]) -> Dict[uuid.UUID, Item]:
        if not item_ids:
            return {}
        ids = [uuid.UUID(str(i)) for i in item_ids]
        result = await self.session.execute(select(Item).where(Item.id.in_(ids)))
        return {item.id: item for item in result.scalars().all()}

    async def _attempts(self, session_id: uuid.UUID) -> List[Attempt]:
        result = await self.session.execute(
            select(Attempt).where(Attempt.session_id == session_id).order_by(Attempt.created_at)
        )
        return list(result.scalars().all())

    async def _correct_count(self, session_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count(Attempt.id)).where(
                Attempt.session_id == session_id,
                Attempt.is_correct.is_(True),
            )
        )
        return result.scalar() or 0

    # --- lifecycle ----------------------------------------------------------

    async def start_session(
        self,
        user_id: uuid.UUID,
        mode: SessionMode | str = SessionMode.FORMATIVE,
        topics: Optional[List[str]] = None,
        limit: int = 6,
        proctored: bool = False,
        difficulty: Optional[List[int]] = None,
    ) -> StartOutcome:
        """
        Select items and open a session.

        Returns a queued outcome instead of a session when selection found
        nothing yet; the caller should retry shortly.
        """
        mode = SessionMode(mode)
        topics = [t.strip() for t in topics or [] if t and t.strip()]
        selection = await self.coordinator.select(
            user_id,
            mode=mode,
            topics=topics,
            requested_difficulty=difficulty,
            limit=limit,
        )
        if selection.empty:
            logger.info("Session start queued", extra={"user_id": str(user_id), "topics": topics})
            return StartOutcome(queued=True, message=QUEUED_MESSAGE, ticket_id=selection.ticket_id)

        proctored = proctored or mode == SessionMode.PROCTORED
        allowance = self.settings.allow_tab_switches_default
        assessment_session = AssessmentSession(
            user_id=user_id,
            mode=SessionMode.PROCTORED if proctored else mode,
            item_ids=[str(i) for i in selection.item_ids],
            current_index=0,
            status=SessionStatus.ACTIVE,
            proctored=proctored,
            proctor_config=default_proctor_config(allowance) if proctored else None,
            tab_switch_allowance=allowance,
            session_metadata={"selection": selection.metadata, "requested_topics": topics},
        )
        self.session.add(assessment_session)
        await self.session.flush()

        await self.event_store.log(
            event_type=EventType.SESSION_STARTED,
            entity_type=EntityType.SESSION,
            entity_id=assessment_session.id,
            user_id=user_id,
            payload={
                "mode": _status(assessment_session.mode),
                "item_count": assessment_session.total_items,
                "proctored": proctored,
            },
        )
        logger.info(
            "Session started",
            extra={
                "session_id": str(assessment_session.id),
                "user_id": str(user_id),
                "item_count": assessment_session.total_items,
            },
        )
        return StartOutcome(session=assessment_session, ticket_id=selection.ticket_id)

    def _ensure_active(self, assessment_session: AssessmentSession) -> None:
        status = _status(assessment_session.status)
        if status == SessionStatus.INVALIDATED.value or assessment_session.invalidated:
            raise SessionInvalidated()
        if status == SessionStatus.CANCELLED.value:
            raise SessionCancelled()
        if status == SessionStatus.COMPLETED.value:
            raise SessionAlreadyCompleted()

    async def get_current_item(self, session_id: uuid.UUID, user_id: uuid.UUID) -> CurrentItem:
        """
        The item at current_index, without its answer.

        Raises:
            SessionNotFound, SessionInvalidated, SessionCancelled,
            SessionAlreadyCompleted, NoCurrentItem, ItemNotFound
        """
        assessment_session = await self.get_session(session_id, user_id)
        status = _status(assessment_session.status)
        if status == SessionStatus.INVALIDATED.value:
            raise SessionInvalidated()
        if status == SessionStatus.CANCELLED.value:
            raise SessionCancelled()
        if not assessment_session.has_more:
            if status == SessionStatus.COMPLETED.value:
                raise SessionAlreadyCompleted(
                    "This assessment has been completed. View results to see your answers."
                )
            raise NoCurrentItem(
                current_index=assessment_session.current_index,
                total=assessment_session.total_items,
            )

        item_id = uuid.UUID(assessment_session.item_ids[assessment_session.current_index])
        item = await self.session.get(Item, item_id)
        if item is None:
            raise ItemNotFound()
        return CurrentItem(
            session_id=assessment_session.id,
            current_index=assessment_session.current_index,
            total=assessment_session.total_items,
            item=item_view(item),
        )

    async def submit_answer(
        self,
        session_id: uuid.UUID,
        user_id: uuid.UUID,
        answer: Any = None,
        answer_index: Optional[int] = None,
        time_taken_ms: int = 0,
    ) -> AnswerOutcome:
        """
        Grade the answer for the current item and advance by one.

        Raises:
            SessionNotFound, SessionInvalidated, SessionCancelled,
            SessionAlreadyCompleted, NoCurrentItem, AnswerValidationError,
            DuplicateSubmission
        """
        async with session_lock(session_id):
            assessment_session = await self.get_session(session_id, user_id)
            self._ensure_active(assessment_session)
            expected_index = assessment_session.current_index
            if expected_index >= assessment_session.total_items:
                raise NoCurrentItem(current_index=expected_index, total=assessment_session.total_items)

            item_id = uuid.UUID(assessment_session.item_ids[expected_index])
            item = await self.session.get(Item, item_id)
            if item is None:
                raise ItemNotFound()

            raw = answer
            if _status(item.item_type) == ItemType.MCQ.value and (raw is None or raw == ""):
                if answer_index is not None:
                    choices = item.choices or []
                    if not 0 <= answer_index < len(choices):
                        raise AnswerValidationError("answer_index is out of range")
                    raw = choices[answer_index]
            submitted = parse_answer(item.item_type, raw)

            topic = item.primary_topic
            grade = await self.grading.grade(item, submitted, GradingContext(topic=topic))

            now = utc_now()
            proximate = await self.session.execute(
                select(ProctorLog.id).where(
                    ProctorLog.session_id == session_id,
                    ProctorLog.timestamp >= now - PROXIMATE_PROCTOR_WINDOW,
                )
            )
            time_taken_ms = max(0, int(time_taken_ms or 0))
            attempt = Attempt(
                session_id=session_id,
                item_id=item_id,
                user_id=user_id,
                is_correct=grade.is_correct,
                user_answer=answer_payload(submitted),
                score=grade.score,
                grading_details=grade.details,
                explanation=grade.explanation or "",
                needs_manual_grading=grade.needs_manual_grading,
                time_taken_ms=time_taken_ms,
                proctor_log_ids=[str(i) for i in proximate.scalars().all()],
            )
            self.session.add(attempt)
            try:
                await self.session.flush()
            except IntegrityError as exc:
                raise DuplicateSubmission() from exc

            # Guarded advance; loses if another process moved the cursor first
            advanced = await self.session.execute(
                update(AssessmentSession)
                .where(
                    AssessmentSession.id == session_id,
                    AssessmentSession.current_index == expected_index,
                    AssessmentSession.status == SessionStatus.ACTIVE.value,
                )
                .values(current_index=expected_index + 1, updated_at=now)
            )
            if advanced.rowcount != 1:
                raise DuplicateSubmission()

            await self.mastery.record_attempt(user_id, topic, grade.score, item.difficulty, time_taken_ms)

            new_index = expected_index + 1
            logger.info(
                "Answer graded",
                extra={
                    "session_id": str(session_id),
                    "item_id": str(item_id),
                    "is_correct": grade.is_correct,
                    "score": grade.score,
                    "needs_manual_grading": grade.needs_manual_grading,
                },
            )
            return AnswerOutcome(
                is_correct=grade.is_correct,
                score=grade.score,
                explanation=grade.explanation or item.explanation or "",
                current_index=new_index,
                has_more=new_index < assessment_session.total_items,
                needs_manual_grading=grade.needs_manual_grading,
            )

    async def finish_session(self, session_id: uuid.UUID, user_id: uuid.UUID) -> FinishOutcome:
        """
        Score and complete the session. Finishing a completed session returns
        the stored result.

        Raises:
            SessionNotFound, SessionInvalidated, SessionCancelled
        """
        async with session_lock(session_id):
            assessment_session = await self.get_session(session_id, user_id, for_update=True)
            total = assessment_session.total_items
            correct = await self._correct_count(session_id)
            status = _status(assessment_session.status)

            if status == SessionStatus.COMPLETED.value:
                return FinishOutcome(
                    session_id=assessment_session.id,
                    score=assessment_session.score or 0,
                    total=total,
                    correct=correct,
                    completed_at=assessment_session.completed_at,
                    already_completed=True,
                )
            if status == SessionStatus.INVALIDATED.value:
                raise SessionInvalidated()
            if status == SessionStatus.CANCELLED.value:
                raise SessionCancelled()

            # Unanswered items count as incorrect
            score = round_half_up(100 * correct / total) if total else 0
            assessment_session.score = score
            await self.state_machine.transition(
                assessment_session,
                SessionStatus.COMPLETED,
                TransitionActor.OWNER,
                actor_id=user_id,
            )
            await self.session.flush()

            logger.info(
                "Session completed",
                extra={"session_id": str(session_id), "score": score, "correct": correct, "total": total},
            )
            return FinishOutcome(
                session_id=assessment_session.id,
                score=score,
                total=total,
                correct=correct,
                completed_at=assessment_session.completed_at,
            )

    async def cancel_session(
        self,
        session_id: uuid.UUID,
        actor_id: uuid.UUID,
        as_instructor: bool = False,
        reason: Optional[str] = None,
    ) -> AssessmentSession:
        """
        Cancel an active session (owner, or any session for instructors).

        Raises:
            SessionNotFound, InvalidTransition
        """
        async with session_lock(session_id):
            assessment_session = await self.get_session(
                session_id,
                None if as_instructor else actor_id,
                for_update=True,
            )
            await self.state_machine.transition(
                assessment_session,
                SessionStatus.CANCELLED,
                TransitionActor.INSTRUCTOR if as_instructor else TransitionActor.OWNER,
                actor_id=actor_id,
                reason=reason,
            )
            await self.session.flush()
            return assessment_session

    async def list_sessions(
        self,
        user_id: uuid.UUID,
        status: Optional[SessionStatus] = None,
        limit: int = 20,
    ) -> List[AssessmentSession]:
        q = select(AssessmentSession).where(AssessmentSession.user_id == user_id)
        if status:
            q = q.where(AssessmentSession.status == SessionStatus(status).value)
        q = q.order_by(AssessmentSession.created_at.desc()).limit(min(max(limit, 1), 50))
        result = await self.session.execute(q)
        return list(result.scalars().all())

    # --- review -------------------------------------------------------------

    async def session_details(
        self,
        session_id: uuid.UUID,
        user_id: Optional[uuid.UUID],
    ) -> SessionDetails:
        """Per-item results, statistics and incorrect answers grouped by topic."""
        assessment_session = await self.get_session(session_id, user_id)
        attempts = await self._attempts(session_id)
        items = await self._items_by_id(assessment_session.item_ids)
        total = assessment_session.total_items

        correct = sum(1 for a in attempts if a.is_correct)
        incorrect = len(attempts) - correct
        accuracy = round_half_up(100 * correct / total) if total else 0
        statistics = SessionStatistics(
            total=total,
            correct=correct,
            incorrect=incorrect,
            unanswered=total - len(attempts),
            accuracy=accuracy,
            score=assessment_session.score if assessment_session.score is not None else accuracy,
        )

        by_item = {a.item_id: a for a in attempts}
        errors_by_topic: Dict[str, List[Dict[str, Any]]] = {}
        for attempt in attempts:
            item = items.get(attempt.item_id)
            if attempt.is_correct or item is None or not item.topics:
                continue
            errors_by_topic.setdefault(item.topics[0], []).append({
                "question": item.question,
                "user_answer": attempt.user_answer,
                "correct_answer": item.answer,
                "explanation": attempt.explanation or item.explanation,
            })

        results = []
        for index, raw_id in enumerate(assessment_session.item_ids):
            item_id = uuid.UUID(str(raw_id))
            item = items.get(item_id)
            attempt = by_item.get(item_id)
            results.append(ItemResult(
                index=index,
                item_id=item_id,
                question=item.question if item else "",
                item_type=_status(item.item_type) if item else ItemType.MCQ.value,
                choices=list(item.choices or []) if item else [],
                correct_answer=item.answer if item else "",
                explanation=item.explanation if item else "",
                topics=list(item.topics or []) if item else [],
                difficulty=item.difficulty if item else None,
                bloom=_status(item.bloom) if item and item.bloom else None,
                attempt={
                    "is_correct": attempt.is_correct,
                    "user_answer": attempt.user_answer,
                    "score": attempt.score,
                    "time_taken_ms": attempt.time_taken_ms,
                    "created_at": attempt.created_at,
                    "grading_details": attempt.grading_details,
                    "explanation": attempt.explanation or (item.explanation if item else ""),
                    "needs_manual_grading": attempt.needs_manual_grading,
                } if attempt else None,
            ))

        return SessionDetails(
            session=assessment_session,
            statistics=statistics,
            errors_by_topic=errors_by_topic,
            results=results,
        )

    async def remediation(self, session_id: uuid.UUID, user_id: uuid.UUID) -> RemediationPlan:
        """Study plan for the session's incorrect answers."""
        assessment_session = await self.get_session(session_id, user_id)
        items = await self._items_by_id(assessment_session.item_ids)
        mistakes = []
        for attempt in await self._attempts(session_id):
            if attempt.is_correct:
                continue
            item = items.get(attempt.item_id)
            mistakes.append(Mistake(
                topic=item.primary_topic if item else "general",
                question=item.question if item else "",
                user_answer=attempt.user_answer,
                correct_answer=item.answer if item else "",
                explanation=attempt.explanation or (item.explanation if item else ""),
            ))
        return await self.remediation_service.generate(mistakes)

    async def session_history(
        self,
        session_id: uuid.UUID,
        limit: int = 100,
        offset: int = 0,
    ) -> List[EventLog]:
        """Audit trail for a session (lifecycle, proctoring, overrides), newest first."""
        assessment_session = await self.get_session(session_id)
        return await self.event_store.get_entity_history(
            EntityType.SESSION,
            assessment_session.id,
            limit=limit,
            offset=offset,
        )

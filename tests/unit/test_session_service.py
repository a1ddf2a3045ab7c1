"""Unit tests for the assessment session service (start, answer, finish, review)."""

import asyncio
import uuid

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from adaptive_assessment.engines.grading import GradingEngine
from adaptive_assessment.engines.proctoring import ProctorMonitor
from adaptive_assessment.engines.selection.coordinator import ItemSelectionCoordinator
from adaptive_assessment.engines.selection.lease_store import InMemoryLeaseStore
from adaptive_assessment.exceptions import (
    AnswerValidationError,
    DuplicateSubmission,
    InvalidTransition,
    NoCurrentItem,
    SessionAlreadyCompleted,
    SessionCancelled,
    SessionInvalidated,
    SessionNotFound,
)
from adaptive_assessment.kernel.models import (
    AssessmentSession,
    Attempt,
    EventLog,
    EventType,
    ItemType,
    SessionMode,
    SessionStatus,
    TopicMastery,
    ViolationType,
)
from adaptive_assessment.engines.mastery import MasteryTracker
from adaptive_assessment.orchestration import AssessmentSessionService
from adaptive_assessment.orchestration import session_service as session_service_module


@pytest.fixture
def service(db_session, settings) -> AssessmentSessionService:
    coordinator = ItemSelectionCoordinator(db_session, settings, InMemoryLeaseStore())
    return AssessmentSessionService(db_session, settings, coordinator, GradingEngine())


@pytest_asyncio.fixture
async def geography_items(make_item, add_items):
    """Three MCQs whose correct answer is Paris."""
    return await add_items(*[
        make_item(question=f"Capital of France? ({n})", explanation="Paris is the capital.")
        for n in range(3)
    ])


class TestStartSession:
    """Tests for session creation."""

    @pytest.mark.asyncio
    async def test_start_selects_bank_items(self, service, student_id, geography_items):
        outcome = await service.start_session(student_id, topics=["Geography"], limit=3)

        assert outcome.queued is False
        s = outcome.session
        assert s.status == SessionStatus.ACTIVE
        assert s.current_index == 0
        assert sorted(s.item_ids) == sorted(str(i.id) for i in geography_items)
        assert s.session_metadata["selection"]["stages"] == {"bank": 3}
        assert s.proctored is False

    @pytest.mark.asyncio
    async def test_proctored_mode_gets_config(self, service, student_id, geography_items, settings):
        outcome = await service.start_session(student_id, mode=SessionMode.PROCTORED, topics=["geography"])
        s = outcome.session
        assert s.proctored is True
        assert s.tab_switch_allowance == settings.allow_tab_switches_default
        assert s.proctor_config["allow_tab_switch_count"] == settings.allow_tab_switches_default

    @pytest.mark.asyncio
    async def test_empty_bank_without_topic_is_queued(self, service, student_id):
        outcome = await service.start_session(student_id, topics=[])
        assert outcome.queued is True
        assert outcome.session is None
        assert "retry" in outcome.message

    @pytest.mark.asyncio
    async def test_unknown_topic_gets_placeholders(self, service, student_id, settings):
        outcome = await service.start_session(student_id, topics=["astronomy"], limit=6)
        assert outcome.queued is False
        assert outcome.session.total_items == settings.placeholder_item_count
        assert outcome.session.session_metadata["selection"]["stages"] == {"placeholder": 3}

    @pytest.mark.asyncio
    async def test_start_is_logged(self, service, db_session, student_id, geography_items):
        outcome = await service.start_session(student_id, topics=["geography"])
        await db_session.flush()
        events = (await db_session.execute(
            select(EventLog).where(EventLog.entity_id == outcome.session.id)
        )).scalars().all()
        assert [e.event_type for e in events] == [EventType.SESSION_STARTED]


class TestAnswering:
    """Tests for current item and answer submission."""

    @pytest.mark.asyncio
    async def test_current_item_hides_answer(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        current = await service.get_current_item(s.id, student_id)

        assert current.current_index == 0
        assert current.total == 3
        assert current.item.id == geography_items[0].id
        assert "answer" not in current.item.model_dump()

    @pytest.mark.asyncio
    async def test_foreign_session_not_found(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        with pytest.raises(SessionNotFound):
            await service.get_current_item(s.id, uuid.uuid4())
        with pytest.raises(SessionNotFound):
            await service.submit_answer(s.id, uuid.uuid4(), answer="Paris")

    @pytest.mark.asyncio
    async def test_submit_advances_and_records(self, service, db_session, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)

        outcome = await service.submit_answer(s.id, student_id, answer=" paris ", time_taken_ms=4000)

        assert outcome.is_correct is True
        assert outcome.score == 1.0
        assert outcome.current_index == 1
        assert outcome.has_more is True
        assert outcome.explanation == "Paris is the capital."

        attempt = (await db_session.execute(select(Attempt).where(Attempt.session_id == s.id))).scalar_one()
        assert attempt.item_id == geography_items[0].id
        assert attempt.user_answer == " paris "
        assert attempt.time_taken_ms == 4000

        current = await service.get_current_item(s.id, student_id)
        assert current.current_index == 1

    @pytest.mark.asyncio
    async def test_answer_index_resolves_choice(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        outcome = await service.submit_answer(s.id, student_id, answer_index=0)
        assert outcome.is_correct is True

    @pytest.mark.asyncio
    async def test_answer_index_out_of_range(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        with pytest.raises(AnswerValidationError):
            await service.submit_answer(s.id, student_id, answer_index=9)

    @pytest.mark.asyncio
    async def test_missing_answer_rejected(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        with pytest.raises(AnswerValidationError):
            await service.submit_answer(s.id, student_id)
        current = await service.get_current_item(s.id, student_id)
        assert current.current_index == 0

    @pytest.mark.asyncio
    async def test_duplicate_submission(self, service, db_session, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        # Another writer already graded index 0 but has not advanced the cursor
        db_session.add(Attempt(
            session_id=s.id,
            item_id=geography_items[0].id,
            user_id=student_id,
            is_correct=True,
            user_answer="Paris",
            score=1.0,
            grading_details={},
            proctor_log_ids=[],
        ))
        await db_session.flush()

        with pytest.raises(DuplicateSubmission):
            await service.submit_answer(s.id, student_id, answer="Paris")

    @pytest.mark.asyncio
    async def test_no_current_item_after_last(self, service, student_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items)
        outcome = await service.submit_answer(s.id, student_id, answer="Paris")
        assert outcome.has_more is False

        with pytest.raises(NoCurrentItem):
            await service.submit_answer(s.id, student_id, answer="Paris")
        with pytest.raises(NoCurrentItem):
            await service.get_current_item(s.id, student_id)

    @pytest.mark.asyncio
    async def test_invalidated_session_rejects_answers(
        self, service, db_session, student_id, geography_items, add_session
    ):
        s = await add_session(student_id, geography_items, proctored=True)
        outcome = await ProctorMonitor(db_session, risk_threshold=5).record_violation(
            s.id, ViolationType.DEVTOOLS_OPENED
        )
        assert outcome.invalidated is True

        with pytest.raises(SessionInvalidated) as exc_info:
            await service.submit_answer(s.id, student_id, answer="Paris")
        assert exc_info.value.status_code == 403
        with pytest.raises(SessionInvalidated):
            await service.get_current_item(s.id, student_id)

    @pytest.mark.asyncio
    async def test_recent_proctor_events_linked_to_attempt(
        self, service, db_session, student_id, geography_items, add_session
    ):
        s = await add_session(student_id, geography_items, proctored=True)
        violation = await ProctorMonitor(db_session).record_violation(s.id, ViolationType.TAB_SWITCH)

        await service.submit_answer(s.id, student_id, answer="Paris")

        attempt = (await db_session.execute(select(Attempt).where(Attempt.session_id == s.id))).scalar_one()
        assert attempt.proctor_log_ids == [str(violation.log_id)]

    @pytest.mark.asyncio
    async def test_mastery_updated_per_answer(self, service, db_session, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        await service.submit_answer(s.id, student_id, answer="Paris", time_taken_ms=1000)
        await service.submit_answer(s.id, student_id, answer="Paris", time_taken_ms=1000)

        record = await MasteryTracker(db_session).get_record(student_id, "geography")
        assert record.attempts == 2
        assert record.streak == 2
        assert record.mastery > 0


class TestFinishAndReview:
    """Tests for finishing, cancelling and reviewing sessions."""

    @pytest.mark.asyncio
    async def test_score_rounds_half_up(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        await service.submit_answer(s.id, student_id, answer="Paris")
        await service.submit_answer(s.id, student_id, answer="Paris")
        await service.submit_answer(s.id, student_id, answer="London")

        result = await service.finish_session(s.id, student_id)

        assert result.score == 67
        assert result.correct == 2
        assert result.total == 3
        assert result.completed_at is not None
        assert result.already_completed is False

    @pytest.mark.asyncio
    async def test_unanswered_items_count_as_wrong(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        await service.submit_answer(s.id, student_id, answer="Paris")
        result = await service.finish_session(s.id, student_id)
        assert result.score == 33

    @pytest.mark.asyncio
    async def test_finish_is_idempotent(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        await service.submit_answer(s.id, student_id, answer="Paris")
        first = await service.finish_session(s.id, student_id)
        second = await service.finish_session(s.id, student_id)

        assert second.already_completed is True
        assert second.score == first.score

        with pytest.raises(SessionAlreadyCompleted):
            await service.submit_answer(s.id, student_id, answer="Paris")

    @pytest.mark.asyncio
    async def test_finish_invalidated_rejected(self, service, db_session, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items, proctored=True)
        await ProctorMonitor(db_session, risk_threshold=5).record_violation(s.id, ViolationType.PAGE_EXIT_ATTEMPT)
        with pytest.raises(SessionInvalidated):
            await service.finish_session(s.id, student_id)

    @pytest.mark.asyncio
    async def test_cancel_by_owner(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        cancelled = await service.cancel_session(s.id, student_id, reason="Started by mistake")
        assert cancelled.status == SessionStatus.CANCELLED

        with pytest.raises(SessionCancelled):
            await service.get_current_item(s.id, student_id)
        with pytest.raises(InvalidTransition):
            await service.cancel_session(s.id, student_id)

    @pytest.mark.asyncio
    async def test_instructor_cancels_any_session(self, service, student_id, instructor_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        with pytest.raises(SessionNotFound):
            await service.cancel_session(s.id, instructor_id)
        cancelled = await service.cancel_session(s.id, instructor_id, as_instructor=True)
        assert cancelled.status == SessionStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_list_sessions_filters_by_status(self, service, student_id, geography_items, add_session):
        await add_session(student_id, geography_items)
        await add_session(student_id, geography_items, status=SessionStatus.COMPLETED)
        await add_session(uuid.uuid4(), geography_items)

        assert len(await service.list_sessions(student_id)) == 2
        completed = await service.list_sessions(student_id, status=SessionStatus.COMPLETED)
        assert [s.status for s in completed] == [SessionStatus.COMPLETED]

    @pytest.mark.asyncio
    async def test_details(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        await service.submit_answer(s.id, student_id, answer="Paris")
        await service.submit_answer(s.id, student_id, answer="Berlin")
        await service.finish_session(s.id, student_id)

        details = await service.session_details(s.id, student_id)

        stats = details.statistics
        assert (stats.total, stats.correct, stats.incorrect, stats.unanswered) == (3, 1, 1, 1)
        assert stats.accuracy == 33
        assert stats.score == 33
        assert list(details.errors_by_topic) == ["geography"]
        assert details.errors_by_topic["geography"][0]["user_answer"] == "Berlin"
        assert details.errors_by_topic["geography"][0]["correct_answer"] == "Paris"
        assert [r.index for r in details.results] == [0, 1, 2]
        assert details.results[0].attempt["is_correct"] is True
        assert details.results[2].attempt is None
        assert details.results[0].item_type == ItemType.MCQ.value

    @pytest.mark.asyncio
    async def test_details_for_instructor(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        details = await service.session_details(s.id, None)
        assert details.statistics.unanswered == 3

    @pytest.mark.asyncio
    async def test_remediation_without_completion_client(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        await service.submit_answer(s.id, student_id, answer="Madrid")

        plan = await service.remediation(s.id, student_id)

        assert plan.generated is False
        assert plan.weak_topics == ["geography"]
        assert plan.recommendations[0].topic == "geography"

    @pytest.mark.asyncio
    async def test_remediation_all_correct(self, service, student_id, geography_items, add_session):
        s = await add_session(student_id, geography_items)
        await service.submit_answer(s.id, student_id, answer="Paris")
        plan = await service.remediation(s.id, student_id)
        assert plan.weak_topics == []
        assert plan.remediation.startswith("Great job")

    @pytest.mark.asyncio
    async def test_history_records_lifecycle(self, service, db_session, student_id, geography_items):
        outcome = await service.start_session(student_id, mode=SessionMode.PROCTORED, topics=["geography"])
        s = outcome.session
        await ProctorMonitor(db_session, risk_threshold=5).record_violation(s.id, ViolationType.DEVTOOLS_OPENED)
        await db_session.flush()

        events = await service.session_history(s.id)

        assert {e.event_type for e in events} == {
            EventType.SESSION_STARTED.value,
            EventType.PROCTOR_AUTO_INVALIDATED.value,
        }
        assert all(e.entity_id == s.id for e in events)

        first = await service.session_history(s.id, limit=1)
        assert len(first) == 1

    @pytest.mark.asyncio
    async def test_history_unknown_session(self, service):
        with pytest.raises(SessionNotFound):
            await service.session_history(uuid.uuid4())


class _GatedGrading(GradingEngine):
    """Holds every grade call until `parties` calls have read the session."""

    def __init__(self, parties: int):
        super().__init__()
        self.parties = parties
        self.arrived = 0
        self.all_in = asyncio.Event()

    async def grade(self, *args, **kwargs):
        self.arrived += 1
        if self.arrived >= self.parties:
            self.all_in.set()
        await self.all_in.wait()
        return await super().grade(*args, **kwargs)


class TestConcurrentSubmission:
    """Two workers answering the same index of one session."""

    @pytest.mark.asyncio
    async def test_same_index_graded_once(self, file_session_maker, settings, student_id, make_item, monkeypatch):
        async with file_session_maker() as setup:
            items = [make_item(question=f"Capital of France? ({n})") for n in range(3)]
            setup.add_all(items)
            await setup.flush()
            s = AssessmentSession(
                user_id=student_id,
                mode=SessionMode.FORMATIVE,
                item_ids=[str(i.id) for i in items],
                current_index=0,
                status=SessionStatus.ACTIVE,
                proctored=False,
                tab_switch_allowance=2,
                session_metadata={},
            )
            setup.add(s)
            await setup.commit()

        # Separate worker processes do not share the in-process session lock
        monkeypatch.setattr(session_service_module, "session_lock", lambda session_id: asyncio.Lock())
        grading = _GatedGrading(parties=2)

        async def answer():
            async with file_session_maker() as session:
                coordinator = ItemSelectionCoordinator(session, settings, InMemoryLeaseStore())
                svc = AssessmentSessionService(session, settings, coordinator, grading)
                outcome = await svc.submit_answer(s.id, student_id, answer="Paris")
                await session.commit()
                return outcome

        results = await asyncio.gather(answer(), answer(), return_exceptions=True)

        outcomes = [r for r in results if not isinstance(r, BaseException)]
        failures = [r for r in results if isinstance(r, BaseException)]
        assert len(outcomes) == 1
        assert outcomes[0].current_index == 1
        assert len(failures) == 1
        assert isinstance(failures[0], DuplicateSubmission)

        async with file_session_maker() as check:
            stored = await check.get(AssessmentSession, s.id)
            attempts = (await check.execute(
                select(Attempt.item_id).where(Attempt.session_id == s.id)
            )).scalars().all()
            mastery_rows = (await check.execute(
                select(func.count(TopicMastery.id)).where(TopicMastery.user_id == student_id)
            )).scalar_one()
            record = await MasteryTracker(check).get_record(student_id, "geography")

        assert stored.current_index == 1
        assert attempts == [items[0].id]
        assert mastery_rows == 1
        assert record.attempts == 1

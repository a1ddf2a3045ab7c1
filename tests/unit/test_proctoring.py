"""Unit tests for the proctoring integrity monitor."""

import asyncio
import uuid

import pytest
from sqlalchemy import func, select

from adaptive_assessment.engines.proctoring import ProctorMonitor, classify_violation, risk_score
from adaptive_assessment.exceptions import (
    InvalidTransition,
    OverrideValidationError,
    SessionNotFound,
    SessionNotProctored,
)
from adaptive_assessment.kernel.models import (
    AssessmentSession,
    ProctorLog,
    SessionMode,
    SessionStatus,
    Severity,
    ViolationType,
)


class TestClassification:
    """Tests for the severity rules."""

    def test_devtools_always_major(self):
        assert classify_violation(ViolationType.DEVTOOLS_OPENED, 0, 2) == Severity.MAJOR

    def test_tab_switch_within_allowance(self):
        assert classify_violation(ViolationType.TAB_SWITCH, 0, 2) == Severity.MINOR
        assert classify_violation(ViolationType.TAB_SWITCH, 1, 2) == Severity.MINOR
        assert classify_violation(ViolationType.TAB_SWITCH, 2, 2) == Severity.MAJOR

    def test_other_events_minor(self):
        assert classify_violation(ViolationType.COPY_ATTEMPT, 10, 0) == Severity.MINOR

    def test_risk_score(self):
        assert risk_score(3, 2) == 17


class TestProctorMonitor:
    """Tests for violation ingestion and overrides."""

    @pytest.mark.asyncio
    async def test_tab_switches_escalate(self, db_session, student_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items, proctored=True, allowance=2)
        monitor = ProctorMonitor(db_session, risk_threshold=20)

        severities = []
        for _ in range(5):
            outcome = await monitor.record_violation(s.id, ViolationType.TAB_SWITCH)
            severities.append(outcome.severity)

        assert severities == [Severity.MINOR] * 2 + [Severity.MAJOR] * 3
        assert outcome.proctor_summary == {
            "minor_violations": 2,
            "major_violations": 3,
            "total_violations": 5,
            "tab_switch_count": 5,
            "risk_score": 17,
        }
        assert outcome.invalidated is False
        assert outcome.status == SessionStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_threshold_invalidates(self, db_session, student_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items, proctored=True, allowance=2)
        monitor = ProctorMonitor(db_session, risk_threshold=20)
        for _ in range(5):
            await monitor.record_violation(s.id, "tab_switch")

        outcome = await monitor.record_violation(s.id, ViolationType.DEVTOOLS_OPENED, {"source": "devtools"})

        assert outcome.proctor_summary["risk_score"] == 22
        assert outcome.invalidated is True
        assert outcome.status == SessionStatus.INVALIDATED

        await db_session.refresh(s)
        assert s.invalidated is True
        assert s.invalidated_at is not None

    @pytest.mark.asyncio
    async def test_events_after_invalidation_still_logged(self, db_session, student_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items, proctored=True)
        monitor = ProctorMonitor(db_session, risk_threshold=5)
        await monitor.record_violation(s.id, ViolationType.PAGE_EXIT_ATTEMPT)

        outcome = await monitor.record_violation(s.id, ViolationType.COPY_ATTEMPT)
        assert outcome.status == SessionStatus.INVALIDATED
        assert outcome.proctor_summary["total_violations"] == 2

        logs = await monitor.get_session_logs(s.id)
        assert len(logs) == 2

    @pytest.mark.asyncio
    async def test_not_proctored(self, db_session, student_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items, proctored=False)
        with pytest.raises(SessionNotProctored):
            await ProctorMonitor(db_session).record_violation(s.id, ViolationType.TAB_SWITCH)

    @pytest.mark.asyncio
    async def test_foreign_session_is_not_found(self, db_session, student_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items, proctored=True)
        monitor = ProctorMonitor(db_session)

        with pytest.raises(SessionNotFound):
            await monitor.record_violation(s.id, ViolationType.TAB_SWITCH, user_id=uuid.uuid4())
        with pytest.raises(SessionNotFound):
            await monitor.get_summary(s.id, user_id=uuid.uuid4())
        with pytest.raises(SessionNotFound):
            await monitor.record_violation(uuid.uuid4(), ViolationType.TAB_SWITCH)

    @pytest.mark.asyncio
    async def test_logs_filter_and_summary(self, db_session, student_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items, proctored=True, allowance=0)
        monitor = ProctorMonitor(db_session)
        await monitor.record_violation(s.id, ViolationType.TAB_SWITCH, user_id=student_id)
        await monitor.record_violation(s.id, ViolationType.COPY_ATTEMPT, user_id=student_id)

        majors = await monitor.get_session_logs(s.id, severity=Severity.MAJOR)
        assert [log.violation_type for log in majors] == [ViolationType.TAB_SWITCH]

        summary = await monitor.get_summary(s.id, user_id=student_id)
        assert summary["proctor_summary"]["risk_score"] == 6
        assert summary["by_type"] == {"tab_switch": 1, "copy_attempt": 1}
        assert summary["risk_threshold"] == 20

    @pytest.mark.asyncio
    async def test_override_restore(self, db_session, student_id, instructor_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items, proctored=True)
        monitor = ProctorMonitor(db_session, risk_threshold=5)
        await monitor.record_violation(s.id, ViolationType.DEVTOOLS_OPENED)

        restored = await monitor.override(s.id, "restore", "Connection dropped, verified", instructor_id)

        assert restored.status == SessionStatus.ACTIVE
        assert restored.invalidated is False
        assert restored.session_metadata["override"]["action"] == "restore"
        assert restored.session_metadata["override"]["actor_id"] == str(instructor_id)
        # Counters are history, not reset by an override
        assert restored.risk_score == 5

    @pytest.mark.asyncio
    async def test_override_invalidate_keeps_history(self, db_session, student_id, instructor_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items, proctored=True)
        monitor = ProctorMonitor(db_session)

        invalidated = await monitor.override(s.id, "invalidate", "Observed collusion", instructor_id)
        assert invalidated.status == SessionStatus.INVALIDATED
        assert invalidated.invalidated is True

        again = await monitor.override(s.id, "restore", "Reviewed footage", instructor_id)
        history = again.session_metadata["override_history"]
        assert [h["action"] for h in history] == ["invalidate", "restore"]

    @pytest.mark.asyncio
    async def test_override_requires_reason(self, db_session, student_id, instructor_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items, proctored=True)
        monitor = ProctorMonitor(db_session)
        with pytest.raises(OverrideValidationError):
            await monitor.override(s.id, "invalidate", "   ", instructor_id)
        with pytest.raises(OverrideValidationError):
            await monitor.override(s.id, "delete", "because", instructor_id)

    @pytest.mark.asyncio
    async def test_override_completed_session_rejected(self, db_session, student_id, instructor_id, make_item, add_items, add_session):
        items = await add_items(make_item())
        s = await add_session(student_id, items, status=SessionStatus.COMPLETED)
        with pytest.raises(InvalidTransition):
            await ProctorMonitor(db_session).override(s.id, "invalidate", "Late report", instructor_id)


async def _committed_proctored_session(maker, user_id, item) -> AssessmentSession:
    async with maker() as setup:
        setup.add(item)
        await setup.flush()
        s = AssessmentSession(
            user_id=user_id,
            mode=SessionMode.PROCTORED,
            item_ids=[str(item.id)],
            current_index=0,
            status=SessionStatus.ACTIVE,
            proctored=True,
            tab_switch_allowance=2,
            session_metadata={},
        )
        setup.add(s)
        await setup.commit()
    return s


class TestConcurrentViolations:
    """Violations for one session arriving on separate connections at once."""

    @pytest.mark.asyncio
    async def test_burst_keeps_every_increment(self, file_session_maker, student_id, make_item):
        s = await _committed_proctored_session(file_session_maker, student_id, make_item())

        burst = (
            [ViolationType.DEVTOOLS_OPENED] * 4
            + [ViolationType.COPY_ATTEMPT] * 8
            + [ViolationType.WINDOW_BLUR] * 8
        )

        async def record(violation_type):
            async with file_session_maker() as session:
                outcome = await ProctorMonitor(session, risk_threshold=1000).record_violation(s.id, violation_type)
                await session.commit()
                return outcome

        outcomes = await asyncio.gather(*[record(v) for v in burst])

        async with file_session_maker() as check:
            stored = await check.get(AssessmentSession, s.id)
            log_count = (await check.execute(
                select(func.count(ProctorLog.id)).where(ProctorLog.session_id == s.id)
            )).scalar_one()

        assert stored.total_violations == len(burst)
        assert stored.major_violations == 4
        assert stored.minor_violations == 16
        assert stored.risk_score == 5 * stored.major_violations + stored.minor_violations
        assert stored.risk_score == 36
        assert log_count == len(burst)
        # Each writer saw its own increment
        assert sorted(o.proctor_summary["total_violations"] for o in outcomes) == list(range(1, len(burst) + 1))

    @pytest.mark.asyncio
    async def test_burst_crossing_threshold_invalidates_once(self, file_session_maker, student_id, make_item):
        s = await _committed_proctored_session(file_session_maker, student_id, make_item())

        async def record():
            async with file_session_maker() as session:
                outcome = await ProctorMonitor(session, risk_threshold=20).record_violation(
                    s.id, ViolationType.PAGE_EXIT_ATTEMPT
                )
                await session.commit()
                return outcome

        outcomes = await asyncio.gather(*[record() for _ in range(6)])

        async with file_session_maker() as check:
            stored = await check.get(AssessmentSession, s.id)

        assert stored.total_violations == 6
        assert stored.risk_score == 30
        assert stored.status == SessionStatus.INVALIDATED
        assert stored.invalidated is True
        tripped = [o for o in outcomes if o.proctor_summary["total_violations"] == 4]
        assert len(tripped) == 1
        assert tripped[0].status == SessionStatus.INVALIDATED
        assert sum(1 for o in outcomes if o.status == SessionStatus.ACTIVE) == 3

"""Unit tests for the mastery model and its database-backed tracker."""

import uuid

import pytest

from adaptive_assessment.engines.mastery import MasteryModel, MasteryRecord, MasteryTracker
from adaptive_assessment.engines.mastery.model import round_half_up, update_mastery


class TestMasteryModel:
    """Tests for the pure update rule."""

    def test_first_correct_answer(self):
        """0 -> target 10 -> ema 2."""
        updated = update_mastery(MasteryRecord(), score=1.0, difficulty=3, time_taken_ms=5000)
        assert updated.mastery == 2.0
        assert updated.attempts == 1
        assert updated.streak == 1
        assert updated.time_on_task_ms == 5000

    def test_streak_bonus_after_three_successes(self):
        record = MasteryRecord()
        history = []
        for _ in range(4):
            record = MasteryModel.update(record, 1.0, 3, 1000)
            history.append(record.mastery)
        # Fourth attempt carries a streak of 3 in, earning +5
        assert history == [2.0, 4.0, 6.0, 13.0]
        assert record.streak == 4

    def test_streak_bonus_is_capped(self):
        prior = MasteryRecord(mastery=40.0, attempts=20, streak=20)
        updated = MasteryModel.update(prior, 1.0, 3, 1000)
        # ema = 40*0.8 + 50*0.2 = 42, bonus capped at 15
        assert updated.mastery == 57.0

    def test_failure_resets_streak(self):
        prior = MasteryRecord(mastery=30.0, attempts=5, streak=4)
        updated = MasteryModel.update(prior, 0.5, 3, 1000)
        assert updated.streak == 0

    def test_slow_answer_penalty(self):
        prior = MasteryRecord(mastery=50.0, attempts=3, streak=0)
        on_time = MasteryModel.update(prior, 0.0, 3, 30000)
        slow = MasteryModel.update(prior, 0.0, 3, 30001)
        assert on_time.mastery == 50.0
        assert slow.mastery == 48.0

    def test_expected_time_is_configurable(self):
        prior = MasteryRecord(mastery=50.0)
        updated = MasteryModel.update(prior, 0.0, 3, 4000, expected_ms=2000)
        assert updated.mastery == 48.0

    def test_bounds(self):
        top = MasteryModel.update(MasteryRecord(mastery=100.0, streak=9), 1.0, 5, 100)
        bottom = MasteryModel.update(MasteryRecord(), 0.0, 1, 10**9)
        assert top.mastery == 100.0
        assert bottom.mastery == 0.0

    def test_difficulty_weight_clamped(self):
        assert MasteryModel.difficulty_weight(0) == 0.6
        assert MasteryModel.difficulty_weight(9) == 1.4

    def test_prior_not_modified(self):
        prior = MasteryRecord(mastery=10.0)
        MasteryModel.update(prior, 1.0, 3, 1000)
        assert prior.mastery == 10.0
        assert prior.attempts == 0

    @pytest.mark.parametrize("value,expected", [(2.5, 3), (2.4999, 2), (66.5, 67), (0.0, 0)])
    def test_round_half_up(self, value, expected):
        assert round_half_up(value) == expected


class TestMasteryTracker:
    """Tests for MasteryTracker persistence."""

    @pytest.mark.asyncio
    async def test_record_attempt_creates_row(self, db_session):
        tracker = MasteryTracker(db_session)
        user_id = uuid.uuid4()

        updated = await tracker.record_attempt(user_id, "algebra", 1.0, 3, 1000)
        assert updated.mastery == 2.0

        record = await tracker.get_record(user_id, "algebra")
        assert record.mastery == 2.0
        assert record.attempts == 1

    @pytest.mark.asyncio
    async def test_updates_accumulate(self, db_session):
        tracker = MasteryTracker(db_session)
        user_id = uuid.uuid4()
        for _ in range(4):
            await tracker.record_attempt(user_id, "algebra", 1.0, 3, 1000)

        record = await tracker.get_record(user_id, "algebra")
        assert record.mastery == 13.0
        assert record.streak == 4
        assert record.time_on_task_ms == 4000

    @pytest.mark.asyncio
    async def test_general_topic_is_ignored(self, db_session):
        tracker = MasteryTracker(db_session)
        user_id = uuid.uuid4()
        assert await tracker.record_attempt(user_id, "general", 1.0, 3, 1000) is None
        assert await tracker.record_attempt(user_id, None, 1.0, 3, 1000) is None
        assert len(await tracker.get_profile(user_id)) == 0

    @pytest.mark.asyncio
    async def test_profile_defaults_for_unknown_topic(self, db_session):
        tracker = MasteryTracker(db_session)
        user_id = uuid.uuid4()
        await tracker.record_attempt(user_id, "geometry", 1.0, 3, 1000)

        profile = await tracker.get_profile(user_id)
        assert "geometry" in profile
        assert "calculus" not in profile
        assert profile["calculus"].mastery == 0.0

    @pytest.mark.asyncio
    async def test_users_are_isolated(self, db_session):
        tracker = MasteryTracker(db_session)
        alice, bob = uuid.uuid4(), uuid.uuid4()
        await tracker.record_attempt(alice, "algebra", 1.0, 3, 1000)
        assert (await tracker.get_record(bob, "algebra")).attempts == 0

    @pytest.mark.asyncio
    async def test_row_created_by_another_writer_is_reused(self, db_session, monkeypatch):
        """Losing the insert race folds the attempt into the row that won."""
        tracker = MasteryTracker(db_session)
        user_id = uuid.uuid4()
        await tracker.record_attempt(user_id, "algebra", 1.0, 3, 1000)

        read_row = tracker._get_row
        reads = []

        async def stale_first_read(user_id, topic, for_update=False):
            reads.append(for_update)
            if len(reads) == 1:
                return None
            return await read_row(user_id, topic, for_update=for_update)

        monkeypatch.setattr(tracker, "_get_row", stale_first_read)
        updated = await tracker.record_attempt(user_id, "algebra", 1.0, 3, 1000)

        assert reads == [True, True]
        assert updated.attempts == 2
        assert updated.mastery == 4.0

        monkeypatch.undo()
        profile = await tracker.get_profile(user_id)
        assert len(profile) == 1
        assert profile["algebra"].attempts == 2

"""
Mastery Tracker - persists MasteryRecords per (user, topic).
"""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_assessment.engines.mastery.model import MasteryModel, MasteryProfile, MasteryRecord
from adaptive_assessment.kernel.models.base import utc_now
from adaptive_assessment.kernel.models.mastery import TopicMastery
from adaptive_assessment.logging_config import get_logger

logger = get_logger(__name__)

GENERIC_TOPIC = "general"


def _row_to_record(row: TopicMastery) -> MasteryRecord:
    return MasteryRecord(
        mastery=row.mastery,
        attempts=row.attempts,
        streak=row.streak,
        time_on_task_ms=row.time_on_task_ms,
    )


class MasteryTracker:
    """Reads and updates the mastery map of a user (database-backed)."""

    def __init__(self, session: AsyncSession, expected_ms: int = MasteryModel.DEFAULT_EXPECTED_MS):
        self.session = session
        self.expected_ms = expected_ms

    async def get_profile(self, user_id: uuid.UUID) -> MasteryProfile:
        """All topics the user has attempted."""
        result = await self.session.execute(
            select(TopicMastery).where(TopicMastery.user_id == user_id)
        )
        return MasteryProfile({row.topic: _row_to_record(row) for row in result.scalars().all()})

    async def get_record(self, user_id: uuid.UUID, topic: str) -> MasteryRecord:
        """Record for one topic; default record if never attempted."""
        row = await self._get_row(user_id, topic)
        return _row_to_record(row) if row else MasteryRecord()

    async def record_attempt(
        self,
        user_id: uuid.UUID,
        topic: Optional[str],
        score: float,
        difficulty: int,
        time_taken_ms: int,
    ) -> Optional[MasteryRecord]:
        """
        Fold one graded attempt into the user's mastery for `topic`.

        Attempts without a topic or tagged "general" update nothing.

        Returns:
            The new record, or None when no topic was updated
        """
        topic = (topic or "").strip()
        if not topic or topic.lower() == GENERIC_TOPIC:
            return None

        row = await self._get_row(user_id, topic, for_update=True)
        if row is None:
            row = await self._insert_row(user_id, topic)
        prior = _row_to_record(row)

        updated = MasteryModel.update(prior, score, difficulty, time_taken_ms, self.expected_ms)
        row.mastery = updated.mastery
        row.attempts = updated.attempts
        row.streak = updated.streak
        row.time_on_task_ms = updated.time_on_task_ms
        row.last_active_at = utc_now()
        await self.session.flush()

        logger.debug(
            "Mastery updated",
            extra={
                "user_id": str(user_id),
                "topic": topic,
                "mastery_before": prior.mastery,
                "mastery_after": updated.mastery,
                "streak": updated.streak,
            },
        )
        return updated

    async def _insert_row(self, user_id: uuid.UUID, topic: str) -> TopicMastery:
        """
        Insert an empty row for (user, topic). If another writer inserted it
        first, lock and return theirs instead.
        """
        row = TopicMastery(
            user_id=user_id,
            topic=topic,
            mastery=0.0,
            attempts=0,
            streak=0,
            time_on_task_ms=0,
        )
        try:
            async with self.session.begin_nested():
                self.session.add(row)
        except IntegrityError:
            logger.debug(
                "Mastery row created concurrently",
                extra={"user_id": str(user_id), "topic": topic},
            )
            existing = await self._get_row(user_id, topic, for_update=True)
            if existing is None:
                raise
            return existing
        return row

    async def _get_row(
        self,
        user_id: uuid.UUID,
        topic: str,
        for_update: bool = False,
    ) -> Optional[TopicMastery]:
        q = select(TopicMastery).where(
            TopicMastery.user_id == user_id,
            TopicMastery.topic == topic,
        )
        if for_update:
            q = q.with_for_update()
        result = await self.session.execute(q)
        return result.scalar_one_or_none()

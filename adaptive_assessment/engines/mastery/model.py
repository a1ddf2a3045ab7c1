"""
Mastery Model - per-topic competence update after each graded attempt.

The update is an exponential moving average toward a gain-boosted target,
plus a streak bonus and a slow-answer penalty:

    raw_gain = score * weight[difficulty] * 10
    ema      = m * (1 - ALPHA) + ALPHA * min(100, m + raw_gain)
    final    = clamp(round(ema + streak_bonus - time_penalty), 0, 100)
"""

import math
from typing import Dict, Iterator, Mapping, Optional

from pydantic import BaseModel, ConfigDict


class MasteryRecord(BaseModel):
    """Mastery state for one (user, topic)."""

    model_config = ConfigDict(frozen=True)

    mastery: float = 0.0
    attempts: int = 0
    streak: int = 0
    time_on_task_ms: int = 0


class MasteryProfile(Mapping[str, MasteryRecord]):
    """
    Topic -> MasteryRecord mapping.

    Looking up a topic that has never been attempted returns a fresh
    default record; `in` still reports only topics that have history.
    """

    def __init__(self, records: Optional[Dict[str, MasteryRecord]] = None):
        self._records: Dict[str, MasteryRecord] = dict(records or {})

    def __getitem__(self, topic: str) -> MasteryRecord:
        return self._records.get(topic, MasteryRecord())

    def __contains__(self, topic: object) -> bool:
        return topic in self._records

    def __iter__(self) -> Iterator[str]:
        return iter(self._records)

    def __len__(self) -> int:
        return len(self._records)


class MasteryModel:
    """Pure mastery update rules."""

    DIFFICULTY_WEIGHTS = (0.6, 0.8, 1.0, 1.2, 1.4)
    ALPHA = 0.2
    GAIN_SCALE = 10
    STREAK_STEP = 3  # every 3 consecutive successes
    STREAK_BONUS_STEP = 5
    STREAK_BONUS_CAP = 15
    SLOW_FACTOR = 1.5
    SLOW_PENALTY = 2
    SUCCESS_THRESHOLD = 0.75
    DEFAULT_EXPECTED_MS = 20000

    @classmethod
    def difficulty_weight(cls, difficulty: int) -> float:
        index = min(5, max(1, int(difficulty))) - 1
        return cls.DIFFICULTY_WEIGHTS[index]

    @classmethod
    def update(
        cls,
        prior: MasteryRecord,
        score: float,
        difficulty: int,
        time_taken_ms: int,
        expected_ms: int = DEFAULT_EXPECTED_MS,
    ) -> MasteryRecord:
        """
        Apply one graded attempt to a mastery record.

        Args:
            prior: Record before this attempt
            score: Normalized attempt score in [0, 1]
            difficulty: Item difficulty 1-5
            time_taken_ms: Time spent on the item
            expected_ms: Expected answer time; answers slower than 1.5x are penalized

        Returns:
            New MasteryRecord (prior is not modified)
        """
        score = max(0.0, min(1.0, score))
        time_taken_ms = max(0, int(time_taken_ms))

        raw_gain = score * cls.difficulty_weight(difficulty) * cls.GAIN_SCALE
        target = min(100.0, prior.mastery + raw_gain)
        ema = prior.mastery * (1 - cls.ALPHA) + cls.ALPHA * target

        # Bonus uses the streak carried into this attempt
        streak_bonus = min(
            cls.STREAK_BONUS_CAP,
            (prior.streak // cls.STREAK_STEP) * cls.STREAK_BONUS_STEP,
        )
        time_penalty = cls.SLOW_PENALTY if time_taken_ms > expected_ms * cls.SLOW_FACTOR else 0

        final = round_half_up(ema + streak_bonus - time_penalty)
        final = max(0, min(100, final))

        return MasteryRecord(
            mastery=float(final),
            attempts=prior.attempts + 1,
            streak=prior.streak + 1 if score >= cls.SUCCESS_THRESHOLD else 0,
            time_on_task_ms=prior.time_on_task_ms + time_taken_ms,
        )


def round_half_up(value: float) -> int:
    """Round .5 upward (2.5 -> 3), unlike Python's banker's rounding."""
    return int(math.floor(value + 0.5))


def update_mastery(
    prior: MasteryRecord,
    score: float,
    difficulty: int,
    time_taken_ms: int,
    expected_ms: int = MasteryModel.DEFAULT_EXPECTED_MS,
) -> MasteryRecord:
    """Functional alias for MasteryModel.update."""
    return MasteryModel.update(prior, score, difficulty, time_taken_ms, expected_ms)

"""
Mastery Engine - per-topic competence estimates.

Each graded attempt moves the 0-100 mastery of its primary topic with an
exponential moving average, a streak bonus and a slow-answer penalty.
"""

from adaptive_assessment.engines.mastery.model import (
    MasteryModel,
    MasteryProfile,
    MasteryRecord,
    round_half_up,
    update_mastery,
)
from adaptive_assessment.engines.mastery.tracker import GENERIC_TOPIC, MasteryTracker

__all__ = [
    "MasteryModel",
    "MasteryProfile",
    "MasteryRecord",
    "round_half_up",
    "update_mastery",
    "GENERIC_TOPIC",
    "MasteryTracker",
]

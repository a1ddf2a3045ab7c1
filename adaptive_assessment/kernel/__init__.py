"""
Kernel Layer

Persistence models, the append-only audit log and token verification
shared by every engine.
"""

from adaptive_assessment.kernel.models import (
    Base,
    Item,
    ItemType,
    GradingMethod,
    GeneratedAssessment,
    AssessmentSession,
    SessionStatus,
    Attempt,
    ProctorLog,
    TopicMastery,
    EventLog,
    EventType,
)

__all__ = [
    "Base",
    "Item",
    "ItemType",
    "GradingMethod",
    "GeneratedAssessment",
    "AssessmentSession",
    "SessionStatus",
    "Attempt",
    "ProctorLog",
    "TopicMastery",
    "EventLog",
    "EventType",
]

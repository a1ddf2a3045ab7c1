"""
Kernel Data Models

SQLAlchemy models for the item bank, assessment sessions, attempts,
proctoring logs, mastery records and the audit log.
"""

from adaptive_assessment.kernel.models.base import Base, TimestampMixin, generate_uuid, utc_now, ensure_utc
from adaptive_assessment.kernel.models.item import (
    Item,
    ItemTopic,
    ItemType,
    GradingMethod,
    BloomLevel,
    default_grading_method,
    is_compatible,
    normalize_topic,
)
from adaptive_assessment.kernel.models.generated_assessment import GeneratedAssessment, BatchStatus
from adaptive_assessment.kernel.models.session import AssessmentSession, SessionMode, SessionStatus
from adaptive_assessment.kernel.models.attempt import Attempt
from adaptive_assessment.kernel.models.proctor_log import ProctorLog, ViolationType, Severity
from adaptive_assessment.kernel.models.mastery import TopicMastery
from adaptive_assessment.kernel.models.generation_lease import GenerationLease
from adaptive_assessment.kernel.models.event_log import EventLog, EventType, EntityType

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    "generate_uuid",
    "utc_now",
    "ensure_utc",
    # Item bank
    "Item",
    "ItemTopic",
    "ItemType",
    "GradingMethod",
    "BloomLevel",
    "default_grading_method",
    "is_compatible",
    "normalize_topic",
    "GeneratedAssessment",
    "BatchStatus",
    # Sessions
    "AssessmentSession",
    "SessionMode",
    "SessionStatus",
    "Attempt",
    # Proctoring
    "ProctorLog",
    "ViolationType",
    "Severity",
    # Mastery
    "TopicMastery",
    # Generation
    "GenerationLease",
    # Audit
    "EventLog",
    "EventType",
    "EntityType",
]

"""Orchestration layer - session state machine and session lifecycle service."""

from adaptive_assessment.orchestration.session_service import (
    AnswerOutcome,
    AssessmentSessionService,
    CurrentItem,
    FinishOutcome,
    SessionDetails,
    StartOutcome,
)
from adaptive_assessment.orchestration.state_machine import (
    SessionStateMachine,
    TransitionActor,
    can_transition,
    valid_transitions,
)

__all__ = [
    "AnswerOutcome",
    "AssessmentSessionService",
    "CurrentItem",
    "FinishOutcome",
    "SessionDetails",
    "StartOutcome",
    "SessionStateMachine",
    "TransitionActor",
    "can_transition",
    "valid_transitions",
]

"""
Typed errors raised by the assessment engine.

Every error carries an HTTP status and a machine-readable code so the API
layer can render "invalidated" vs "cancelled" vs "completed" distinctly.
Collaborator failures (LLM timeouts, malformed output) never surface here;
they degrade inside the grading/generation code instead.
"""

from typing import Any, Optional

from fastapi import status


class AssessmentError(Exception):
    """Base class for engine errors."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    code: str = "assessment_error"
    default_message: str = "Assessment error"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


# --- validation -------------------------------------------------------------

class AnswerValidationError(AssessmentError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "invalid_answer"
    default_message = "Provide answer or answer_index"


class SelectionValidationError(AssessmentError):
    code = "invalid_selection_request"
    default_message = "Invalid selection request"


class OverrideValidationError(AssessmentError):
    code = "invalid_override"
    default_message = "Override requires an action and a non-empty reason"


class ItemValidationError(AssessmentError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "invalid_item"
    default_message = "Invalid item"


# --- not found --------------------------------------------------------------

class SessionNotFound(AssessmentError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "session_not_found"
    default_message = "Session not found"


class ItemNotFound(AssessmentError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "item_not_found"
    default_message = "Item not found"


class BatchNotFound(AssessmentError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "batch_not_found"
    default_message = "Generated assessment not found"


# --- state conflicts --------------------------------------------------------

class SessionInvalidated(AssessmentError):
    status_code = status.HTTP_403_FORBIDDEN
    code = "session_invalidated"
    default_message = (
        "This session has been invalidated due to proctoring violations. "
        "Please contact your instructor."
    )


class SessionCancelled(AssessmentError):
    status_code = status.HTTP_409_CONFLICT
    code = "session_cancelled"
    default_message = "This session has been cancelled."


class SessionAlreadyCompleted(AssessmentError):
    status_code = status.HTTP_409_CONFLICT
    code = "session_completed"
    default_message = "This assessment has already been completed."


class NoCurrentItem(AssessmentError):
    status_code = status.HTTP_409_CONFLICT
    code = "no_current_item"
    default_message = "No current item"


class DuplicateSubmission(AssessmentError):
    status_code = status.HTTP_409_CONFLICT
    code = "duplicate_submission"
    default_message = "This item has already been answered"


class InvalidTransition(AssessmentError):
    status_code = status.HTTP_409_CONFLICT
    code = "invalid_transition"
    default_message = "Invalid session status transition"


class SessionNotProctored(AssessmentError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "session_not_proctored"
    default_message = "Session is not proctored"


class ItemLocked(AssessmentError):
    status_code = status.HTTP_409_CONFLICT
    code = "item_locked"
    default_message = "Item has graded attempts and can no longer be edited"


class GenerationInProgress(AssessmentError):
    status_code = status.HTTP_409_CONFLICT
    code = "generation_in_progress"
    default_message = "Assessment generation already in progress for this topic. Please wait."


class GenerationFailed(AssessmentError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "generation_failed"
    default_message = "Failed to generate assessment"

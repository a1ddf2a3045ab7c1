"""
Grading Engine

Type-specific answer grading: exact, edit-distance, LLM-assisted semantic,
pair matching and sequence checking.
"""

from adaptive_assessment.engines.grading.answers import (
    FillBlankAnswer,
    MatchAnswer,
    McqAnswer,
    ReorderAnswer,
    ShortAnswer,
    SubmittedAnswer,
    answer_payload,
    parse_answer,
)
from adaptive_assessment.engines.grading.grader import GradeResult, GradingContext, GradingEngine
from adaptive_assessment.engines.grading.similarity import edit_distance, levenshtein_similarity

__all__ = [
    "FillBlankAnswer",
    "MatchAnswer",
    "McqAnswer",
    "ReorderAnswer",
    "ShortAnswer",
    "SubmittedAnswer",
    "answer_payload",
    "parse_answer",
    "GradeResult",
    "GradingContext",
    "GradingEngine",
    "edit_distance",
    "levenshtein_similarity",
]

"""
Grading Engine - per-type answer grading.

mcq          exact match (trimmed, case-insensitive)
fill_blank   Levenshtein similarity >= 0.8 (or exact, if the item says so)
short_answer semantic grading through the completion collaborator, falling
             back to Levenshtein against the first reference answer
match        greedy one-to-one pair matching
reorder      positional comparison

`GradingEngine.grade` never raises: internal failures come back as a zero
score with needs_manual_grading set.
"""

from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, Field, StrictBool, ValidationError, field_validator

from adaptive_assessment.ai.completion import (
    CompletionError,
    CompletionRequest,
    TextCompletionClient,
    complete_json,
)
from adaptive_assessment.ai.prompts import SEMANTIC_GRADER_SYSTEM, SEMANTIC_GRADER_USER
from adaptive_assessment.engines.grading.answers import (
    FillBlankAnswer,
    MatchAnswer,
    McqAnswer,
    ReorderAnswer,
    ShortAnswer,
    SubmittedAnswer,
    parse_answer,
)
from adaptive_assessment.engines.grading.similarity import levenshtein_similarity, normalize_text
from adaptive_assessment.kernel.models.item import GradingMethod, ItemType, default_grading_method
from adaptive_assessment.logging_config import get_logger

logger = get_logger(__name__)


class GradingContext(BaseModel):
    """Extra information a strategy may use (semantic grading sends the topic)."""

    topic: Optional[str] = None


class GradeResult(BaseModel):
    """Outcome of grading one answer."""

    is_correct: bool
    score: float = Field(ge=0.0, le=1.0)
    details: dict[str, Any]
    explanation: Optional[str] = None
    needs_manual_grading: bool = False


def _clamp01(value: float) -> float:
    return max(0.0, min(1.0, value))


class SemanticVerdict(BaseModel):
    """Shape required from the completion collaborator."""

    similarity: float = Field(allow_inf_nan=False)
    is_correct: StrictBool = Field(default=False, alias="isCorrect")
    explanation: str = "Semantic evaluation completed."
    confidence: float = Field(default=0.5, allow_inf_nan=False)

    @field_validator("similarity", "confidence")
    @classmethod
    def _clamp(cls, v: float) -> float:
        return _clamp01(v)

    @field_validator("explanation", mode="before")
    @classmethod
    def _explanation_text(cls, v: Any) -> Any:
        return v or "Semantic evaluation completed."


class GradingEngine:
    """
    Grades submitted answers against bank items.

    The engine only reads the item; it never writes session or attempt
    state.
    """

    SIMILARITY_THRESHOLD = 0.8
    SEMANTIC_THRESHOLD = 0.75
    FALLBACK_CONFIDENCE = 0.5
    FALLBACK_EXPLANATION = "LLM grading unavailable; using text similarity fallback."

    def __init__(
        self,
        completion_client: Optional[TextCompletionClient] = None,
        semantic_timeout: float = 10.0,
    ):
        self.completion_client = completion_client
        self.semantic_timeout = semantic_timeout

    async def grade(
        self,
        item: Any,
        answer: Any,
        context: Optional[GradingContext] = None,
    ) -> GradeResult:
        """
        Grade one answer.

        Args:
            item: Bank item (anything with item_type, answer, grading_method)
            answer: A parsed SubmittedAnswer or the raw submitted value
            context: Optional grading context

        Returns:
            GradeResult; never raises
        """
        context = context or GradingContext()
        method_tag = str(getattr(item, "grading_method", None) or "unknown")
        try:
            item_type = ItemType(item.item_type)
            method = GradingMethod(item.grading_method or default_grading_method(item_type))
            method_tag = method.value
            submitted = answer if isinstance(answer, BaseModel) else parse_answer(item_type, answer)

            if isinstance(submitted, McqAnswer):
                return self._grade_exact(submitted.value, item.answer)
            if isinstance(submitted, FillBlankAnswer):
                if method == GradingMethod.EXACT:
                    return self._grade_exact(submitted.value, item.answer)
                return self._grade_levenshtein(submitted.value, item.answer)
            if isinstance(submitted, ShortAnswer):
                references = self._references(item.answer)
                if method == GradingMethod.LEVENSHTEIN:
                    return self._grade_levenshtein(submitted.value, references[0])
                return await self._grade_semantic(submitted.value, references, context.topic)
            if isinstance(submitted, MatchAnswer):
                return self._grade_match(submitted.pairs, item.answer)
            if isinstance(submitted, ReorderAnswer):
                return self._grade_reorder(submitted.sequence, item.answer)
            raise ValueError(f"Unsupported answer for item type {item_type.value}")
        except Exception as exc:
            logger.exception(
                "Grading failed; flagging for manual review",
                extra={"item_id": str(getattr(item, "id", "")), "item_type": str(getattr(item, "item_type", ""))},
            )
            return GradeResult(
                is_correct=False,
                score=0.0,
                details={"method": method_tag, "error": str(exc)},
                needs_manual_grading=True,
            )

    # --- strategies ---------------------------------------------------------

    def _grade_exact(self, submitted: str, reference: Any) -> GradeResult:
        correct = normalize_text(submitted) == normalize_text(str(reference or ""))
        return GradeResult(
            is_correct=correct,
            score=1.0 if correct else 0.0,
            details={"method": GradingMethod.EXACT.value},
        )

    def _grade_levenshtein(self, submitted: str, reference: Any) -> GradeResult:
        similarity = levenshtein_similarity(submitted, str(reference or ""))
        return GradeResult(
            is_correct=similarity >= self.SIMILARITY_THRESHOLD,
            score=similarity,
            details={"method": GradingMethod.LEVENSHTEIN.value, "similarity": similarity},
        )

    async def _grade_semantic(
        self,
        submitted: str,
        references: List[str],
        topic: Optional[str],
    ) -> GradeResult:
        if self.completion_client is None:
            return self._semantic_fallback(submitted, references, "no completion client configured")

        request = CompletionRequest(
            system_prompt=SEMANTIC_GRADER_SYSTEM,
            user_prompt=SEMANTIC_GRADER_USER.format(
                student_answer=submitted,
                references=" OR ".join(f'"{r}"' for r in references),
                context_line=f"Context: {topic}" if topic else "",
            ),
            response_format="json",
            max_tokens=300,
            temperature=0.0,
        )
        try:
            data, _ = await complete_json(self.completion_client, request, self.semantic_timeout)
            if not isinstance(data, dict):
                raise CompletionError("Semantic grader returned a non-object")
            verdict = SemanticVerdict.model_validate(data)
        except (CompletionError, ValidationError) as exc:
            logger.warning("Semantic grading degraded to text similarity", extra={"reason": str(exc)})
            return self._semantic_fallback(submitted, references, str(exc))

        return GradeResult(
            is_correct=verdict.similarity >= self.SEMANTIC_THRESHOLD or verdict.is_correct,
            score=verdict.similarity,
            explanation=verdict.explanation,
            details={
                "method": GradingMethod.SEMANTIC.value,
                "similarity": verdict.similarity,
                "confidence": verdict.confidence,
                "model_is_correct": verdict.is_correct,
            },
        )

    def _semantic_fallback(self, submitted: str, references: List[str], reason: str) -> GradeResult:
        similarity = levenshtein_similarity(submitted, references[0])
        return GradeResult(
            is_correct=similarity >= self.SIMILARITY_THRESHOLD,
            score=similarity,
            explanation=self.FALLBACK_EXPLANATION,
            needs_manual_grading=True,
            details={
                "method": GradingMethod.SEMANTIC.value,
                "fallback": GradingMethod.LEVENSHTEIN.value,
                "similarity": similarity,
                "confidence": self.FALLBACK_CONFIDENCE,
                "reason": reason,
            },
        )

    def _grade_match(self, submitted: List[Tuple[str, str]], reference: Any) -> GradeResult:
        ref_pairs = self._normalize_pairs(reference)
        if not ref_pairs:
            raise ValueError("Invalid reference: no [key, value] pairs")

        matched = [False] * len(ref_pairs)
        correct_count = 0
        for key, value in submitted:
            pair = (normalize_text(key), normalize_text(value))
            for index, ref_pair in enumerate(ref_pairs):
                if not matched[index] and ref_pair == pair:
                    matched[index] = True
                    correct_count += 1
                    break

        score = correct_count / len(ref_pairs)
        return GradeResult(
            is_correct=score >= 1.0,
            score=score,
            details={
                "method": GradingMethod.PAIR_MATCH.value,
                "correct_count": correct_count,
                "total_pairs": len(ref_pairs),
                "submitted_pairs": len(submitted),
            },
        )

    def _grade_reorder(self, submitted: List[str], reference: Any) -> GradeResult:
        if not isinstance(reference, list) or not reference:
            raise ValueError("Invalid reference: expected a non-empty sequence")

        if len(submitted) != len(reference):
            return GradeResult(
                is_correct=False,
                score=0.0,
                details={
                    "method": GradingMethod.SEQUENCE_CHECK.value,
                    "error": "length_mismatch",
                    "correct_positions": 0,
                    "total_positions": len(reference),
                },
            )

        correct_positions = sum(
            1 for got, expected in zip(submitted, reference)
            if normalize_text(got) == normalize_text(str(expected))
        )
        score = correct_positions / len(reference)
        return GradeResult(
            is_correct=score >= 1.0,
            score=score,
            details={
                "method": GradingMethod.SEQUENCE_CHECK.value,
                "correct_positions": correct_positions,
                "total_positions": len(reference),
            },
        )

    # --- helpers ------------------------------------------------------------

    @staticmethod
    def _references(reference: Any) -> List[str]:
        if isinstance(reference, list):
            refs = [str(r) for r in reference if r is not None]
        else:
            refs = [str(reference)] if reference is not None else []
        if not refs:
            raise ValueError("Invalid reference: no reference answer")
        return refs

    @staticmethod
    def _normalize_pairs(reference: Any) -> List[Tuple[str, str]]:
        if isinstance(reference, dict):
            reference = list(reference.items())
        if not isinstance(reference, list):
            return []
        pairs = []
        for pair in reference:
            if isinstance(pair, (list, tuple)) and len(pair) >= 2:
                pairs.append((normalize_text(str(pair[0])), normalize_text(str(pair[1]))))
        return pairs

"""
Remediation - study advice built from a session's mistakes.

The completion collaborator writes the advice under a timeout; any failure
falls back to a deterministic per-topic plan.
"""

from typing import Any, Dict, List, Optional
from urllib.parse import quote

from pydantic import BaseModel, ConfigDict, Field

from adaptive_assessment.ai.completion import (
    CompletionError,
    CompletionRequest,
    TextCompletionClient,
    complete_json,
)
from adaptive_assessment.ai.prompts import REMEDIATION_SYSTEM, REMEDIATION_USER
from adaptive_assessment.logging_config import get_logger

logger = get_logger(__name__)

NO_MISTAKES_MESSAGE = "Great job! You answered all questions correctly. Keep up the excellent work!"
DEFAULT_NEXT_STEPS = [
    "Review the explanations for each incorrect answer",
    "Practice more questions on weak topics",
    "Use the learning modules to strengthen understanding",
]


class Mistake(BaseModel):
    """One incorrect answer."""

    topic: str
    question: str
    user_answer: Any = None
    correct_answer: Any = None
    explanation: str = ""


class Recommendation(BaseModel):
    topic: str
    action: str
    resources: List[str] = Field(default_factory=list)
    practice_suggestions: List[str] = Field(default_factory=list, alias="practiceSuggestions")

    model_config = ConfigDict(populate_by_name=True)


class RemediationPlan(BaseModel):
    remediation: str
    weak_topics: List[str] = Field(default_factory=list)
    recommendations: List[Recommendation] = Field(default_factory=list)
    next_steps: List[str] = Field(default_factory=list)
    generated: bool = False


def _topic_recommendation(topic: str, action: Optional[str] = None) -> Recommendation:
    return Recommendation(
        topic=topic,
        action=action or f"Review {topic} fundamentals and practice more questions on this topic.",
        resources=[f"/student/learning?topic={quote(topic)}"],
        practice_suggestions=[f"Take another quiz on {topic}", f"Review learning modules for {topic}"],
    )


def weak_topics_from(mistakes: List[Mistake]) -> List[str]:
    """Topics with at least one mistake, in first-seen order."""
    return list(dict.fromkeys(m.topic for m in mistakes))


def fallback_plan(mistakes: List[Mistake], weak_topics: List[str]) -> RemediationPlan:
    return RemediationPlan(
        remediation=(
            f"You made {len(mistakes)} mistake(s) across {len(weak_topics)} topic(s). "
            "Review the explanations for each incorrect answer and practice more on: "
            f"{', '.join(weak_topics)}."
        ),
        weak_topics=weak_topics,
        recommendations=[_topic_recommendation(t) for t in weak_topics],
        next_steps=list(DEFAULT_NEXT_STEPS),
    )


def _format_mistakes(mistakes: List[Mistake]) -> str:
    return "\n\n".join(
        f"{i}. Topic: {m.topic}\n"
        f"   Question: {m.question}\n"
        f"   Your Answer: {m.user_answer}\n"
        f"   Correct Answer: {m.correct_answer}\n"
        f"   Explanation: {m.explanation or 'N/A'}"
        for i, m in enumerate(mistakes, start=1)
    )


class RemediationService:
    """Builds a RemediationPlan for a list of mistakes."""

    def __init__(self, completion_client: Optional[TextCompletionClient] = None, timeout: float = 15.0):
        self.completion_client = completion_client
        self.timeout = timeout

    async def generate(self, mistakes: List[Mistake]) -> RemediationPlan:
        if not mistakes:
            return RemediationPlan(remediation=NO_MISTAKES_MESSAGE)

        weak_topics = weak_topics_from(mistakes)
        if self.completion_client is None:
            return fallback_plan(mistakes, weak_topics)

        request = CompletionRequest(
            system_prompt=REMEDIATION_SYSTEM,
            user_prompt=REMEDIATION_USER.format(
                count=len(mistakes),
                topics=", ".join(weak_topics),
                mistakes=_format_mistakes(mistakes),
            ),
            max_tokens=1500,
        )
        try:
            data, _ = await complete_json(self.completion_client, request, self.timeout)
        except CompletionError as exc:
            logger.warning("Remediation generation failed; using fallback", extra={"reason": str(exc)})
            return fallback_plan(mistakes, weak_topics)
        if not isinstance(data, dict):
            return fallback_plan(mistakes, weak_topics)

        return self._from_completion(data, mistakes, weak_topics)

    @staticmethod
    def _from_completion(
        data: Dict[str, Any],
        mistakes: List[Mistake],
        weak_topics: List[str],
    ) -> RemediationPlan:
        recommendations: List[Recommendation] = []
        raw_recs = data.get("recommendations")
        if isinstance(raw_recs, list):
            for rec in raw_recs:
                if isinstance(rec, dict) and rec.get("topic") and rec.get("action"):
                    recommendations.append(Recommendation(
                        topic=str(rec["topic"]),
                        action=str(rec["action"]),
                        resources=[str(r) for r in rec.get("resources") or []],
                        practice_suggestions=[str(p) for p in rec.get("practiceSuggestions") or []],
                    ))
        else:
            recommendations = [
                _topic_recommendation(t, f"Review {t} fundamentals and practice more questions.")
                for t in weak_topics
            ]

        topics = data.get("weakTopics")
        steps = data.get("nextSteps")
        return RemediationPlan(
            remediation=str(data.get("remediation") or (
                f"You made {len(mistakes)} mistake(s). Review the explanations and practice more."
            )),
            weak_topics=[str(t) for t in topics] if isinstance(topics, list) else weak_topics,
            recommendations=recommendations,
            next_steps=[str(s) for s in steps] if isinstance(steps, list) else list(DEFAULT_NEXT_STEPS),
            generated=True,
        )

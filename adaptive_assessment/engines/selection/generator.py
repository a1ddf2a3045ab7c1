"""
Question Generator - turns completion output into bank items.

Completion output is untrusted: types, difficulty words, bloom levels and
answer shapes are normalized, and items that still fail validation are
dropped. Every run is persisted as a GeneratedAssessment batch; bank Items
are materialized from a batch on publication or by the selection fallback
chain.
"""

import json
import re
import time
import uuid
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_assessment.ai.completion import (
    CompletionError,
    CompletionRequest,
    TextCompletionClient,
    complete_json,
)
from adaptive_assessment.ai.prompts import (
    ASSESSMENT_GENERATOR_USER,
    QUESTION_GENERATOR_SYSTEM,
    QUESTION_GENERATOR_USER,
)
from adaptive_assessment.engines.selection.lease_store import LeaseStore
from adaptive_assessment.exceptions import BatchNotFound, GenerationFailed, GenerationInProgress
from adaptive_assessment.kernel.events.event_store import EventStore
from adaptive_assessment.kernel.models.base import utc_now
from adaptive_assessment.kernel.models.event_log import EntityType, EventType
from adaptive_assessment.kernel.models.generated_assessment import BatchStatus, GeneratedAssessment
from adaptive_assessment.kernel.models.item import (
    BloomLevel,
    Item,
    ItemType,
    default_grading_method,
    normalize_topic,
)
from adaptive_assessment.logging_config import get_logger

logger = get_logger(__name__)

TYPE_ALIASES = {"short": ItemType.SHORT_ANSWER.value, "code": ItemType.SHORT_ANSWER.value}
DIFFICULTY_WORDS = {"easy": 2, "medium": 3, "hard": 4}
BLOOM_STEMS = (
    ("analy", BloomLevel.ANALYZE),
    ("eval", BloomLevel.EVALUATE),
    ("creat", BloomLevel.CREATE),
    ("under", BloomLevel.UNDERSTAND),
    ("remem", BloomLevel.REMEMBER),
)


class ParsedItem(BaseModel):
    """A generated item after normalization."""

    id: str = Field(min_length=1)
    type: ItemType
    question: str = Field(min_length=1)
    choices: List[str] = Field(default_factory=list)
    answer: Any
    explanation: str = ""
    difficulty: int = Field(ge=1, le=5)
    bloom: BloomLevel
    topics: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    hints: List[str] = Field(default_factory=list)

    @field_validator("answer")
    @classmethod
    def answer_present(cls, v: Any) -> Any:
        if v is None or v == "" or v == []:
            raise ValueError("answer is required")
        return v


def normalize_difficulty(value: Any) -> int:
    """Numbers are clamped to 1-5; easy/medium/hard map to 2/3/4; anything else is 3."""
    if isinstance(value, bool):
        return 3
    if isinstance(value, (int, float)):
        return min(5, max(1, int(round(value))))
    key = str(value or "").strip().lower()
    if key.isdigit():
        return min(5, max(1, int(key)))
    return DIFFICULTY_WORDS.get(key, 3)


def normalize_bloom(cognitive_level: Any = None, bloom: Any = None) -> BloomLevel:
    value = str(cognitive_level or bloom or BloomLevel.APPLY.value).strip().lower()
    try:
        return BloomLevel(value)
    except ValueError:
        pass
    for stem, level in BLOOM_STEMS:
        if stem in value:
            return level
    return BloomLevel.APPLY


def _as_str_list(value: Any) -> List[str]:
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    return [str(v) for v in value if v is not None and str(v).strip()]


def _coerce_pairs(answer: Any) -> List[List[str]]:
    if isinstance(answer, str):
        try:
            answer = json.loads(answer)
        except ValueError:
            return []
    if isinstance(answer, dict):
        answer = list(answer.items())
    if not isinstance(answer, list):
        return []
    return [
        [str(pair[0]), str(pair[1])]
        for pair in answer
        if isinstance(pair, (list, tuple)) and len(pair) == 2
    ]


def normalize_raw_item(raw: Dict[str, Any], topic: Optional[str] = None) -> Dict[str, Any]:
    """Map one raw completion item onto the ParsedItem field set."""
    raw_type = str(raw.get("type") or ("mcq" if raw.get("options") else "short_answer")).lower()
    item_type = TYPE_ALIASES.get(raw_type, raw_type)
    choices = _as_str_list(raw.get("choices") or raw.get("options"))
    if item_type not in {t.value for t in ItemType}:
        item_type = ItemType.MCQ.value if choices else ItemType.SHORT_ANSWER.value

    answer = raw.get("answer")
    if answer is None:
        index = raw.get("correctIndex")
        if (
            item_type == ItemType.MCQ.value
            and isinstance(index, int)
            and not isinstance(index, bool)
            and 0 <= index < len(choices)
        ):
            answer = choices[index]
        else:
            answer = ""

    if item_type == ItemType.MATCH.value:
        answer = _coerce_pairs(answer)
    elif item_type == ItemType.REORDER.value:
        answer = _as_str_list(answer) if isinstance(answer, list) else list(choices)
    elif item_type == ItemType.SHORT_ANSWER.value and isinstance(answer, list):
        answer = _as_str_list(answer)
    elif not isinstance(answer, str):
        answer = str(answer)

    topics = _as_str_list(raw.get("topics") or raw.get("topic"))
    if not topics and topic:
        topics = [topic]

    return {
        "id": str(raw.get("id") or ""),
        "type": item_type,
        "question": str(raw.get("question") or "").strip(),
        "choices": choices,
        "answer": answer,
        "explanation": str(raw.get("explanation") or ""),
        "difficulty": normalize_difficulty(raw.get("difficulty")),
        "bloom": normalize_bloom(raw.get("cognitiveLevel"), raw.get("bloom")),
        "topics": topics,
        "skills": _as_str_list(raw.get("skills")),
        "hints": _as_str_list(raw.get("hints")),
    }


def coerce_item_list(response: Any) -> List[Dict[str, Any]]:
    """Accept a bare array or an object with an items/questions array."""
    if isinstance(response, dict):
        response = response.get("items") or response.get("questions") or []
    if not isinstance(response, list):
        return []
    return [r for r in response if isinstance(r, dict)]


def parse_items(response: Any, topic: Optional[str] = None) -> List[ParsedItem]:
    """Normalize and validate completion output; invalid items are dropped."""
    parsed: List[ParsedItem] = []
    for raw in coerce_item_list(response):
        try:
            parsed.append(ParsedItem.model_validate(normalize_raw_item(raw, topic)))
        except ValidationError as exc:
            logger.debug("Dropped generated item", extra={"errors": exc.error_count()})
    return parsed


def assessment_item_error(item: ParsedItem) -> Optional[str]:
    """Stricter checks for instructor-requested assessments. Returns the problem, if any."""
    if item.type == ItemType.MCQ:
        if not 3 <= len(item.choices) <= 5:
            return "MCQ must have 3-5 choices"
        if not isinstance(item.answer, str):
            return "MCQ answer must be a string"
    elif item.type == ItemType.MATCH:
        if not item.answer:
            return "Match answer must be array of [key, value] pairs"
    elif item.type == ItemType.REORDER:
        if not isinstance(item.answer, list) or not item.answer:
            return "Reorder answer must be array"
        if not item.choices:
            return "Reorder must have choices array"
    return None


def _slug(topic: str) -> str:
    return re.sub(r"\s+", "_", topic.strip())


def _with_seed_ids(raw_items: List[Dict[str, Any]], topic: str, stamp: int) -> List[Dict[str, Any]]:
    return [
        {**r, "id": r.get("id") or f"seed_{_slug(topic)}_{stamp}_{i}"}
        for i, r in enumerate(raw_items)
    ]


def build_item(
    parsed: ParsedItem,
    topic: str,
    user_id: Optional[uuid.UUID] = None,
    batch_id: Optional[uuid.UUID] = None,
) -> Item:
    """Bank Item for a parsed generated item."""
    item = Item(
        item_type=parsed.type,
        question=parsed.question,
        choices=list(parsed.choices),
        answer=parsed.answer,
        grading_method=default_grading_method(parsed.type),
        difficulty=parsed.difficulty,
        bloom=parsed.bloom,
        skills=list(parsed.skills),
        hints=list(parsed.hints),
        explanation=parsed.explanation,
        ai_generated=True,
        seed_id=parsed.id,
        batch_id=batch_id,
        created_by=user_id,
    )
    item.set_topics(parsed.topics or [topic])
    return item


class QuestionGenerator:
    """Runs generation against the completion collaborator and persists batches."""

    def __init__(
        self,
        session: AsyncSession,
        completion_client: Optional[TextCompletionClient],
        timeout: float = 8.0,
        assessment_timeout: float = 60.0,
    ):
        self.session = session
        self.completion_client = completion_client
        self.timeout = timeout
        self.assessment_timeout = assessment_timeout
        self.event_store = EventStore(session)

    async def generate_batch(
        self,
        topic: str,
        levels: Dict[str, int],
        user_id: Optional[uuid.UUID] = None,
    ) -> Optional[GeneratedAssessment]:
        """
        Generate a draft batch for `topic`.

        Returns:
            The persisted batch, or None when the collaborator is missing,
            times out or returns something that is not JSON
        """
        if self.completion_client is None:
            logger.info("Question generation skipped: no completion client", extra={"topic": topic})
            return None

        stamp = int(time.time() * 1000)
        count = sum(levels.values()) or 6
        request = CompletionRequest(
            system_prompt=QUESTION_GENERATOR_SYSTEM,
            user_prompt=QUESTION_GENERATOR_USER.format(
                count=count,
                topic=topic,
                easy=levels.get("easy", 0),
                medium=levels.get("medium", 0),
                hard=levels.get("hard", 0),
                seed=f"{_slug(topic)}_{stamp}",
            ),
            max_tokens=4000,
        )
        try:
            data, raw = await complete_json(self.completion_client, request, self.timeout)
        except CompletionError as exc:
            logger.warning("Question generation failed", extra={"topic": topic, "error": str(exc)})
            return None

        raw_items = _with_seed_ids(coerce_item_list(data), topic, stamp)
        parsed = parse_items(raw_items, topic)
        batch = GeneratedAssessment(
            topic=topic,
            topic_key=normalize_topic(topic),
            title=f"{topic} Assessment",
            items=[p.model_dump(mode="json") for p in parsed],
            raw_response=raw,
            validated=bool(parsed),
            status=BatchStatus.DRAFT if parsed else BatchStatus.FAILED,
            created_by=user_id,
        )
        self.session.add(batch)
        await self.session.flush()
        await self.event_store.log(
            event_type=EventType.BATCH_GENERATED,
            entity_type=EntityType.BATCH,
            entity_id=batch.id,
            user_id=user_id,
            payload={"topic": topic, "item_count": len(parsed), "dropped": len(raw_items) - len(parsed)},
        )
        logger.info(
            "Generated question batch",
            extra={"topic": topic, "batch_id": str(batch.id), "item_count": len(parsed)},
        )
        return batch

    async def materialize(
        self,
        batch: GeneratedAssessment,
        parsed_items: Iterable[Dict[str, Any] | ParsedItem],
        user_id: Optional[uuid.UUID] = None,
    ) -> List[Item]:
        """Create bank Items linked to `batch`. Stored dicts are re-validated."""
        items: List[Item] = []
        for data in parsed_items:
            try:
                parsed = data if isinstance(data, ParsedItem) else ParsedItem.model_validate(data)
            except ValidationError:
                logger.debug("Skipped invalid stored item", extra={"batch_id": str(batch.id)})
                continue
            item = build_item(parsed, batch.topic, user_id=user_id, batch_id=batch.id)
            self.session.add(item)
            items.append(item)
        await self.session.flush()
        return items

    async def linked_count(self, batch_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count(Item.id)).where(Item.batch_id == batch_id)
        )
        return result.scalar() or 0

    def mark_published(self, batch: GeneratedAssessment, user_id: Optional[uuid.UUID] = None) -> None:
        batch.status = BatchStatus.PUBLISHED
        batch.published_at = utc_now()
        batch.published_by = user_id

    async def generate_assessment(
        self,
        topic: str,
        count: int,
        user_id: uuid.UUID,
        lease_store: LeaseStore,
        cooldown_seconds: float = 120,
    ) -> Tuple[GeneratedAssessment, List[Item], List[str]]:
        """
        Instructor-requested assessment: generate, validate and link items.

        The batch stays in draft until published.

        Raises:
            GenerationInProgress: same topic and count requested within the cooldown
            GenerationFailed: collaborator failure or no valid questions
        """
        key = f"{normalize_topic(topic)}|count:{count}"
        if not await lease_store.acquire(key, cooldown_seconds):
            raise GenerationInProgress()

        try:
            if self.completion_client is None:
                raise GenerationFailed("Failed to generate assessment: no completion client configured")
            request = CompletionRequest(
                system_prompt=QUESTION_GENERATOR_SYSTEM,
                user_prompt=ASSESSMENT_GENERATOR_USER.format(topic=topic, count=count),
                temperature=0.7,
                max_tokens=4000,
            )
            try:
                data, raw = await complete_json(self.completion_client, request, self.assessment_timeout)
            except CompletionError as exc:
                raise GenerationFailed(f"Failed to generate assessment: {exc}") from exc

            title = topic
            if isinstance(data, dict):
                title = str(data.get("assessmentTitle") or f"{topic} Assessment")
                topic = str(data.get("topic") or topic)

            errors: List[str] = []
            valid: List[ParsedItem] = []
            stamp = int(time.time() * 1000)
            for i, raw_item in enumerate(_with_seed_ids(coerce_item_list(data), topic, stamp), start=1):
                try:
                    parsed = ParsedItem.model_validate(normalize_raw_item(raw_item, topic))
                except ValidationError:
                    errors.append(f"Question {i}: Missing required fields")
                    continue
                problem = assessment_item_error(parsed)
                if problem:
                    errors.append(f"Question {i}: {problem}")
                    continue
                valid.append(parsed.model_copy(update={"topics": [topic]}))

            if not valid:
                raise GenerationFailed(
                    "Failed to generate assessment: no valid questions generated",
                    errors=errors,
                )

            batch = GeneratedAssessment(
                topic=topic,
                topic_key=normalize_topic(topic),
                title=title,
                items=[p.model_dump(mode="json") for p in valid],
                raw_response=raw,
                validated=not errors,
                status=BatchStatus.DRAFT,
                created_by=user_id,
            )
            self.session.add(batch)
            await self.session.flush()
            items = await self.materialize(batch, valid, user_id)
            await self.event_store.log(
                event_type=EventType.BATCH_GENERATED,
                entity_type=EntityType.BATCH,
                entity_id=batch.id,
                user_id=user_id,
                payload={"topic": topic, "item_count": len(items), "errors": errors},
            )
            return batch, items, errors
        finally:
            await lease_store.release(key)

    async def publish_batch(self, batch_id: uuid.UUID, actor_id: uuid.UUID) -> GeneratedAssessment:
        """
        Publish a batch, materializing its items first if none are linked.

        Raises:
            BatchNotFound: unknown batch
        """
        batch = await self.session.get(GeneratedAssessment, batch_id)
        if batch is None:
            raise BatchNotFound()
        if batch.status == BatchStatus.PUBLISHED:
            return batch

        if await self.linked_count(batch.id) == 0:
            await self.materialize(batch, batch.items, actor_id)
        self.mark_published(batch, actor_id)
        await self.event_store.log(
            event_type=EventType.BATCH_PUBLISHED,
            entity_type=EntityType.BATCH,
            entity_id=batch.id,
            user_id=actor_id,
            payload={"topic": batch.topic},
        )
        await self.session.flush()
        return batch

    async def list_batches(
        self,
        topic: Optional[str] = None,
        status: Optional[BatchStatus] = None,
        limit: int = 20,
    ) -> List[GeneratedAssessment]:
        q = select(GeneratedAssessment)
        if topic:
            q = q.where(GeneratedAssessment.topic_key == normalize_topic(topic))
        if status:
            q = q.where(GeneratedAssessment.status == BatchStatus(status).value)
        q = q.order_by(GeneratedAssessment.created_at.desc()).limit(limit)
        result = await self.session.execute(q)
        return list(result.scalars().all())

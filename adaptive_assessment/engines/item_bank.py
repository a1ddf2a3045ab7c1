"""
Item bank authoring.

Items become read-only once any Attempt references them so historical
grading can always be reproduced.
"""

import uuid
from typing import Any, List, Optional

from pydantic import BaseModel, Field
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from adaptive_assessment.exceptions import ItemLocked, ItemNotFound, ItemValidationError
from adaptive_assessment.kernel.events.event_store import EventStore
from adaptive_assessment.kernel.models.attempt import Attempt
from adaptive_assessment.kernel.models.event_log import EntityType, EventType
from adaptive_assessment.kernel.models.item import (
    BloomLevel,
    GradingMethod,
    Item,
    ItemType,
    default_grading_method,
    is_compatible,
)
from adaptive_assessment.logging_config import get_logger

logger = get_logger(__name__)


class ItemSpec(BaseModel):
    """Authored item content."""

    item_type: ItemType
    question: str = Field(min_length=1)
    choices: List[str] = Field(default_factory=list)
    answer: Any
    grading_method: Optional[GradingMethod] = None
    difficulty: int = Field(default=3, ge=1, le=5)
    bloom: Optional[BloomLevel] = None
    topics: List[str] = Field(default_factory=list)
    skills: List[str] = Field(default_factory=list)
    hints: List[str] = Field(default_factory=list)
    explanation: str = ""


def validate_answer_shape(item_type: ItemType, answer: Any, choices: List[str]) -> None:
    """
    Check that `answer` has the shape graded for `item_type`.

    Raises:
        ItemValidationError
    """
    if item_type in (ItemType.MCQ, ItemType.FILL_BLANK):
        if not isinstance(answer, str) or not answer.strip():
            raise ItemValidationError(f"{item_type.value} answer must be a non-empty string")
        if item_type == ItemType.MCQ:
            if len(choices) < 2:
                raise ItemValidationError("mcq items need at least two choices")
            if answer.strip().lower() not in {c.strip().lower() for c in choices}:
                raise ItemValidationError("mcq answer must be one of the choices")
    elif item_type == ItemType.SHORT_ANSWER:
        refs = answer if isinstance(answer, list) else [answer]
        if not refs or not all(isinstance(r, str) and r.strip() for r in refs):
            raise ItemValidationError("short_answer answer must be a string or list of strings")
    elif item_type == ItemType.MATCH:
        if not isinstance(answer, list) or not answer or not all(
            isinstance(p, (list, tuple)) and len(p) == 2 for p in answer
        ):
            raise ItemValidationError("match answer must be a non-empty list of [key, value] pairs")
    elif item_type == ItemType.REORDER:
        if not isinstance(answer, list) or not answer or not all(isinstance(s, str) for s in answer):
            raise ItemValidationError("reorder answer must be a non-empty list of strings")


class ItemBankService:
    """Create and edit bank items."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.event_store = EventStore(session)

    async def create_item(self, spec: ItemSpec, actor_id: uuid.UUID) -> Item:
        method = spec.grading_method or default_grading_method(spec.item_type)
        if not is_compatible(spec.item_type, method):
            raise ItemValidationError(
                f"Grading method {method.value} is not allowed for {spec.item_type.value} items"
            )
        validate_answer_shape(spec.item_type, spec.answer, spec.choices)

        item = Item(
            item_type=spec.item_type,
            question=spec.question,
            choices=list(spec.choices),
            answer=spec.answer,
            grading_method=method,
            difficulty=spec.difficulty,
            bloom=spec.bloom,
            skills=list(spec.skills),
            hints=list(spec.hints),
            explanation=spec.explanation,
            ai_generated=False,
            created_by=actor_id,
        )
        item.set_topics(spec.topics)
        self.session.add(item)
        await self.session.flush()

        await self.event_store.log(
            event_type=EventType.ITEM_CREATED,
            entity_type=EntityType.ITEM,
            entity_id=item.id,
            user_id=actor_id,
            payload={"item_type": spec.item_type.value, "topics": item.topics},
        )
        logger.info("Item created", extra={"item_id": str(item.id), "actor_id": str(actor_id)})
        return item

    async def get_item(self, item_id: uuid.UUID) -> Item:
        result = await self.session.execute(
            select(Item).where(Item.id == item_id).options(selectinload(Item.topic_links))
        )
        item = result.scalar_one_or_none()
        if item is None:
            raise ItemNotFound()
        return item

    async def is_locked(self, item_id: uuid.UUID) -> bool:
        result = await self.session.execute(select(exists().where(Attempt.item_id == item_id)))
        return bool(result.scalar())

    async def update_item(self, item_id: uuid.UUID, changes: dict[str, Any], actor_id: uuid.UUID) -> Item:
        """
        Apply a partial update.

        Raises:
            ItemNotFound: unknown item
            ItemLocked: the item already has attempts
            ItemValidationError: the result would be inconsistent
        """
        item = await self.get_item(item_id)
        if await self.is_locked(item_id):
            raise ItemLocked()

        merged = ItemSpec(
            item_type=changes.get("item_type", item.item_type),
            question=changes.get("question", item.question),
            choices=changes.get("choices", item.choices),
            answer=changes.get("answer", item.answer),
            grading_method=changes.get("grading_method", item.grading_method),
            difficulty=changes.get("difficulty", item.difficulty),
            bloom=changes.get("bloom", item.bloom),
            topics=changes.get("topics", item.topics),
            skills=changes.get("skills", item.skills),
            hints=changes.get("hints", item.hints),
            explanation=changes.get("explanation", item.explanation),
        )
        method = merged.grading_method or default_grading_method(merged.item_type)
        if "item_type" in changes and "grading_method" not in changes:
            method = default_grading_method(merged.item_type)
        if not is_compatible(merged.item_type, method):
            raise ItemValidationError(
                f"Grading method {method.value} is not allowed for {merged.item_type.value} items"
            )
        validate_answer_shape(merged.item_type, merged.answer, merged.choices)

        item.item_type = merged.item_type
        item.question = merged.question
        item.choices = list(merged.choices)
        item.answer = merged.answer
        item.grading_method = method
        item.difficulty = merged.difficulty
        item.bloom = merged.bloom
        item.skills = list(merged.skills)
        item.hints = list(merged.hints)
        item.explanation = merged.explanation
        if "topics" in changes:
            item.set_topics(merged.topics)

        await self.event_store.log(
            event_type=EventType.ITEM_UPDATED,
            entity_type=EntityType.ITEM,
            entity_id=item.id,
            user_id=actor_id,
            payload={"fields": sorted(changes)},
        )
        await self.session.flush()
        logger.info("Item updated", extra={"item_id": str(item.id), "fields": sorted(changes)})
        return item

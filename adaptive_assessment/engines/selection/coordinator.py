"""
Item Selection Coordinator.

Fallback chain, each stage running only while the result is short of the
limit:

    1. difficulty buckets from the mode (or the explicit request)
    2. bank items matching topics and buckets
    3. linked items of the newest published batch (recent, first topic)
    4. a recent draft batch large enough to cover the gap is materialized
       and published
    5. the two newest draft/published batches get their unlinked items
       materialized
    6. background generation is queued for the first topic
    7. a requested topic with no content at all gets placeholder MCQs

Selection never waits on generation; an empty result tells the caller to
retry shortly.
"""

import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from adaptive_assessment.ai.completion import TextCompletionClient
from adaptive_assessment.config import Settings
from adaptive_assessment.engines.mastery.tracker import MasteryTracker
from adaptive_assessment.engines.selection.background import GenerationQueue
from adaptive_assessment.engines.selection.buckets import resolve_buckets
from adaptive_assessment.engines.selection.generator import QuestionGenerator
from adaptive_assessment.engines.selection.lease_store import LeaseStore, generation_key
from adaptive_assessment.exceptions import SelectionValidationError
from adaptive_assessment.kernel.events.event_store import EventStore
from adaptive_assessment.kernel.models.base import utc_now
from adaptive_assessment.kernel.models.event_log import EntityType, EventType
from adaptive_assessment.kernel.models.generated_assessment import BatchStatus, GeneratedAssessment
from adaptive_assessment.kernel.models.item import (
    BloomLevel,
    GradingMethod,
    Item,
    ItemTopic,
    ItemType,
    normalize_topic,
)
from adaptive_assessment.kernel.models.session import SessionMode
from adaptive_assessment.logging_config import get_logger

logger = get_logger(__name__)

SELECTION_REASON = "rules_selection_with_ai_fallback"
MAX_SELECTION_LIMIT = 50
PLACEHOLDER_CHOICES = ["Option A", "Option B", "Option C", "Option D"]


class SelectionResult(BaseModel):
    """Ordered, unique item ids plus how they were found."""

    item_ids: List[uuid.UUID] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    generation_pending: bool = False
    ticket_id: Optional[uuid.UUID] = None

    @property
    def empty(self) -> bool:
        return not self.item_ids


class _Picked:
    """Ordered id set with per-stage counts."""

    def __init__(self, limit: int):
        self.limit = limit
        self.ids: List[uuid.UUID] = []
        self._seen: set[uuid.UUID] = set()
        self.stages: Dict[str, int] = {}

    @property
    def gap(self) -> int:
        return max(0, self.limit - len(self.ids))

    def add(self, stage: str, ids: Sequence[uuid.UUID]) -> int:
        added = 0
        for item_id in ids:
            if self.gap == 0:
                break
            if item_id not in self._seen:
                self._seen.add(item_id)
                self.ids.append(item_id)
                added += 1
        if added:
            self.stages[stage] = self.stages.get(stage, 0) + added
        return added


class ItemSelectionCoordinator:
    """Selects the ordered item list for a new session."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Settings,
        lease_store: LeaseStore,
        queue: Optional[GenerationQueue] = None,
        completion_client: Optional[TextCompletionClient] = None,
    ):
        self.session = session
        self.settings = settings
        self.lease_store = lease_store
        self.queue = queue
        self.generator = QuestionGenerator(
            session,
            completion_client,
            timeout=settings.generation_timeout_seconds,
        )
        self.event_store = EventStore(session)

    async def select(
        self,
        user_id: uuid.UUID,
        mode: SessionMode | str = SessionMode.FORMATIVE,
        topics: Optional[List[str]] = None,
        requested_difficulty: Optional[List[int]] = None,
        limit: int = 6,
    ) -> SelectionResult:
        """
        Pick up to `limit` item ids.

        Raises:
            SelectionValidationError: bad limit or difficulty values
        """
        if limit < 1 or limit > MAX_SELECTION_LIMIT:
            raise SelectionValidationError(f"limit must be between 1 and {MAX_SELECTION_LIMIT}")
        if any(int(d) < 1 or int(d) > 5 for d in requested_difficulty or []):
            raise SelectionValidationError("difficulty values must be between 1 and 5")

        mode = SessionMode(mode)
        topics = [t.strip() for t in topics or [] if t and t.strip()]
        topic_keys = list(dict.fromkeys(normalize_topic(t) for t in topics))
        first_topic = topics[0] if topics else None

        mastery = None
        if self.settings.selection_adaptive_difficulty and first_topic and not requested_difficulty:
            tracker = MasteryTracker(self.session)
            mastery = (await tracker.get_record(user_id, first_topic)).mastery
        buckets = resolve_buckets(mode, requested_difficulty, mastery)

        picked = _Picked(limit)
        picked.add("bank", await self._bank_items(topic_keys, buckets, limit))

        if picked.gap and first_topic:
            picked.add("published_batch", await self._published_batch_items(first_topic, buckets, picked))
        if picked.gap and first_topic:
            picked.add("draft_batch", await self._materialize_draft(first_topic, user_id, picked.gap))
        if picked.gap and first_topic:
            picked.add("recent_batches", await self._materialize_recent(first_topic, user_id))

        generation_triggered = False
        ticket_id = None
        if picked.gap and first_topic:
            ticket_id = await self._trigger_generation(first_topic, buckets, limit, user_id)
            generation_triggered = ticket_id is not None

        if not picked.ids and first_topic:
            picked.add("placeholder", await self._create_placeholders(first_topic, buckets, limit, user_id))

        metadata = {
            "reason": SELECTION_REASON,
            "mode": mode.value,
            "topics": topics,
            "difficulty_buckets": buckets,
            "stages": picked.stages,
            "generation_triggered": generation_triggered,
        }
        if mastery is not None:
            metadata["mastery"] = mastery

        logger.info(
            "Items selected",
            extra={"user_id": str(user_id), "count": len(picked.ids), "stages": picked.stages},
        )
        return SelectionResult(
            item_ids=picked.ids,
            metadata=metadata,
            generation_pending=generation_triggered,
            ticket_id=ticket_id,
        )

    async def _bank_items(self, topic_keys: List[str], buckets: List[int], limit: int) -> List[uuid.UUID]:
        q = select(Item.id).where(Item.difficulty.in_(buckets))
        if topic_keys:
            q = q.where(
                Item.id.in_(select(ItemTopic.item_id).where(ItemTopic.topic_key.in_(topic_keys)))
            )
        q = q.order_by(Item.created_at, Item.id).limit(limit)
        result = await self.session.execute(q)
        return list(result.scalars().all())

    def _recent_cutoff(self):
        return utc_now() - timedelta(days=self.settings.recent_batch_days)

    async def _published_batch_items(
        self,
        topic: str,
        buckets: List[int],
        picked: _Picked,
    ) -> List[uuid.UUID]:
        batch_id = (await self.session.execute(
            select(GeneratedAssessment.id)
            .where(
                GeneratedAssessment.topic_key == normalize_topic(topic),
                GeneratedAssessment.status == BatchStatus.PUBLISHED.value,
                GeneratedAssessment.published_at >= self._recent_cutoff(),
            )
            .order_by(GeneratedAssessment.published_at.desc())
            .limit(1)
        )).scalar_one_or_none()
        if batch_id is None:
            return []

        q = select(Item.id).where(Item.batch_id == batch_id, Item.difficulty.in_(buckets))
        if picked.ids:
            q = q.where(Item.id.not_in(picked.ids))
        result = await self.session.execute(q.order_by(Item.created_at, Item.id).limit(picked.gap))
        return list(result.scalars().all())

    async def _materialize_draft(self, topic: str, user_id: uuid.UUID, gap: int) -> List[uuid.UUID]:
        result = await self.session.execute(
            select(GeneratedAssessment)
            .where(
                GeneratedAssessment.topic_key == normalize_topic(topic),
                GeneratedAssessment.status == BatchStatus.DRAFT.value,
                GeneratedAssessment.created_at >= self._recent_cutoff(),
            )
            .order_by(GeneratedAssessment.created_at.desc())
            .limit(1)
        )
        draft = result.scalar_one_or_none()
        if draft is None or len(draft.items or []) < gap:
            return []
        if await self.generator.linked_count(draft.id):
            return []

        items = await self.generator.materialize(draft, draft.items[:gap], user_id)
        self.generator.mark_published(draft, user_id)
        await self.session.flush()
        logger.info(
            "Draft batch materialized for selection",
            extra={"batch_id": str(draft.id), "count": len(items)},
        )
        return [item.id for item in items]

    async def _materialize_recent(self, topic: str, user_id: uuid.UUID) -> List[uuid.UUID]:
        linked = (
            select(func.count(Item.id))
            .where(Item.batch_id == GeneratedAssessment.id)
            .scalar_subquery()
        )
        result = await self.session.execute(
            select(GeneratedAssessment, linked)
            .where(
                GeneratedAssessment.topic_key == normalize_topic(topic),
                GeneratedAssessment.status.in_([BatchStatus.DRAFT.value, BatchStatus.PUBLISHED.value]),
                GeneratedAssessment.created_at >= self._recent_cutoff(),
            )
            .order_by(GeneratedAssessment.created_at.desc())
            .limit(2)
        )
        for batch, linked_count in result.all():
            stored = batch.items or []
            if not stored or linked_count >= len(stored):
                continue
            linked_seeds = set((await self.session.execute(
                select(Item.seed_id).where(Item.batch_id == batch.id)
            )).scalars().all())
            pending = [data for data in stored if data.get("id") not in linked_seeds]
            items = await self.generator.materialize(batch, pending, user_id)
            if batch.status != BatchStatus.PUBLISHED:
                self.generator.mark_published(batch, user_id)
            await self.session.flush()
            logger.info(
                "Recent batch materialized for selection",
                extra={"batch_id": str(batch.id), "count": len(items)},
            )
            return [item.id for item in items]
        return []

    async def _trigger_generation(
        self,
        topic: str,
        buckets: List[int],
        limit: int,
        user_id: uuid.UUID,
    ) -> Optional[uuid.UUID]:
        if self.queue is None:
            return None
        key = generation_key(topic, buckets)
        if not await self.lease_store.acquire(key, self.settings.generation_cooldown_seconds):
            logger.debug("Skipping duplicate generation", extra={"key": key})
            return None
        ticket = self.queue.submit(key, topic, buckets, limit, user_id)
        return ticket.id

    async def _create_placeholders(
        self,
        topic: str,
        buckets: List[int],
        limit: int,
        user_id: uuid.UUID,
    ) -> List[uuid.UUID]:
        count = min(self.settings.placeholder_item_count, limit)
        if count < 1:
            return []
        stamp = int(utc_now().timestamp() * 1000)
        items = []
        for i in range(count):
            item = Item(
                item_type=ItemType.MCQ,
                question=f"Placeholder question {i + 1} for '{topic}'?",
                choices=list(PLACEHOLDER_CHOICES),
                answer=PLACEHOLDER_CHOICES[0],
                grading_method=GradingMethod.EXACT,
                difficulty=buckets[0] if buckets else 2,
                bloom=BloomLevel.REMEMBER,
                hints=["Review the basics of this topic."],
                explanation="This is a placeholder question. Please ensure quiz generation is working properly.",
                ai_generated=False,
                seed_id=f"fallback_{topic}_{stamp}_{i}",
                created_by=user_id,
            )
            item.set_topics([topic])
            self.session.add(item)
            items.append(item)
        await self.session.flush()

        await self.event_store.log(
            event_type=EventType.PLACEHOLDERS_CREATED,
            entity_type=EntityType.ITEM,
            entity_id=items[0].id,
            user_id=user_id,
            payload={"topic": topic, "count": count, "item_ids": [str(i.id) for i in items]},
        )
        logger.error(
            "Inserted placeholder items; check question generation",
            extra={"topic": topic, "count": count},
        )
        return [item.id for item in items]

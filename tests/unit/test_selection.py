"""Unit tests for difficulty buckets and the item selection coordinator."""

import uuid
from unittest.mock import MagicMock

import pytest

from adaptive_assessment.engines.selection.background import GenerationQueue
from adaptive_assessment.engines.selection.buckets import (
    generation_levels,
    mastery_buckets,
    mode_buckets,
    resolve_buckets,
)
from adaptive_assessment.engines.selection.coordinator import ItemSelectionCoordinator
from adaptive_assessment.engines.selection.lease_store import InMemoryLeaseStore, generation_key
from adaptive_assessment.exceptions import SelectionValidationError
from adaptive_assessment.kernel.models import BatchStatus, GeneratedAssessment, SessionMode


def _stored_item(n: int, topic: str = "biology", difficulty: int = 3) -> dict:
    return {
        "id": f"seed_{topic}_{n}",
        "type": "mcq",
        "question": f"{topic} question {n}?",
        "choices": ["A", "B", "C", "D"],
        "answer": "A",
        "explanation": "",
        "difficulty": difficulty,
        "bloom": "apply",
        "topics": [topic],
        "skills": [],
        "hints": [],
    }


def _draft(topic: str, count: int, status: BatchStatus = BatchStatus.DRAFT) -> GeneratedAssessment:
    return GeneratedAssessment(
        topic=topic,
        topic_key=topic.lower(),
        title=f"{topic} Assessment",
        items=[_stored_item(n, topic) for n in range(count)],
        validated=True,
        status=status,
    )


class TestBuckets:
    """Tests for difficulty bucket rules."""

    def test_mode_buckets(self):
        assert mode_buckets(SessionMode.DIAGNOSTIC) == [1, 2, 3]
        assert mode_buckets("summative") == [3, 4, 5]
        assert mode_buckets(SessionMode.FORMATIVE) == [2, 3]
        assert mode_buckets(SessionMode.PROCTORED) == [2, 3]

    def test_requested_difficulty_wins(self):
        assert resolve_buckets(SessionMode.SUMMATIVE, [4, 1, 4]) == [1, 4]

    def test_mastery_bands(self):
        assert mastery_buckets("formative", 10) == [1, 2]
        assert mastery_buckets("formative", 45) == [2, 3]
        assert mastery_buckets("summative", 70) == [4, 5]
        assert mastery_buckets("diagnostic", 95) == [3, 4, 5]
        assert resolve_buckets("formative", None, 70) == [3, 4]

    def test_generation_levels(self):
        assert generation_levels([2, 3], 6) == {"easy": 3, "medium": 3, "hard": 0}
        assert generation_levels([3, 4, 5], 4) == {"easy": 0, "medium": 2, "hard": 2}

    def test_generation_levels_without_buckets(self):
        assert generation_levels([], 5) == {"easy": 2, "medium": 3, "hard": 0}

    def test_generation_key(self):
        assert generation_key(" Biology ", [3, 2]) == "biology|2,3"


class TestItemSelectionCoordinator:
    """Tests for the selection fallback chain."""

    @pytest.fixture
    def leases(self) -> InMemoryLeaseStore:
        return InMemoryLeaseStore()

    @pytest.fixture
    def coordinator(self, db_session, settings, leases) -> ItemSelectionCoordinator:
        return ItemSelectionCoordinator(db_session, settings, leases)

    @pytest.mark.asyncio
    async def test_bank_items_by_topic_and_difficulty(self, coordinator, student_id, make_item, add_items):
        matching = await add_items(
            make_item(question="Q1", difficulty=2),
            make_item(question="Q2", difficulty=3),
        )
        await add_items(
            make_item(question="Too hard", difficulty=5),
            make_item(question="Other topic", topics=["history"]),
        )

        result = await coordinator.select(student_id, topics=["Geography"], limit=5)

        assert sorted(result.item_ids) == sorted(i.id for i in matching)
        assert result.metadata["difficulty_buckets"] == [2, 3]
        assert result.metadata["stages"] == {"bank": 2}
        assert result.generation_pending is False

    @pytest.mark.asyncio
    async def test_limit_respected(self, coordinator, student_id, make_item, add_items):
        await add_items(*[make_item(question=f"Q{n}") for n in range(5)])
        result = await coordinator.select(student_id, topics=["geography"], limit=2)
        assert len(result.item_ids) == 2
        assert len(set(result.item_ids)) == 2

    @pytest.mark.asyncio
    async def test_multi_topic_item_selected_once(self, coordinator, student_id, make_item, add_items):
        await add_items(make_item(topics=["geography", "europe"]))
        result = await coordinator.select(student_id, topics=["geography", "europe"], limit=3)
        assert len(result.item_ids) == 1

    @pytest.mark.asyncio
    async def test_no_topic_uses_whole_bank(self, coordinator, student_id, make_item, add_items):
        await add_items(make_item(topics=["history"]), make_item(topics=["art"]))
        result = await coordinator.select(student_id, mode=SessionMode.DIAGNOSTIC, limit=6)
        assert len(result.item_ids) == 2

    @pytest.mark.asyncio
    async def test_draft_batch_materialized(self, coordinator, db_session, student_id):
        draft = _draft("Biology", 4)
        db_session.add(draft)
        await db_session.flush()

        result = await coordinator.select(student_id, topics=["biology"], limit=3)

        assert len(result.item_ids) == 3
        assert result.metadata["stages"] == {"draft_batch": 3}
        assert draft.status == BatchStatus.PUBLISHED
        assert draft.published_by == student_id

    @pytest.mark.asyncio
    async def test_small_batch_materialized_as_recent(self, coordinator, db_session, student_id):
        draft = _draft("Biology", 1)
        db_session.add(draft)
        await db_session.flush()

        result = await coordinator.select(student_id, topics=["biology"], limit=3)

        assert len(result.item_ids) == 1
        assert result.metadata["stages"] == {"recent_batches": 1}

    @pytest.mark.asyncio
    async def test_published_batch_items_reused(self, coordinator, db_session, student_id):
        draft = _draft("Biology", 2)
        db_session.add(draft)
        await db_session.flush()
        first = await coordinator.select(student_id, topics=["biology"], limit=2)

        second = await coordinator.select(student_id, topics=["biology"], limit=2)

        assert sorted(second.item_ids) == sorted(first.item_ids)
        assert second.metadata["stages"] == {"bank": 2}

    @pytest.mark.asyncio
    async def test_placeholders_for_unknown_topic(self, coordinator, student_id, settings):
        result = await coordinator.select(student_id, topics=["Astronomy"], limit=6)

        assert len(result.item_ids) == settings.placeholder_item_count
        assert result.metadata["stages"] == {"placeholder": settings.placeholder_item_count}

        # Placeholders are ordinary bank items afterwards
        again = await coordinator.select(student_id, topics=["astronomy"], limit=6)
        assert sorted(again.item_ids) == sorted(result.item_ids)

    @pytest.mark.asyncio
    async def test_placeholders_capped_by_limit(self, coordinator, student_id):
        result = await coordinator.select(student_id, topics=["Astronomy"], limit=1)
        assert len(result.item_ids) == 1

    @pytest.mark.asyncio
    async def test_empty_without_topic(self, coordinator, student_id):
        result = await coordinator.select(student_id, topics=[])
        assert result.empty
        assert result.metadata["stages"] == {}

    @pytest.mark.asyncio
    async def test_generation_deduplicated(self, db_session, settings, leases, student_id):
        queue = MagicMock(spec=GenerationQueue)
        ticket_id = uuid.uuid4()
        queue.submit.return_value = MagicMock(id=ticket_id)
        coordinator = ItemSelectionCoordinator(db_session, settings, leases, queue=queue)

        first = await coordinator.select(student_id, topics=["Chemistry"], limit=4)
        second = await coordinator.select(student_id, topics=["chemistry"], limit=4)

        assert first.ticket_id == ticket_id
        assert first.generation_pending is True
        assert first.metadata["generation_triggered"] is True
        assert second.generation_pending is False
        queue.submit.assert_called_once()
        key, topic, buckets, limit, user_id = queue.submit.call_args.args
        assert key == "chemistry|2,3"
        assert (topic, buckets, limit, user_id) == ("Chemistry", [2, 3], 4, student_id)
        assert "chemistry|2,3" in leases

    @pytest.mark.asyncio
    async def test_adaptive_difficulty_uses_mastery(self, db_session, settings, leases, student_id):
        adaptive = settings.model_copy(update={"selection_adaptive_difficulty": True})
        coordinator = ItemSelectionCoordinator(db_session, adaptive, leases)

        result = await coordinator.select(student_id, topics=["geography"], limit=1)

        assert result.metadata["mastery"] == 0.0
        assert result.metadata["difficulty_buckets"] == [1, 2]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("kwargs", [{"limit": 0}, {"limit": 51}, {"requested_difficulty": [6]}])
    async def test_invalid_requests(self, coordinator, student_id, kwargs):
        with pytest.raises(SelectionValidationError):
            await coordinator.select(student_id, topics=["geography"], **kwargs)

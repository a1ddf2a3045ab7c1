"""
Item bank models - questions and their topic index.
"""

import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any, List, Optional

from sqlalchemy import Boolean, ForeignKey, Index, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from adaptive_assessment.kernel.models.base import Base, TimestampMixin, generate_uuid

if TYPE_CHECKING:
    from adaptive_assessment.kernel.models.generated_assessment import GeneratedAssessment


class ItemType(str, Enum):
    """Question types supported by the grading engine."""
    MCQ = "mcq"
    FILL_BLANK = "fill_blank"
    SHORT_ANSWER = "short_answer"
    MATCH = "match"
    REORDER = "reorder"


class GradingMethod(str, Enum):
    EXACT = "exact"
    LEVENSHTEIN = "levenshtein"
    SEMANTIC = "semantic"
    PAIR_MATCH = "pair_match"
    SEQUENCE_CHECK = "sequence_check"


class BloomLevel(str, Enum):
    REMEMBER = "remember"
    UNDERSTAND = "understand"
    APPLY = "apply"
    ANALYZE = "analyze"
    EVALUATE = "evaluate"
    CREATE = "create"


DEFAULT_GRADING_METHOD: dict[ItemType, GradingMethod] = {
    ItemType.MCQ: GradingMethod.EXACT,
    ItemType.FILL_BLANK: GradingMethod.LEVENSHTEIN,
    ItemType.SHORT_ANSWER: GradingMethod.SEMANTIC,
    ItemType.MATCH: GradingMethod.PAIR_MATCH,
    ItemType.REORDER: GradingMethod.SEQUENCE_CHECK,
}

# Overrides an author may choose; everything else is fixed to the default
ALLOWED_GRADING_METHODS: dict[ItemType, frozenset[GradingMethod]] = {
    ItemType.MCQ: frozenset({GradingMethod.EXACT}),
    ItemType.FILL_BLANK: frozenset({GradingMethod.LEVENSHTEIN, GradingMethod.EXACT}),
    ItemType.SHORT_ANSWER: frozenset({GradingMethod.SEMANTIC, GradingMethod.LEVENSHTEIN}),
    ItemType.MATCH: frozenset({GradingMethod.PAIR_MATCH}),
    ItemType.REORDER: frozenset({GradingMethod.SEQUENCE_CHECK}),
}


def default_grading_method(item_type: ItemType | str) -> GradingMethod:
    return DEFAULT_GRADING_METHOD[ItemType(item_type)]


def is_compatible(item_type: ItemType | str, method: GradingMethod | str) -> bool:
    """Check whether a grading method may be used for an item type."""
    try:
        return GradingMethod(method) in ALLOWED_GRADING_METHODS[ItemType(item_type)]
    except ValueError:
        return False


def normalize_topic(topic: str) -> str:
    """Case-insensitive lookup key for a topic name."""
    return topic.strip().lower()


class Item(Base, TimestampMixin):
    """
    A question bank entry.

    `answer` shape depends on `item_type`: a string for mcq/fill_blank, a
    string or list of strings for short_answer, a list of [key, value] pairs
    for match, and an ordered list for reorder. Items referenced by an
    Attempt are treated as immutable.
    """

    __tablename__ = "items"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    item_type: Mapped[ItemType] = mapped_column(String(20), nullable=False, index=True)
    question: Mapped[str] = mapped_column(Text, nullable=False)
    choices: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    answer: Mapped[Any] = mapped_column(JSON, nullable=False)
    grading_method: Mapped[GradingMethod] = mapped_column(String(30), nullable=False)
    difficulty: Mapped[int] = mapped_column(Integer, nullable=False, default=3, index=True)
    bloom: Mapped[Optional[BloomLevel]] = mapped_column(String(20), nullable=True)

    # Ordered; the first entry is the item's primary topic
    topics: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    skills: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    hints: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    explanation: Mapped[str] = mapped_column(Text, nullable=False, default="")

    ai_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    seed_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    batch_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        ForeignKey("generated_assessments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    created_by: Mapped[Optional[uuid.UUID]] = mapped_column(nullable=True)

    topic_links: Mapped[List["ItemTopic"]] = relationship(
        back_populates="item",
        cascade="all, delete-orphan",
    )
    batch: Mapped[Optional["GeneratedAssessment"]] = relationship(back_populates="linked_items")

    @property
    def primary_topic(self) -> str:
        return self.topics[0] if self.topics else "general"

    def set_topics(self, topics: List[str]) -> None:
        """Replace topic list and its lookup rows (deduplicated, order kept)."""
        seen: set[str] = set()
        cleaned: List[str] = []
        for topic in topics:
            key = normalize_topic(topic)
            if key and key not in seen:
                seen.add(key)
                cleaned.append(topic.strip())
        self.topics = cleaned
        # Keep surviving rows; the flush inserts new rows before deleting orphans
        existing = {link.topic_key: link for link in self.topic_links}
        self.topic_links = [
            existing.get(normalize_topic(t)) or ItemTopic(topic_key=normalize_topic(t))
            for t in cleaned
        ]

    def __repr__(self) -> str:
        return f"<Item {self.item_type} {self.id}>"


class ItemTopic(Base):
    """Normalized topic index so bank queries can filter by topic in SQL."""

    __tablename__ = "item_topics"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    item_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("items.id", ondelete="CASCADE"),
        nullable=False,
    )
    topic_key: Mapped[str] = mapped_column(String(255), nullable=False)

    item: Mapped["Item"] = relationship(back_populates="topic_links")

    __table_args__ = (
        UniqueConstraint("item_id", "topic_key", name="uq_item_topics_item_topic"),
        Index("ix_item_topics_topic_key", "topic_key"),
    )

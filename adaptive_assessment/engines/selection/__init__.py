"""
Selection Engine - item selection, question generation and generation dedup.
"""

from adaptive_assessment.engines.selection.background import (
    GenerationQueue,
    GenerationTicket,
    TicketStatus,
)
from adaptive_assessment.engines.selection.buckets import (
    generation_levels,
    mastery_buckets,
    mode_buckets,
    resolve_buckets,
)
from adaptive_assessment.engines.selection.coordinator import (
    ItemSelectionCoordinator,
    SelectionResult,
)
from adaptive_assessment.engines.selection.generator import (
    ParsedItem,
    QuestionGenerator,
    parse_items,
)
from adaptive_assessment.engines.selection.lease_store import (
    DatabaseLeaseStore,
    InMemoryLeaseStore,
    LeaseStore,
    generation_key,
    run_lease_sweeper,
)

__all__ = [
    "GenerationQueue",
    "GenerationTicket",
    "TicketStatus",
    "generation_levels",
    "mastery_buckets",
    "mode_buckets",
    "resolve_buckets",
    "ItemSelectionCoordinator",
    "SelectionResult",
    "ParsedItem",
    "QuestionGenerator",
    "parse_items",
    "DatabaseLeaseStore",
    "InMemoryLeaseStore",
    "LeaseStore",
    "generation_key",
    "run_lease_sweeper",
]

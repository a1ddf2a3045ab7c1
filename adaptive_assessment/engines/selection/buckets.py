"""
Difficulty buckets for item selection.
"""

from typing import Iterable, List, Optional

from adaptive_assessment.kernel.models.session import SessionMode

MODE_BUCKETS = {
    SessionMode.DIAGNOSTIC.value: [1, 2, 3],
    SessionMode.SUMMATIVE.value: [3, 4, 5],
}
DEFAULT_BUCKETS = [2, 3]


def _mode_value(mode: SessionMode | str) -> str:
    return mode.value if isinstance(mode, SessionMode) else str(mode)


def mode_buckets(mode: SessionMode | str) -> List[int]:
    """diagnostic -> 1-3, summative -> 3-5, anything else -> 2-3."""
    return list(MODE_BUCKETS.get(_mode_value(mode), DEFAULT_BUCKETS))


def mastery_buckets(mode: SessionMode | str, mastery: float) -> List[int]:
    """
    Buckets adapted to the learner's mastery of the first topic.

    0-30 builds foundation, 31-60 reinforces, 61-80 challenges and above
    80 targets advanced items.
    """
    mode = _mode_value(mode)
    diagnostic = mode == SessionMode.DIAGNOSTIC.value
    summative = mode == SessionMode.SUMMATIVE.value
    if mastery <= 30:
        return [1, 2, 3] if diagnostic else [1, 2]
    if mastery <= 60:
        return [1, 2, 3] if diagnostic else [3, 4] if summative else [2, 3]
    if mastery <= 80:
        return [2, 3, 4] if diagnostic else [4, 5] if summative else [3, 4]
    return [3, 4, 5] if diagnostic else [4, 5]


def resolve_buckets(
    mode: SessionMode | str,
    requested: Optional[Iterable[int]] = None,
    mastery: Optional[float] = None,
) -> List[int]:
    """
    Explicitly requested difficulties win; otherwise mastery-banded buckets
    when a mastery value is supplied, else the mode mapping.
    """
    requested = sorted({int(d) for d in requested or []})
    if requested:
        return requested
    if mastery is not None:
        return mastery_buckets(mode, mastery)
    return mode_buckets(mode)


def bucket_signature(buckets: Iterable[int]) -> str:
    return ",".join(str(b) for b in sorted(set(buckets)))


def generation_levels(buckets: Iterable[int], limit: int) -> dict[str, int]:
    """
    Count of easy/medium/hard questions to request for these buckets.

    Buckets are cycled until at least `limit` questions are requested.
    """
    buckets = sorted(set(buckets))
    levels = {"easy": 0, "medium": 0, "hard": 0}
    wanted = max(limit, len(buckets)) if buckets else 0
    for i in range(wanted):
        difficulty = buckets[i % len(buckets)]
        if difficulty <= 2:
            levels["easy"] += 1
        elif difficulty <= 3:
            levels["medium"] += 1
        else:
            levels["hard"] += 1
    if not any(levels.values()):
        levels["medium"] = (limit + 1) // 2
        levels["easy"] = limit // 2
    return levels

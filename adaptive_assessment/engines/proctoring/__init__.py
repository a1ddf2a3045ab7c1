"""
Proctoring Engine - violation ingestion, risk scoring and overrides.
"""

from adaptive_assessment.engines.proctoring.monitor import (
    ALWAYS_MAJOR,
    ProctorMonitor,
    ViolationOutcome,
    classify_violation,
    risk_score,
)

__all__ = [
    "ALWAYS_MAJOR",
    "ProctorMonitor",
    "ViolationOutcome",
    "classify_violation",
    "risk_score",
]

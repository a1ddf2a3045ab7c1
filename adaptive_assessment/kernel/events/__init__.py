"""
Append-only audit logging.
"""

from adaptive_assessment.kernel.events.event_store import EventStore

__all__ = ["EventStore"]

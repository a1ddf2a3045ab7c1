"""
Proctoring violation log (append-only).
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from sqlalchemy import DateTime, ForeignKey, Index, JSON, String, func
from sqlalchemy.orm import Mapped, mapped_column

from adaptive_assessment.kernel.models.base import Base, generate_uuid, utc_now


class ViolationType(str, Enum):
    TAB_SWITCH = "tab_switch"
    WINDOW_BLUR = "window_blur"
    COPY_ATTEMPT = "copy_attempt"
    PASTE_ATTEMPT = "paste_attempt"
    RIGHT_CLICK_ATTEMPT = "right_click_attempt"
    DEVTOOLS_OPENED = "devtools_opened"
    SCREENSHOT_KEY_PRESSED = "screenshot_key_pressed"
    PAGE_EXIT_ATTEMPT = "page_exit_attempt"


class Severity(str, Enum):
    MINOR = "minor"
    MAJOR = "major"


class ProctorLog(Base):
    """One violation event. Never updated or deleted."""

    __tablename__ = "proctor_logs"

    id: Mapped[uuid.UUID] = mapped_column(
        primary_key=True,
        default=generate_uuid,
    )
    session_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("assessment_sessions.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(nullable=False, index=True)
    violation_type: Mapped[ViolationType] = mapped_column(String(40), nullable=False)
    severity: Mapped[Severity] = mapped_column(String(10), nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index("ix_proctor_logs_session_time", "session_id", "timestamp"),
    )

    def __repr__(self) -> str:
        return f"<ProctorLog {self.violation_type} {self.severity} session={self.session_id}>"

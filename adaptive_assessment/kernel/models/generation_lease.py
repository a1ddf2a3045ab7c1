"""
Generation leases - TTL records used to deduplicate question generation.
"""

from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from adaptive_assessment.kernel.models.base import Base


class GenerationLease(Base):
    """A lease is live while expires_at is in the future."""

    __tablename__ = "generation_leases"

    key: Mapped[str] = mapped_column(String(512), primary_key=True)
    holder: Mapped[str] = mapped_column(String(64), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<GenerationLease {self.key}>"

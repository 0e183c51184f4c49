from __future__ import annotations

from datetime import datetime, timezone
import enum

from sqlalchemy import Column, DateTime, Enum as SAEnum, ForeignKey, Index, JSON, String, Text, desc

from lmsops.database import Base
from lmsops.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LifecycleEventType(str, enum.Enum):
    JOINED = "joined"
    TRAINING = "training"
    AUDIT = "audit"
    WARNING = "warning"
    ACHIEVEMENT = "achievement"
    EXIT = "exit"
    REACTIVATION = "reactivation"
    OTHER = "other"


class LifecycleCategory(str, enum.Enum):
    MILESTONE = "milestone"
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class LifecycleEvent(Base):
    """
    Append-only timeline entry for a user. Rows are never updated or deleted.
    """

    __tablename__ = "lifecycle_events"
    __table_args__ = (
        Index("ix_lifecycle_events_user_time", "user_id", "occurred_at"),
        Index("ix_lifecycle_events_user_time_desc", "user_id", desc("occurred_at")),
        Index("ix_lifecycle_events_kpi_type", "kpi_score_id", "event_type"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = Column(
        SAEnum(LifecycleEventType, name="lifecycle_event_type_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False)
    category = Column(
        SAEnum(LifecycleCategory, name="lifecycle_category_enum", native_enum=False),
        nullable=False,
    )
    kpi_score_id = Column(String(36), ForeignKey("kpi_scores.id", ondelete="SET NULL"), nullable=True, index=True)
    metadata_json = Column("metadata", JSON, nullable=True)
    created_by = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)

    def __repr__(self) -> str:
        return f"<LifecycleEvent id={self.id} user={self.user_id} type={self.event_type}>"

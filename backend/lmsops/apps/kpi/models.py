# backend/lmsops/apps/kpi/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)

from lmsops.database import Base
from lmsops.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class Rating(str, enum.Enum):
    OUTSTANDING = "Outstanding"
    EXCELLENT = "Excellent"
    SATISFACTORY = "Satisfactory"
    NEED_IMPROVEMENT = "Need Improvement"
    UNSATISFACTORY = "Unsatisfactory"


class AutomationStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# Attribute names of the seven scored metrics, in scoring order.
METRIC_KEYS = (
    "tat",
    "major_negativity",
    "quality",
    "neighbor_check",
    "negativity",
    "app_usage",
    "insufficiency",
)


# ---------------------------------------------------------------------------
# KPI SCORES
# ---------------------------------------------------------------------------


class KPIScore(Base):
    """
    One evaluation of a field executive for one period (e.g. "Oct-25").

    At most one active row exists per (user_id, period); re-scoring updates
    it in place and removal only clears `is_active`. `overall_score` and
    `rating` are derived from the metric columns by the scoring function.
    """

    __tablename__ = "kpi_scores"
    __table_args__ = (
        Index("ix_kpi_scores_user_period_active", "user_id", "period", "is_active"),
        Index("ix_kpi_scores_status_created", "automation_status", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    period = Column(String(32), nullable=False, index=True)

    # Raw metric percentages; NULL when the source row had no value.
    tat = Column(Float, nullable=True)
    major_negativity = Column(Float, nullable=True)
    quality = Column(Float, nullable=True)
    neighbor_check = Column(Float, nullable=True)
    negativity = Column(Float, nullable=True)
    app_usage = Column(Float, nullable=True)
    insufficiency = Column(Float, nullable=True)
    total_cases = Column(Integer, nullable=True)

    metric_scores = Column(JSON, nullable=True)
    overall_score = Column(Float, nullable=False, default=0.0)
    rating = Column(
        SAEnum(Rating, name="kpi_rating_enum", native_enum=False),
        nullable=False,
        default=Rating.UNSATISFACTORY,
    )
    triggered_actions = Column(JSON, nullable=False, default=list)
    configuration_version = Column(Integer, nullable=True)

    comments = Column(Text, nullable=True)
    submitted_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    automation_status = Column(
        SAEnum(AutomationStatus, name="kpi_automation_status_enum", native_enum=False),
        nullable=False,
        default=AutomationStatus.PENDING,
        index=True,
    )
    processed_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def metric_values(self) -> dict:
        return {key: getattr(self, key) for key in METRIC_KEYS}

    def __repr__(self) -> str:
        return f"<KPIScore id={self.id} user={self.user_id} period={self.period} score={self.overall_score}>"


# ---------------------------------------------------------------------------
# RULE TABLE
# ---------------------------------------------------------------------------


class KPIConfiguration(Base):
    """
    Versioned, admin-editable rule table (metric thresholds and triggers).

    Exactly one version is active at a time; older versions are kept for
    reference and never edited.
    """

    __tablename__ = "kpi_configurations"

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    version = Column(Integer, nullable=False, unique=True)
    payload = Column(JSON, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    notes = Column(Text, nullable=True)
    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)

    def __repr__(self) -> str:
        return f"<KPIConfiguration version={self.version} active={self.is_active}>"

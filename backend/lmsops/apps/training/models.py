# backend/lmsops/apps/training/models.py

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


class TrainingType(str, enum.Enum):
    BASIC = "basic"
    NEGATIVITY_HANDLING = "negativity_handling"
    DOS_DONTS = "dos_donts"
    APP_USAGE = "app_usage"


class AssignmentSource(str, enum.Enum):
    MANUAL = "manual"
    KPI_TRIGGER = "kpi_trigger"
    SCHEDULED = "scheduled"
    SYSTEM = "system"


class TrainingStatus(str, enum.Enum):
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


OPEN_TRAINING_STATUSES = (
    TrainingStatus.ASSIGNED,
    TrainingStatus.IN_PROGRESS,
    TrainingStatus.OVERDUE,
)


# ---------------------------------------------------------------------------
# ASSIGNMENTS
# ---------------------------------------------------------------------------


class TrainingAssignment(Base):
    """
    One remedial training obligation for a user.

    Rows created by the KPI pipeline carry the originating score in
    `kpi_score_id`; manual assignments leave it empty. Cancelling sets
    `is_active` to False, rows are never deleted.
    """

    __tablename__ = "training_assignments"
    __table_args__ = (
        Index("ix_training_assignments_user_status", "user_id", "status"),
        Index("ix_training_assignments_type_status", "training_type", "status"),
        Index("ix_training_assignments_due_status", "due_date", "status"),
        Index("ix_training_assignments_user_type_kpi", "user_id", "training_type", "kpi_score_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)

    training_type = Column(
        SAEnum(TrainingType, name="training_type_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    assigned_by = Column(
        SAEnum(AssignmentSource, name="training_assignment_source_enum", native_enum=False),
        nullable=False,
        default=AssignmentSource.KPI_TRIGGER,
        index=True,
    )
    assigned_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    kpi_score_id = Column(String(36), ForeignKey("kpi_scores.id", ondelete="SET NULL"), nullable=True, index=True)

    assigned_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    due_date = Column(DateTime(timezone=True), nullable=False, index=True)
    status = Column(
        SAEnum(TrainingStatus, name="training_status_enum", native_enum=False),
        nullable=False,
        default=TrainingStatus.ASSIGNED,
        index=True,
    )
    completion_date = Column(DateTime(timezone=True), nullable=True)
    score = Column(Float, nullable=True)

    reason = Column(String(500), nullable=True)
    notes = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<TrainingAssignment id={self.id} user={self.user_id} type={self.training_type} status={self.status}>"

# backend/lmsops/apps/compliance/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
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


class AuditType(str, enum.Enum):
    AUDIT_CALL = "audit_call"
    CROSS_CHECK = "cross_check"
    DUMMY_AUDIT = "dummy_audit"
    RCA_COMPLAINTS = "rca_complaints"
    CROSS_VERIFY_INSUFF = "cross_verify_insuff"


class AuditStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AuditPriority(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ComplianceStatus(str, enum.Enum):
    NOT_ASSESSED = "not_assessed"
    COMPLIANT = "compliant"
    PARTIALLY_COMPLIANT = "partially_compliant"
    NON_COMPLIANT = "non_compliant"


OPEN_AUDIT_STATUSES = (AuditStatus.SCHEDULED, AuditStatus.IN_PROGRESS)


# ---------------------------------------------------------------------------
# AUDIT SCHEDULES
# ---------------------------------------------------------------------------


class AuditSchedule(Base):
    """
    A compliance review planned against a user.

    `audit_method` is a human readable description of how the audit is
    carried out; findings, risk level and compliance status are filled in
    by the compliance team when the audit is completed.
    """

    __tablename__ = "audit_schedules"
    __table_args__ = (
        Index("ix_audit_schedules_user_status", "user_id", "status"),
        Index("ix_audit_schedules_type_status", "audit_type", "status"),
        Index("ix_audit_schedules_date_status", "scheduled_date", "status"),
        Index("ix_audit_schedules_user_type_kpi", "user_id", "audit_type", "kpi_score_id"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    kpi_score_id = Column(String(36), ForeignKey("kpi_scores.id", ondelete="SET NULL"), nullable=True, index=True)

    audit_type = Column(
        SAEnum(AuditType, name="audit_type_enum", native_enum=False),
        nullable=False,
        index=True,
    )
    audit_scope = Column(Text, nullable=True)
    audit_method = Column(String(255), nullable=True)
    priority = Column(
        SAEnum(AuditPriority, name="audit_priority_enum", native_enum=False),
        nullable=False,
        default=AuditPriority.MEDIUM,
    )
    scheduled_date = Column(DateTime(timezone=True), nullable=False, index=True)
    completed_date = Column(DateTime(timezone=True), nullable=True)
    status = Column(
        SAEnum(AuditStatus, name="audit_status_enum", native_enum=False),
        nullable=False,
        default=AuditStatus.SCHEDULED,
        index=True,
    )

    assigned_to_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    created_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    findings = Column(Text, nullable=True)
    recommendations = Column(Text, nullable=True)
    risk_level = Column(
        SAEnum(RiskLevel, name="audit_risk_level_enum", native_enum=False),
        nullable=True,
    )
    compliance_status = Column(
        SAEnum(ComplianceStatus, name="audit_compliance_status_enum", native_enum=False),
        nullable=False,
        default=ComplianceStatus.NOT_ASSESSED,
    )
    reason = Column(String(500), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<AuditSchedule id={self.id} user={self.user_id} type={self.audit_type} status={self.status}>"

from __future__ import annotations

from datetime import datetime, timezone
import enum

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
)

from lmsops.apps.accounts.models import UserRole
from lmsops.database import Base
from lmsops.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EmailStatus(str, enum.Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    SKIPPED_NO_PROVIDER = "skipped_no_provider"


class EmailLog(Base):
    """
    One attempted send of one rendered email to one recipient.

    KPI emails carry `kpi_score_id` and `action_tag`; together with the
    recipient address they identify the (recipient, action) pair so a
    re-run can tell what was already delivered. Only `status`, `error`,
    `retry_count` and `sent_at` change after insert.
    """

    __tablename__ = "email_logs"
    __table_args__ = (
        Index("ix_email_logs_recipient_status", "recipient_email", "status"),
        Index("ix_email_logs_template_status", "template_type", "status"),
        Index("ix_email_logs_kpi_action_recipient", "kpi_score_id", "action_tag", "recipient_email"),
        Index("ix_email_logs_user_status", "user_id", "status"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)

    recipient_email = Column(String(255), nullable=False)
    recipient_role = Column(String(32), nullable=True)
    subject = Column(String(255), nullable=False)
    template_type = Column(String(64), nullable=False, index=True)
    content = Column(Text, nullable=True)
    status = Column(
        SAEnum(EmailStatus, name="email_status_enum", native_enum=False),
        nullable=False,
        default=EmailStatus.PENDING,
        index=True,
    )
    error = Column(Text, nullable=True)
    retry_count = Column(Integer, nullable=False, default=0)
    context_json = Column(JSON, nullable=True)
    correlation_id = Column(String(64), nullable=True, index=True)

    user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    kpi_score_id = Column(String(36), ForeignKey("kpi_scores.id", ondelete="SET NULL"), nullable=True)
    action_tag = Column(String(64), nullable=True)
    training_assignment_id = Column(
        String(36), ForeignKey("training_assignments.id", ondelete="SET NULL"), nullable=True, index=True
    )
    audit_schedule_id = Column(
        String(36), ForeignKey("audit_schedules.id", ondelete="SET NULL"), nullable=True, index=True
    )

    def __repr__(self) -> str:
        return f"<EmailLog id={self.id} recipient={self.recipient_email} status={self.status}>"


class EmailTemplate(Base):
    """
    Admin-editable subject/body pair rendered with ``{{variable}}`` placeholders.
    At most one active template per `template_type` is used.
    """

    __tablename__ = "email_templates"
    __table_args__ = (
        Index("ix_email_templates_type_active", "template_type", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    name = Column(String(255), nullable=False, unique=True)
    template_type = Column(String(64), nullable=False, index=True)
    category = Column(String(32), nullable=False, default="general")
    subject = Column(String(255), nullable=False)
    content = Column(Text, nullable=False)
    variables = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<EmailTemplate id={self.id} type={self.template_type} active={self.is_active}>"


class RecipientGroup(Base):
    """
    Named distribution list for a recipient role.

    `members` is a JSON list of ``{"email", "name", "is_active"}`` entries.
    """

    __tablename__ = "recipient_groups"
    __table_args__ = (
        Index("ix_recipient_groups_role_active", "role", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    name = Column(String(255), nullable=False, unique=True)
    description = Column(Text, nullable=True)
    role = Column(
        SAEnum(UserRole, name="recipient_group_role_enum", native_enum=False),
        nullable=True,
        index=True,
    )
    members = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)

    usage_count = Column(Integer, nullable=False, default=0)
    last_used_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<RecipientGroup id={self.id} name={self.name!r} role={self.role}>"


class NotificationType(str, enum.Enum):
    INFO = "info"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"
    TRAINING = "training"
    AUDIT = "audit"
    KPI = "kpi"
    PERFORMANCE = "performance"


class NotificationPriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        Index("ix_notifications_user_read", "user_id", "is_read"),
        Index("ix_notifications_kpi_type", "kpi_score_id", "notification_type"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)
    user_id = Column(String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    notification_type = Column(
        SAEnum(NotificationType, name="notification_type_enum", native_enum=False),
        nullable=False,
        default=NotificationType.INFO,
    )
    priority = Column(
        SAEnum(NotificationPriority, name="notification_priority_enum", native_enum=False),
        nullable=False,
        default=NotificationPriority.NORMAL,
    )
    kpi_score_id = Column(String(36), ForeignKey("kpi_scores.id", ondelete="SET NULL"), nullable=True)
    email_log_id = Column(String(36), ForeignKey("email_logs.id", ondelete="SET NULL"), nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime(timezone=True), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    sent_by_user_id = Column(String(36), ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    def __repr__(self) -> str:
        return f"<Notification id={self.id} user={self.user_id} type={self.notification_type}>"

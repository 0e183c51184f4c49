from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from lmsops.database import WriteSessionLocal

from . import models, providers

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def send_email(
    template_type: str,
    recipient: str,
    subject: str,
    body: str,
    correlation_id: Optional[str],
    critical: bool = False,
    *,
    db: Optional[Session] = None,
    provider: Optional[providers.EmailProvider] = None,
    log: Optional[models.EmailLog] = None,
    recipient_role: Optional[str] = None,
    user_id: Optional[str] = None,
    kpi_score_id: Optional[str] = None,
    action_tag: Optional[str] = None,
    training_assignment_id: Optional[str] = None,
    audit_schedule_id: Optional[str] = None,
    context: Optional[dict] = None,
) -> models.EmailLog:
    """
    Send one message and record the attempt in an EmailLog.

    Passing an existing ``log`` retries that row in place instead of
    inserting a new one. With no ``provider`` the configured one is looked
    up from the environment. Transport failures mark the log FAILED and are
    only re-raised when ``critical`` is set.
    """
    owns_session = db is None
    db = db or WriteSessionLocal()
    if log is None:
        log = models.EmailLog(
            recipient_email=recipient,
            recipient_role=recipient_role,
            subject=subject[:255],
            template_type=template_type,
            content=body,
            status=models.EmailStatus.PENDING,
            context_json=context or {},
            correlation_id=correlation_id,
            user_id=user_id,
            kpi_score_id=kpi_score_id,
            action_tag=action_tag,
            training_assignment_id=training_assignment_id,
            audit_schedule_id=audit_schedule_id,
        )
    else:
        log.status = models.EmailStatus.PENDING
        log.subject = subject[:255]
        log.content = body
        log.error = None
        log.retry_count = (log.retry_count or 0) + 1
    try:
        db.add(log)
        db.flush()

        if provider is None:
            provider, configured = providers.get_email_provider()
        else:
            configured = True
        if not configured:
            log.status = models.EmailStatus.SKIPPED_NO_PROVIDER
            log.error = "No provider configured"
            db.add(log)
            if owns_session:
                db.commit()
            return log

        try:
            provider.send(
                template_type=template_type,
                recipient=recipient,
                subject=subject,
                body=body,
                correlation_id=correlation_id,
            )
            log.status = models.EmailStatus.SENT
            log.sent_at = _utcnow()
        except Exception as exc:
            log.status = models.EmailStatus.FAILED
            log.error = str(exc) or exc.__class__.__name__
            logger.warning(
                "Email send failed",
                extra={
                    "recipient": recipient,
                    "template_type": template_type,
                    "correlation_id": correlation_id,
                    "critical": critical,
                },
            )
            if critical:
                db.add(log)
                if owns_session:
                    db.commit()
                raise
        db.add(log)
        if owns_session:
            db.commit()
        return log
    finally:
        if owns_session:
            db.close()


def create_notification(
    db: Session,
    *,
    user_id: str,
    title: str,
    message: str,
    notification_type: models.NotificationType = models.NotificationType.INFO,
    priority: models.NotificationPriority = models.NotificationPriority.NORMAL,
    kpi_score_id: Optional[str] = None,
    email_log_id: Optional[str] = None,
    sent_by_user_id: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> models.Notification:
    notification = models.Notification(
        user_id=user_id,
        title=title[:255],
        message=message,
        notification_type=notification_type,
        priority=priority,
        kpi_score_id=kpi_score_id,
        email_log_id=email_log_id,
        sent_by_user_id=sent_by_user_id,
        metadata_json=metadata or {},
    )
    db.add(notification)
    db.flush()
    return notification


def find_kpi_notification(
    db: Session,
    *,
    kpi_score_id: str,
    notification_type: models.NotificationType,
) -> Optional[models.Notification]:
    return (
        db.query(models.Notification)
        .filter(
            models.Notification.kpi_score_id == kpi_score_id,
            models.Notification.notification_type == notification_type,
            models.Notification.email_log_id.is_(None),
        )
        .first()
    )


def list_user_notifications(
    db: Session,
    *,
    user_id: str,
    unread_only: bool = False,
    limit: int = 50,
) -> Sequence[models.Notification]:
    query = db.query(models.Notification).filter(models.Notification.user_id == user_id)
    if unread_only:
        query = query.filter(models.Notification.is_read.is_(False))
    return query.order_by(models.Notification.sent_at.desc()).limit(limit).all()


def mark_notifications_read(
    db: Session,
    *,
    user_id: str,
    notification_ids: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> int:
    """Mark the given notifications (or all unread ones) read; returns how many changed."""
    now = now or _utcnow()
    query = db.query(models.Notification).filter(
        models.Notification.user_id == user_id,
        models.Notification.is_read.is_(False),
    )
    if notification_ids is not None:
        query = query.filter(models.Notification.id.in_(list(notification_ids)))
    rows = query.all()
    for notification in rows:
        notification.is_read = True
        notification.read_at = now
        db.add(notification)
    return len(rows)

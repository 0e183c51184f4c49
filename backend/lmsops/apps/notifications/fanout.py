from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from lmsops.apps.accounts import models as account_models
from lmsops.utils.identifiers import correlation_id

from . import models, providers, recipients, service, templates

logger = logging.getLogger(__name__)

TEMPLATE_BY_KIND = {
    "training": "training_assignment",
    "audit": "audit_schedule",
    "warning": "performance_warning",
}

NOTIFICATION_TYPE_BY_KIND = {
    "training": models.NotificationType.TRAINING,
    "audit": models.NotificationType.AUDIT,
    "warning": models.NotificationType.WARNING,
}


@dataclass
class FanoutResult:
    email_logs: List[models.EmailLog] = field(default_factory=list)
    notifications: List[models.Notification] = field(default_factory=list)
    already_sent: int = 0
    errors: List[str] = field(default_factory=list)


def _existing_log(db: Session, *, kpi_score_id: str, action_tag: str, email: str) -> Optional[models.EmailLog]:
    return (
        db.query(models.EmailLog)
        .filter(
            models.EmailLog.kpi_score_id == kpi_score_id,
            models.EmailLog.action_tag == action_tag,
            func.lower(models.EmailLog.recipient_email) == email.lower(),
        )
        .order_by(models.EmailLog.created_at.desc())
        .first()
    )


def _format_date(value: Any) -> str:
    if value is None:
        return ""
    return value.strftime("%d %b %Y")


def _action_variables(action: Any, record: Any, base: Mapping[str, Any]) -> Dict[str, Any]:
    variables = dict(base)
    variables["action_label"] = action.label
    variables["priority"] = action.priority
    variables["due_date"] = _format_date(getattr(record, "due_date", None))
    variables["scheduled_date"] = _format_date(getattr(record, "scheduled_date", None))
    return variables


def send_action_emails(
    db: Session,
    *,
    kpi_score: Any,
    user: account_models.User,
    actions: Sequence[Any],
    records: Optional[Mapping[str, Any]] = None,
    provider: Optional[providers.EmailProvider] = None,
    sent_by_user_id: Optional[str] = None,
) -> FanoutResult:
    """
    Send one email per (recipient, action) and log each attempt.

    Pairs already delivered for this KPI score are not sent again; pairs
    whose earlier attempt did not go out are retried on the same log row.
    A failure for one recipient never stops the others.
    """
    records = records or {}
    result = FanoutResult()
    base_variables = {
        "user_name": user.name,
        "employee_id": user.employee_id or "",
        "period": kpi_score.period,
        "overall_score": kpi_score.overall_score,
        "rating": getattr(kpi_score.rating, "value", kpi_score.rating),
    }

    for action in actions:
        template_type = TEMPLATE_BY_KIND.get(action.kind)
        if template_type is None:
            continue

        resolution = recipients.resolve_recipients(db, action.recipients, user=user)
        result.errors.extend(f"{action.tag}: {error}" for error in resolution.errors)
        if not resolution.recipients:
            continue

        record = records.get(action.tag)
        try:
            rendered = templates.render_template(
                db,
                template_type,
                _action_variables(action, record, base_variables),
            )
        except templates.TemplateNotFoundError as exc:
            result.errors.append(f"{action.tag}: {exc}")
            continue

        for recipient in resolution.recipients:
            existing = _existing_log(
                db,
                kpi_score_id=kpi_score.id,
                action_tag=action.tag,
                email=recipient.email,
            )
            if existing is not None and existing.status == models.EmailStatus.SENT:
                result.already_sent += 1
                continue

            try:
                with db.begin_nested():
                    log = service.send_email(
                        template_type,
                        recipient.email,
                        rendered.subject,
                        rendered.body,
                        correlation_id("kpi", kpi_score.id, action.tag, recipient.email),
                        db=db,
                        provider=provider,
                        log=existing,
                        recipient_role=recipient.role,
                        user_id=user.id,
                        kpi_score_id=kpi_score.id,
                        action_tag=action.tag,
                        training_assignment_id=record.id if action.kind == "training" and record else None,
                        audit_schedule_id=record.id if action.kind == "audit" and record else None,
                        context={"period": kpi_score.period, "action": action.label},
                    )
            except Exception as exc:
                result.errors.append(f"{action.tag}: email to {recipient.email} could not be logged: {exc}")
                logger.warning(
                    "KPI email logging failed",
                    extra={"kpi_score_id": kpi_score.id, "action": action.tag, "recipient": recipient.email},
                    exc_info=True,
                )
                continue

            result.email_logs.append(log)
            if log.status == models.EmailStatus.FAILED:
                result.errors.append(f"{action.tag}: email to {recipient.email} failed: {log.error}")
                continue
            if log.status == models.EmailStatus.SENT and recipient.user_id == user.id:
                result.notifications.append(
                    service.create_notification(
                        db,
                        user_id=user.id,
                        title=rendered.subject,
                        message=rendered.body[:200],
                        notification_type=NOTIFICATION_TYPE_BY_KIND[action.kind],
                        priority=(
                            models.NotificationPriority.HIGH
                            if action.priority in {"high", "critical"}
                            else models.NotificationPriority.NORMAL
                        ),
                        kpi_score_id=kpi_score.id,
                        email_log_id=log.id,
                        sent_by_user_id=sent_by_user_id,
                        metadata={"action": action.tag},
                    )
                )
    return result

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from lmsops.apps.accounts import models as account_models
from lmsops.apps.accounts import services as account_services
from lmsops.apps.compliance import models as compliance_models
from lmsops.apps.compliance import services as compliance_services
from lmsops.apps.lifecycle import models as lifecycle_models
from lmsops.apps.lifecycle import services as lifecycle_services
from lmsops.apps.notifications import models as notification_models
from lmsops.apps.notifications import service as notification_service
from lmsops.apps.training import models as training_models
from lmsops.apps.training import services as training_services

from . import config, models
from .rules import ACTION_AUDIT, ACTION_TRAINING, ACTION_WARNING, FiredAction, TriggerEvaluation

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    training_assignments: List[training_models.TrainingAssignment] = field(default_factory=list)
    audits: List[compliance_models.AuditSchedule] = field(default_factory=list)
    notifications: List[notification_models.Notification] = field(default_factory=list)
    lifecycle_events: List[lifecycle_models.LifecycleEvent] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    # Action tag -> assignment/audit it refers to, whether new or pre-existing.
    records: Dict[str, Any] = field(default_factory=dict)


def _track(result: DispatchResult, event: Optional[lifecycle_models.LifecycleEvent]) -> None:
    if event is not None:
        result.lifecycle_events.append(event)


def _dispatch_training(
    db: Session,
    *,
    action: FiredAction,
    kpi_score: models.KPIScore,
    user: account_models.User,
    now: datetime,
    actor_user_id: Optional[str],
    result: DispatchResult,
) -> None:
    training_type = training_models.TrainingType(action.spec.detail)
    assignment, created = training_services.assign_training(
        db,
        user_id=user.id,
        training_type=training_type,
        due_date=now + timedelta(days=config.TRAINING_DUE_DAYS),
        assigned_by=training_models.AssignmentSource.KPI_TRIGGER,
        assigned_by_user_id=actor_user_id,
        kpi_score_id=kpi_score.id,
        reason=f"{action.label} triggered by KPI score {kpi_score.overall_score} ({kpi_score.period})",
    )
    result.records[action.tag] = assignment
    if not created:
        result.skipped.append(action.tag)
        return
    result.training_assignments.append(assignment)
    _track(
        result,
        lifecycle_services.track_lifecycle_event(
            db,
            user_id=user.id,
            event_type=lifecycle_models.LifecycleEventType.TRAINING,
            title="Training Assigned",
            description=f"{action.label} assigned after KPI review for {kpi_score.period}",
            category=lifecycle_models.LifecycleCategory.NEUTRAL,
            kpi_score_id=kpi_score.id,
            metadata={"training_assignment_id": assignment.id, "action": action.tag},
            created_by=actor_user_id,
        ),
    )


def _dispatch_audit(
    db: Session,
    *,
    action: FiredAction,
    kpi_score: models.KPIScore,
    user: account_models.User,
    now: datetime,
    actor_user_id: Optional[str],
    result: DispatchResult,
) -> None:
    audit_type = compliance_models.AuditType(action.spec.detail)
    priority = compliance_models.AuditPriority(action.priority)
    audit, created = compliance_services.schedule_audit(
        db,
        user_id=user.id,
        audit_type=audit_type,
        scheduled_date=now + timedelta(days=config.AUDIT_DAYS_BY_PRIORITY[priority.value]),
        priority=priority,
        kpi_score_id=kpi_score.id,
        created_by_user_id=actor_user_id,
        audit_scope=f"KPI period {kpi_score.period}",
        reason=f"{action.label} triggered by KPI score {kpi_score.overall_score}",
    )
    result.records[action.tag] = audit
    if not created:
        result.skipped.append(action.tag)
        return
    result.audits.append(audit)
    _track(
        result,
        lifecycle_services.track_lifecycle_event(
            db,
            user_id=user.id,
            event_type=lifecycle_models.LifecycleEventType.AUDIT,
            title="Audit Scheduled",
            description=f"{action.label} scheduled after KPI review for {kpi_score.period}",
            category=lifecycle_models.LifecycleCategory.NEUTRAL,
            kpi_score_id=kpi_score.id,
            metadata={"audit_schedule_id": audit.id, "action": action.tag, "priority": priority.value},
            created_by=actor_user_id,
        ),
    )


def _dispatch_warning(
    db: Session,
    *,
    action: FiredAction,
    kpi_score: models.KPIScore,
    user: account_models.User,
    now: datetime,
    actor_user_id: Optional[str],
    result: DispatchResult,
) -> None:
    existing = notification_service.find_kpi_notification(
        db,
        kpi_score_id=kpi_score.id,
        notification_type=notification_models.NotificationType.WARNING,
    )
    if existing is not None:
        result.records[action.tag] = existing
        result.skipped.append(action.tag)
        return

    notification = notification_service.create_notification(
        db,
        user_id=user.id,
        title="Performance Warning",
        message=(
            f"Your KPI score for {kpi_score.period} is {kpi_score.overall_score} "
            f"({kpi_score.rating.value}). A warning letter has been issued."
        ),
        notification_type=notification_models.NotificationType.WARNING,
        priority=notification_models.NotificationPriority.URGENT,
        kpi_score_id=kpi_score.id,
        sent_by_user_id=actor_user_id,
        metadata={"period": kpi_score.period, "kpi_score": kpi_score.overall_score},
    )
    event = lifecycle_services.track_lifecycle_event(
        db,
        user_id=user.id,
        event_type=lifecycle_models.LifecycleEventType.WARNING,
        title="Warning Letter Issued",
        description=f"Warning letter issued for KPI score {kpi_score.overall_score} ({kpi_score.period})",
        category=lifecycle_models.LifecycleCategory.NEGATIVE,
        kpi_score_id=kpi_score.id,
        metadata={"notification_id": notification.id},
        created_by=actor_user_id,
        critical=True,
    )
    result.records[action.tag] = notification
    result.notifications.append(notification)
    _track(result, event)


HANDLERS = {
    ACTION_TRAINING: _dispatch_training,
    ACTION_AUDIT: _dispatch_audit,
    ACTION_WARNING: _dispatch_warning,
}


def _record_reward(
    db: Session,
    *,
    kpi_score: models.KPIScore,
    user: account_models.User,
    actor_user_id: Optional[str],
    result: DispatchResult,
) -> None:
    existing = lifecycle_services.find_kpi_event(
        db,
        kpi_score_id=kpi_score.id,
        event_type=lifecycle_models.LifecycleEventType.ACHIEVEMENT,
    )
    if existing is not None:
        result.skipped.append("reward")
        return
    _track(
        result,
        lifecycle_services.track_lifecycle_event(
            db,
            user_id=user.id,
            event_type=lifecycle_models.LifecycleEventType.ACHIEVEMENT,
            title="Outstanding Performance",
            description=f"KPI score {kpi_score.overall_score} for {kpi_score.period} is reward eligible",
            category=lifecycle_models.LifecycleCategory.POSITIVE,
            kpi_score_id=kpi_score.id,
            metadata={"rating": kpi_score.rating.value},
            created_by=actor_user_id,
        ),
    )


def dispatch_actions(
    db: Session,
    *,
    kpi_score: models.KPIScore,
    user: account_models.User,
    evaluation: TriggerEvaluation,
    now: datetime,
    actor_user_id: Optional[str] = None,
) -> DispatchResult:
    """
    Create the records each fired action calls for.

    Every action runs in its own savepoint; a failure is rolled back,
    reported in ``errors`` and the remaining actions still run. Actions
    whose record already exists (open, or created for this score) are
    listed in ``skipped``.
    """
    result = DispatchResult()
    for action in evaluation.actions:
        handler = HANDLERS.get(action.kind)
        if handler is None:
            continue
        try:
            with db.begin_nested():
                handler(
                    db,
                    action=action,
                    kpi_score=kpi_score,
                    user=user,
                    now=now,
                    actor_user_id=actor_user_id,
                    result=result,
                )
        except Exception as exc:
            result.errors.append(f"{action.tag}: {exc}")
            logger.warning(
                "KPI action dispatch failed",
                extra={"kpi_score_id": kpi_score.id, "action": action.tag, "user_id": user.id},
                exc_info=True,
            )

    if evaluation.reward_eligible:
        try:
            with db.begin_nested():
                _record_reward(db, kpi_score=kpi_score, user=user, actor_user_id=actor_user_id, result=result)
        except Exception as exc:
            result.errors.append(f"reward: {exc}")
            logger.warning(
                "KPI reward recording failed",
                extra={"kpi_score_id": kpi_score.id, "user_id": user.id},
                exc_info=True,
            )

    kpi_score.triggered_actions = evaluation.tags
    db.add(kpi_score)
    account_services.record_kpi_outcome(db, user=user, score=kpi_score.overall_score)
    return result

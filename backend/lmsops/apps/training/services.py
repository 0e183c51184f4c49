from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from lmsops.apps.lifecycle import models as lifecycle_models
from lmsops.apps.lifecycle import services as lifecycle_services
from lmsops.apps.workflow import apply_transition

from . import models


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _snapshot(assignment: models.TrainingAssignment, **changes) -> dict:
    payload = {
        "status": assignment.status.value if assignment.status else None,
        "completion_date": assignment.completion_date,
        "score": assignment.score,
    }
    payload.update(changes)
    return payload


def find_existing_assignment(
    db: Session,
    *,
    user_id: str,
    training_type: models.TrainingType,
    kpi_score_id: Optional[str] = None,
) -> Optional[models.TrainingAssignment]:
    """
    An assignment that makes a new one of the same type redundant: an active
    one still open, or any one (cancelled included) created for the same KPI
    score.
    """
    criteria = [
        and_(
            models.TrainingAssignment.is_active.is_(True),
            models.TrainingAssignment.status.in_(models.OPEN_TRAINING_STATUSES),
        )
    ]
    if kpi_score_id:
        criteria.append(models.TrainingAssignment.kpi_score_id == kpi_score_id)
    return (
        db.query(models.TrainingAssignment)
        .filter(
            models.TrainingAssignment.user_id == user_id,
            models.TrainingAssignment.training_type == training_type,
            or_(*criteria),
        )
        .order_by(models.TrainingAssignment.created_at.asc())
        .first()
    )


def assign_training(
    db: Session,
    *,
    user_id: str,
    training_type: models.TrainingType,
    due_date: datetime,
    assigned_by: models.AssignmentSource = models.AssignmentSource.KPI_TRIGGER,
    assigned_by_user_id: Optional[str] = None,
    kpi_score_id: Optional[str] = None,
    reason: Optional[str] = None,
    notes: Optional[str] = None,
) -> Tuple[models.TrainingAssignment, bool]:
    """
    Create an assignment unless an equivalent one exists.

    Returns ``(assignment, created)``; when ``created`` is False the
    existing row is returned untouched.
    """
    existing = find_existing_assignment(
        db,
        user_id=user_id,
        training_type=training_type,
        kpi_score_id=kpi_score_id,
    )
    if existing:
        return existing, False

    assignment = models.TrainingAssignment(
        user_id=user_id,
        training_type=training_type,
        assigned_by=assigned_by,
        assigned_by_user_id=assigned_by_user_id,
        kpi_score_id=kpi_score_id,
        due_date=due_date,
        status=models.TrainingStatus.ASSIGNED,
        reason=reason[:500] if reason else None,
        notes=notes,
    )
    db.add(assignment)
    db.flush()
    return assignment, True


def start_assignment(db: Session, *, assignment: models.TrainingAssignment) -> models.TrainingAssignment:
    apply_transition(
        db,
        entity_type="training_assignment",
        entity_id=str(assignment.id),
        from_state=assignment.status.value,
        to_state=models.TrainingStatus.IN_PROGRESS.value,
        before_obj=_snapshot(assignment),
        after_obj=_snapshot(assignment, status=models.TrainingStatus.IN_PROGRESS.value),
    )
    assignment.status = models.TrainingStatus.IN_PROGRESS
    db.add(assignment)
    return assignment


def complete_assignment(
    db: Session,
    *,
    assignment: models.TrainingAssignment,
    score: Optional[float] = None,
    notes: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.TrainingAssignment:
    now = now or _utcnow()
    apply_transition(
        db,
        entity_type="training_assignment",
        entity_id=str(assignment.id),
        from_state=assignment.status.value,
        to_state=models.TrainingStatus.COMPLETED.value,
        before_obj=_snapshot(assignment),
        after_obj=_snapshot(
            assignment,
            status=models.TrainingStatus.COMPLETED.value,
            completion_date=now,
            score=score,
        ),
    )
    assignment.status = models.TrainingStatus.COMPLETED
    assignment.completion_date = now
    if score is not None:
        assignment.score = score
    if notes:
        assignment.notes = notes
    db.add(assignment)
    lifecycle_services.track_lifecycle_event(
        db,
        user_id=assignment.user_id,
        event_type=lifecycle_models.LifecycleEventType.TRAINING,
        title="Training Completed",
        description=f"Completed {assignment.training_type.value} training",
        category=lifecycle_models.LifecycleCategory.POSITIVE,
        kpi_score_id=assignment.kpi_score_id,
        metadata={"training_assignment_id": assignment.id, "score": score},
        created_by=actor_user_id,
    )
    return assignment


def cancel_assignment(
    db: Session,
    *,
    assignment: models.TrainingAssignment,
    reason: str,
    actor_user_id: Optional[str] = None,
) -> models.TrainingAssignment:
    apply_transition(
        db,
        entity_type="training_assignment",
        entity_id=str(assignment.id),
        from_state=assignment.status.value,
        to_state=models.TrainingStatus.CANCELLED.value,
        before_obj=_snapshot(assignment),
        after_obj=_snapshot(assignment, status=models.TrainingStatus.CANCELLED.value, reason=reason),
    )
    assignment.status = models.TrainingStatus.CANCELLED
    assignment.is_active = False
    assignment.notes = f"{assignment.notes}\n{reason}" if assignment.notes else reason
    db.add(assignment)
    lifecycle_services.track_lifecycle_event(
        db,
        user_id=assignment.user_id,
        event_type=lifecycle_models.LifecycleEventType.TRAINING,
        title="Training Cancelled",
        description=reason,
        category=lifecycle_models.LifecycleCategory.NEUTRAL,
        kpi_score_id=assignment.kpi_score_id,
        metadata={"training_assignment_id": assignment.id},
        created_by=actor_user_id,
    )
    return assignment


def mark_overdue_assignments(db: Session, *, now: Optional[datetime] = None) -> int:
    now = now or _utcnow()
    overdue = (
        db.query(models.TrainingAssignment)
        .filter(
            models.TrainingAssignment.is_active.is_(True),
            models.TrainingAssignment.status.in_(
                [models.TrainingStatus.ASSIGNED, models.TrainingStatus.IN_PROGRESS]
            ),
            models.TrainingAssignment.due_date < now,
        )
        .all()
    )
    for assignment in overdue:
        apply_transition(
            db,
            entity_type="training_assignment",
            entity_id=str(assignment.id),
            from_state=assignment.status.value,
            to_state=models.TrainingStatus.OVERDUE.value,
            before_obj=_snapshot(assignment),
            after_obj=_snapshot(assignment, status=models.TrainingStatus.OVERDUE.value),
        )
        assignment.status = models.TrainingStatus.OVERDUE
        db.add(assignment)
    return len(overdue)


def list_user_assignments(
    db: Session,
    *,
    user_id: str,
    include_inactive: bool = False,
) -> Sequence[models.TrainingAssignment]:
    query = db.query(models.TrainingAssignment).filter(models.TrainingAssignment.user_id == user_id)
    if not include_inactive:
        query = query.filter(models.TrainingAssignment.is_active.is_(True))
    return query.order_by(models.TrainingAssignment.created_at.desc()).all()

from __future__ import annotations

from datetime import datetime
import logging
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


def create_lifecycle_event(
    db: Session,
    *,
    user_id: str,
    event_type: models.LifecycleEventType,
    title: str,
    description: str,
    category: models.LifecycleCategory,
    kpi_score_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    created_by: Optional[str] = None,
) -> models.LifecycleEvent:
    event = models.LifecycleEvent(
        user_id=user_id,
        event_type=event_type,
        title=title,
        description=description,
        category=category,
        kpi_score_id=kpi_score_id,
        metadata_json=metadata or {},
        created_by=created_by,
    )
    db.add(event)
    db.flush()
    return event


def track_lifecycle_event(
    db: Session,
    *,
    user_id: str,
    event_type: models.LifecycleEventType,
    title: str,
    description: str,
    category: models.LifecycleCategory,
    kpi_score_id: Optional[str] = None,
    metadata: Optional[dict] = None,
    created_by: Optional[str] = None,
    critical: bool = False,
) -> Optional[models.LifecycleEvent]:
    """
    Best-effort timeline writer.
    - For critical events (warning letters), raise on failure.
    - Otherwise log a warning and return None.
    """
    try:
        return create_lifecycle_event(
            db,
            user_id=user_id,
            event_type=event_type,
            title=title,
            description=description,
            category=category,
            kpi_score_id=kpi_score_id,
            metadata=metadata,
            created_by=created_by,
        )
    except Exception:
        logger.warning(
            "Failed to record lifecycle event",
            extra={
                "user_id": user_id,
                "event_type": event_type.value,
                "kpi_score_id": kpi_score_id,
                "critical": critical,
            },
        )
        if critical:
            raise
        return None


def find_kpi_event(
    db: Session,
    *,
    kpi_score_id: str,
    event_type: models.LifecycleEventType,
) -> Optional[models.LifecycleEvent]:
    return (
        db.query(models.LifecycleEvent)
        .filter(
            models.LifecycleEvent.kpi_score_id == kpi_score_id,
            models.LifecycleEvent.event_type == event_type,
        )
        .first()
    )


def list_user_timeline(
    db: Session,
    *,
    user_id: str,
    event_type: Optional[models.LifecycleEventType] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
) -> Sequence[models.LifecycleEvent]:
    query = db.query(models.LifecycleEvent).filter(models.LifecycleEvent.user_id == user_id)
    if event_type:
        query = query.filter(models.LifecycleEvent.event_type == event_type)
    if start:
        query = query.filter(models.LifecycleEvent.occurred_at >= start)
    if end:
        query = query.filter(models.LifecycleEvent.occurred_at <= end)
    return query.order_by(models.LifecycleEvent.occurred_at.desc()).all()

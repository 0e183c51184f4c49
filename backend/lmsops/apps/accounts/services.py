from __future__ import annotations

import logging
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)


class UserNotFoundError(Exception):
    def __init__(self, user_id: str):
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


def get_user(db: Session, user_id: Optional[str]) -> Optional[models.User]:
    if not user_id:
        return None
    return db.query(models.User).filter(models.User.id == user_id).first()


def require_user(db: Session, user_id: str) -> models.User:
    user = get_user(db, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    return user


def clean_email(user: Optional[models.User]) -> Optional[str]:
    if not user or not user.email:
        return None
    cleaned = user.email.strip()
    return cleaned or None


def list_active_users_by_role(db: Session, role: models.UserRole) -> Sequence[models.User]:
    return (
        db.query(models.User)
        .filter(models.User.role == role, models.User.is_active.is_(True))
        .order_by(models.User.created_at.asc(), models.User.id.asc())
        .all()
    )


def performance_status_for(score: float) -> models.PerformanceStatus:
    if score < 50:
        return models.PerformanceStatus.AUDITED
    if score < 70:
        return models.PerformanceStatus.WARNING
    return models.PerformanceStatus.ACTIVE


def record_kpi_outcome(db: Session, *, user: models.User, score: float) -> models.User:
    """Store the latest KPI score and the status band it puts the user in."""
    previous = user.performance_status
    user.last_kpi_score = score
    user.performance_status = performance_status_for(score)
    db.add(user)
    if previous != user.performance_status:
        logger.info(
            "User performance status changed",
            extra={
                "user_id": user.id,
                "from_status": previous.value if previous else None,
                "to_status": user.performance_status.value,
                "kpi_score": score,
            },
        )
    return user

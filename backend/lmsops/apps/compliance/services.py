from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional, Sequence, Tuple

from sqlalchemy import and_, or_
from sqlalchemy.orm import Session

from lmsops.apps.lifecycle import models as lifecycle_models
from lmsops.apps.lifecycle import services as lifecycle_services
from lmsops.apps.workflow import apply_transition

from . import models

logger = logging.getLogger(__name__)

AUDIT_METHODS = {
    models.AuditType.AUDIT_CALL: "Phone call audit with performance review",
    models.AuditType.CROSS_CHECK: "Cross-verification of last 3 months data",
    models.AuditType.DUMMY_AUDIT: "Dummy case audit to test performance",
    models.AuditType.RCA_COMPLAINTS: "Root cause analysis of customer complaints",
    models.AuditType.CROSS_VERIFY_INSUFF: "Cross-verification of insufficient cases by another FE",
}
DEFAULT_AUDIT_METHOD = "Standard audit procedure"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def audit_method_for(audit_type: models.AuditType) -> str:
    return AUDIT_METHODS.get(audit_type, DEFAULT_AUDIT_METHOD)


def _snapshot(audit: models.AuditSchedule, **changes) -> dict:
    payload = {
        "status": audit.status.value if audit.status else None,
        "findings": audit.findings,
        "compliance_status": audit.compliance_status,
        "completed_date": audit.completed_date,
    }
    payload.update(changes)
    return payload


def find_existing_audit(
    db: Session,
    *,
    user_id: str,
    audit_type: models.AuditType,
    kpi_score_id: Optional[str] = None,
) -> Optional[models.AuditSchedule]:
    criteria = [
        and_(
            models.AuditSchedule.is_active.is_(True),
            models.AuditSchedule.status.in_(models.OPEN_AUDIT_STATUSES),
        )
    ]
    if kpi_score_id:
        criteria.append(models.AuditSchedule.kpi_score_id == kpi_score_id)
    return (
        db.query(models.AuditSchedule)
        .filter(
            models.AuditSchedule.user_id == user_id,
            models.AuditSchedule.audit_type == audit_type,
            or_(*criteria),
        )
        .order_by(models.AuditSchedule.created_at.asc())
        .first()
    )


def schedule_audit(
    db: Session,
    *,
    user_id: str,
    audit_type: models.AuditType,
    scheduled_date: datetime,
    priority: models.AuditPriority = models.AuditPriority.MEDIUM,
    kpi_score_id: Optional[str] = None,
    created_by_user_id: Optional[str] = None,
    assigned_to_user_id: Optional[str] = None,
    audit_scope: Optional[str] = None,
    reason: Optional[str] = None,
) -> Tuple[models.AuditSchedule, bool]:
    """Schedule an audit unless an open one (or one for the same score) exists."""
    existing = find_existing_audit(
        db,
        user_id=user_id,
        audit_type=audit_type,
        kpi_score_id=kpi_score_id,
    )
    if existing:
        return existing, False

    audit = models.AuditSchedule(
        user_id=user_id,
        kpi_score_id=kpi_score_id,
        audit_type=audit_type,
        audit_scope=audit_scope,
        audit_method=audit_method_for(audit_type),
        priority=priority,
        scheduled_date=scheduled_date,
        status=models.AuditStatus.SCHEDULED,
        created_by_user_id=created_by_user_id,
        assigned_to_user_id=assigned_to_user_id,
        reason=reason[:500] if reason else None,
    )
    db.add(audit)
    db.flush()
    return audit, True


def start_audit(db: Session, *, audit: models.AuditSchedule) -> models.AuditSchedule:
    apply_transition(
        db,
        entity_type="audit_schedule",
        entity_id=str(audit.id),
        from_state=audit.status.value,
        to_state=models.AuditStatus.IN_PROGRESS.value,
        before_obj=_snapshot(audit),
        after_obj=_snapshot(audit, status=models.AuditStatus.IN_PROGRESS.value),
    )
    audit.status = models.AuditStatus.IN_PROGRESS
    db.add(audit)
    return audit


def complete_audit(
    db: Session,
    *,
    audit: models.AuditSchedule,
    findings: Optional[str],
    compliance_status: Optional[models.ComplianceStatus],
    risk_level: Optional[models.RiskLevel] = None,
    recommendations: Optional[str] = None,
    actor_user_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> models.AuditSchedule:
    now = now or _utcnow()
    apply_transition(
        db,
        entity_type="audit_schedule",
        entity_id=str(audit.id),
        from_state=audit.status.value,
        to_state=models.AuditStatus.COMPLETED.value,
        before_obj=_snapshot(audit),
        after_obj=_snapshot(
            audit,
            status=models.AuditStatus.COMPLETED.value,
            findings=findings,
            compliance_status=compliance_status,
            completed_date=now,
        ),
    )
    audit.status = models.AuditStatus.COMPLETED
    audit.findings = findings
    audit.compliance_status = compliance_status
    audit.risk_level = risk_level
    audit.recommendations = recommendations
    audit.completed_date = now
    db.add(audit)

    negative = compliance_status == models.ComplianceStatus.NON_COMPLIANT
    lifecycle_services.track_lifecycle_event(
        db,
        user_id=audit.user_id,
        event_type=lifecycle_models.LifecycleEventType.AUDIT,
        title="Audit Completed",
        description=f"{audit.audit_type.value} audit completed: {compliance_status.value}",
        category=(
            lifecycle_models.LifecycleCategory.NEGATIVE
            if negative
            else lifecycle_models.LifecycleCategory.NEUTRAL
        ),
        kpi_score_id=audit.kpi_score_id,
        metadata={
            "audit_schedule_id": audit.id,
            "risk_level": risk_level.value if risk_level else None,
        },
        created_by=actor_user_id,
    )
    logger.info(
        "Audit completed",
        extra={
            "audit_schedule_id": audit.id,
            "user_id": audit.user_id,
            "compliance_status": compliance_status.value,
        },
    )
    return audit


def cancel_audit(
    db: Session,
    *,
    audit: models.AuditSchedule,
    reason: str,
) -> models.AuditSchedule:
    apply_transition(
        db,
        entity_type="audit_schedule",
        entity_id=str(audit.id),
        from_state=audit.status.value,
        to_state=models.AuditStatus.CANCELLED.value,
        before_obj=_snapshot(audit),
        after_obj=_snapshot(audit, status=models.AuditStatus.CANCELLED.value, reason=reason),
    )
    audit.status = models.AuditStatus.CANCELLED
    audit.is_active = False
    audit.reason = reason[:500]
    db.add(audit)
    return audit


def list_user_audits(
    db: Session,
    *,
    user_id: str,
    status: Optional[models.AuditStatus] = None,
) -> Sequence[models.AuditSchedule]:
    query = db.query(models.AuditSchedule).filter(models.AuditSchedule.user_id == user_id)
    if status:
        query = query.filter(models.AuditSchedule.status == status)
    return query.order_by(models.AuditSchedule.scheduled_date.asc()).all()

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from lmsops.apps.accounts import models as account_models
from lmsops.apps.compliance import models as compliance_models
from lmsops.apps.compliance import services as compliance_services
from lmsops.apps.lifecycle import models as lifecycle_models
from lmsops.apps.workflow import TransitionError

NOW = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)


def _create_user(db) -> account_models.User:
    user = account_models.User(name="Audited FE", email="audited@example.com")
    db.add(user)
    db.commit()
    return user


def _schedule(db, user, audit_type=compliance_models.AuditType.AUDIT_CALL, **kwargs):
    return compliance_services.schedule_audit(
        db,
        user_id=user.id,
        audit_type=audit_type,
        scheduled_date=NOW + timedelta(days=3),
        **kwargs,
    )


def test_schedule_audit_sets_method_and_skips_duplicates(db_session):
    user = _create_user(db_session)

    audit, created = _schedule(
        db_session,
        user,
        compliance_models.AuditType.CROSS_VERIFY_INSUFF,
        priority=compliance_models.AuditPriority.HIGH,
    )
    again, created_again = _schedule(db_session, user, compliance_models.AuditType.CROSS_VERIFY_INSUFF)
    db_session.commit()

    assert created is True
    assert created_again is False
    assert again.id == audit.id
    assert audit.audit_method == "Cross-verification of insufficient cases by another FE"
    assert audit.priority == compliance_models.AuditPriority.HIGH
    assert audit.status == compliance_models.AuditStatus.SCHEDULED


def test_every_audit_type_has_a_method():
    for audit_type in compliance_models.AuditType:
        assert compliance_services.audit_method_for(audit_type) != compliance_services.DEFAULT_AUDIT_METHOD


def test_complete_audit_requires_findings(db_session):
    user = _create_user(db_session)
    audit, _ = _schedule(db_session, user)

    with pytest.raises(TransitionError) as excinfo:
        compliance_services.complete_audit(
            db_session,
            audit=audit,
            findings=None,
            compliance_status=compliance_models.ComplianceStatus.NOT_ASSESSED,
            now=NOW,
        )

    assert {item["field"] for item in excinfo.value.detail} == {"findings", "compliance_status"}
    assert audit.status == compliance_models.AuditStatus.SCHEDULED


def test_complete_non_compliant_audit_logs_negative_event(db_session):
    user = _create_user(db_session)
    audit, _ = _schedule(db_session, user)
    compliance_services.start_audit(db_session, audit=audit)

    compliance_services.complete_audit(
        db_session,
        audit=audit,
        findings="Two calls could not be verified",
        compliance_status=compliance_models.ComplianceStatus.NON_COMPLIANT,
        risk_level=compliance_models.RiskLevel.HIGH,
        now=NOW,
    )
    db_session.commit()

    assert audit.status == compliance_models.AuditStatus.COMPLETED
    assert audit.completed_date == NOW
    event = db_session.query(lifecycle_models.LifecycleEvent).one()
    assert event.event_type == lifecycle_models.LifecycleEventType.AUDIT
    assert event.category == lifecycle_models.LifecycleCategory.NEGATIVE


def test_cancelled_audit_cannot_restart(db_session):
    user = _create_user(db_session)
    audit, _ = _schedule(db_session, user)
    compliance_services.cancel_audit(db_session, audit=audit, reason="Duplicate request")

    with pytest.raises(TransitionError) as excinfo:
        compliance_services.start_audit(db_session, audit=audit)

    assert excinfo.value.code == "invalid_transition"


def test_list_user_audits_filters_by_status(db_session):
    user = _create_user(db_session)
    audit_call, _ = _schedule(db_session, user)
    dummy, _ = compliance_services.schedule_audit(
        db_session,
        user_id=user.id,
        audit_type=compliance_models.AuditType.DUMMY_AUDIT,
        scheduled_date=NOW + timedelta(days=10),
    )
    compliance_services.start_audit(db_session, audit=dummy)
    db_session.commit()

    assert [audit.id for audit in compliance_services.list_user_audits(db_session, user_id=user.id)] == [
        audit_call.id,
        dummy.id,
    ]
    in_progress = compliance_services.list_user_audits(
        db_session,
        user_id=user.id,
        status=compliance_models.AuditStatus.IN_PROGRESS,
    )
    assert [audit.id for audit in in_progress] == [dummy.id]

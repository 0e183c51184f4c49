from __future__ import annotations

from collections import Counter
from datetime import datetime, timezone

from lmsops.apps.accounts import models as account_models
from lmsops.apps.compliance import models as compliance_models
from lmsops.apps.compliance import services as compliance_services
from lmsops.apps.kpi import models as kpi_models
from lmsops.apps.kpi import services as kpi_services
from lmsops.apps.kpi.scoring import KPIRow
from lmsops.apps.lifecycle import models as lifecycle_models
from lmsops.apps.notifications import models as notification_models
from lmsops.apps.notifications import providers as notification_providers
from lmsops.apps.training import models as training_models
from lmsops.apps.training import services as training_services

NOW = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)

HEALTHY_ROW = KPIRow(
    tat=96,
    major_negativity=2,
    quality=0,
    neighbor_check=92,
    negativity=25,
    app_usage=90,
    insufficiency=0.5,
)

# Scores 35 with every condition rule false.
LOW_ROW = KPIRow(
    tat=80,
    major_negativity=0,
    quality=0,
    neighbor_check=70,
    negativity=10,
    app_usage=85,
    insufficiency=0.5,
)


class FakeProvider(notification_providers.EmailProvider):
    def __init__(self):
        self.sent = []

    def send(self, **kwargs):
        self.sent.append(kwargs)


class RecipientFailingProvider(FakeProvider):
    def __init__(self, failing_recipient):
        super().__init__()
        self.failing_recipient = failing_recipient

    def send(self, **kwargs):
        if kwargs["recipient"] == self.failing_recipient:
            raise RuntimeError("mailbox unavailable")
        super().send(**kwargs)


def _create_user(db, name, email, role, employee_id=None) -> account_models.User:
    user = account_models.User(name=name, email=email, role=role, employee_id=employee_id, is_active=True)
    db.add(user)
    db.commit()
    return user


def _create_directory(db) -> account_models.User:
    fe = _create_user(db, "Asha Rao", "fe@example.com", account_models.UserRole.FE, employee_id="FE-1")
    _create_user(db, "Coordinator", "coordinator@example.com", account_models.UserRole.COORDINATOR)
    _create_user(db, "Manager", "manager@example.com", account_models.UserRole.MANAGER)
    _create_user(db, "Head of Department", "hod@example.com", account_models.UserRole.HOD)
    _create_user(db, "Compliance Desk", "compliance@example.com", account_models.UserRole.COMPLIANCE)
    return fe


def _submit(db, user, row, period="Oct-25") -> kpi_models.KPIScore:
    kpi_score, _created = kpi_services.submit_kpi_score(db, user_id=user.id, period=period, row=row)
    db.commit()
    return kpi_score


def _process(db, kpi_score, provider):
    summary = kpi_services.process_kpi_triggers(db, kpi_score.id, email_provider=provider, now=NOW)
    db.commit()
    return summary


def _count(db, model) -> int:
    return db.query(model).count()


def test_outstanding_score_records_reward_only(db_session):
    user = _create_directory(db_session)
    kpi_score = _submit(db_session, user, HEALTHY_ROW)
    provider = FakeProvider()

    assert kpi_score.overall_score == 95
    assert kpi_score.rating == kpi_models.Rating.OUTSTANDING

    summary = _process(db_session, kpi_score, provider)

    assert summary.success is True
    assert summary.reward_eligible is True
    assert summary.triggered_actions == []
    assert summary.training_assignments == []
    assert summary.audits == []
    assert summary.email_logs == []
    assert summary.errors == []
    assert provider.sent == []

    events = db_session.query(lifecycle_models.LifecycleEvent).all()
    assert len(events) == 1
    assert events[0].event_type == lifecycle_models.LifecycleEventType.ACHIEVEMENT
    assert events[0].category == lifecycle_models.LifecycleCategory.POSITIVE

    assert kpi_score.automation_status == kpi_models.AutomationStatus.COMPLETED
    assert kpi_score.processed_at is not None
    assert user.last_kpi_score == 95
    assert user.performance_status == account_models.PerformanceStatus.ACTIVE


def test_low_score_fans_out_to_every_recipient(db_session):
    user = _create_directory(db_session)
    kpi_score = _submit(db_session, user, LOW_ROW)
    provider = FakeProvider()

    assert kpi_score.overall_score == 35

    summary = _process(db_session, kpi_score, provider)

    assert summary.success is True
    assert summary.errors == []
    assert summary.reward_eligible is False
    assert summary.triggered_actions == [
        "basic_training",
        "audit_call",
        "cross_check_3_months",
        "dummy_audit",
        "warning_letter",
    ]
    assert len(summary.training_assignments) == 1
    assert len(summary.audits) == 3
    assert len(summary.email_logs) == 25
    assert len(summary.lifecycle_events) == 5
    # Warning notification plus one per email delivered to the FE.
    assert len(summary.notifications) == 6

    per_recipient = Counter(log.recipient_email for log in db_session.query(notification_models.EmailLog).all())
    assert per_recipient == {
        "fe@example.com": 5,
        "coordinator@example.com": 5,
        "manager@example.com": 5,
        "hod@example.com": 5,
        "compliance@example.com": 5,
    }
    assert len(provider.sent) == 25

    training = db_session.query(training_models.TrainingAssignment).one()
    assert training.training_type == training_models.TrainingType.BASIC
    assert training.kpi_score_id == kpi_score.id

    audits = db_session.query(compliance_models.AuditSchedule).all()
    assert {audit.audit_type for audit in audits} == {
        compliance_models.AuditType.AUDIT_CALL,
        compliance_models.AuditType.CROSS_CHECK,
        compliance_models.AuditType.DUMMY_AUDIT,
    }
    assert {audit.priority for audit in audits} == {compliance_models.AuditPriority.HIGH}

    warning = (
        db_session.query(notification_models.Notification)
        .filter(notification_models.Notification.email_log_id.is_(None))
        .one()
    )
    assert warning.notification_type == notification_models.NotificationType.WARNING
    assert warning.priority == notification_models.NotificationPriority.URGENT

    assert kpi_score.triggered_actions == summary.triggered_actions
    assert user.performance_status == account_models.PerformanceStatus.AUDITED


def test_reprocessing_does_not_duplicate_side_effects(db_session):
    user = _create_directory(db_session)
    kpi_score = _submit(db_session, user, LOW_ROW)
    provider = FakeProvider()

    _process(db_session, kpi_score, provider)
    second = _process(db_session, kpi_score, provider)

    assert second.success is True
    assert second.training_assignments == []
    assert second.audits == []
    assert second.email_logs == []
    assert second.notifications == []
    assert set(second.skipped_duplicates) == {
        "basic_training",
        "audit_call",
        "cross_check_3_months",
        "dummy_audit",
        "warning_letter",
    }

    assert _count(db_session, training_models.TrainingAssignment) == 1
    assert _count(db_session, compliance_models.AuditSchedule) == 3
    assert _count(db_session, notification_models.EmailLog) == 25
    assert _count(db_session, notification_models.Notification) == 6
    assert _count(db_session, lifecycle_models.LifecycleEvent) == 5
    assert len(provider.sent) == 25


def test_reprocessing_after_cancellation_does_not_recreate_records(db_session):
    user = _create_directory(db_session)
    kpi_score = _submit(db_session, user, LOW_ROW)
    _process(db_session, kpi_score, FakeProvider())

    training = db_session.query(training_models.TrainingAssignment).one()
    audit_call = (
        db_session.query(compliance_models.AuditSchedule)
        .filter(compliance_models.AuditSchedule.audit_type == compliance_models.AuditType.AUDIT_CALL)
        .one()
    )
    training_services.cancel_assignment(db_session, assignment=training, reason="Completed offline")
    compliance_services.cancel_audit(db_session, audit=audit_call, reason="Covered by quarterly review")
    db_session.commit()

    second = _process(db_session, kpi_score, FakeProvider())

    assert second.training_assignments == []
    assert second.audits == []
    assert {"basic_training", "audit_call"} <= set(second.skipped_duplicates)
    assert _count(db_session, training_models.TrainingAssignment) == 1
    assert _count(db_session, compliance_models.AuditSchedule) == 3
    assert training.is_active is False
    assert audit_call.is_active is False

def test_reward_is_recorded_once(db_session):
    user = _create_directory(db_session)
    kpi_score = _submit(db_session, user, HEALTHY_ROW)

    _process(db_session, kpi_score, FakeProvider())
    second = _process(db_session, kpi_score, FakeProvider())

    assert second.skipped_duplicates == ["reward"]
    assert _count(db_session, lifecycle_models.LifecycleEvent) == 1


def test_failing_recipient_does_not_block_others_and_is_retried(db_session):
    user = _create_directory(db_session)
    kpi_score = _submit(db_session, user, LOW_ROW)

    summary = _process(db_session, kpi_score, RecipientFailingProvider("hod@example.com"))

    assert summary.success is True
    assert len(summary.email_logs) == 25
    assert len(summary.errors) == 5
    assert all("hod@example.com" in error for error in summary.errors)
    assert kpi_score.automation_status == kpi_models.AutomationStatus.COMPLETED
    assert "hod@example.com" in kpi_score.last_error

    statuses = Counter(log.status for log in db_session.query(notification_models.EmailLog).all())
    assert statuses == {
        notification_models.EmailStatus.SENT: 20,
        notification_models.EmailStatus.FAILED: 5,
    }

    retry = _process(db_session, kpi_score, FakeProvider())

    assert retry.errors == []
    assert len(retry.email_logs) == 5
    assert _count(db_session, notification_models.EmailLog) == 25
    hod_logs = (
        db_session.query(notification_models.EmailLog)
        .filter(notification_models.EmailLog.recipient_email == "hod@example.com")
        .all()
    )
    assert {log.status for log in hod_logs} == {notification_models.EmailStatus.SENT}
    assert {log.retry_count for log in hod_logs} == {1}
    assert kpi_score.last_error is None


def test_emails_are_logged_as_skipped_without_provider(db_session):
    user = _create_directory(db_session)
    kpi_score = _submit(db_session, user, LOW_ROW)

    summary = _process(db_session, kpi_score, None)

    assert summary.success is True
    statuses = {log.status for log in db_session.query(notification_models.EmailLog).all()}
    assert statuses == {notification_models.EmailStatus.SKIPPED_NO_PROVIDER}
    # Only the warning notification; nothing was delivered to the FE.
    assert len(summary.notifications) == 1


def test_failed_action_does_not_stop_remaining_actions(db_session, monkeypatch):
    user = _create_directory(db_session)
    kpi_score = _submit(db_session, user, LOW_ROW)
    original = compliance_services.schedule_audit

    def flaky_schedule_audit(db, **kwargs):
        if kwargs["audit_type"] == compliance_models.AuditType.DUMMY_AUDIT:
            raise RuntimeError("audit calendar unavailable")
        return original(db, **kwargs)

    monkeypatch.setattr(compliance_services, "schedule_audit", flaky_schedule_audit)

    summary = _process(db_session, kpi_score, FakeProvider())

    assert summary.success is True
    assert len(summary.audits) == 2
    assert len(summary.training_assignments) == 1
    assert any(error.startswith("dummy_audit:") for error in summary.errors)
    assert _count(db_session, compliance_models.AuditSchedule) == 2


def test_missing_score_reports_failure(db_session):
    summary = kpi_services.process_kpi_triggers(db_session, "no-such-score", email_provider=FakeProvider())

    assert summary.success is False
    assert summary.errors == ["KPI score not found: no-such-score"]


def test_missing_user_marks_score_failed(db_session):
    kpi_score = kpi_models.KPIScore(
        user_id="departed-user",
        period="Oct-25",
        overall_score=30,
        rating=kpi_models.Rating.UNSATISFACTORY,
        triggered_actions=[],
    )
    db_session.add(kpi_score)
    db_session.commit()

    summary = _process(db_session, kpi_score, FakeProvider())

    assert summary.success is False
    assert kpi_score.automation_status == kpi_models.AutomationStatus.FAILED
    assert kpi_score.last_error == "User not found: departed-user"
    assert _count(db_session, notification_models.EmailLog) == 0


def test_process_pending_handles_each_score_once(db_session):
    user = _create_directory(db_session)
    other = _create_user(db_session, "Ravi Kumar", "ravi@example.com", account_models.UserRole.FE, "FE-2")
    _submit(db_session, user, HEALTHY_ROW)
    _submit(db_session, other, HEALTHY_ROW)

    service = kpi_services.KPITriggerService(email_provider=FakeProvider(), now=NOW)
    first = kpi_services.process_pending_kpis(db_session, service=service)
    second = kpi_services.process_pending_kpis(db_session, service=service)

    assert first == {"processed": 2, "failed": 0, "errors": []}
    assert second == {"processed": 0, "failed": 0, "errors": []}


def test_service_scores_rows_with_its_own_rule_table():
    service = kpi_services.KPITriggerService(now=NOW)

    assert service.score(HEALTHY_ROW) == (95, kpi_models.Rating.OUTSTANDING)
    assert service.score({"TAT %": "96%"}) == (20, kpi_models.Rating.UNSATISFACTORY)


def test_deactivated_score_is_not_processed_or_reused(db_session):
    user = _create_directory(db_session)
    kpi_score = _submit(db_session, user, LOW_ROW)
    kpi_services.deactivate_kpi_score(db_session, kpi_score)
    db_session.commit()

    service = kpi_services.KPITriggerService(email_provider=FakeProvider(), now=NOW)
    assert kpi_services.process_pending_kpis(db_session, service=service)["processed"] == 0

    replacement = _submit(db_session, user, HEALTHY_ROW)
    assert replacement.id != kpi_score.id
    assert replacement.is_active is True


def test_invalid_stored_configuration_is_reported_not_raised(db_session):
    user = _create_directory(db_session)
    kpi_score = _submit(db_session, user, LOW_ROW)
    db_session.add(
        kpi_models.KPIConfiguration(
            version=1,
            payload={
                "metrics": [],
                "triggers": [
                    {
                        "id": "score_0",
                        "trigger_type": "score_based",
                        "threshold": 0,
                        "actions": ["Send Flowers"],
                    }
                ],
            },
            is_active=True,
        )
    )
    db_session.commit()

    summary = _process(db_session, kpi_score, FakeProvider())

    assert summary.success is False
    assert summary.kpi_score_id == kpi_score.id
    assert "Send Flowers" in summary.errors[0]
    assert _count(db_session, training_models.TrainingAssignment) == 0

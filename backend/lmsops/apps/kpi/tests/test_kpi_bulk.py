from __future__ import annotations

from datetime import datetime, timezone

from lmsops.apps.accounts import models as account_models
from lmsops.apps.accounts import services as account_services
from lmsops.apps.kpi import bulk
from lmsops.apps.kpi import models as kpi_models
from lmsops.apps.kpi import services as kpi_services
from lmsops.apps.kpi.defaults import default_rule_table
from lmsops.apps.kpi.scoring import KPIRow
from lmsops.apps.lifecycle import models as lifecycle_models
from lmsops.apps.notifications import providers as notification_providers

NOW = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)

SHEET_METRICS = {
    "TAT %": 96,
    "Major Negative %": 2,
    "Quality Concern % Age": 0,
    "Neighbor Check % Age": 92,
    "Negative %": 25,
    "Online % Age": 90,
    "Insuff %": 0.5,
}


class FakeProvider(notification_providers.EmailProvider):
    def send(self, **kwargs):
        return None


def _sheet_row(**cells):
    row = dict(SHEET_METRICS)
    row.update(cells)
    return row


def _create_fe(db) -> account_models.User:
    user = account_models.User(
        name="Asha Rao",
        email="asha@example.com",
        employee_id="1024",
        role=account_models.UserRole.FE,
        is_active=True,
    )
    db.add(user)
    db.commit()
    return user


def _service():
    return kpi_services.KPITriggerService(email_provider=FakeProvider(), now=NOW)


def test_preview_scores_rows_without_writing(db_session):
    user = _create_fe(db_session)
    rows = [
        _sheet_row(**{"FE": "Asha Rao", "Employee ID": 1024.0, "Month": "Oct-25"}),
        {"FE": "Unknown Person", "TAT %": 70},
    ]

    previews = list(bulk.preview_rows(db_session, rows, configuration=default_rule_table()))

    first, second = previews
    assert first.row_number == 1
    assert first.matched_user_id == user.id
    assert first.match_strategy == "employee_id"
    assert first.overall_score == 95
    assert first.rating == "Outstanding"
    assert first.reward_eligible is True
    assert first.score_triggers == []
    assert first.warnings == []

    assert second.matched_user_id is None
    assert "No matching user found" in second.warnings
    assert any(warning.startswith("Missing metrics") for warning in second.warnings)
    assert [action.tag for action in second.score_triggers][-1] == "warning_letter"

    assert db_session.query(kpi_models.KPIScore).count() == 0
    assert db_session.query(lifecycle_models.LifecycleEvent).count() == 0


def test_rows_are_processed_independently(db_session):
    user = _create_fe(db_session)
    rows = [
        _sheet_row(**{"FE": "Asha Rao", "Employee ID": "1024", "Month": "Oct-25"}),
        _sheet_row(**{"FE": "Ghost", "Employee ID": "9999", "Month": "Oct-25"}),
        _sheet_row(**{"FE": "Asha Rao", "Email": "ASHA@example.com"}),
    ]

    results = list(bulk.process_rows(db_session, rows, service=_service()))

    ok, unmatched, no_period = results
    assert isinstance(ok, bulk.RowOk)
    assert ok.user_id == user.id
    assert ok.created is True
    assert ok.overall_score == 95
    assert ok.summary.reward_eligible is True

    assert isinstance(unmatched, bulk.RowErr)
    assert unmatched.reason == "No matching user for Ghost"
    assert isinstance(no_period, bulk.RowErr)
    assert no_period.reason == "Missing period"

    assert bulk.summarize(results) == {
        "total": 3,
        "succeeded": 1,
        "failed": 2,
        "created": 1,
        "updated": 0,
        "errors": [
            {"row": 2, "reason": "No matching user for Ghost"},
            {"row": 3, "reason": "Missing period"},
        ],
    }

    stored = db_session.query(kpi_models.KPIScore).one()
    assert stored.automation_status == kpi_models.AutomationStatus.COMPLETED


def test_resubmitting_a_period_updates_the_existing_score(db_session):
    _create_fe(db_session)
    service = _service()

    first = list(bulk.process_rows(db_session, [_sheet_row(**{"Employee ID": "1024"})], period="Oct-25", service=service))
    second = list(
        bulk.process_rows(
            db_session,
            [_sheet_row(**{"Employee ID": "1024", "TAT %": 80})],
            period="Oct-25",
            service=service,
        )
    )

    assert first[0].created is True
    assert second[0].created is False
    assert second[0].kpi_score_id == first[0].kpi_score_id
    assert second[0].overall_score == 75
    assert bulk.summarize(second)["updated"] == 1

    stored = db_session.query(kpi_models.KPIScore).one()
    assert stored.tat == 80
    assert stored.period == "Oct-25"


def test_rows_can_be_stored_without_running_triggers(db_session):
    _create_fe(db_session)

    results = list(
        bulk.process_rows(
            db_session,
            [_sheet_row(**{"Email": "asha@example.com"})],
            period="Nov-25",
            run_triggers=False,
        )
    )

    assert results[0].summary is None
    assert results[0].match_strategy == "email"
    stored = db_session.query(kpi_models.KPIScore).one()
    assert stored.period == "Nov-25"
    assert stored.automation_status == kpi_models.AutomationStatus.PENDING


def test_explicit_period_wins_over_month_column():
    row = KPIRow(month="Oct-25")

    assert bulk.resolve_period(row, "Nov-25") == "Nov-25"
    assert bulk.resolve_period(row, "  ") == "Oct-25"
    assert bulk.resolve_period(KPIRow(), None) is None


def test_processing_failure_keeps_submitted_score_marked_failed(db_session, monkeypatch):
    _create_fe(db_session)

    def broken_outcome(db, **kwargs):
        raise RuntimeError("directory write rejected")

    monkeypatch.setattr(account_services, "record_kpi_outcome", broken_outcome)

    results = list(
        bulk.process_rows(
            db_session,
            [_sheet_row(**{"Employee ID": "1024"})],
            period="Oct-25",
            service=_service(),
        )
    )

    assert isinstance(results[0], bulk.RowErr)
    assert "directory write rejected" in results[0].reason

    stored = db_session.query(kpi_models.KPIScore).one()
    assert stored.automation_status == kpi_models.AutomationStatus.FAILED
    assert "directory write rejected" in stored.last_error
    assert stored.overall_score == 95
    assert db_session.query(lifecycle_models.LifecycleEvent).count() == 0

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from lmsops.apps.accounts import models as account_models
from lmsops.apps.lifecycle import models as lifecycle_models
from lmsops.apps.lifecycle import services as lifecycle_services


def _create_user(db) -> account_models.User:
    user = account_models.User(name="Timeline User", email="timeline@example.com")
    db.add(user)
    db.commit()
    return user


def _boom(*args, **kwargs):
    raise RuntimeError("timeline store unavailable")


def test_track_lifecycle_event_records_entry(db_session):
    user = _create_user(db_session)

    event = lifecycle_services.track_lifecycle_event(
        db_session,
        user_id=user.id,
        event_type=lifecycle_models.LifecycleEventType.ACHIEVEMENT,
        title="Outstanding Performance",
        description="Score 92",
        category=lifecycle_models.LifecycleCategory.POSITIVE,
        metadata={"rating": "Outstanding"},
    )
    db_session.commit()

    assert event is not None
    assert event.metadata_json == {"rating": "Outstanding"}
    assert lifecycle_services.list_user_timeline(db_session, user_id=user.id) == [event]


def test_track_lifecycle_event_best_effort_returns_none(db_session, monkeypatch):
    user = _create_user(db_session)
    monkeypatch.setattr(lifecycle_services, "create_lifecycle_event", _boom)

    event = lifecycle_services.track_lifecycle_event(
        db_session,
        user_id=user.id,
        event_type=lifecycle_models.LifecycleEventType.TRAINING,
        title="Training Assigned",
        description="Basic",
        category=lifecycle_models.LifecycleCategory.NEUTRAL,
    )

    assert event is None


def test_track_lifecycle_event_critical_raises(db_session, monkeypatch):
    user = _create_user(db_session)
    monkeypatch.setattr(lifecycle_services, "create_lifecycle_event", _boom)

    with pytest.raises(RuntimeError):
        lifecycle_services.track_lifecycle_event(
            db_session,
            user_id=user.id,
            event_type=lifecycle_models.LifecycleEventType.WARNING,
            title="Warning Letter Issued",
            description="Score 30",
            category=lifecycle_models.LifecycleCategory.NEGATIVE,
            critical=True,
        )


def test_timeline_filters_by_type_and_window(db_session):
    user = _create_user(db_session)
    early = datetime(2026, 1, 10, tzinfo=timezone.utc)
    late = datetime(2026, 6, 10, tzinfo=timezone.utc)
    for occurred_at, event_type in (
        (early, lifecycle_models.LifecycleEventType.TRAINING),
        (late, lifecycle_models.LifecycleEventType.TRAINING),
        (late, lifecycle_models.LifecycleEventType.AUDIT),
    ):
        db_session.add(
            lifecycle_models.LifecycleEvent(
                user_id=user.id,
                event_type=event_type,
                title="Entry",
                description="Entry",
                category=lifecycle_models.LifecycleCategory.NEUTRAL,
                occurred_at=occurred_at,
            )
        )
    db_session.commit()

    trainings = lifecycle_services.list_user_timeline(
        db_session,
        user_id=user.id,
        event_type=lifecycle_models.LifecycleEventType.TRAINING,
        start=datetime(2026, 3, 1, tzinfo=timezone.utc),
    )

    assert len(trainings) == 1
    assert trainings[0].event_type == lifecycle_models.LifecycleEventType.TRAINING

from __future__ import annotations

import pytest

from lmsops.apps.accounts import models as account_models
from lmsops.apps.notifications import models as notification_models
from lmsops.apps.notifications import recipients, templates


def _create_user(db, name, email, role) -> account_models.User:
    user = account_models.User(name=name, email=email, role=role, is_active=True)
    db.add(user)
    db.commit()
    return user


def test_fe_resolves_to_scored_user(db_session):
    fe = _create_user(db_session, "Field Exec", "fe@example.com", account_models.UserRole.FE)
    _create_user(db_session, "Another FE", "other-fe@example.com", account_models.UserRole.FE)

    resolution = recipients.resolve_recipients(db_session, ["FE"], user=fe)

    assert resolution.emails == ["fe@example.com"]
    assert resolution.recipients[0].user_id == fe.id


def test_recipient_group_takes_precedence_over_directory(db_session):
    fe = _create_user(db_session, "Field Exec", "fe@example.com", account_models.UserRole.FE)
    _create_user(db_session, "Directory HOD", "hod@example.com", account_models.UserRole.HOD)
    db_session.add(
        notification_models.RecipientGroup(
            name="HOD list",
            role=account_models.UserRole.HOD,
            members=[
                {"email": "hod-desk@example.com", "name": "HOD Desk"},
                {"email": "former-hod@example.com", "is_active": False},
            ],
        )
    )
    db_session.commit()

    resolution = recipients.resolve_recipients(db_session, ["HOD"], user=fe)

    assert resolution.emails == ["hod-desk@example.com"]


def test_duplicate_addresses_keep_first_role(db_session):
    fe = _create_user(db_session, "Field Exec", "Shared@Example.com", account_models.UserRole.FE)
    _create_user(db_session, "Manager", "shared@example.com", account_models.UserRole.MANAGER)
    _create_user(db_session, "Coordinator", "coord@example.com", account_models.UserRole.COORDINATOR)

    resolution = recipients.resolve_recipients(db_session, ["FE", "Manager", "Coordinator"], user=fe)

    assert resolution.emails == ["Shared@Example.com", "coord@example.com"]
    assert resolution.recipients[0].role == account_models.UserRole.FE.value


def test_unresolved_roles_are_reported(db_session):
    fe = _create_user(db_session, "Field Exec", "fe@example.com", account_models.UserRole.FE)

    resolution = recipients.resolve_recipients(db_session, ["Compliance Team", "Auditor", "FE"], user=fe)

    assert resolution.emails == ["fe@example.com"]
    assert len(resolution.errors) == 2


def test_render_builtin_template_blanks_missing_variables(db_session):
    rendered = templates.render_template(
        db_session,
        "training_assignment",
        {"user_name": "Asha", "action_label": "Basic Training Module", "period": "Oct-25"},
    )

    assert rendered.subject == "Training Required: Basic Training Module (Oct-25)"
    assert "Dear Asha" in rendered.body
    assert "{{" not in rendered.body
    assert rendered.template_id is None


def test_render_stored_template_counts_usage(db_session):
    template = notification_models.EmailTemplate(
        name="Custom warning",
        template_type="performance_warning",
        category="warning",
        subject="Notice for {{ user_name }}",
        content="Score {{overall_score}}",
    )
    db_session.add(template)
    db_session.commit()

    rendered = templates.render_template(
        db_session,
        "performance_warning",
        {"user_name": "Ravi", "overall_score": 31.5},
    )
    db_session.commit()

    assert rendered.subject == "Notice for Ravi"
    assert rendered.body == "Score 31.5"
    assert rendered.template_id == template.id
    assert template.usage_count == 1


def test_unknown_template_type_raises(db_session):
    with pytest.raises(templates.TemplateNotFoundError) as excinfo:
        templates.render_template(db_session, "kpi_mystery", {})

    assert excinfo.value.template_type == "kpi_mystery"

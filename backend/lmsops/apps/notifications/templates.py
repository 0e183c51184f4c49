from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import logging
import re
from typing import Mapping, Optional

from sqlalchemy.orm import Session

from . import models

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


class TemplateNotFoundError(Exception):
    def __init__(self, template_type: str):
        super().__init__(f"Email template not found for type: {template_type}")
        self.template_type = template_type


@dataclass(frozen=True)
class RenderedEmail:
    template_type: str
    subject: str
    body: str
    template_id: Optional[str] = None


DEFAULT_TEMPLATES = {
    "training_assignment": {
        "subject": "Training Required: {{action_label}} ({{period}})",
        "content": (
            "Dear {{user_name}},\n\n"
            "Based on your KPI score of {{overall_score}} ({{rating}}) for {{period}}, "
            "the following training has been assigned: {{action_label}}.\n"
            "Please complete it by {{due_date}}.\n\n"
            "Employee ID: {{employee_id}}\n"
        ),
    },
    "audit_schedule": {
        "subject": "Audit Notification: {{action_label}} for {{user_name}}",
        "content": (
            "An audit has been scheduled for {{user_name}} ({{employee_id}}).\n\n"
            "Audit: {{action_label}}\n"
            "Scheduled date: {{scheduled_date}}\n"
            "Priority: {{priority}}\n"
            "KPI score for {{period}}: {{overall_score}} ({{rating}})\n"
        ),
    },
    "performance_warning": {
        "subject": "Performance Warning Notice: {{user_name}} ({{period}})",
        "content": (
            "Dear {{user_name}},\n\n"
            "Your KPI score of {{overall_score}} for {{period}} is rated {{rating}}. "
            "This letter serves as a formal warning. Immediate improvement is required.\n\n"
            "Employee ID: {{employee_id}}\n"
        ),
    },
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def substitute(text: str, variables: Mapping[str, object]) -> str:
    def _replace(match: re.Match) -> str:
        value = variables.get(match.group(1))
        return "" if value is None else str(value)

    return PLACEHOLDER_RE.sub(_replace, text)


def missing_variables(text: str, variables: Mapping[str, object]) -> list[str]:
    return sorted({name for name in PLACEHOLDER_RE.findall(text) if variables.get(name) is None})


def get_active_template(db: Session, template_type: str) -> Optional[models.EmailTemplate]:
    return (
        db.query(models.EmailTemplate)
        .filter(
            models.EmailTemplate.template_type == template_type,
            models.EmailTemplate.is_active.is_(True),
        )
        .order_by(models.EmailTemplate.updated_at.desc())
        .first()
    )


def render_template(
    db: Session,
    template_type: str,
    variables: Mapping[str, object],
) -> RenderedEmail:
    """
    Render the active stored template for ``template_type``, falling back to
    the built-in text. Unknown placeholders render as empty strings.
    """
    template = get_active_template(db, template_type)
    if template is not None:
        subject, content = template.subject, template.content
        template.usage_count = (template.usage_count or 0) + 1
        template.last_used_at = _utcnow()
        db.add(template)
    elif template_type in DEFAULT_TEMPLATES:
        subject = DEFAULT_TEMPLATES[template_type]["subject"]
        content = DEFAULT_TEMPLATES[template_type]["content"]
    else:
        raise TemplateNotFoundError(template_type)

    missing = missing_variables(subject + content, variables)
    if missing:
        logger.warning(
            "Missing template variables",
            extra={"template_type": template_type, "missing": missing},
        )

    return RenderedEmail(
        template_type=template_type,
        subject=substitute(subject, variables),
        body=substitute(content, variables),
        template_id=template.id if template is not None else None,
    )

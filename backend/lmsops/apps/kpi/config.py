from __future__ import annotations

import logging
import os
from typing import List, Optional, Union

from pydantic import ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from lmsops.apps.notifications.recipients import ROLE_LABELS

from . import models
from .defaults import default_rule_table
from .rules import ACTION_CATALOG
from .schemas import KPIRuleTable

logger = logging.getLogger(__name__)

TRAINING_DUE_DAYS = int(os.getenv("KPI_TRAINING_DUE_DAYS", "7"))
AUDIT_DAYS_BY_PRIORITY = {
    "critical": int(os.getenv("KPI_AUDIT_DAYS_CRITICAL", "1")),
    "high": int(os.getenv("KPI_AUDIT_DAYS_HIGH", "3")),
    "medium": int(os.getenv("KPI_AUDIT_DAYS_MEDIUM", "7")),
    "low": int(os.getenv("KPI_AUDIT_DAYS_LOW", "14")),
}
PENDING_BATCH_LIMIT = int(os.getenv("KPI_PENDING_BATCH_LIMIT", "100"))


class ConfigurationError(Exception):
    def __init__(self, problems: List[str]):
        super().__init__("Invalid KPI configuration: " + "; ".join(problems))
        self.problems = problems


def _check_rule_table(table: KPIRuleTable) -> List[str]:
    problems: List[str] = []

    seen_metrics = set()
    for metric in table.metrics:
        if metric.key not in models.METRIC_KEYS:
            problems.append(f"Unknown metric: {metric.key}")
        if metric.key in seen_metrics:
            problems.append(f"Duplicate metric: {metric.key}")
        seen_metrics.add(metric.key)
        if not metric.thresholds:
            problems.append(f"Metric {metric.key} has no thresholds")
        for threshold in metric.thresholds:
            if threshold.score > metric.weightage:
                problems.append(
                    f"Metric {metric.key} threshold score {threshold.score} exceeds weightage {metric.weightage}"
                )

    seen_rules = set()
    for rule in table.triggers:
        if rule.id in seen_rules:
            problems.append(f"Duplicate trigger id: {rule.id}")
        seen_rules.add(rule.id)
        if not rule.actions:
            problems.append(f"Trigger {rule.id} has no actions")
        for label in rule.actions:
            if label not in ACTION_CATALOG:
                problems.append(f"Trigger {rule.id} has unknown action: {label}")
        for role in rule.email_recipients:
            if role not in ROLE_LABELS:
                problems.append(f"Trigger {rule.id} has unknown recipient role: {role}")
        for clause in rule.clauses:
            if clause.metric not in models.METRIC_KEYS:
                problems.append(f"Trigger {rule.id} references unknown metric: {clause.metric}")

    active_weight = sum(metric.weightage for metric in table.metrics if metric.is_active)
    if active_weight > 100:
        problems.append(f"Active metric weightage totals {active_weight}, above 100")
    return problems


def validate_rule_table(payload: Union[dict, KPIRuleTable]) -> KPIRuleTable:
    """Parse and check a rule table, raising ConfigurationError with every problem found."""
    try:
        table = payload if isinstance(payload, KPIRuleTable) else KPIRuleTable.model_validate(payload)
    except ValidationError as exc:
        raise ConfigurationError(
            [f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()]
        ) from exc
    problems = _check_rule_table(table)
    if problems:
        raise ConfigurationError(problems)
    return table


def get_active_configuration_row(db: Session) -> Optional[models.KPIConfiguration]:
    return (
        db.query(models.KPIConfiguration)
        .filter(models.KPIConfiguration.is_active.is_(True))
        .order_by(models.KPIConfiguration.version.desc())
        .first()
    )


def load_active_configuration(db: Session) -> KPIRuleTable:
    """
    The rule table the pipeline should run with: the active stored version,
    or the built-in defaults when none has been saved.
    """
    row = get_active_configuration_row(db)
    if row is None:
        return default_rule_table()
    table = validate_rule_table(row.payload)
    return table.model_copy(update={"version": row.version})


def save_configuration(
    db: Session,
    payload: Union[dict, KPIRuleTable],
    *,
    created_by_user_id: Optional[str] = None,
    notes: Optional[str] = None,
) -> models.KPIConfiguration:
    """Store a validated rule table as the next version and make it the active one."""
    table = validate_rule_table(payload)
    current_max = db.query(func.max(models.KPIConfiguration.version)).scalar() or 0

    db.query(models.KPIConfiguration).filter(models.KPIConfiguration.is_active.is_(True)).update(
        {models.KPIConfiguration.is_active: False}
    )
    row = models.KPIConfiguration(
        version=current_max + 1,
        payload=table.model_dump(exclude={"version"}),
        is_active=True,
        notes=notes,
        created_by_user_id=created_by_user_id,
    )
    db.add(row)
    db.flush()
    logger.info(
        "KPI configuration saved",
        extra={"version": row.version, "created_by_user_id": created_by_user_id},
    )
    return row


def list_configuration_versions(db: Session) -> List[models.KPIConfiguration]:
    return db.query(models.KPIConfiguration).order_by(models.KPIConfiguration.version.desc()).all()

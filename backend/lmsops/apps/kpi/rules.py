from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional

from lmsops.apps.compliance.models import AuditType
from lmsops.apps.training.models import TrainingType

from .defaults import default_rule_table
from .models import Rating
from .schemas import KPIRuleTable, TriggerRule
from .scoring import RowLike, as_row, compare, get_rating

ACTION_TRAINING = "training"
ACTION_AUDIT = "audit"
ACTION_WARNING = "warning"
ACTION_NONE = "none"

PRIORITY_RANK = {"low": 0, "medium": 1, "high": 2, "critical": 3}


@dataclass(frozen=True)
class ActionSpec:
    label: str
    tag: str
    kind: str
    detail: Optional[str] = None


ACTION_CATALOG: Dict[str, ActionSpec] = {
    spec.label: spec
    for spec in (
        ActionSpec("None", "reward", ACTION_NONE),
        ActionSpec("Audit Call", "audit_call", ACTION_AUDIT, AuditType.AUDIT_CALL.value),
        ActionSpec(
            "Cross-check last 3 months data",
            "cross_check_3_months",
            ACTION_AUDIT,
            AuditType.CROSS_CHECK.value,
        ),
        ActionSpec("Dummy Audit Case", "dummy_audit", ACTION_AUDIT, AuditType.DUMMY_AUDIT.value),
        ActionSpec("RCA of complaints", "rca_complaints", ACTION_AUDIT, AuditType.RCA_COMPLAINTS.value),
        ActionSpec(
            "Cross-verification of selected insuff cases by another FE",
            "cross_verify_insuff",
            ACTION_AUDIT,
            AuditType.CROSS_VERIFY_INSUFF.value,
        ),
        ActionSpec("Basic Training Module", "basic_training", ACTION_TRAINING, TrainingType.BASIC.value),
        ActionSpec(
            "Negativity Handling Training Module",
            "negativity_training",
            ACTION_TRAINING,
            TrainingType.NEGATIVITY_HANDLING.value,
        ),
        ActionSpec(
            "Do's & Don'ts Training Module",
            "dos_donts_training",
            ACTION_TRAINING,
            TrainingType.DOS_DONTS.value,
        ),
        ActionSpec(
            "Application Usage Training",
            "app_usage_training",
            ACTION_TRAINING,
            TrainingType.APP_USAGE.value,
        ),
        ActionSpec("Warning Letter", "warning_letter", ACTION_WARNING),
    )
}


@dataclass
class FiredAction:
    spec: ActionSpec
    recipients: List[str]
    priority: str
    rule_ids: List[str] = field(default_factory=list)

    @property
    def label(self) -> str:
        return self.spec.label

    @property
    def tag(self) -> str:
        return self.spec.tag

    @property
    def kind(self) -> str:
        return self.spec.kind


@dataclass
class TriggerEvaluation:
    score: float
    rating: Rating
    score_rule: Optional[TriggerRule]
    condition_rules: List[TriggerRule]
    actions: List[FiredAction]
    reward_eligible: bool

    @property
    def tags(self) -> List[str]:
        return [action.tag for action in self.actions]

    @property
    def recipient_roles(self) -> List[str]:
        roles: List[str] = []
        for action in self.actions:
            for role in action.recipients:
                if role not in roles:
                    roles.append(role)
        return roles


def _fire(rule: TriggerRule) -> List[FiredAction]:
    fired = []
    for label in rule.actions:
        spec = ACTION_CATALOG[label]
        if spec.kind == ACTION_NONE:
            continue
        fired.append(
            FiredAction(
                spec=spec,
                recipients=list(rule.email_recipients),
                priority=rule.priority,
                rule_ids=[rule.id],
            )
        )
    return fired


def match_score_rule(score: float, configuration: Optional[KPIRuleTable] = None) -> Optional[TriggerRule]:
    """The single score-based rule with the highest threshold the score clears."""
    configuration = configuration or default_rule_table()
    cleared = [
        rule
        for rule in configuration.active_triggers("score_based")
        if score is not None and score >= rule.threshold
    ]
    if not cleared:
        return None
    return max(cleared, key=lambda rule: rule.threshold)


def is_reward_rule(rule: Optional[TriggerRule]) -> bool:
    if rule is None:
        return False
    return any(ACTION_CATALOG[label].kind == ACTION_NONE for label in rule.actions)


def get_score_based_triggers(score: float, configuration: Optional[KPIRuleTable] = None) -> List[FiredAction]:
    rule = match_score_rule(score, configuration)
    if rule is None:
        return []
    return _fire(rule)


def rule_matches(rule: TriggerRule, row: RowLike) -> bool:
    row = as_row(row)
    return all(compare(row.metric(clause.metric), clause.operator, clause.value) for clause in rule.clauses)


def matching_condition_rules(row: RowLike, configuration: Optional[KPIRuleTable] = None) -> List[TriggerRule]:
    configuration = configuration or default_rule_table()
    row = as_row(row)
    return [rule for rule in configuration.active_triggers("condition_based") if rule_matches(rule, row)]


def get_condition_based_triggers(
    score: float,
    row: RowLike,
    configuration: Optional[KPIRuleTable] = None,
) -> List[FiredAction]:
    """
    Actions of every condition rule whose clauses all hold. A clause on a
    metric the row does not carry is false. ``score`` is accepted for
    symmetry with the score-based lookup; clauses only test metrics.
    """
    fired: List[FiredAction] = []
    for rule in matching_condition_rules(row, configuration):
        fired.extend(_fire(rule))
    return fired


def merge_actions(actions: List[FiredAction]) -> List[FiredAction]:
    """Collapse actions by tag in first-seen order, uniting recipients and keeping the highest priority."""
    merged: Dict[str, FiredAction] = {}
    for action in actions:
        existing = merged.get(action.tag)
        if existing is None:
            merged[action.tag] = FiredAction(
                spec=action.spec,
                recipients=list(action.recipients),
                priority=action.priority,
                rule_ids=list(action.rule_ids),
            )
            continue
        for role in action.recipients:
            if role not in existing.recipients:
                existing.recipients.append(role)
        for rule_id in action.rule_ids:
            if rule_id not in existing.rule_ids:
                existing.rule_ids.append(rule_id)
        if PRIORITY_RANK[action.priority] > PRIORITY_RANK[existing.priority]:
            existing.priority = action.priority
    return list(merged.values())


def evaluate_triggers(
    score: float,
    row: RowLike,
    configuration: Optional[KPIRuleTable] = None,
) -> TriggerEvaluation:
    configuration = configuration or default_rule_table()
    score_rule = match_score_rule(score, configuration)
    condition_rules = matching_condition_rules(row, configuration)

    fired: List[FiredAction] = []
    if score_rule is not None:
        fired.extend(_fire(score_rule))
    for rule in condition_rules:
        fired.extend(_fire(rule))

    return TriggerEvaluation(
        score=score,
        rating=get_rating(score),
        score_rule=score_rule,
        condition_rules=condition_rules,
        actions=merge_actions(fired),
        reward_eligible=is_reward_rule(score_rule),
    )

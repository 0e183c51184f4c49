from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Operator = Literal[">=", ">", "<=", "<", "=="]
TriggerType = Literal["score_based", "condition_based"]
Priority = Literal["low", "medium", "high", "critical"]


# ---------------------------------------------------------------------------
# RULE TABLE
# ---------------------------------------------------------------------------


class Threshold(BaseModel):
    model_config = ConfigDict(extra="forbid")

    operator: Operator
    value: float
    score: float = Field(ge=0)
    label: Optional[str] = None


class MetricConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    key: str
    label: str
    weightage: float = Field(ge=0, le=100)
    thresholds: List[Threshold]
    is_active: bool = True


class Clause(BaseModel):
    model_config = ConfigDict(extra="forbid")

    metric: str
    operator: Operator
    value: float


class TriggerRule(BaseModel):
    """
    One row of the trigger table.

    Score-based rules fire on ``overall_score >= threshold`` (only the
    highest one cleared applies); condition-based rules fire when every
    clause holds.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    trigger_type: TriggerType
    condition: str = ""
    threshold: Optional[float] = None
    clauses: List[Clause] = Field(default_factory=list)
    actions: List[str]
    email_recipients: List[str] = Field(default_factory=list)
    priority: Priority = "medium"
    is_active: bool = True

    @model_validator(mode="after")
    def _check_shape(self) -> "TriggerRule":
        if self.trigger_type == "score_based" and self.threshold is None:
            raise ValueError(f"score_based rule {self.id} requires a threshold")
        if self.trigger_type == "condition_based" and not self.clauses:
            raise ValueError(f"condition_based rule {self.id} requires at least one clause")
        return self


class KPIRuleTable(BaseModel):
    model_config = ConfigDict(extra="forbid")

    version: int = 0
    metrics: List[MetricConfig]
    triggers: List[TriggerRule]

    def metric(self, key: str) -> Optional[MetricConfig]:
        for metric in self.metrics:
            if metric.key == key:
                return metric
        return None

    def active_triggers(self, trigger_type: TriggerType) -> List[TriggerRule]:
        return [rule for rule in self.triggers if rule.is_active and rule.trigger_type == trigger_type]


# ---------------------------------------------------------------------------
# PREVIEW / PROCESSING RESULTS
# ---------------------------------------------------------------------------


class TriggeredActionRead(BaseModel):
    label: str
    tag: str
    kind: str
    recipients: List[str]
    priority: Priority


class RowPreview(BaseModel):
    row_number: int
    fe_name: Optional[str] = None
    employee_id: Optional[str] = None
    email: Optional[str] = None
    matched_user_id: Optional[str] = None
    match_strategy: Optional[str] = None
    overall_score: float
    rating: str
    metric_scores: dict
    score_triggers: List[TriggeredActionRead] = Field(default_factory=list)
    condition_triggers: List[TriggeredActionRead] = Field(default_factory=list)
    reward_eligible: bool = False
    warnings: List[str] = Field(default_factory=list)


class ProcessingSummary(BaseModel):
    success: bool
    kpi_score_id: Optional[str] = None
    training_assignments: List[str] = Field(default_factory=list)
    audits: List[str] = Field(default_factory=list)
    email_logs: List[str] = Field(default_factory=list)
    lifecycle_events: List[str] = Field(default_factory=list)
    notifications: List[str] = Field(default_factory=list)
    triggered_actions: List[str] = Field(default_factory=list)
    skipped_duplicates: List[str] = Field(default_factory=list)
    reward_eligible: bool = False
    processing_time: float = 0.0
    errors: List[str] = Field(default_factory=list)

from __future__ import annotations

from dataclasses import dataclass
import logging
import math
import operator as op
from typing import Any, Dict, Mapping, Optional, Union

from .defaults import default_rule_table
from .models import METRIC_KEYS, KPIScore, Rating
from .schemas import KPIRuleTable, MetricConfig

logger = logging.getLogger(__name__)

OPERATORS = {
    ">=": op.ge,
    ">": op.gt,
    "<=": op.le,
    "<": op.lt,
    "==": op.eq,
}

RATING_BANDS = (
    (85.0, Rating.OUTSTANDING),
    (70.0, Rating.EXCELLENT),
    (50.0, Rating.SATISFACTORY),
    (40.0, Rating.NEED_IMPROVEMENT),
)

# Column headers used by the monthly KPI sheet, plus the attribute names.
COLUMN_ALIASES = {
    "tat": ("tat %", "tat%", "tat"),
    "major_negativity": ("major negative %", "major negativity %", "major_negativity"),
    "quality": ("quality concern % age", "quality concern %", "quality"),
    "neighbor_check": ("neighbor check % age", "neighbor check %", "neighbor_check"),
    "negativity": ("negative %", "negativity %", "general negativity %", "negativity"),
    "app_usage": ("online % age", "online %", "app usage %", "app_usage"),
    "insufficiency": ("insuff %", "insufficiency %", "insufficiency"),
    "total_cases": ("total case done", "total cases", "total_cases"),
    "fe_name": ("fe", "fe name", "name", "fe_name"),
    "email": ("email", "email id", "e-mail"),
    "employee_id": ("employee id", "employee_id", "emp id"),
    "month": ("month", "period"),
}


@dataclass(frozen=True)
class KPIRow:
    tat: Optional[float] = None
    major_negativity: Optional[float] = None
    quality: Optional[float] = None
    neighbor_check: Optional[float] = None
    negativity: Optional[float] = None
    app_usage: Optional[float] = None
    insufficiency: Optional[float] = None
    total_cases: Optional[int] = None
    fe_name: Optional[str] = None
    email: Optional[str] = None
    employee_id: Optional[str] = None
    month: Optional[str] = None

    def metric(self, key: str) -> Optional[float]:
        if key not in METRIC_KEYS:
            return None
        return getattr(self, key)

    def metric_values(self) -> Dict[str, Optional[float]]:
        return {key: getattr(self, key) for key in METRIC_KEYS}

    @classmethod
    def from_kpi_score(cls, kpi_score: KPIScore) -> "KPIRow":
        return cls(total_cases=kpi_score.total_cases, month=kpi_score.period, **kpi_score.metric_values())


def parse_number(value: Any) -> Optional[float]:
    """Best-effort numeric parse of a sheet cell; anything unusable is None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    else:
        text = str(value).strip().replace(",", "").rstrip("%").strip()
        if not text or text in {"-", "NA", "N/A", "na", "n/a"}:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def _clean_text(value: Any) -> Optional[str]:
    if value is None or (isinstance(value, float) and math.isnan(value)):
        return None
    text = str(value).strip()
    return text or None


def row_from_mapping(mapping: Mapping[str, Any]) -> KPIRow:
    """Build a KPIRow from a sheet row keyed by column header (case-insensitive)."""
    normalised = {str(key).strip().lower(): value for key, value in mapping.items() if key is not None}

    def _lookup(field: str) -> Any:
        for alias in COLUMN_ALIASES[field]:
            if alias in normalised:
                return normalised[alias]
        return None

    values: Dict[str, Any] = {key: parse_number(_lookup(key)) for key in METRIC_KEYS}
    total_cases = parse_number(_lookup("total_cases"))
    values["total_cases"] = int(total_cases) if total_cases is not None else None
    values["fe_name"] = _clean_text(_lookup("fe_name"))
    values["email"] = _clean_text(_lookup("email"))
    employee_id = _lookup("employee_id")
    if isinstance(employee_id, float) and employee_id.is_integer():
        employee_id = int(employee_id)
    values["employee_id"] = _clean_text(employee_id)
    values["month"] = _clean_text(_lookup("month"))
    return KPIRow(**values)


def compare(value: Optional[float], operator: str, target: float) -> bool:
    if value is None:
        return False
    fn = OPERATORS.get(operator)
    if fn is None:
        return False
    return bool(fn(value, target))


def calculate_metric_contribution(value: Optional[float], metric: MetricConfig) -> float:
    """First threshold (in table order) the value satisfies decides the points."""
    value = parse_number(value)
    if value is None:
        return 0.0
    for threshold in metric.thresholds:
        if compare(value, threshold.operator, threshold.value):
            return float(threshold.score)
    return 0.0


RowLike = Union[KPIRow, KPIScore, Mapping[str, Any]]


def as_row(row: RowLike) -> KPIRow:
    if isinstance(row, KPIRow):
        return row
    if isinstance(row, KPIScore):
        return KPIRow.from_kpi_score(row)
    return row_from_mapping(row)


def score_breakdown(row: RowLike, configuration: Optional[KPIRuleTable] = None) -> Dict[str, float]:
    configuration = configuration or default_rule_table()
    row = as_row(row)
    breakdown: Dict[str, float] = {}
    for metric in configuration.metrics:
        if not metric.is_active:
            continue
        breakdown[metric.key] = calculate_metric_contribution(row.metric(metric.key), metric)
    return breakdown


def calculate_kpi_score(row: RowLike, configuration: Optional[KPIRuleTable] = None) -> float:
    """
    Weighted overall score in [0, 100], rounded to two decimals.

    Missing or unparsable metrics contribute 0; this never raises for bad
    input so one broken sheet row cannot stop a batch.
    """
    try:
        total = sum(score_breakdown(row, configuration).values())
    except (TypeError, ValueError, AttributeError):
        logger.warning("KPI row could not be scored; defaulting to 0", exc_info=True)
        return 0.0
    return round(min(max(total, 0.0), 100.0), 2)


def get_rating(score: Optional[float]) -> Rating:
    score = parse_number(score)
    if score is None:
        return Rating.UNSATISFACTORY
    for lower_bound, rating in RATING_BANDS:
        if score >= lower_bound:
            return rating
    return Rating.UNSATISFACTORY

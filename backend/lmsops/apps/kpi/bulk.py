"""
Row-by-row ingestion of a monthly KPI sheet.

Rows are handled strictly in order. ``process_rows`` yields one ``RowOk``
or ``RowErr`` per input row and commits or rolls back each row on its own,
so a bad row never affects its neighbours.
"""

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Union

from sqlalchemy.orm import Session

from lmsops.apps.accounts.matching import MatchCandidate, match_user

from .rules import FiredAction, evaluate_triggers, get_condition_based_triggers, get_score_based_triggers
from .schemas import KPIRuleTable, ProcessingSummary, RowPreview, TriggeredActionRead
from .scoring import KPIRow, as_row, calculate_kpi_score, get_rating, score_breakdown
from .services import KPITriggerService, submit_kpi_score

logger = logging.getLogger(__name__)

RowInput = Union[KPIRow, Mapping[str, Any]]


@dataclass(frozen=True)
class RowOk:
    row_number: int
    user_id: str
    kpi_score_id: str
    overall_score: float
    rating: str
    created: bool
    match_strategy: Optional[str] = None
    summary: Optional[ProcessingSummary] = None


@dataclass(frozen=True)
class RowErr:
    row_number: int
    reason: str
    fe_name: Optional[str] = None


RowResult = Union[RowOk, RowErr]


def resolve_period(row: KPIRow, period: Optional[str] = None) -> Optional[str]:
    """An explicit period wins over the row's own Month column."""
    cleaned = (period or "").strip()
    return cleaned or row.month


def candidate_for(row: KPIRow) -> MatchCandidate:
    return MatchCandidate(employee_id=row.employee_id, email=row.email, name=row.fe_name)


def _describe(actions: List[FiredAction]) -> List[TriggeredActionRead]:
    return [
        TriggeredActionRead(
            label=action.label,
            tag=action.tag,
            kind=action.kind,
            recipients=list(action.recipients),
            priority=action.priority,
        )
        for action in actions
    ]


def preview_row(
    db: Session,
    raw: RowInput,
    *,
    row_number: int,
    configuration: KPIRuleTable,
) -> RowPreview:
    row = as_row(raw)
    match = match_user(db, candidate_for(row))
    overall = calculate_kpi_score(row, configuration)
    evaluation = evaluate_triggers(overall, row, configuration)

    warnings = []
    if not match.matched:
        warnings.append("No matching user found")
    missing = [key for key, value in row.metric_values().items() if value is None]
    if missing:
        warnings.append("Missing metrics scored as 0: " + ", ".join(missing))

    return RowPreview(
        row_number=row_number,
        fe_name=row.fe_name,
        employee_id=row.employee_id,
        email=row.email,
        matched_user_id=match.user.id if match.matched else None,
        match_strategy=match.strategy,
        overall_score=overall,
        rating=get_rating(overall).value,
        metric_scores=score_breakdown(row, configuration),
        score_triggers=_describe(get_score_based_triggers(overall, configuration)),
        condition_triggers=_describe(get_condition_based_triggers(overall, row, configuration)),
        reward_eligible=evaluation.reward_eligible,
        warnings=warnings,
    )


def preview_rows(
    db: Session,
    rows: Iterable[RowInput],
    *,
    configuration: KPIRuleTable,
) -> Iterator[RowPreview]:
    """Dry run: score, match and evaluate each row without writing anything."""
    for row_number, raw in enumerate(rows, start=1):
        yield preview_row(db, raw, row_number=row_number, configuration=configuration)


def process_rows(
    db: Session,
    rows: Iterable[RowInput],
    *,
    period: Optional[str] = None,
    submitted_by_user_id: Optional[str] = None,
    service: Optional[KPITriggerService] = None,
    run_triggers: bool = True,
) -> Iterator[RowResult]:
    for row_number, raw in enumerate(rows, start=1):
        fe_name = None
        try:
            row = as_row(raw)
            fe_name = row.fe_name
            row_period = resolve_period(row, period)
            if not row_period:
                yield RowErr(row_number=row_number, reason="Missing period", fe_name=fe_name)
                continue

            match = match_user(db, candidate_for(row))
            if not match.matched:
                yield RowErr(
                    row_number=row_number,
                    reason=f"No matching user for {fe_name or row.employee_id or row.email or 'row'}",
                    fe_name=fe_name,
                )
                continue

            if service is None:
                service = KPITriggerService.from_db(db, actor_user_id=submitted_by_user_id)
            kpi_score, created = submit_kpi_score(
                db,
                user_id=match.user.id,
                period=row_period,
                row=row,
                submitted_by_user_id=submitted_by_user_id,
                configuration=service.configuration,
            )
            kpi_score_id = kpi_score.id
            user_id = match.user.id

            summary = service.process(db, kpi_score) if run_triggers else None
            if summary is not None and not summary.success:
                db.commit()
                yield RowErr(row_number=row_number, reason="; ".join(summary.errors), fe_name=fe_name)
                continue

            db.commit()
            yield RowOk(
                row_number=row_number,
                user_id=user_id,
                kpi_score_id=kpi_score_id,
                overall_score=kpi_score.overall_score,
                rating=kpi_score.rating.value,
                created=created,
                match_strategy=match.strategy,
                summary=summary,
            )
        except Exception as exc:
            db.rollback()
            logger.warning(
                "KPI row processing failed",
                extra={"row_number": row_number, "fe_name": fe_name},
                exc_info=True,
            )
            yield RowErr(row_number=row_number, reason=str(exc), fe_name=fe_name)


def summarize(results: Iterable[RowResult]) -> Dict[str, Any]:
    results = list(results)
    failures = [result for result in results if isinstance(result, RowErr)]
    successes = [result for result in results if isinstance(result, RowOk)]
    return {
        "total": len(results),
        "succeeded": len(successes),
        "failed": len(failures),
        "created": sum(1 for result in successes if result.created),
        "updated": sum(1 for result in successes if not result.created),
        "errors": [{"row": result.row_number, "reason": result.reason} for result in failures],
    }

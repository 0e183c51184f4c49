from __future__ import annotations

from datetime import datetime, timezone
import logging
import time
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from sqlalchemy.orm import Session

from lmsops.apps.accounts import services as account_services
from lmsops.apps.notifications import fanout
from lmsops.apps.notifications.providers import EmailProvider

from . import config, dispatcher, models
from .rules import (
    TriggerEvaluation,
    evaluate_triggers,
    get_condition_based_triggers,
    get_score_based_triggers,
)
from .defaults import default_rule_table
from .schemas import KPIRuleTable, ProcessingSummary
from .scoring import KPIRow, as_row, calculate_kpi_score, get_rating, score_breakdown

logger = logging.getLogger(__name__)

__all__ = [
    "KPITriggerService",
    "calculate_kpi_score",
    "deactivate_kpi_score",
    "get_condition_based_triggers",
    "get_rating",
    "get_score_based_triggers",
    "process_kpi_triggers",
    "process_pending_kpis",
    "rescore_kpi_score",
    "submit_kpi_score",
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class KPIScoreNotFoundError(Exception):
    def __init__(self, kpi_score_id: str):
        super().__init__(f"KPI score not found: {kpi_score_id}")
        self.kpi_score_id = kpi_score_id


def get_kpi_score(db: Session, kpi_score_id: str) -> Optional[models.KPIScore]:
    return db.query(models.KPIScore).filter(models.KPIScore.id == kpi_score_id).first()


def get_active_kpi_score(db: Session, *, user_id: str, period: str) -> Optional[models.KPIScore]:
    return (
        db.query(models.KPIScore)
        .filter(
            models.KPIScore.user_id == user_id,
            models.KPIScore.period == period,
            models.KPIScore.is_active.is_(True),
        )
        .order_by(models.KPIScore.created_at.desc())
        .first()
    )


def _apply_row(kpi_score: models.KPIScore, row: KPIRow, configuration: KPIRuleTable) -> None:
    for key, value in row.metric_values().items():
        setattr(kpi_score, key, value)
    if row.total_cases is not None:
        kpi_score.total_cases = row.total_cases
    kpi_score.metric_scores = score_breakdown(row, configuration)
    kpi_score.overall_score = calculate_kpi_score(row, configuration)
    kpi_score.rating = get_rating(kpi_score.overall_score)
    kpi_score.configuration_version = configuration.version
    kpi_score.automation_status = models.AutomationStatus.PENDING


class KPITriggerService:
    """
    Runs the trigger pipeline for persisted KPI scores.

    The rule table is fixed for the lifetime of the service; build it with
    ``from_db`` to pick up the active stored configuration. ``now`` pins the
    clock used for due dates.
    """

    def __init__(
        self,
        configuration: Optional[KPIRuleTable] = None,
        *,
        email_provider: Optional[EmailProvider] = None,
        now: Optional[datetime] = None,
        actor_user_id: Optional[str] = None,
    ):
        self.configuration = (
            config.validate_rule_table(configuration) if configuration is not None else default_rule_table()
        )
        self.email_provider = email_provider
        self.now = now
        self.actor_user_id = actor_user_id

    @classmethod
    def from_db(cls, db: Session, **kwargs) -> "KPITriggerService":
        return cls(config.load_active_configuration(db), **kwargs)

    def _clock(self) -> datetime:
        return self.now or _utcnow()

    def score(self, row: Union[KPIRow, Mapping[str, Any]]) -> Tuple[float, models.Rating]:
        overall = calculate_kpi_score(row, self.configuration)
        return overall, get_rating(overall)

    def evaluate(self, kpi_score: models.KPIScore) -> TriggerEvaluation:
        return evaluate_triggers(kpi_score.overall_score, kpi_score, self.configuration)

    def process(self, db: Session, kpi_score_or_id: Union[models.KPIScore, str]) -> ProcessingSummary:
        """
        Evaluate the rules for one KPI score and fan out the side effects.

        Never raises. ``success`` is False only when the score or its user
        cannot be loaded, or an unexpected error aborts the run; per-action
        and per-recipient failures are listed in ``errors``.
        """
        started = time.perf_counter()

        def _elapsed() -> float:
            return round((time.perf_counter() - started) * 1000, 2)

        if isinstance(kpi_score_or_id, models.KPIScore):
            kpi_score = kpi_score_or_id
        else:
            kpi_score = get_kpi_score(db, kpi_score_or_id)
        if kpi_score is None:
            logger.warning("KPI score not found for trigger processing", extra={"kpi_score_id": kpi_score_or_id})
            return ProcessingSummary(
                success=False,
                kpi_score_id=str(kpi_score_or_id),
                errors=[str(KPIScoreNotFoundError(str(kpi_score_or_id)))],
                processing_time=_elapsed(),
            )

        kpi_score_id = kpi_score.id
        user = account_services.get_user(db, kpi_score.user_id)
        if user is None:
            error = str(account_services.UserNotFoundError(kpi_score.user_id))
            kpi_score.automation_status = models.AutomationStatus.FAILED
            kpi_score.last_error = error
            db.add(kpi_score)
            db.flush()
            return ProcessingSummary(
                success=False,
                kpi_score_id=kpi_score_id,
                errors=[error],
                processing_time=_elapsed(),
            )

        try:
            now = self._clock()
            kpi_score.automation_status = models.AutomationStatus.PROCESSING
            db.add(kpi_score)
            db.flush()

            # A failure rolls back this savepoint only, never the caller's transaction.
            with db.begin_nested():
                evaluation = self.evaluate(kpi_score)
                dispatched = dispatcher.dispatch_actions(
                    db,
                    kpi_score=kpi_score,
                    user=user,
                    evaluation=evaluation,
                    now=now,
                    actor_user_id=self.actor_user_id,
                )
                emailed = fanout.send_action_emails(
                    db,
                    kpi_score=kpi_score,
                    user=user,
                    actions=evaluation.actions,
                    records=dispatched.records,
                    provider=self.email_provider,
                    sent_by_user_id=self.actor_user_id,
                )

                errors = dispatched.errors + emailed.errors
                kpi_score.automation_status = models.AutomationStatus.COMPLETED
                kpi_score.processed_at = now
                kpi_score.last_error = "; ".join(errors) or None
                db.add(kpi_score)
                db.flush()
        except Exception as exc:
            logger.exception("KPI trigger processing failed", extra={"kpi_score_id": kpi_score_id})
            self._mark_failed(db, kpi_score_id, str(exc))
            return ProcessingSummary(
                success=False,
                kpi_score_id=kpi_score_id,
                errors=[f"processing failed: {exc}"],
                processing_time=_elapsed(),
            )

        summary = ProcessingSummary(
            success=True,
            kpi_score_id=kpi_score_id,
            training_assignments=[row.id for row in dispatched.training_assignments],
            audits=[row.id for row in dispatched.audits],
            email_logs=[row.id for row in emailed.email_logs],
            lifecycle_events=[row.id for row in dispatched.lifecycle_events],
            notifications=[row.id for row in dispatched.notifications + emailed.notifications],
            triggered_actions=evaluation.tags,
            skipped_duplicates=dispatched.skipped,
            reward_eligible=evaluation.reward_eligible,
            processing_time=_elapsed(),
            errors=errors,
        )
        logger.info(
            "KPI triggers processed",
            extra={
                "kpi_score_id": kpi_score_id,
                "user_id": user.id,
                "actions": summary.triggered_actions,
                "email_logs": len(summary.email_logs),
                "errors": len(summary.errors),
                "processing_time_ms": summary.processing_time,
            },
        )
        return summary

    def _mark_failed(self, db: Session, kpi_score_id: str, error: str) -> None:
        try:
            kpi_score = get_kpi_score(db, kpi_score_id)
            if kpi_score is None:
                return
            kpi_score.automation_status = models.AutomationStatus.FAILED
            kpi_score.last_error = error[:2000]
            db.add(kpi_score)
            db.flush()
        except Exception:
            logger.warning("Could not mark KPI score as failed", extra={"kpi_score_id": kpi_score_id})
            db.rollback()


def process_kpi_triggers(
    db: Session,
    kpi_score_or_id: Union[models.KPIScore, str],
    *,
    configuration: Optional[KPIRuleTable] = None,
    email_provider: Optional[EmailProvider] = None,
    now: Optional[datetime] = None,
) -> ProcessingSummary:
    try:
        if configuration is not None:
            service = KPITriggerService(configuration, email_provider=email_provider, now=now)
        else:
            service = KPITriggerService.from_db(db, email_provider=email_provider, now=now)
    except config.ConfigurationError as exc:
        kpi_score_id = kpi_score_or_id.id if isinstance(kpi_score_or_id, models.KPIScore) else kpi_score_or_id
        logger.warning(
            "KPI trigger processing skipped: invalid rule table",
            extra={"kpi_score_id": kpi_score_id, "problems": exc.problems},
        )
        return ProcessingSummary(success=False, kpi_score_id=str(kpi_score_id), errors=[str(exc)])
    return service.process(db, kpi_score_or_id)


# ---------------------------------------------------------------------------
# SUBMISSION
# ---------------------------------------------------------------------------


def submit_kpi_score(
    db: Session,
    *,
    user_id: str,
    period: str,
    row: Union[KPIRow, Mapping[str, Any]],
    submitted_by_user_id: Optional[str] = None,
    comments: Optional[str] = None,
    configuration: Optional[KPIRuleTable] = None,
) -> Tuple[models.KPIScore, bool]:
    """
    Score a row for (user, period). An existing active score for the same
    period is re-scored in place; returns ``(kpi_score, created)``.
    """
    account_services.require_user(db, user_id)
    configuration = configuration or config.load_active_configuration(db)
    row = as_row(row)

    existing = get_active_kpi_score(db, user_id=user_id, period=period)
    if existing is not None:
        rescore_kpi_score(db, existing, row, configuration=configuration, comments=comments)
        return existing, False

    kpi_score = models.KPIScore(
        user_id=user_id,
        period=period,
        submitted_by_user_id=submitted_by_user_id,
        comments=comments,
        triggered_actions=[],
    )
    _apply_row(kpi_score, row, configuration)
    db.add(kpi_score)
    db.flush()
    logger.info(
        "KPI score submitted",
        extra={
            "kpi_score_id": kpi_score.id,
            "user_id": user_id,
            "period": period,
            "overall_score": kpi_score.overall_score,
        },
    )
    return kpi_score, True


def rescore_kpi_score(
    db: Session,
    kpi_score: models.KPIScore,
    row: Union[KPIRow, Mapping[str, Any]],
    *,
    configuration: Optional[KPIRuleTable] = None,
    comments: Optional[str] = None,
) -> models.KPIScore:
    configuration = configuration or config.load_active_configuration(db)
    previous = kpi_score.overall_score
    _apply_row(kpi_score, as_row(row), configuration)
    if comments:
        kpi_score.comments = comments
    db.add(kpi_score)
    db.flush()
    logger.info(
        "KPI score re-scored",
        extra={"kpi_score_id": kpi_score.id, "from_score": previous, "to_score": kpi_score.overall_score},
    )
    return kpi_score


def deactivate_kpi_score(db: Session, kpi_score: models.KPIScore) -> models.KPIScore:
    kpi_score.is_active = False
    db.add(kpi_score)
    db.flush()
    return kpi_score


def process_pending_kpis(
    db: Session,
    *,
    limit: int = config.PENDING_BATCH_LIMIT,
    service: Optional[KPITriggerService] = None,
) -> Dict[str, Any]:
    """Process active PENDING scores, oldest first, committing after each one."""
    pending = (
        db.query(models.KPIScore)
        .filter(
            models.KPIScore.automation_status == models.AutomationStatus.PENDING,
            models.KPIScore.is_active.is_(True),
        )
        .order_by(models.KPIScore.created_at.asc())
        .limit(limit)
        .all()
    )
    if not pending:
        return {"processed": 0, "failed": 0, "errors": []}

    service = service or KPITriggerService.from_db(db)
    processed = 0
    failed = 0
    errors = []
    for kpi_score_id in [row.id for row in pending]:
        summary = service.process(db, kpi_score_id)
        db.commit()
        if summary.success:
            processed += 1
        else:
            failed += 1
        errors.extend(f"{kpi_score_id}: {error}" for error in summary.errors)
    return {"processed": processed, "failed": failed, "errors": errors}

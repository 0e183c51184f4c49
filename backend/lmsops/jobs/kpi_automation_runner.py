"""KPI automation runner.

Processes pending KPI scores and flags overdue trainings. Safe to run from
cron: already-dispatched actions and delivered emails are not repeated.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging
from typing import Optional

from sqlalchemy.orm import Session

from lmsops.database import WriteSessionLocal
from lmsops.apps.kpi import services as kpi_services
from lmsops.apps.training import services as training_services

logger = logging.getLogger(__name__)


def run_once(db: Session, *, now: Optional[datetime] = None, limit: Optional[int] = None) -> dict:
    now = now or datetime.now(timezone.utc)
    service = kpi_services.KPITriggerService.from_db(db, now=now)
    kwargs = {"service": service}
    if limit is not None:
        kwargs["limit"] = limit
    kpi_summary = kpi_services.process_pending_kpis(db, **kwargs)
    overdue = training_services.mark_overdue_assignments(db, now=now)
    db.commit()
    summary = {**kpi_summary, "overdue_trainings": overdue}
    logger.info("KPI automation run completed", extra=summary)
    return summary


def run() -> dict:
    db = WriteSessionLocal()
    try:
        return run_once(db)
    finally:
        db.close()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    result = run()
    print("KPI automation runner completed:", result)

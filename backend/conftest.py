from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["DATABASE_WRITE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.pop("NOTIFICATIONS_EMAIL_PROVIDER", None)
os.environ.pop("EMAIL_PROVIDER", None)

from lmsops.database import Base  # noqa: E402
from lmsops.apps.accounts import models as account_models  # noqa: E402
from lmsops.apps.compliance import models as compliance_models  # noqa: E402
from lmsops.apps.kpi import models as kpi_models  # noqa: E402
from lmsops.apps.lifecycle import models as lifecycle_models  # noqa: E402
from lmsops.apps.notifications import models as notification_models  # noqa: E402
from lmsops.apps.training import models as training_models  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine("sqlite+pysqlite:///:memory:")
    Base.metadata.create_all(
        bind=engine,
        tables=[
            account_models.User.__table__,
            kpi_models.KPIScore.__table__,
            kpi_models.KPIConfiguration.__table__,
            training_models.TrainingAssignment.__table__,
            compliance_models.AuditSchedule.__table__,
            notification_models.EmailLog.__table__,
            notification_models.EmailTemplate.__table__,
            notification_models.RecipientGroup.__table__,
            notification_models.Notification.__table__,
            lifecycle_models.LifecycleEvent.__table__,
        ],
    )
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()

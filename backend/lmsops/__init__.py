# backend/lmsops/__init__.py
"""
Import ORM models from each app so that:

- Base.metadata.create_all() sees every table (foreign keys cross apps).
- The package exposes a clear surface.

The actual model classes are kept in lmsops/apps/*/models.py.
"""

from .apps.accounts import models as accounts_models            # users + roles
from .apps.kpi import models as kpi_models                      # KPI scores + rule table versions
from .apps.training import models as training_models            # remedial training assignments
from .apps.compliance import models as compliance_models        # audit schedules
from .apps.notifications import models as notifications_models  # email logs, templates, in-app notices
from .apps.lifecycle import models as lifecycle_models          # user timeline

__all__ = [
    "accounts_models",
    "kpi_models",
    "training_models",
    "compliance_models",
    "notifications_models",
    "lifecycle_models",
]

# backend/lmsops/apps/accounts/models.py

from __future__ import annotations

import enum
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum as SAEnum,
    Float,
    Index,
    String,
)

from lmsops.database import Base
from lmsops.utils.identifiers import generate_uuid7


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# ENUMS
# ---------------------------------------------------------------------------


class UserRole(str, enum.Enum):
    """Organisational roles used for KPI email routing.

    FE is the field executive being scored; every other role is a
    recipient of escalation emails.
    """

    FE = "FE"
    COORDINATOR = "COORDINATOR"
    MANAGER = "MANAGER"
    HOD = "HOD"
    COMPLIANCE = "COMPLIANCE"
    ADMIN = "ADMIN"


class PerformanceStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    WARNING = "WARNING"
    AUDITED = "AUDITED"


# ---------------------------------------------------------------------------
# USERS
# ---------------------------------------------------------------------------


class User(Base):
    """
    Directory entry for a person known to the KPI pipeline.

    Field executives own KPI scores; coordinators, managers, HODs and the
    compliance team receive the emails those scores trigger.
    """

    __tablename__ = "users"
    __table_args__ = (
        Index("ix_users_role_active", "role", "is_active"),
    )

    id = Column(String(36), primary_key=True, default=generate_uuid7, index=True)

    name = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=True, index=True)
    employee_id = Column(String(64), nullable=True, unique=True, index=True)
    department = Column(String(128), nullable=True)

    role = Column(
        SAEnum(UserRole, name="user_role_enum", native_enum=False),
        nullable=False,
        default=UserRole.FE,
        index=True,
    )
    is_active = Column(Boolean, nullable=False, default=True, index=True)

    # Denormalised from the latest processed KPI score.
    last_kpi_score = Column(Float, nullable=True)
    performance_status = Column(
        SAEnum(PerformanceStatus, name="performance_status_enum", native_enum=False),
        nullable=False,
        default=PerformanceStatus.ACTIVE,
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    def __repr__(self) -> str:
        return f"<User id={self.id} name={self.name!r} role={self.role}>"

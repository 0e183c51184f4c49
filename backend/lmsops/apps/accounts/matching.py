"""
Ranked user matching for tabular KPI rows.

Rows coming out of spreadsheets identify the field executive by some mix of
employee id, email and display name. Strategies are tried in priority order
and the first strategy that finds an active user wins; within one strategy
the earliest-created user wins.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Query, Session

from . import models


@dataclass(frozen=True)
class MatchCandidate:
    employee_id: Optional[str] = None
    email: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True)
class MatchResult:
    user: Optional[models.User]
    strategy: Optional[str]

    @property
    def matched(self) -> bool:
        return self.user is not None


Strategy = Callable[[Session, MatchCandidate], Optional[models.User]]


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    cleaned = str(value).strip()
    return cleaned or None


def _first(query: Query) -> Optional[models.User]:
    return (
        query.filter(models.User.is_active.is_(True))
        .order_by(models.User.created_at.asc(), models.User.id.asc())
        .first()
    )


def match_by_employee_id(db: Session, candidate: MatchCandidate) -> Optional[models.User]:
    employee_id = _clean(candidate.employee_id)
    if not employee_id:
        return None
    return _first(db.query(models.User).filter(models.User.employee_id == employee_id))


def match_by_email(db: Session, candidate: MatchCandidate) -> Optional[models.User]:
    email = _clean(candidate.email)
    if not email:
        return None
    return _first(db.query(models.User).filter(func.lower(models.User.email) == email.lower()))


def match_by_name(db: Session, candidate: MatchCandidate) -> Optional[models.User]:
    name = _clean(candidate.name)
    if not name:
        return None
    return _first(db.query(models.User).filter(models.User.name.icontains(name, autoescape=True)))


DEFAULT_STRATEGIES: Tuple[Tuple[str, Strategy], ...] = (
    ("employee_id", match_by_employee_id),
    ("email", match_by_email),
    ("name", match_by_name),
)


def match_user(
    db: Session,
    candidate: MatchCandidate,
    *,
    strategies: Sequence[Tuple[str, Strategy]] = DEFAULT_STRATEGIES,
) -> MatchResult:
    for strategy_name, strategy in strategies:
        user = strategy(db, candidate)
        if user is not None:
            return MatchResult(user=user, strategy=strategy_name)
    return MatchResult(user=None, strategy=None)

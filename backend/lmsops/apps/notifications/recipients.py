from __future__ import annotations

from dataclasses import dataclass, field
import logging
from typing import Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from lmsops.apps.accounts import models as account_models
from lmsops.apps.accounts import services as account_services

from . import models

logger = logging.getLogger(__name__)

# Recipient labels used in trigger rules, mapped to directory roles.
ROLE_LABELS: Dict[str, account_models.UserRole] = {
    "FE": account_models.UserRole.FE,
    "Coordinator": account_models.UserRole.COORDINATOR,
    "Manager": account_models.UserRole.MANAGER,
    "HOD": account_models.UserRole.HOD,
    "Compliance Team": account_models.UserRole.COMPLIANCE,
}


@dataclass(frozen=True)
class Recipient:
    email: str
    role: str
    name: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class RecipientResolution:
    recipients: List[Recipient] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def emails(self) -> List[str]:
        return [recipient.email for recipient in self.recipients]


def _group_members(db: Session, role: account_models.UserRole) -> List[Recipient]:
    groups = (
        db.query(models.RecipientGroup)
        .filter(
            models.RecipientGroup.role == role,
            models.RecipientGroup.is_active.is_(True),
        )
        .order_by(models.RecipientGroup.created_at.asc())
        .all()
    )
    members: List[Recipient] = []
    for group in groups:
        for member in group.members or []:
            email = (member.get("email") or "").strip()
            if not email or not member.get("is_active", True):
                continue
            members.append(Recipient(email=email, role=role.value, name=member.get("name")))
    return members


def _directory_members(db: Session, role: account_models.UserRole) -> List[Recipient]:
    members = []
    for user in account_services.list_active_users_by_role(db, role):
        email = account_services.clean_email(user)
        if email:
            members.append(Recipient(email=email, role=role.value, name=user.name, user_id=user.id))
    return members


def resolve_role(
    db: Session,
    label: str,
    *,
    user: Optional[account_models.User] = None,
) -> List[Recipient]:
    """
    Concrete addresses for one recipient label. ``FE`` is the scored user;
    other roles come from recipient groups, falling back to active users
    holding the role.
    """
    role = ROLE_LABELS[label]
    if role == account_models.UserRole.FE:
        email = account_services.clean_email(user)
        if not email:
            return []
        return [Recipient(email=email, role=role.value, name=user.name, user_id=user.id)]
    return _group_members(db, role) or _directory_members(db, role)


def resolve_recipients(
    db: Session,
    labels: Iterable[str],
    *,
    user: Optional[account_models.User] = None,
) -> RecipientResolution:
    """
    Resolve recipient labels in order, de-duplicating by lower-cased address
    (the first label an address appears under wins). Labels that resolve to
    nobody are reported in ``errors`` and skipped.
    """
    resolution = RecipientResolution()
    seen = set()
    for label in labels:
        if label not in ROLE_LABELS:
            resolution.errors.append(f"Unknown recipient role: {label}")
            continue
        found = resolve_role(db, label, user=user)
        if not found:
            resolution.errors.append(f"No recipients resolved for role {label}")
            logger.warning(
                "No recipients resolved for role",
                extra={"role": label, "user_id": user.id if user else None},
            )
            continue
        for recipient in found:
            key = recipient.email.lower()
            if key in seen:
                continue
            seen.add(key)
            resolution.recipients.append(recipient)
    return resolution

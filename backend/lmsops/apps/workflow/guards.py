from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.orm import Session

GuardResult = List[Dict[str, str]]


def _get_value(obj: Any, key: str) -> Any:
    if obj is None:
        return None
    if isinstance(obj, dict):
        return obj.get(key)
    return getattr(obj, key, None)


def guard_training_completion(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    completion_date = _get_value(after_obj, "completion_date")
    score = _get_value(after_obj, "score")

    missing = []
    if not completion_date:
        missing.append({"field": "completion_date", "reason": "completion date required"})
    if score is not None and not 0 <= score <= 100:
        missing.append({"field": "score", "reason": "score must be between 0 and 100"})
    return missing


def guard_audit_completion(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    findings = _get_value(after_obj, "findings")
    compliance_status = _get_value(after_obj, "compliance_status")
    completed_date = _get_value(after_obj, "completed_date")

    missing = []
    if not findings:
        missing.append({"field": "findings", "reason": "audit findings required"})
    if not compliance_status or str(getattr(compliance_status, "value", compliance_status)) == "not_assessed":
        missing.append({"field": "compliance_status", "reason": "compliance assessment required"})
    if not completed_date:
        missing.append({"field": "completed_date", "reason": "completion date required"})
    return missing


def guard_cancellation_reason(
    db: Session,
    *,
    before_obj: Any,
    after_obj: Any,
    from_state: str,
    to_state: str,
) -> GuardResult:
    if not _get_value(after_obj, "reason"):
        return [{"field": "reason", "reason": "cancellation reason required"}]
    return []

from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Dict, List

from sqlalchemy.orm import Session

from .registry import WORKFLOWS

logger = logging.getLogger(__name__)


@dataclass
class TransitionError(Exception):
    code: str
    detail: List[Dict[str, str]]


def apply_transition(
    db: Session,
    *,
    entity_type: str,
    entity_id: str,
    from_state: str,
    to_state: str,
    before_obj: Any,
    after_obj: Any,
) -> None:
    """
    Validate a status change against the registered workflow.

    Raises TransitionError with code ``invalid_transition`` when the edge is
    not registered and ``missing_requirements`` when a guard fails. The
    caller applies the new state after this returns.
    """
    workflow = WORKFLOWS.get(entity_type)
    if not workflow:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "entity_type", "reason": f"No workflow registered for {entity_type}"}],
        )

    transitions = workflow.get("transitions", {})
    allowed = transitions.get(from_state, {})
    guards = allowed.get(to_state)

    if guards is None:
        raise TransitionError(
            code="invalid_transition",
            detail=[{"field": "status", "reason": f"Cannot transition from {from_state} to {to_state}"}],
        )

    failures: List[Dict[str, str]] = []
    for guard in guards:
        failures.extend(
            guard(
                db,
                before_obj=before_obj,
                after_obj=after_obj,
                from_state=from_state,
                to_state=to_state,
            )
        )

    if failures:
        raise TransitionError(code="missing_requirements", detail=failures)

    logger.info(
        "Workflow transition accepted",
        extra={
            "entity_type": entity_type,
            "entity_id": entity_id,
            "from_state": from_state,
            "to_state": to_state,
        },
    )

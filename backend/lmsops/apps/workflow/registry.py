from __future__ import annotations

from .guards import (
    guard_audit_completion,
    guard_cancellation_reason,
    guard_training_completion,
)

WORKFLOWS = {
    "training_assignment": {
        "transitions": {
            "assigned": {
                "in_progress": [],
                "completed": [guard_training_completion],
                "overdue": [],
                "cancelled": [guard_cancellation_reason],
            },
            "in_progress": {
                "completed": [guard_training_completion],
                "overdue": [],
                "cancelled": [guard_cancellation_reason],
            },
            "overdue": {
                "in_progress": [],
                "completed": [guard_training_completion],
                "cancelled": [guard_cancellation_reason],
            },
            "completed": {},
            "cancelled": {},
        }
    },
    "audit_schedule": {
        "transitions": {
            "scheduled": {
                "in_progress": [],
                "completed": [guard_audit_completion],
                "cancelled": [guard_cancellation_reason],
            },
            "in_progress": {
                "completed": [guard_audit_completion],
                "cancelled": [guard_cancellation_reason],
            },
            "completed": {},
            "cancelled": {},
        }
    },
}

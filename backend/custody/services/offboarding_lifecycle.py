# Overview: Offboarding task state machines; legal transitions per task type.

"""
Offboarding Task Lifecycle

STATE MACHINES:
    item_collection:
        pending -> asset_collected -> return_form_filled -> completed

    access_revocation:
        pending -> ticket_raised -> in_progress -> revoke_granted -> completed

RULES:
1. One step at a time; skipping states is rejected (pending -> completed).
2. No backwards movement.
3. completed is terminal.
4. Setting the current status again is a no-op, not an error.

Side effects of entering a state (item return on asset_collected, access
revocation on revoke_granted) belong to the custody workflow, not here.
"""

from __future__ import annotations

from ..errors import InvalidStateError
from ..models.offboarding import TASK_TYPE_ACCESS_REVOCATION, TASK_TYPE_ITEM_COLLECTION

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"

# item_collection
STATUS_ASSET_COLLECTED = "asset_collected"
STATUS_RETURN_FORM_FILLED = "return_form_filled"

# access_revocation
STATUS_TICKET_RAISED = "ticket_raised"
STATUS_IN_PROGRESS = "in_progress"
STATUS_REVOKE_GRANTED = "revoke_granted"

STATE_ORDER = {
    TASK_TYPE_ITEM_COLLECTION: (
        STATUS_PENDING,
        STATUS_ASSET_COLLECTED,
        STATUS_RETURN_FORM_FILLED,
        STATUS_COMPLETED,
    ),
    TASK_TYPE_ACCESS_REVOCATION: (
        STATUS_PENDING,
        STATUS_TICKET_RAISED,
        STATUS_IN_PROGRESS,
        STATUS_REVOKE_GRANTED,
        STATUS_COMPLETED,
    ),
}

TASK_TYPES = frozenset(STATE_ORDER)


def _transitions(order: tuple[str, ...]) -> frozenset[tuple[str, str]]:
    return frozenset(zip(order, order[1:]))


VALID_TRANSITIONS = {task_type: _transitions(order) for task_type, order in STATE_ORDER.items()}


def validate_task_type(task_type: str) -> None:
    if task_type not in TASK_TYPES:
        raise InvalidStateError(
            f"Invalid task type '{task_type}'. Must be one of: {', '.join(sorted(TASK_TYPES))}",
            task_type=task_type,
        )


def validate_status(task_type: str, status: str) -> None:
    """
    Raise InvalidStateError unless status belongs to the task type's state machine.
    """
    validate_task_type(task_type)
    allowed = STATE_ORDER[task_type]
    if status not in allowed:
        raise InvalidStateError(
            f"Invalid status '{status}' for {task_type} task. Must be one of: {', '.join(allowed)}",
            task_type=task_type,
            status=status,
        )


def can_transition(task_type: str, from_status: str, to_status: str) -> bool:
    validate_status(task_type, from_status)
    validate_status(task_type, to_status)

    if from_status == to_status:
        return True

    return (from_status, to_status) in VALID_TRANSITIONS[task_type]


def next_status(task_type: str, status: str) -> str | None:
    validate_status(task_type, status)
    order = STATE_ORDER[task_type]
    index = order.index(status)
    return order[index + 1] if index + 1 < len(order) else None


def assert_transition(task_type: str, from_status: str, to_status: str) -> None:
    if not can_transition(task_type, from_status, to_status):
        expected = next_status(task_type, from_status)
        raise InvalidStateError(
            f"Cannot move {task_type} task from '{from_status}' to '{to_status}'"
            + (f"; next status is '{expected}'" if expected else "; task is completed"),
            task_type=task_type,
            from_status=from_status,
            to_status=to_status,
        )

"""State machine validation for task status transitions.

Enforces the task workflow before any status write reaches storage:
- todo → in_progress → in_review → done
- Work can be sent back one step (in_progress → todo, in_review → in_progress)
- Any open task can be cancelled
- done and cancelled are terminal: no further status change, not even to themselves
"""
import logging

from models import TaskStatus

logger = logging.getLogger("project-hub.task-transitions")


class InvalidTransitionError(Exception):
    """Raised when a task status change is not in the transition table."""

    def __init__(self, current_status: TaskStatus, requested_status: TaskStatus):
        super().__init__(
            f"Invalid status transition: {current_status.value} → {requested_status.value}"
        )
        self.current_status = current_status
        self.requested_status = requested_status

    def to_body(self) -> dict:
        return {
            "error": str(self),
            "invalid_transition": True,
            "from": self.current_status.value,
            "to": self.requested_status.value,
        }


# Maps current status → statuses it may move to
TASK_STATUS_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.TODO: frozenset({
        TaskStatus.IN_PROGRESS,   # Forward: work started
        TaskStatus.CANCELLED,
    }),
    TaskStatus.IN_PROGRESS: frozenset({
        TaskStatus.TODO,          # Back: parked
        TaskStatus.IN_REVIEW,     # Forward: ready for review
        TaskStatus.CANCELLED,
    }),
    TaskStatus.IN_REVIEW: frozenset({
        TaskStatus.IN_PROGRESS,   # Back: changes requested
        TaskStatus.DONE,          # Forward: accepted
        TaskStatus.CANCELLED,
    }),
    TaskStatus.DONE: frozenset(),
    TaskStatus.CANCELLED: frozenset(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in TASK_STATUS_TRANSITIONS.items() if not targets)


def is_transition_allowed(current_status: TaskStatus, new_status: TaskStatus) -> bool:
    """True only for pairs listed in the transition table."""
    return new_status in TASK_STATUS_TRANSITIONS.get(current_status, frozenset())


def is_status_change(current_status: TaskStatus, new_status: TaskStatus) -> bool:
    """Whether a requested status must go through validation.

    Re-sending the current status of an open task is a no-op; on a terminal
    task any requested status counts as a change and is rejected.
    """
    return current_status != new_status or current_status in TERMINAL_STATUSES


def validate_transition(current_status: TaskStatus, new_status: TaskStatus) -> None:
    """
    Validate a requested status change.

    Raises:
        InvalidTransitionError: If the transition is not allowed
    """
    if not is_status_change(current_status, new_status):
        return
    if not is_transition_allowed(current_status, new_status):
        logger.warning(f"Blocked task transition: {current_status.value} → {new_status.value}")
        raise InvalidTransitionError(current_status, new_status)


def get_allowed_transitions(current_status: TaskStatus) -> list[TaskStatus]:
    return sorted(TASK_STATUS_TRANSITIONS.get(current_status, frozenset()), key=lambda s: s.value)

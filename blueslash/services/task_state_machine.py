"""Task lifecycle transitions and the updates they imply."""

from datetime import datetime
from typing import Any

from blueslash.core import errors
from blueslash.core.db_client import DELETE_FIELD
from blueslash.domain.task import CLAIMED_STATES, Task, TaskStatus


# Allowed transitions; completed -> published only via quorum rejection
TRANSITIONS: dict[TaskStatus, set[TaskStatus]] = {
    TaskStatus.DRAFT: {TaskStatus.PUBLISHED},
    TaskStatus.PUBLISHED: {TaskStatus.DRAFT, TaskStatus.CLAIMED},
    TaskStatus.CLAIMED: {TaskStatus.PUBLISHED, TaskStatus.COMPLETED},
    TaskStatus.COMPLETED: {TaskStatus.VERIFIED, TaskStatus.PUBLISHED},
    TaskStatus.VERIFIED: set(),
}


def can_transition(current: TaskStatus, target: TaskStatus) -> bool:
    return target in TRANSITIONS[current]


def ensure_status(task: Task, expected: TaskStatus, action: str) -> None:
    """Raise FailedPreconditionError unless the task is in ``expected``."""
    if task.status != expected:
        msg = f"Cannot {action}: task {task.id} is {task.status}, expected {expected}"
        raise errors.FailedPreconditionError(msg)


def transition_update(
    task: Task, target: TaskStatus, *, now: datetime, claimed_by: str | None = None
) -> dict[str, Any]:
    """Build the partial update moving ``task`` to ``target``.

    Keeps ``claimed_by`` set exactly in claimed, completed and verified.
    """
    if not can_transition(task.status, target):
        msg = f"Cannot move task {task.id} from {task.status} to {target}"
        raise errors.FailedPreconditionError(msg)

    update: dict[str, Any] = {"status": target, "updated_at": now}
    if target in CLAIMED_STATES:
        claimant = claimed_by or task.claimed_by
        if claimant is None:
            msg = f"Task {task.id} needs a claimant to become {target}"
            raise errors.FailedPreconditionError(msg)
        update["claimed_by"] = claimant
    else:
        update["claimed_by"] = DELETE_FIELD
    return update

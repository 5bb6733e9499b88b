"""Peer verification of completed tasks and the quorum award."""

import logging
import math
from datetime import UTC, datetime

from blueslash.core import errors
from blueslash.core.config import constants
from blueslash.core.context import AppContext
from blueslash.core.logging import span
from blueslash.domain.gem import GemTransactionType
from blueslash.domain.notification import NotificationPayload
from blueslash.domain.task import Task, TaskStatus, Verification
from blueslash.services import gem_service, notification_service, reminder_service
from blueslash.services.household_service import load_household
from blueslash.services.task_service import load_task, require_member
from blueslash.services.task_state_machine import ensure_status, transition_update


logger = logging.getLogger(__name__)


def required_verifications(member_count: int) -> int:
    """Positive votes needed to verify a task in a household of ``member_count``."""
    return math.ceil(member_count * constants.VERIFICATION_QUORUM_RATIO)


def _record_vote(task: Task, vote: Verification) -> list[Verification]:
    """Replace the voter's earlier vote in place, or append a new one."""
    votes = list(task.verifications)
    for index, existing in enumerate(votes):
        if existing.user_id == vote.user_id:
            votes[index] = vote
            return votes
    votes.append(vote)
    return votes


async def verify_task(
    ctx: AppContext, *, task_id: str, user_id: str, verified: bool, now: datetime | None = None
) -> Task:
    """Cast or replace a vote on a completed task.

    Every vote pays the voter the flat verification award. Once positive votes
    reach ``ceil(members * 0.5)`` (counted against current membership) the
    task becomes verified and the claimant receives the task's gems.

    Raises:
        PermissionDeniedError: The voter is not a member or is the claimant.
        FailedPreconditionError: The task is not completed.
    """
    with span("verification_service.verify_task", task_id=task_id, user_id=user_id):
        current = now or datetime.now(UTC)
        just_verified = False

        async with ctx.store.transaction() as tx:
            task = await load_task(tx, task_id)
            ensure_status(task, TaskStatus.COMPLETED, "verify task")
            household = await load_household(tx, task.household_id)
            require_member(household, user_id)
            if task.claimed_by == user_id:
                msg = "You cannot verify your own task"
                raise errors.PermissionDeniedError(msg)

            votes = _record_vote(task, Verification(user_id=user_id, verified=verified, verified_at=current))
            record = await tx.update_record(
                collection="tasks", record_id=task_id, data={"verifications": votes, "updated_at": current}
            )
            task = Task.model_validate(record)

            await gem_service.record_award(
                tx,
                user_id=user_id,
                amount=constants.VERIFICATION_AWARD,
                type=GemTransactionType.VERIFICATION,
                description=f'Verified task "{task.title}"',
                task_id=task_id,
            )

            required = required_verifications(len(household.members))

            if task.positive_votes >= required:
                record = await tx.update_record(
                    collection="tasks",
                    record_id=task_id,
                    data=transition_update(task, TaskStatus.VERIFIED, now=current),
                )
                task = Task.model_validate(record)
                await gem_service.record_award(
                    tx,
                    user_id=task.claimed_by,
                    amount=task.gems,
                    type=GemTransactionType.TASK_COMPLETION,
                    description=f'Completed task "{task.title}"',
                    task_id=task_id,
                )
                await reminder_service.cancel_task_reminders(tx, task_id=task_id, now=current)
                just_verified = True

            elif ctx.settings.reject_on_negative_quorum and task.negative_votes >= required:
                update = transition_update(task, TaskStatus.PUBLISHED, now=current)
                update["verifications"] = []
                record = await tx.update_record(collection="tasks", record_id=task_id, data=update)
                logger.info("Task %s rejected by verifiers, back to published", task_id)
                task = Task.model_validate(record)

        logger.info(
            "Recorded verification on task %s",
            task_id,
            extra={"verified": verified, "positive": task.positive_votes, "required": required},
        )

        if just_verified:
            await notification_service.notify_users(
                ctx,
                user_ids=[task.claimed_by],
                payload=NotificationPayload(
                    title="Task Verified",
                    body=f'"{task.title}" was verified. You earned {task.gems} gems!',
                    data={
                        "type": "task-verified",
                        "taskId": task.id,
                        "householdId": task.household_id,
                        "targetUrl": notification_service.task_url(ctx, task.id),
                    },
                ),
            )

        return task

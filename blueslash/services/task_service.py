"""Task service for the task lifecycle: create, publish, claim, complete, recur."""

import logging
import uuid
from datetime import UTC, datetime
from typing import Any

from blueslash.core import errors
from blueslash.core.checklist import parse_markdown_checklist
from blueslash.core.context import AppContext
from blueslash.core.db_client import ArrayUnion, Transaction
from blueslash.core.logging import log_with_context, span
from blueslash.core.recurrence import calculate_next_due_date
from blueslash.domain.gem import GemTransactionType
from blueslash.domain.household import Household
from blueslash.domain.notification import NotificationPayload
from blueslash.domain.task import ChecklistGroup, RecurrenceConfig, Task, TaskStatus
from blueslash.services import gem_service, notification_service, reminder_service
from blueslash.services.household_service import load_household
from blueslash.services.task_state_machine import ensure_status, transition_update
from blueslash.services.user_service import load_user


logger = logging.getLogger(__name__)

CLAIM_CONFLICT_MESSAGE = "Task is no longer available for claiming"


async def load_task(tx: Transaction, task_id: str) -> Task:
    """Read a task inside a transaction, raising NotFoundError if absent."""
    record = await tx.get_optional_record(collection="tasks", record_id=task_id)
    if record is None:
        msg = f"Task not found: {task_id}"
        raise errors.NotFoundError(msg)
    return Task.model_validate(record)


def require_member(household: Household, user_id: str) -> None:
    if not household.is_member(user_id):
        msg = "You are not a member of this household"
        raise errors.PermissionDeniedError(msg)


def _require_creator(task: Task, user_id: str, action: str) -> None:
    if task.creator_id != user_id:
        msg = f"Only the task creator can {action}"
        raise errors.PermissionDeniedError(msg)


def _require_claimant(task: Task, user_id: str, action: str) -> None:
    if task.claimed_by != user_id:
        msg = f"Only the task claimer can {action}"
        raise errors.PermissionDeniedError(msg)


def _validate_fields(*, title: str | None = None, gems: int | None = None) -> None:
    if title is not None and not title.strip():
        msg = "Task title is required"
        raise errors.ValidationError(msg)
    if gems is not None and gems < 0:
        msg = "Gems must not be negative"
        raise errors.ValidationError(msg)


def needs_estimate(household: Household, gems: int | None) -> bool:
    """An estimate is needed without a value, or when the household rubric may not be overridden."""
    if gems is None:
        return True
    return household.gem_prompt is not None and not household.allow_gem_override


async def _award_creation(tx: Transaction, task: Task) -> None:
    await gem_service.record_award(
        tx,
        user_id=task.creator_id,
        amount=gem_service.creation_award(task.gems),
        type=GemTransactionType.TASK_CREATION,
        description=f'Created task "{task.title}"',
        task_id=task.id,
    )


async def create_task(
    ctx: AppContext,
    *,
    household_id: str,
    creator_id: str,
    title: str,
    due_date: datetime,
    description: str = "",
    gems: int | None = None,
    status: TaskStatus = TaskStatus.DRAFT,
    recurrence: RecurrenceConfig | None = None,
    now: datetime | None = None,
) -> Task:
    """Create a task as draft or published.

    Creating straight into ``published`` pays the creation award once; the
    separate publish bonus belongs to the draft -> published transition.
    """
    with span("task_service.create_task", household_id=household_id):
        _validate_fields(title=title, gems=gems)
        if status not in (TaskStatus.DRAFT, TaskStatus.PUBLISHED):
            msg = f"Tasks can only be created as draft or published, not {status}"
            raise errors.ValidationError(msg)

        async with ctx.store.transaction() as tx:
            household = await load_household(tx, household_id)
            require_member(household, creator_id)

        # Estimation talks to the LLM, so it runs outside any transaction
        if needs_estimate(household, gems):
            gems = await gem_service.estimate_task_gems(
                ctx, household_id=household_id, description=description or title
            )

        created_at = now or datetime.now(UTC)
        task = Task(
            id=uuid.uuid4().hex,
            household_id=household_id,
            creator_id=creator_id,
            title=title.strip(),
            description=description,
            status=status,
            due_date=due_date,
            gems=gems,
            recurrence=recurrence,
            checklist_groups=parse_markdown_checklist(description),
            created_at=created_at,
            updated_at=created_at,
        )

        async with ctx.store.transaction() as tx:
            household = await load_household(tx, household_id)
            require_member(household, creator_id)
            await tx.create_record(collection="tasks", record_id=task.id, data=task.model_dump(exclude={"id"}))
            if status == TaskStatus.PUBLISHED:
                await _award_creation(tx, task)

        logger.info("Created task %s", task.id, extra={"status": str(status), "gems": task.gems})
        return task


async def update_task(
    ctx: AppContext,
    *,
    task_id: str,
    user_id: str,
    title: str | None = None,
    description: str | None = None,
    due_date: datetime | None = None,
    gems: int | None = None,
    recurrence: RecurrenceConfig | None = None,
    now: datetime | None = None,
) -> Task:
    """Edit a draft. ``None`` leaves a field unchanged."""
    with span("task_service.update_task", task_id=task_id):
        _validate_fields(title=title, gems=gems)

        updates: dict[str, Any] = {"updated_at": now or datetime.now(UTC)}
        if title is not None:
            updates["title"] = title.strip()
        if description is not None:
            updates["description"] = description
            updates["checklist_groups"] = parse_markdown_checklist(description)
        if due_date is not None:
            updates["due_date"] = due_date
        if gems is not None:
            updates["gems"] = gems
        if recurrence is not None:
            updates["recurrence"] = recurrence

        async with ctx.store.transaction() as tx:
            task = await load_task(tx, task_id)
            _require_creator(task, user_id, "edit this task")
            ensure_status(task, TaskStatus.DRAFT, "edit task")
            record = await tx.update_record(collection="tasks", record_id=task_id, data=updates)

        return Task.model_validate(record)


async def publish_task(ctx: AppContext, *, task_id: str, user_id: str, now: datetime | None = None) -> Task:
    """Move a draft to published and pay the creator.

    Two ledger entries are written: the creation award and a separate publish
    bonus of 10%. A draft that is unpublished and published again collects
    both a second time. Whether stacking them is intended is unresolved, so
    the behaviour is kept as is.
    """
    with span("task_service.publish_task", task_id=task_id):
        async with ctx.store.transaction() as tx:
            task = await load_task(tx, task_id)
            _require_creator(task, user_id, "publish this task")
            ensure_status(task, TaskStatus.DRAFT, "publish task")

            record = await tx.update_record(
                collection="tasks",
                record_id=task_id,
                data=transition_update(task, TaskStatus.PUBLISHED, now=now or datetime.now(UTC)),
            )
            await _award_creation(tx, task)
            bonus = gem_service.publish_bonus(task.gems)
            if bonus > 0:
                await gem_service.record_award(
                    tx,
                    user_id=task.creator_id,
                    amount=bonus,
                    type=GemTransactionType.BONUS,
                    description=f'Published task "{task.title}"',
                    task_id=task.id,
                )

        logger.info("Published task %s", task_id)
        return Task.model_validate(record)


async def unpublish_task(ctx: AppContext, *, task_id: str, user_id: str, now: datetime | None = None) -> Task:
    with span("task_service.unpublish_task", task_id=task_id):
        async with ctx.store.transaction() as tx:
            task = await load_task(tx, task_id)
            _require_creator(task, user_id, "unpublish this task")
            ensure_status(task, TaskStatus.PUBLISHED, "unpublish task")
            record = await tx.update_record(
                collection="tasks",
                record_id=task_id,
                data=transition_update(task, TaskStatus.DRAFT, now=now or datetime.now(UTC)),
            )
        return Task.model_validate(record)


async def claim_task(ctx: AppContext, *, task_id: str, user_id: str, now: datetime | None = None) -> Task:
    """Claim a published task and schedule its due-date reminders.

    Raises:
        ConflictError: The task is no longer published or already has a claimant.
        PermissionDeniedError: Not a member, or the user declined this task.
    """
    with span("task_service.claim_task", task_id=task_id, user_id=user_id):
        claimed_at = now or datetime.now(UTC)

        async with ctx.store.transaction() as tx:
            task = await load_task(tx, task_id)

            # Re-checked inside the transaction; losing the race is a conflict
            if task.status != TaskStatus.PUBLISHED or task.claimed_by:
                raise errors.ConflictError(CLAIM_CONFLICT_MESSAGE)

            household = await load_household(tx, task.household_id)
            require_member(household, user_id)
            if user_id in task.declined_by:
                msg = "You declined this task"
                raise errors.PermissionDeniedError(msg)

            record = await tx.update_record(
                collection="tasks",
                record_id=task_id,
                data=transition_update(task, TaskStatus.CLAIMED, now=claimed_at, claimed_by=user_id),
            )
            claimed = Task.model_validate(record)
            await reminder_service.schedule_task_reminders(tx, task=claimed, now=claimed_at)

        log_with_context(logger, "info", "Task claimed", task_id=task_id, user_id=user_id)
        return claimed


async def unclaim_task(ctx: AppContext, *, task_id: str, user_id: str, now: datetime | None = None) -> Task:
    """Release a claimed task back to published and cancel its reminders."""
    with span("task_service.unclaim_task", task_id=task_id):
        current = now or datetime.now(UTC)
        async with ctx.store.transaction() as tx:
            task = await load_task(tx, task_id)
            _require_claimant(task, user_id, "unclaim this task")
            ensure_status(task, TaskStatus.CLAIMED, "unclaim task")
            record = await tx.update_record(
                collection="tasks", record_id=task_id, data=transition_update(task, TaskStatus.PUBLISHED, now=current)
            )
            await reminder_service.cancel_task_reminders(tx, task_id=task_id, now=current)

        logger.info("User %s unclaimed task %s", user_id, task_id)
        return Task.model_validate(record)


async def complete_task(ctx: AppContext, *, task_id: str, user_id: str, now: datetime | None = None) -> Task:
    """Mark a claimed task completed; other members are asked to verify."""
    with span("task_service.complete_task", task_id=task_id):
        current = now or datetime.now(UTC)
        async with ctx.store.transaction() as tx:
            task = await load_task(tx, task_id)
            _require_claimant(task, user_id, "complete this task")
            ensure_status(task, TaskStatus.CLAIMED, "complete task")
            record = await tx.update_record(
                collection="tasks", record_id=task_id, data=transition_update(task, TaskStatus.COMPLETED, now=current)
            )
            await reminder_service.cancel_task_reminders(tx, task_id=task_id, now=current)
            household = await load_household(tx, task.household_id)
            claimant = await load_user(tx, user_id)

        completed = Task.model_validate(record)
        logger.info("User %s completed task %s", user_id, task_id)

        await notification_service.notify_users(
            ctx,
            user_ids=[m for m in household.members if m != user_id],
            payload=NotificationPayload(
                title="Task Ready for Verification",
                body=f'{claimant.display_name or "A household member"} completed "{completed.title}". Can you verify it?',
                data={
                    "type": "verification-request",
                    "taskId": completed.id,
                    "householdId": completed.household_id,
                    "targetUrl": notification_service.task_url(ctx, completed.id),
                },
            ),
            required_preferences=("verification_requests",),
        )
        return completed


async def decline_task(ctx: AppContext, *, task_id: str, user_id: str) -> Task:
    """Record that a member will not take this published task."""
    with span("task_service.decline_task", task_id=task_id):
        async with ctx.store.transaction() as tx:
            task = await load_task(tx, task_id)
            ensure_status(task, TaskStatus.PUBLISHED, "decline task")
            household = await load_household(tx, task.household_id)
            require_member(household, user_id)
            record = await tx.update_record(
                collection="tasks", record_id=task_id, data={"declined_by": ArrayUnion(user_id)}
            )
        return Task.model_validate(record)


async def delete_task(ctx: AppContext, *, task_id: str, user_id: str) -> None:
    """Delete a draft; only its creator may."""
    with span("task_service.delete_task", task_id=task_id):
        async with ctx.store.transaction() as tx:
            task = await load_task(tx, task_id)
            _require_creator(task, user_id, "delete this task")
            ensure_status(task, TaskStatus.DRAFT, "delete task")
            await tx.delete_record(collection="tasks", record_id=task_id)

        logger.info("Deleted task %s", task_id, extra={"user_id": user_id})


async def spawn_recurring_task(
    ctx: AppContext, *, task_id: str, user_id: str, now: datetime | None = None
) -> Task:
    """Create the next draft occurrence of a recurring task.

    The template keeps its recurrence config; the copy gets its own and the
    next due date computed from the template's.
    """
    with span("task_service.spawn_recurring_task", task_id=task_id):
        created_at = now or datetime.now(UTC)

        async with ctx.store.transaction() as tx:
            template = await load_task(tx, task_id)
            if template.recurrence is None:
                msg = f"Task {task_id} is not recurring"
                raise errors.FailedPreconditionError(msg)
            if template.status not in (TaskStatus.COMPLETED, TaskStatus.VERIFIED):
                msg = "Only completed or verified tasks can spawn their next occurrence"
                raise errors.FailedPreconditionError(msg)

            household = await load_household(tx, template.household_id)
            require_member(household, user_id)

            next_due = calculate_next_due_date(recurrence=template.recurrence, from_date=template.due_date)
            if template.recurrence.end_date is not None and next_due > template.recurrence.end_date:
                msg = "Recurrence has ended"
                raise errors.FailedPreconditionError(msg)

            groups = [
                ChecklistGroup(
                    id=uuid.uuid4().hex,
                    items=[item.model_copy(update={"id": uuid.uuid4().hex, "completed": False}) for item in g.items],
                    context_before=g.context_before,
                    context_after=g.context_after,
                )
                for g in template.checklist_groups
            ]
            spawned = Task(
                id=uuid.uuid4().hex,
                household_id=template.household_id,
                creator_id=user_id,
                title=template.title,
                description=template.description,
                status=TaskStatus.DRAFT,
                due_date=next_due,
                gems=template.gems,
                recurrence=template.recurrence.model_copy(deep=True),
                checklist_groups=groups,
                created_at=created_at,
                updated_at=created_at,
            )
            await tx.create_record(collection="tasks", record_id=spawned.id, data=spawned.model_dump(exclude={"id"}))

        logger.info("Spawned task %s from %s", spawned.id, task_id, extra={"due_date": next_due})
        return spawned


async def update_task_checklist(
    ctx: AppContext, *, task_id: str, user_id: str, checklist_groups: list[ChecklistGroup], now: datetime | None = None
) -> Task:
    with span("task_service.update_task_checklist", task_id=task_id):
        async with ctx.store.transaction() as tx:
            task = await load_task(tx, task_id)
            _require_claimant(task, user_id, "update checklist items")
            if task.status not in (TaskStatus.CLAIMED, TaskStatus.COMPLETED):
                msg = "Checklist can only be updated for claimed or completed tasks"
                raise errors.FailedPreconditionError(msg)
            record = await tx.update_record(
                collection="tasks",
                record_id=task_id,
                data={"checklist_groups": checklist_groups, "updated_at": now or datetime.now(UTC)},
            )
        return Task.model_validate(record)


async def get_task(ctx: AppContext, *, task_id: str) -> Task:
    with span("task_service.get_task"):
        async with ctx.store.transaction() as tx:
            return await load_task(tx, task_id)


def _with_status(filter_query: str, filter_params: dict[str, str], status: TaskStatus | None) -> str:
    if status is None:
        return filter_query
    filter_params["status"] = str(status)
    return f"{filter_query} && status = {{:status}}"


async def get_household_tasks(
    ctx: AppContext,
    *,
    household_id: str,
    status: TaskStatus | None = None,
    limit: int | None = None,
    offset: int = 0,
) -> list[Task]:
    """Tasks of a household ordered by due date; every match unless ``limit`` is given."""
    with span("task_service.get_household_tasks"):
        params = {"household_id": household_id}
        records = await ctx.store.list_records(
            collection="tasks",
            filter_query=_with_status("household_id = {:household_id}", params, status),
            filter_params=params,
            sort="due_date",
            limit=limit,
            offset=offset,
        )
        return [Task.model_validate(r) for r in records]


async def get_user_tasks(
    ctx: AppContext, *, user_id: str, status: TaskStatus | None = None, limit: int | None = None, offset: int = 0
) -> list[Task]:
    """Tasks claimed by a user ordered by due date."""
    with span("task_service.get_user_tasks"):
        params = {"user_id": user_id}
        records = await ctx.store.list_records(
            collection="tasks",
            filter_query=_with_status("claimed_by = {:user_id}", params, status),
            filter_params=params,
            sort="due_date",
            limit=limit,
            offset=offset,
        )
        return [Task.model_validate(r) for r in records]

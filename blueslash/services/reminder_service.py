"""Task reminder scheduling, cancellation and the periodic delivery sweep.

Reminders are documents in ``scheduled_notifications`` keyed by
``{task_id}-{days_until_due}``, so rescheduling after a re-claim overwrites
rather than duplicates.
"""

import logging
from datetime import UTC, datetime, timedelta

from blueslash.core.config import constants
from blueslash.core.context import AppContext
from blueslash.core.db_client import Transaction
from blueslash.core.logging import span
from blueslash.domain.notification import NotificationPayload
from blueslash.domain.reminder import ScheduledReminder
from blueslash.domain.task import Task
from blueslash.services import notification_service


logger = logging.getLogger(__name__)

SWEEP_BATCH_SIZE = 500


def reminder_id(task_id: str, days_until_due: int) -> str:
    return f"{task_id}-{days_until_due}"


def build_reminder_payload(ctx: AppContext, reminder: ScheduledReminder) -> NotificationPayload:
    if reminder.days_until_due == 1:
        body = f'"{reminder.task_title}" is due tomorrow!'
    else:
        body = f'"{reminder.task_title}" is due in {reminder.days_until_due} days!'
    return NotificationPayload(
        title="Task Reminder",
        body=body,
        data={
            "type": "task-reminder",
            "taskId": reminder.task_id,
            "householdId": reminder.household_id,
            "targetUrl": notification_service.task_url(ctx, reminder.task_id),
        },
    )


async def write_reminder(
    tx: Transaction,
    *,
    task_id: str,
    user_id: str,
    household_id: str,
    task_title: str,
    due_at: datetime,
    days_before: int,
) -> ScheduledReminder:
    """Create or replace the reminder for ``(task_id, days_before)``."""
    reminder = ScheduledReminder(
        id=reminder_id(task_id, days_before),
        task_id=task_id,
        user_id=user_id,
        household_id=household_id,
        task_title=task_title,
        due_date=due_at,
        reminder_date=due_at - timedelta(days=days_before),
        days_until_due=days_before,
    )
    await tx.set_record(
        collection="scheduled_notifications", record_id=reminder.id, data=reminder.model_dump(exclude={"id"})
    )
    return reminder


async def schedule_task_reminders(tx: Transaction, *, task: Task, now: datetime) -> list[ScheduledReminder]:
    """Write reminders for a freshly claimed task, skipping times already past."""
    if task.claimed_by is None:
        return []

    scheduled = []
    for days in constants.REMINDER_DAYS_BEFORE_DUE:
        if task.due_date - timedelta(days=days) <= now:
            continue
        scheduled.append(
            await write_reminder(
                tx,
                task_id=task.id,
                user_id=task.claimed_by,
                household_id=task.household_id,
                task_title=task.title,
                due_at=task.due_date,
                days_before=days,
            )
        )

    logger.info("Scheduled %d reminders for task %s", len(scheduled), task.id)
    return scheduled


async def cancel_task_reminders(tx: Transaction, *, task_id: str, now: datetime) -> int:
    """Mark every unsent reminder for a task as cancelled."""
    pending = await tx.list_records(
        collection="scheduled_notifications",
        filter_query="task_id = {:task_id} && sent = false",
        filter_params={"task_id": task_id},
    )
    for record in pending:
        await tx.update_record(
            collection="scheduled_notifications",
            record_id=record["id"],
            data={"cancelled": True, "sent": True, "cancelled_at": now},
        )

    if pending:
        logger.info("Cancelled %d reminders for task %s", len(pending), task_id)
    return len(pending)


async def schedule_reminder(
    ctx: AppContext,
    *,
    task_id: str,
    user_id: str,
    household_id: str,
    task_title: str,
    due_at: datetime,
    days_before: int,
) -> ScheduledReminder:
    """Standalone form of ``write_reminder`` in its own transaction."""
    with span("reminder_service.schedule_reminder", task_id=task_id):
        async with ctx.store.transaction() as tx:
            return await write_reminder(
                tx,
                task_id=task_id,
                user_id=user_id,
                household_id=household_id,
                task_title=task_title,
                due_at=due_at,
                days_before=days_before,
            )


async def cancel_reminders(ctx: AppContext, *, task_id: str, now: datetime | None = None) -> int:
    with span("reminder_service.cancel_reminders", task_id=task_id):
        async with ctx.store.transaction() as tx:
            return await cancel_task_reminders(tx, task_id=task_id, now=now or datetime.now(UTC))


async def list_task_reminders(ctx: AppContext, *, task_id: str) -> list[ScheduledReminder]:
    records = await ctx.store.list_records(
        collection="scheduled_notifications",
        filter_query="task_id = {:task_id}",
        filter_params={"task_id": task_id},
        sort="-days_until_due",
    )
    return [ScheduledReminder.model_validate(r) for r in records]


async def process_due_reminders(ctx: AppContext, *, now: datetime | None = None) -> int:
    """Deliver reminders due within the sweep horizon and mark them sent.

    Delivery is best-effort; a reminder is marked sent whether or not the push
    went through so a failing device is not retried every hour.
    """
    with span("reminder_service.process_due_reminders"):
        current = now or datetime.now(UTC)
        horizon = current + timedelta(minutes=constants.REMINDER_SWEEP_HORIZON_MINUTES)

        processed = 0
        while True:
            # Delivered reminders are marked sent, so each pass starts from the top
            records = await ctx.store.list_records(
                collection="scheduled_notifications",
                filter_query="sent = false && cancelled = false && reminder_date <= {:horizon}",
                filter_params={"horizon": horizon},
                sort="reminder_date",
                limit=SWEEP_BATCH_SIZE,
            )
            for record in records:
                reminder = ScheduledReminder.model_validate(record)
                await notification_service.notify_users(
                    ctx,
                    user_ids=[reminder.user_id],
                    payload=build_reminder_payload(ctx, reminder),
                    required_preferences=("task_reminders",),
                )
                await ctx.store.update_record(
                    collection="scheduled_notifications",
                    record_id=reminder.id,
                    data={"sent": True, "sent_at": current},
                )
                processed += 1
            if len(records) < SWEEP_BATCH_SIZE:
                break

        logger.info("Processed %d due reminders", processed)
        return processed

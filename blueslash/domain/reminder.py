"""Scheduled reminder domain model."""

from datetime import datetime

from pydantic import BaseModel, Field


class ScheduledReminder(BaseModel):
    """Pending push reminder for a claimed task, keyed by (task_id, days_until_due)."""

    id: str
    task_id: str
    user_id: str
    household_id: str
    task_title: str
    due_date: datetime
    reminder_date: datetime
    days_until_due: int = Field(..., ge=1)
    type: str = "task-reminder"
    sent: bool = False
    cancelled: bool = False
    sent_at: datetime | None = None
    cancelled_at: datetime | None = None

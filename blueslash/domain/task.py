"""Task domain models and enums."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field, model_validator


class TaskStatus(StrEnum):
    """Task lifecycle state."""

    DRAFT = "draft"
    PUBLISHED = "published"
    CLAIMED = "claimed"
    COMPLETED = "completed"
    VERIFIED = "verified"


# States in which a task must carry a claimant
CLAIMED_STATES = frozenset({TaskStatus.CLAIMED, TaskStatus.COMPLETED, TaskStatus.VERIFIED})


class RecurrenceType(StrEnum):
    """How the next occurrence of a recurring task is dated."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    CUSTOM = "custom"


class RecurrenceConfig(BaseModel):
    """Recurrence template copied onto spawned follow-up tasks."""

    type: RecurrenceType
    interval: int = Field(default=1, ge=1, description="Number of periods between occurrences")
    days_of_week: list[int] | None = Field(
        default=None, description="Weekly only: weekdays to land on (0=Monday ... 6=Sunday)"
    )
    end_date: datetime | None = Field(default=None, description="No occurrence is spawned after this date")

    @model_validator(mode="after")
    def validate_days_of_week(self) -> "RecurrenceConfig":
        if self.days_of_week and any(d < 0 or d > 6 for d in self.days_of_week):  # noqa: PLR2004
            msg = "days_of_week values must be between 0 (Monday) and 6 (Sunday)"
            raise ValueError(msg)
        return self


class Verification(BaseModel):
    """One member's vote on a completed task."""

    user_id: str
    verified: bool
    verified_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class ChecklistItem(BaseModel):
    id: str
    text: str
    completed: bool = False


class ChecklistGroup(BaseModel):
    """Run of checklist items with the prose lines around it."""

    id: str
    items: list[ChecklistItem] = Field(default_factory=list)
    context_before: str | None = None
    context_after: str | None = None


class Task(BaseModel):
    """Task data transfer object."""

    id: str = Field(..., description="Unique task ID")
    household_id: str
    creator_id: str
    title: str
    description: str = ""
    status: TaskStatus = TaskStatus.DRAFT
    claimed_by: str | None = None
    due_date: datetime
    gems: int = Field(..., ge=0, description="Completion reward, conventionally 5-25")
    recurrence: RecurrenceConfig | None = None
    verifications: list[Verification] = Field(default_factory=list)
    checklist_groups: list[ChecklistGroup] = Field(default_factory=list)
    declined_by: list[str] = Field(default_factory=list, description="Members who declined to claim")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def validate_claimant_matches_status(self) -> "Task":
        """claimed_by is set exactly when the task is claimed, completed or verified."""
        if (self.status in CLAIMED_STATES) != (self.claimed_by is not None):
            msg = f"claimed_by must be set only in claimed/completed/verified states (status={self.status})"
            raise ValueError(msg)
        return self

    @property
    def positive_votes(self) -> int:
        return sum(1 for v in self.verifications if v.verified)

    @property
    def negative_votes(self) -> int:
        return sum(1 for v in self.verifications if not v.verified)

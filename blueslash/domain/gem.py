"""Gem ledger domain models."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class GemTransactionType(StrEnum):
    """Reason a balance changed."""

    TASK_CREATION = "task_creation"
    TASK_COMPLETION = "task_completion"
    VERIFICATION = "verification"
    GIFT_SENT = "gift_sent"
    GIFT_RECEIVED = "gift_received"
    BONUS = "bonus"


class GemTransaction(BaseModel):
    """Append-only ledger entry."""

    id: str
    user_id: str
    task_id: str | None = None
    amount: int = Field(..., description="Signed change to the user's balance")
    type: GemTransactionType
    description: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class GemEstimate(BaseModel):
    """Structured output of the gem estimator."""

    gems: int = Field(..., ge=5, le=25, description="Gem value for the task, 5 to 25")
    reasoning: str = Field(default="", description="Short justification for the value")


class LeaderboardEntry(BaseModel):
    user_id: str
    display_name: str
    gems: int

"""Domain models and DTOs."""

from blueslash.domain.gem import GemEstimate, GemTransaction, GemTransactionType, LeaderboardEntry
from blueslash.domain.household import Household, Invite, InviteLink
from blueslash.domain.message import DirectMessage, KitchenPost, KitchenPostAttachment
from blueslash.domain.notification import NotificationPayload
from blueslash.domain.reminder import ScheduledReminder
from blueslash.domain.task import (
    ChecklistGroup,
    ChecklistItem,
    RecurrenceConfig,
    RecurrenceType,
    Task,
    TaskStatus,
    Verification,
)
from blueslash.domain.user import HouseholdRole, NotificationPreferences, User, UserHousehold


__all__ = [
    "ChecklistGroup",
    "ChecklistItem",
    "DirectMessage",
    "GemEstimate",
    "GemTransaction",
    "GemTransactionType",
    "Household",
    "HouseholdRole",
    "Invite",
    "InviteLink",
    "KitchenPost",
    "KitchenPostAttachment",
    "LeaderboardEntry",
    "NotificationPayload",
    "NotificationPreferences",
    "RecurrenceConfig",
    "RecurrenceType",
    "ScheduledReminder",
    "Task",
    "TaskStatus",
    "User",
    "UserHousehold",
    "Verification",
]

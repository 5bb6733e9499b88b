"""User domain models and enums."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class HouseholdRole(StrEnum):
    """Role of a user within one household."""

    HEAD = "head"
    MEMBER = "member"


class UserHousehold(BaseModel):
    """Membership entry embedded in a user document."""

    household_id: str = Field(..., description="Household the user belongs to")
    role: HouseholdRole = Field(default=HouseholdRole.MEMBER, description="Role within the household")
    joined_at: datetime = Field(default_factory=lambda: datetime.now(UTC), description="When the user joined")


class NotificationPreferences(BaseModel):
    """Per-user switches consulted before any push notification is sent."""

    email: bool = False
    push: bool = False
    task_reminders: bool = True
    verification_requests: bool = True
    kitchen_posts: bool = True
    direct_messages: bool = True


class User(BaseModel):
    """User data transfer object."""

    id: str = Field(..., description="User ID issued by the identity provider")
    email: str = Field(default="", description="Sign-in email address")
    display_name: str = Field(default="", description="Name shown to other household members")
    households: list[UserHousehold] = Field(default_factory=list, description="One entry per household joined")
    current_household_id: str | None = Field(default=None, description="Household selected in the client")
    gems: int = Field(default=0, ge=0, description="Authoritative gem balance")
    notification_token: str | None = Field(default=None, description="Push token registered by the client")
    notification_preferences: NotificationPreferences = Field(default_factory=NotificationPreferences)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def membership(self, household_id: str) -> UserHousehold | None:
        """Return the membership entry for a household, if any."""
        return next((h for h in self.households if h.household_id == household_id), None)

    def is_member_of(self, household_id: str) -> bool:
        return self.membership(household_id) is not None

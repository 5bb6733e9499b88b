"""Household and invite domain models."""

from datetime import UTC, datetime

from pydantic import BaseModel, Field, model_validator


class InviteLink(BaseModel):
    """Shareable join capability stored on the household."""

    member_id: str = Field(..., description="Opaque id of the link, not a real member")
    token: str = Field(..., description="Unguessable join token")
    created_by: str | None = Field(default=None, description="Head who generated the link")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime | None = Field(default=None, description="Absolute expiry; None never expires")

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class Invite(BaseModel):
    """Index entry mapping an invite token to its household."""

    id: str = Field(..., description="The invite token itself")
    household_id: str
    created_by: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    expires_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class Household(BaseModel):
    """Household data transfer object."""

    id: str = Field(..., description="Unique household ID")
    name: str = Field(..., description="Display name of the household")
    head_of_household: str = Field(..., description="User ID of the single head")
    members: list[str] = Field(default_factory=list, description="Member user IDs, head included")
    invite_links: list[InviteLink] = Field(default_factory=list)
    gem_prompt: str | None = Field(default=None, description="Custom rubric for LLM gem estimation")
    allow_gem_override: bool = Field(default=False, description="Members may override estimated gem values")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def validate_head_is_member(self) -> "Household":
        """The head must always be listed among the members."""
        if self.head_of_household not in self.members:
            msg = "Head of household must be a member"
            raise ValueError(msg)
        return self

    def is_member(self, user_id: str) -> bool:
        return user_id in self.members

    def is_head(self, user_id: str) -> bool:
        return self.head_of_household == user_id

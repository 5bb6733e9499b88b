"""Direct message and kitchen board domain models."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field


class DirectMessage(BaseModel):
    """Message between two household members, optionally carrying gems."""

    id: str
    household_id: str
    sender_id: str
    recipient_id: str
    participants: list[str]
    body: str
    gems: int = Field(default=0, ge=0)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    read_at: datetime | None = None


class AttachmentType(StrEnum):
    IMAGE = "image"
    PDF = "pdf"


class KitchenPostAttachment(BaseModel):
    type: AttachmentType
    storage_path: str
    url: str
    file_name: str


class BoardPosition(BaseModel):
    """Placement on the board in percent of width and height."""

    x: float
    y: float


class KitchenPost(BaseModel):
    """Sticky note on the shared kitchen board."""

    id: str
    household_id: str
    author_id: str
    author_name: str
    body: str
    title: str
    preview: str
    position: BoardPosition
    attachment: KitchenPostAttachment | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

"""Notification payload model."""

from typing import Any

from pydantic import BaseModel, Field


class NotificationPayload(BaseModel):
    """Transport-agnostic push notification content."""

    title: str
    body: str
    data: dict[str, Any] = Field(default_factory=dict)
    require_interaction: bool = True

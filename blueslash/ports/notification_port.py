"""Notification port - abstract interface for delivering push notifications.

Services depend on this protocol, never on a specific messaging provider.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol


if TYPE_CHECKING:
    from blueslash.domain.notification import NotificationPayload
    from blueslash.domain.user import User


class NotificationPort(Protocol):
    """Deliver one payload to one user. Returns False when nothing was sent."""

    async def notify(self, user: User, payload: NotificationPayload) -> bool: ...

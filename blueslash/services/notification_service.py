"""Best-effort push notifications filtered by user preferences."""

import asyncio
import logging
from collections.abc import Iterable, Sequence

from blueslash.core import errors
from blueslash.core.context import AppContext
from blueslash.core.logging import span
from blueslash.domain.notification import NotificationPayload
from blueslash.domain.user import NotificationPreferences, User


logger = logging.getLogger(__name__)


def task_url(ctx: AppContext, task_id: str) -> str:
    return f"{ctx.settings.app_base_url.rstrip('/')}/tasks?task={task_id}"


def wants_notification(user: User, required_preferences: Sequence[str]) -> bool:
    """Push must be enabled, plus every required preference."""
    prefs = user.notification_preferences
    if not prefs.push:
        return False
    for name in required_preferences:
        if name not in NotificationPreferences.model_fields:
            msg = f"Unknown notification preference: {name}"
            raise ValueError(msg)
        if not getattr(prefs, name):
            return False
    return True


async def _clear_token(ctx: AppContext, user_id: str) -> None:
    await ctx.store.update_record(
        collection="users",
        record_id=user_id,
        data={"notification_token": None, "notification_preferences.push": False},
    )
    logger.info("Removed invalid notification token for user %s", user_id)


async def _notify_one(
    ctx: AppContext, user: User, payload: NotificationPayload, required_preferences: Sequence[str]
) -> bool:
    if not wants_notification(user, required_preferences):
        logger.debug("User %s opted out of this notification", user.id)
        return False

    try:
        return await ctx.notifier.notify(user, payload)
    except errors.UnregisteredTokenError:
        try:
            await _clear_token(ctx, user.id)
        except Exception:
            logger.exception("Failed to clear notification token for user %s", user.id)
        return False
    except Exception:
        logger.exception("Failed to send notification to user %s", user.id)
        return False


async def notify_users(
    ctx: AppContext,
    *,
    user_ids: Iterable[str],
    payload: NotificationPayload,
    required_preferences: Sequence[str] = (),
) -> int:
    """Send ``payload`` to each user concurrently and return how many were delivered.

    Never raises: failures are logged and the triggering operation is unaffected.
    """
    with span("notification_service.notify_users", title=payload.title):
        recipients: list[User] = []
        for user_id in dict.fromkeys(user_ids):
            try:
                record = await ctx.store.get_optional_record(collection="users", record_id=user_id)
            except Exception:
                logger.exception("Failed to load notification recipient %s", user_id)
                continue
            if record is None:
                logger.warning("Notification recipient %s not found", user_id)
                continue
            recipients.append(User.model_validate(record))

        results = await asyncio.gather(
            *(_notify_one(ctx, user, payload, required_preferences) for user in recipients),
            return_exceptions=True,
        )
        for user, result in zip(recipients, results, strict=True):
            if isinstance(result, BaseException):
                logger.error("Notification to %s failed: %s", user.id, result)

        sent = sum(1 for result in results if result is True)
        logger.info("Delivered %d/%d notifications", sent, len(recipients), extra={"title": payload.title})
        return sent

"""User service for sign-in provisioning and notification settings."""

import logging
from datetime import UTC, datetime

from blueslash.core import errors
from blueslash.core.context import AppContext
from blueslash.core.db_client import Transaction
from blueslash.core.logging import span
from blueslash.domain.user import NotificationPreferences, User


logger = logging.getLogger(__name__)


async def load_user(tx: Transaction, user_id: str) -> User:
    """Read a user inside a transaction, raising NotFoundError if absent."""
    record = await tx.get_optional_record(collection="users", record_id=user_id)
    if record is None:
        msg = f"User not found: {user_id}"
        raise errors.NotFoundError(msg)
    return User.model_validate(record)


async def ensure_user(ctx: AppContext, *, user_id: str, email: str, display_name: str) -> User:
    """Return the user, creating it with an empty balance on first sign-in."""
    with span("user_service.ensure_user"):
        async with ctx.store.transaction() as tx:
            existing = await tx.get_optional_record(collection="users", record_id=user_id)
            if existing is not None:
                return User.model_validate(existing)

            user = User(
                id=user_id,
                email=email,
                display_name=display_name.strip() or email.split("@")[0],
                created_at=datetime.now(UTC),
            )
            record = await tx.create_record(
                collection="users", record_id=user_id, data=user.model_dump(exclude={"id"})
            )

        logger.info("Created user %s", user_id)
        return User.model_validate(record)


async def get_user(ctx: AppContext, *, user_id: str) -> User:
    with span("user_service.get_user"):
        async with ctx.store.transaction() as tx:
            return await load_user(tx, user_id)


async def update_notification_preferences(ctx: AppContext, *, user_id: str, **changes: bool) -> User:
    """Update individual notification switches."""
    with span("user_service.update_notification_preferences"):
        unknown = set(changes) - set(NotificationPreferences.model_fields)
        if unknown:
            msg = f"Unknown notification preferences: {', '.join(sorted(unknown))}"
            raise errors.ValidationError(msg)
        if not changes:
            return await get_user(ctx, user_id=user_id)

        async with ctx.store.transaction() as tx:
            await load_user(tx, user_id)
            record = await tx.update_record(
                collection="users",
                record_id=user_id,
                data={f"notification_preferences.{name}": bool(value) for name, value in changes.items()},
            )

        logger.info("Updated notification preferences for %s", user_id, extra={"changes": changes})
        return User.model_validate(record)


async def set_notification_token(ctx: AppContext, *, user_id: str, token: str | None) -> User:
    """Register a push token (enabling push) or clear it (disabling push)."""
    with span("user_service.set_notification_token"):
        async with ctx.store.transaction() as tx:
            await load_user(tx, user_id)
            record = await tx.update_record(
                collection="users",
                record_id=user_id,
                data={"notification_token": token, "notification_preferences.push": token is not None},
            )
        return User.model_validate(record)

"""Direct messages between household members, with optional gem gifts."""

import logging
import uuid
from datetime import UTC, datetime

from blueslash.core import errors
from blueslash.core.config import constants
from blueslash.core.context import AppContext
from blueslash.core.logging import span
from blueslash.domain.gem import GemTransactionType
from blueslash.domain.message import DirectMessage
from blueslash.domain.notification import NotificationPayload
from blueslash.services import gem_service, notification_service
from blueslash.services.household_service import load_household
from blueslash.services.user_service import load_user


logger = logging.getLogger(__name__)


def _validate_message(*, body: str, gems: int) -> str:
    clean_body = body.strip()
    if not clean_body:
        msg = "Message body is required"
        raise errors.ValidationError(msg)
    if len(clean_body) > constants.DIRECT_MESSAGE_MAX_LENGTH:
        msg = f"Message must be at most {constants.DIRECT_MESSAGE_MAX_LENGTH} characters"
        raise errors.ValidationError(msg)
    if gems < 0:
        msg = "Gems must not be negative"
        raise errors.ValidationError(msg)
    return clean_body


def message_url(ctx: AppContext, message_id: str) -> str:
    return f"{ctx.settings.app_base_url.rstrip('/')}/messages?message={message_id}"


async def send_direct_message(
    ctx: AppContext,
    *,
    household_id: str,
    sender_id: str,
    recipient_id: str,
    body: str,
    gems: int = 0,
    now: datetime | None = None,
) -> DirectMessage:
    """Send a message, moving ``gems`` from sender to recipient in the same transaction.

    Raises:
        ValidationError: Empty or oversized body, negative gems, or messaging yourself.
        PermissionDeniedError: Sender or recipient is not a household member.
        InsufficientGemsError: ``gems`` exceeds the sender's balance.
    """
    with span("message_service.send_direct_message", household_id=household_id, gems=gems):
        clean_body = _validate_message(body=body, gems=gems)
        if sender_id == recipient_id:
            msg = "You cannot send a message to yourself"
            raise errors.ValidationError(msg)

        message = DirectMessage(
            id=uuid.uuid4().hex,
            household_id=household_id,
            sender_id=sender_id,
            recipient_id=recipient_id,
            participants=[sender_id, recipient_id],
            body=clean_body,
            gems=gems,
            created_at=now or datetime.now(UTC),
        )

        async with ctx.store.transaction() as tx:
            household = await load_household(tx, household_id)
            if not household.is_member(sender_id):
                msg = "You are not a member of this household"
                raise errors.PermissionDeniedError(msg)
            if not household.is_member(recipient_id):
                msg = "Recipient is not a member of this household"
                raise errors.PermissionDeniedError(msg)

            sender = await load_user(tx, sender_id)
            recipient = await load_user(tx, recipient_id)
            if gems > sender.gems:
                msg = f"Not enough gems: balance {sender.gems}, gift {gems}"
                raise errors.InsufficientGemsError(msg)

            await tx.create_record(
                collection="direct_messages", record_id=message.id, data=message.model_dump(exclude={"id"})
            )

            if gems > 0:
                await gem_service.record_award(
                    tx,
                    user_id=sender_id,
                    amount=-gems,
                    type=GemTransactionType.GIFT_SENT,
                    description=f"Gift sent to {recipient.display_name}",
                )
                await gem_service.record_award(
                    tx,
                    user_id=recipient_id,
                    amount=gems,
                    type=GemTransactionType.GIFT_RECEIVED,
                    description=f"Gift received from {sender.display_name}",
                )

        logger.info("Sent direct message %s", message.id, extra={"sender": sender_id, "gems": gems})

        sender_name = sender.display_name or "Household member"
        await notification_service.notify_users(
            ctx,
            user_ids=[recipient_id],
            payload=NotificationPayload(
                title=f"New message from {sender_name}",
                body=f"{sender_name} sent you {gems} gems." if gems > 0 else f"{sender_name} sent you a note.",
                data={
                    "type": "direct-message",
                    "messageId": message.id,
                    "householdId": household_id,
                    "targetUrl": message_url(ctx, message.id),
                },
                require_interaction=False,
            ),
            required_preferences=("direct_messages",),
        )
        return message


async def mark_message_as_read(
    ctx: AppContext, *, message_id: str, user_id: str, now: datetime | None = None
) -> DirectMessage:
    """Set ``read_at`` the first time the recipient opens a message."""
    with span("message_service.mark_message_as_read"):
        async with ctx.store.transaction() as tx:
            record = await tx.get_optional_record(collection="direct_messages", record_id=message_id)
            if record is None:
                msg = f"Message not found: {message_id}"
                raise errors.NotFoundError(msg)
            message = DirectMessage.model_validate(record)

            if message.recipient_id != user_id:
                msg = "Only the recipient can mark a message as read"
                raise errors.PermissionDeniedError(msg)
            if message.read_at is not None:
                return message

            record = await tx.update_record(
                collection="direct_messages", record_id=message_id, data={"read_at": now or datetime.now(UTC)}
            )
        return DirectMessage.model_validate(record)


async def list_direct_messages(
    ctx: AppContext, *, household_id: str, user_id: str, limit: int | None = None, offset: int = 0
) -> list[DirectMessage]:
    """Messages in a household sent or received by ``user_id``, newest first."""
    with span("message_service.list_direct_messages"):
        records = await ctx.store.list_records(
            collection="direct_messages",
            filter_query="household_id = {:household_id} && participants ?= {:user_id}",
            filter_params={"household_id": household_id, "user_id": user_id},
            sort="-created_at",
            limit=limit,
            offset=offset,
        )
        return [DirectMessage.model_validate(r) for r in records]

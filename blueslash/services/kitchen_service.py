"""Kitchen board: shared sticky notes with optional image or PDF attachments."""

import logging
import random
import re
import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field

from blueslash.core import errors
from blueslash.core.config import constants
from blueslash.core.context import AppContext
from blueslash.core.db_client import Transaction
from blueslash.core.logging import span
from blueslash.domain.household import Household
from blueslash.domain.message import AttachmentType, BoardPosition, KitchenPost, KitchenPostAttachment
from blueslash.domain.notification import NotificationPayload
from blueslash.services import notification_service
from blueslash.services.household_service import load_household
from blueslash.services.user_service import load_user


logger = logging.getLogger(__name__)

DEFAULT_TITLE = "Kitchen Note"

IMAGE_CONTENT_TYPES = frozenset({"image/png", "image/jpeg", "image/jpg"})
PDF_CONTENT_TYPES = frozenset({"application/pdf"})

_CODE_BLOCK = re.compile(r"```.*?```", re.DOTALL)
_INLINE_CODE = re.compile(r"`[^`]*`")
_MARKDOWN_MARKS = re.compile(r"[#>*_`\-\[\]!]")
_NEWLINES = re.compile(r"\n+")
_HEADING = re.compile(r"^#+\s*")


class AttachmentUpload(BaseModel):
    """File supplied by the client for a kitchen post."""

    file_name: str = Field(..., min_length=1)
    content_type: str
    content: bytes


def make_title(body: str) -> str:
    """First non-empty line without heading marks, or the default title."""
    for line in body.split("\n"):
        trimmed = _HEADING.sub("", line).strip()
        if trimmed:
            return trimmed[: constants.KITCHEN_TITLE_MAX_LENGTH]
    return DEFAULT_TITLE


def make_preview(body: str) -> str:
    text = _CODE_BLOCK.sub("", body)
    text = _INLINE_CODE.sub("", text)
    text = _MARKDOWN_MARKS.sub("", text)
    text = _NEWLINES.sub(" ", text).strip()
    return text[: constants.KITCHEN_PREVIEW_MAX_LENGTH]


def generate_position(existing: list[BoardPosition], rng: random.Random | None = None) -> BoardPosition:
    """Pick a spot on the board away from existing notes, giving up after a few tries."""
    rng = rng or random.Random()  # noqa: S311

    def coordinate() -> float:
        # 10% padding on each side
        return rng.random() * 70 + 10

    for _ in range(constants.KITCHEN_POSITION_ATTEMPTS):
        candidate = BoardPosition(x=coordinate(), y=coordinate())
        overlaps = any(
            abs(p.x - candidate.x) < constants.KITCHEN_POSITION_MIN_DISTANCE
            and abs(p.y - candidate.y) < constants.KITCHEN_POSITION_MIN_DISTANCE
            for p in existing
        )
        if not overlaps:
            return candidate

    return BoardPosition(x=coordinate(), y=coordinate())


def classify_attachment(upload: AttachmentUpload) -> AttachmentType:
    if len(upload.content) > constants.KITCHEN_ATTACHMENT_MAX_BYTES:
        msg = "Attachment is too large. Maximum size is 10MB."
        raise errors.ValidationError(msg)
    if upload.content_type in IMAGE_CONTENT_TYPES:
        return AttachmentType.IMAGE
    if upload.content_type in PDF_CONTENT_TYPES:
        return AttachmentType.PDF
    msg = "Unsupported file type. Upload PNG, JPG, or PDF files."
    raise errors.ValidationError(msg)


async def _load_post(tx: Transaction, post_id: str) -> KitchenPost:
    record = await tx.get_optional_record(collection="kitchen_posts", record_id=post_id)
    if record is None:
        msg = f"Kitchen post not found: {post_id}"
        raise errors.NotFoundError(msg)
    return KitchenPost.model_validate(record)


def _require_author_or_head(post: KitchenPost, household: Household, user_id: str, action: str) -> None:
    if post.author_id != user_id and not household.is_head(user_id):
        msg = f"Only the author or the head of household can {action}"
        raise errors.PermissionDeniedError(msg)


async def _delete_blob_quietly(ctx: AppContext, path: str) -> None:
    if ctx.blob_store is None:
        return
    try:
        await ctx.blob_store.delete(path=path)
    except Exception:
        logger.warning("Failed to delete attachment %s", path, exc_info=True)


async def _upload(
    ctx: AppContext, *, household_id: str, post_id: str, upload: AttachmentUpload
) -> KitchenPostAttachment:
    attachment_type = classify_attachment(upload)
    if ctx.blob_store is None:
        msg = "Attachment storage is not configured"
        raise errors.ExternalServiceError(msg)

    extension = upload.file_name.rsplit(".", 1)[-1] if "." in upload.file_name else "dat"
    storage_path = f"kitchen-posts/{household_id}/{post_id}.{extension}"
    try:
        url = await ctx.blob_store.upload(path=storage_path, content=upload.content, content_type=upload.content_type)
    except errors.BlueSlashError:
        raise
    except Exception as e:
        msg = f"Attachment upload failed: {e}"
        raise errors.ExternalServiceError(msg) from e

    return KitchenPostAttachment(type=attachment_type, storage_path=storage_path, url=url, file_name=upload.file_name)


async def upsert_kitchen_post(
    ctx: AppContext,
    *,
    household_id: str,
    author_id: str,
    body: str,
    attachment: AttachmentUpload | None = None,
    post_id: str | None = None,
    rng: random.Random | None = None,
) -> KitchenPost:
    """Create a note, or edit ``post_id`` keeping its board position.

    A new attachment replaces the previous one, which is then removed from
    the blob store best-effort.
    """
    with span("kitchen_service.upsert_kitchen_post", household_id=household_id):
        if not body.strip() and attachment is None:
            msg = "A kitchen post needs text or an attachment"
            raise errors.ValidationError(msg)

        async with ctx.store.transaction() as tx:
            household = await load_household(tx, household_id)
            if not household.is_member(author_id):
                msg = "You are not a member of this household"
                raise errors.PermissionDeniedError(msg)
            author = await load_user(tx, author_id)

            existing_post = None
            positions: list[BoardPosition] = []
            if post_id is not None:
                existing_post = await _load_post(tx, post_id)
                if existing_post.household_id != household_id:
                    msg = f"Kitchen post not found: {post_id}"
                    raise errors.NotFoundError(msg)
                _require_author_or_head(existing_post, household, author_id, "edit this post")
            else:
                records = await tx.list_records(
                    collection="kitchen_posts",
                    filter_query="household_id = {:household_id}",
                    filter_params={"household_id": household_id},
                )
                positions = [KitchenPost.model_validate(r).position for r in records]

        target_id = post_id or uuid.uuid4().hex
        previous = existing_post.attachment if existing_post else None
        stored = previous
        if attachment is not None:
            stored = await _upload(ctx, household_id=household_id, post_id=target_id, upload=attachment)

        now = datetime.now(UTC)
        post = KitchenPost(
            id=target_id,
            household_id=household_id,
            author_id=existing_post.author_id if existing_post else author_id,
            author_name=existing_post.author_name if existing_post else author.display_name,
            body=body,
            title=make_title(body),
            preview=make_preview(body),
            position=existing_post.position if existing_post else generate_position(positions, rng),
            attachment=stored,
            created_at=existing_post.created_at if existing_post else now,
            updated_at=now,
        )

        async with ctx.store.transaction() as tx:
            await tx.set_record(collection="kitchen_posts", record_id=post.id, data=post.model_dump(exclude={"id"}))

        if previous is not None and stored is not None and previous.storage_path != stored.storage_path:
            await _delete_blob_quietly(ctx, previous.storage_path)

        if existing_post is None:
            logger.info("Created kitchen post %s", post.id, extra={"household_id": household_id})
            await notification_service.notify_users(
                ctx,
                user_ids=[m for m in household.members if m != author_id],
                payload=NotificationPayload(
                    title="New Kitchen Board Post",
                    body=f'{post.author_name or "A household member"} posted "{post.title}"',
                    data={
                        "type": "kitchen-post",
                        "postId": post.id,
                        "householdId": household_id,
                        "targetUrl": f"{ctx.settings.app_base_url.rstrip('/')}/kitchen?post={post.id}",
                    },
                    require_interaction=False,
                ),
                required_preferences=("kitchen_posts",),
            )
        return post


async def delete_kitchen_post(ctx: AppContext, *, post_id: str, user_id: str) -> None:
    """Remove a post; its attachment is deleted best-effort afterwards."""
    with span("kitchen_service.delete_kitchen_post", post_id=post_id):
        async with ctx.store.transaction() as tx:
            post = await _load_post(tx, post_id)
            household = await load_household(tx, post.household_id)
            _require_author_or_head(post, household, user_id, "delete this post")
            await tx.delete_record(collection="kitchen_posts", record_id=post_id)

        if post.attachment is not None:
            await _delete_blob_quietly(ctx, post.attachment.storage_path)
        logger.info("Deleted kitchen post %s", post_id, extra={"user_id": user_id})


async def list_kitchen_posts(
    ctx: AppContext, *, household_id: str, limit: int | None = None, offset: int = 0
) -> list[KitchenPost]:
    """Posts on a household's board, newest first."""
    with span("kitchen_service.list_kitchen_posts"):
        records = await ctx.store.list_records(
            collection="kitchen_posts",
            filter_query="household_id = {:household_id}",
            filter_params={"household_id": household_id},
            sort="-created_at",
            limit=limit,
            offset=offset,
        )
        return [KitchenPost.model_validate(r) for r in records]

"""Household service for membership, invites and head-only settings."""

import logging
import re
import secrets
import uuid
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, Field

from blueslash.core import errors
from blueslash.core.context import AppContext
from blueslash.core.db_client import ArrayRemove, ArrayUnion, Transaction
from blueslash.core.logging import span
from blueslash.domain.household import Household, Invite, InviteLink
from blueslash.domain.user import HouseholdRole, User, UserHousehold
from blueslash.services.user_service import load_user


logger = logging.getLogger(__name__)

INVALID_INVITE_MESSAGE = "Invalid or expired invite link"
_TOKEN_PATTERN = re.compile(r"^[A-Za-z0-9_-]{16,128}$")


class InviteLinkResult(BaseModel):
    """Shareable invite produced for the head of household."""

    url: str = Field(..., description="Join URL embedding the token")
    token: str
    expires_at: datetime | None


async def load_household(tx: Transaction, household_id: str) -> Household:
    """Read a household inside a transaction, raising NotFoundError if absent."""
    record = await tx.get_optional_record(collection="households", record_id=household_id)
    if record is None:
        msg = f"Household not found: {household_id}"
        raise errors.NotFoundError(msg)
    return Household.model_validate(record)


def _require_head(household: Household, user_id: str, action: str) -> None:
    if not household.is_head(user_id):
        msg = f"Only the head of household can {action}"
        raise errors.PermissionDeniedError(msg)


def build_invite_url(ctx: AppContext, token: str) -> str:
    return f"{ctx.settings.app_base_url.rstrip('/')}/invite/{token}"


async def create_household(
    ctx: AppContext, *, name: str, head_user_id: str, now: datetime | None = None
) -> Household:
    """Create a household headed by ``head_user_id`` and make it their current one."""
    with span("household_service.create_household", user_id=head_user_id):
        clean_name = name.strip()
        if not clean_name:
            msg = "Household name is required"
            raise errors.ValidationError(msg)

        created_at = now or datetime.now(UTC)
        household = Household(
            id=uuid.uuid4().hex,
            name=clean_name,
            head_of_household=head_user_id,
            members=[head_user_id],
            created_at=created_at,
        )

        async with ctx.store.transaction() as tx:
            await load_user(tx, head_user_id)
            await tx.create_record(
                collection="households", record_id=household.id, data=household.model_dump(exclude={"id"})
            )
            membership = UserHousehold(household_id=household.id, role=HouseholdRole.HEAD, joined_at=created_at)
            await tx.update_record(
                collection="users",
                record_id=head_user_id,
                data={"households": ArrayUnion(membership), "current_household_id": household.id},
            )

        logger.info("Created household %s", household.id, extra={"head": head_user_id, "name": clean_name})
        return household


async def get_household(ctx: AppContext, *, household_id: str) -> Household:
    with span("household_service.get_household"):
        async with ctx.store.transaction() as tx:
            return await load_household(tx, household_id)


async def get_household_members(ctx: AppContext, *, household_id: str) -> list[User]:
    """Members of a household ordered by display name."""
    with span("household_service.get_household_members"):
        async with ctx.store.transaction() as tx:
            household = await load_household(tx, household_id)
            members = []
            for member_id in household.members:
                record = await tx.get_optional_record(collection="users", record_id=member_id)
                if record is not None:
                    members.append(User.model_validate(record))
        return sorted(members, key=lambda u: u.display_name.lower())


async def get_user_households(ctx: AppContext, *, user_id: str) -> list[Household]:
    with span("household_service.get_user_households"):
        async with ctx.store.transaction() as tx:
            user = await load_user(tx, user_id)
            households = []
            for membership in user.households:
                record = await tx.get_optional_record(collection="households", record_id=membership.household_id)
                if record is not None:
                    households.append(Household.model_validate(record))
        return households


async def generate_invite_link(
    ctx: AppContext, *, household_id: str, requester_id: str, now: datetime | None = None
) -> InviteLinkResult:
    """Create a new invite link; earlier links stay valid until they expire."""
    with span("household_service.generate_invite_link", household_id=household_id):
        created_at = now or datetime.now(UTC)
        token = secrets.token_urlsafe(32)
        expires_at = created_at + timedelta(days=ctx.settings.invite_expiry_days)

        async with ctx.store.transaction() as tx:
            household = await load_household(tx, household_id)
            _require_head(household, requester_id, "generate invite links")

            link = InviteLink(
                member_id=uuid.uuid4().hex,
                token=token,
                created_by=requester_id,
                created_at=created_at,
                expires_at=expires_at,
            )
            await tx.update_record(
                collection="households", record_id=household_id, data={"invite_links": ArrayUnion(link)}
            )
            invite = Invite(
                id=token,
                household_id=household_id,
                created_by=requester_id,
                created_at=created_at,
                expires_at=expires_at,
            )
            await tx.create_record(collection="invites", record_id=token, data=invite.model_dump(exclude={"id"}))

        logger.info("Generated invite link", extra={"household_id": household_id, "expires_at": expires_at})
        return InviteLinkResult(url=build_invite_url(ctx, token), token=token, expires_at=expires_at)


async def _resolve_invite(tx: Transaction, token: str, now: datetime) -> str:
    """Return the household id for a live token."""
    if not _TOKEN_PATTERN.match(token):
        raise errors.NotFoundError(INVALID_INVITE_MESSAGE)

    record = await tx.get_optional_record(collection="invites", record_id=token)
    if record is not None:
        invite = Invite.model_validate(record)
        if invite.is_expired(now):
            raise errors.NotFoundError(INVALID_INVITE_MESSAGE)
        return invite.household_id

    # Links stored without an index entry: match on the household's own link list
    candidates = await tx.list_records(
        collection="households", filter_query="invite_links ~ {:token}", filter_params={"token": token}
    )
    for candidate in candidates:
        household = Household.model_validate(candidate)
        for link in household.invite_links:
            if secrets.compare_digest(link.token, token) and not link.is_expired(now):
                return household.id

    raise errors.NotFoundError(INVALID_INVITE_MESSAGE)


async def join_household_by_invite(
    ctx: AppContext, *, token: str, user_id: str, now: datetime | None = None
) -> Household:
    """Join the household behind ``token``; existing members only switch to it."""
    with span("household_service.join_household_by_invite", user_id=user_id):
        joined_at = now or datetime.now(UTC)

        async with ctx.store.transaction() as tx:
            household_id = await _resolve_invite(tx, token, joined_at)
            household = await load_household(tx, household_id)
            user = await load_user(tx, user_id)

            if user.is_member_of(household_id) or household.is_member(user_id):
                await tx.update_record(
                    collection="users", record_id=user_id, data={"current_household_id": household_id}
                )
                logger.info("User %s already in household %s, switched current", user_id, household_id)
                return household

            record = await tx.update_record(
                collection="households", record_id=household_id, data={"members": ArrayUnion(user_id)}
            )
            membership = UserHousehold(household_id=household_id, role=HouseholdRole.MEMBER, joined_at=joined_at)
            await tx.update_record(
                collection="users",
                record_id=user_id,
                data={"households": ArrayUnion(membership), "current_household_id": household_id},
            )

        logger.info("User %s joined household %s", user_id, household_id)
        return Household.model_validate(record)


async def switch_current_household(ctx: AppContext, *, user_id: str, household_id: str) -> User:
    with span("household_service.switch_current_household", user_id=user_id):
        async with ctx.store.transaction() as tx:
            user = await load_user(tx, user_id)
            if not user.is_member_of(household_id):
                msg = "You are not a member of this household"
                raise errors.PermissionDeniedError(msg)
            record = await tx.update_record(
                collection="users", record_id=user_id, data={"current_household_id": household_id}
            )
        return User.model_validate(record)


async def remove_member_from_household(
    ctx: AppContext, *, household_id: str, member_id: str, requester_id: str
) -> Household:
    """Remove a member (head only); the member falls back to another household or none."""
    with span("household_service.remove_member_from_household", household_id=household_id):
        async with ctx.store.transaction() as tx:
            household = await load_household(tx, household_id)
            _require_head(household, requester_id, "remove members")

            # Guard: headship transfer is not supported, so the head stays
            if household.is_head(member_id):
                msg = "The head of household cannot be removed"
                raise errors.FailedPreconditionError(msg)
            if not household.is_member(member_id):
                msg = f"User {member_id} is not a member of this household"
                raise errors.NotFoundError(msg)

            record = await tx.update_record(
                collection="households", record_id=household_id, data={"members": ArrayRemove(member_id)}
            )

            member_record = await tx.get_optional_record(collection="users", record_id=member_id)
            if member_record is not None:
                member = User.model_validate(member_record)
                remaining = [h for h in member.households if h.household_id != household_id]
                current = member.current_household_id
                if current == household_id:
                    current = remaining[0].household_id if remaining else None
                await tx.update_record(
                    collection="users",
                    record_id=member_id,
                    data={"households": remaining, "current_household_id": current},
                )

        logger.info("Removed %s from household %s", member_id, household_id, extra={"requester": requester_id})
        return Household.model_validate(record)


async def remove_invite_link(ctx: AppContext, *, household_id: str, requester_id: str, token: str) -> Household:
    """Revoke one invite link and its index entry."""
    with span("household_service.remove_invite_link", household_id=household_id):
        async with ctx.store.transaction() as tx:
            household = await load_household(tx, household_id)
            _require_head(household, requester_id, "remove invite links")

            remaining = [link for link in household.invite_links if link.token != token]
            if len(remaining) == len(household.invite_links):
                msg = "Invite link not found"
                raise errors.NotFoundError(msg)

            record = await tx.update_record(
                collection="households", record_id=household_id, data={"invite_links": remaining}
            )
            if await tx.get_optional_record(collection="invites", record_id=token) is not None:
                await tx.delete_record(collection="invites", record_id=token)

        logger.info("Removed invite link", extra={"household_id": household_id})
        return Household.model_validate(record)


async def update_household_settings(
    ctx: AppContext,
    *,
    household_id: str,
    requester_id: str,
    name: str | None = None,
    gem_prompt: str | None = None,
    allow_gem_override: bool | None = None,
) -> Household:
    """Head-only settings. ``None`` leaves a field unchanged; an empty gem prompt restores the default."""
    with span("household_service.update_household_settings", household_id=household_id):
        updates: dict = {}
        if name is not None:
            if not name.strip():
                msg = "Household name is required"
                raise errors.ValidationError(msg)
            updates["name"] = name.strip()
        if gem_prompt is not None:
            updates["gem_prompt"] = gem_prompt.strip() or None
        if allow_gem_override is not None:
            updates["allow_gem_override"] = allow_gem_override

        async with ctx.store.transaction() as tx:
            household = await load_household(tx, household_id)
            _require_head(household, requester_id, "change household settings")
            if not updates:
                return household
            record = await tx.update_record(collection="households", record_id=household_id, data=updates)

        logger.info("Updated household settings", extra={"household_id": household_id, "fields": list(updates)})
        return Household.model_validate(record)

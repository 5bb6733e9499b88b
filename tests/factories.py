"""Builders for users, households and tasks used across the test suite."""

from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from blueslash.core.context import AppContext
from blueslash.domain.household import Household
from blueslash.domain.task import Task, TaskStatus
from blueslash.domain.user import User
from blueslash.services import household_service, task_service, user_service


async def make_user(ctx: AppContext, user_id: str, *, gems: int = 0, push: bool = True) -> User:
    """Create a user, optionally seeding a balance and a push token."""
    await user_service.ensure_user(
        ctx, user_id=user_id, email=f"{user_id}@example.com", display_name=user_id.capitalize()
    )
    if gems:
        await ctx.store.update_record(collection="users", record_id=user_id, data={"gems": gems})
    if push:
        await user_service.set_notification_token(ctx, user_id=user_id, token=f"token-{user_id}")
    return await user_service.get_user(ctx, user_id=user_id)


@dataclass
class HouseholdFixture:
    """A household plus the ids of its members; ``head`` comes first."""

    household: Household
    member_ids: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.household.id

    @property
    def head(self) -> str:
        return self.member_ids[0]


async def make_household(ctx: AppContext, member_ids: list[str], *, name: str = "Blue House") -> HouseholdFixture:
    """Create users and a household headed by the first id; the rest join by invite."""
    for user_id in member_ids:
        await make_user(ctx, user_id)

    household = await household_service.create_household(ctx, name=name, head_user_id=member_ids[0])
    if len(member_ids) > 1:
        invite = await household_service.generate_invite_link(
            ctx, household_id=household.id, requester_id=member_ids[0]
        )
        for user_id in member_ids[1:]:
            household = await household_service.join_household_by_invite(ctx, token=invite.token, user_id=user_id)

    return HouseholdFixture(household=household, member_ids=list(member_ids))


async def make_task(
    ctx: AppContext,
    house: HouseholdFixture,
    *,
    creator: str | None = None,
    gems: int = 10,
    status: TaskStatus = TaskStatus.PUBLISHED,
    due_in: timedelta = timedelta(days=10),
    **kwargs,
) -> Task:
    return await task_service.create_task(
        ctx,
        household_id=house.id,
        creator_id=creator or house.head,
        title=kwargs.pop("title", "Empty the dishwasher"),
        due_date=datetime.now(UTC) + due_in,
        gems=gems,
        status=status,
        **kwargs,
    )


async def balance(ctx: AppContext, user_id: str) -> int:
    return (await user_service.get_user(ctx, user_id=user_id)).gems



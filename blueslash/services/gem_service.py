"""Gem ledger and award engine.

Every balance change increments ``users.gems`` and appends a
``gem_transactions`` entry inside one store transaction, so concurrent
awards to the same user cannot lose updates.
"""

import logging
import math
from datetime import UTC, datetime

from blueslash.core import errors
from blueslash.core.config import constants
from blueslash.core.context import AppContext
from blueslash.core.db_client import Increment, Transaction
from blueslash.core.logging import span
from blueslash.domain.gem import GemTransaction, GemTransactionType, LeaderboardEntry
from blueslash.domain.household import Household
from blueslash.domain.user import User
from blueslash.services.user_service import load_user


logger = logging.getLogger(__name__)


DEFAULT_GEM_RUBRIC = """\
A chore at home that takes 5-10 min. is 5 Gems, this includes emptying or filling the dishwasher, \
setting the table, vacuum one room, bringing out the trash or paper collection etc.

A chore at home that takes 10 - 30 min is 10 Gems, this includes cleaning the kitchen, vacuuming the house, \
walking the dog, helping with recycling, cleaning the cellar, putting together cardboard

A chore at home that takes longer than 30 min (a combination of previous chores) is 15 Gems.

Shopping or doing external activity for the household is 20 Gems, regardless of the time requirement

If something exceed any of these things, then it's 25 Gems."""


def creation_award(gems: int) -> int:
    """Gems earned by the creator when a task is published."""
    return max(constants.CREATION_AWARD_MINIMUM, math.floor(gems * constants.CREATION_AWARD_RATIO))


def publish_bonus(gems: int) -> int:
    """Extra gems for moving a draft to published."""
    return math.floor(gems * constants.PUBLISH_BONUS_RATIO)


async def record_award(
    tx: Transaction,
    *,
    user_id: str,
    amount: int,
    type: GemTransactionType,  # noqa: A002
    description: str,
    task_id: str | None = None,
) -> GemTransaction:
    """Apply a signed balance change and its ledger entry within ``tx``.

    No change may take a balance below zero. Only the gift path checks this up
    front; the guard here also covers any future negative award that skips it.

    Raises:
        NotFoundError: The user does not exist.
        InsufficientGemsError: The change would make the balance negative.
    """
    user = await load_user(tx, user_id)
    if user.gems + amount < 0:
        msg = f"Not enough gems: balance {user.gems}, change {amount}"
        raise errors.InsufficientGemsError(msg)

    await tx.update_record(collection="users", record_id=user_id, data={"gems": Increment(amount)})

    entry: dict = {
        "user_id": user_id,
        "amount": amount,
        "type": type,
        "description": description,
        "created_at": datetime.now(UTC),
    }
    if task_id is not None:
        entry["task_id"] = task_id
    record = await tx.create_record(collection="gem_transactions", data=entry)

    logger.info(
        "Awarded %d gems to %s",
        amount,
        user_id,
        extra={"type": str(type), "task_id": task_id, "balance": user.gems + amount},
    )
    return GemTransaction.model_validate(record)


async def award_gems(
    ctx: AppContext,
    *,
    user_id: str,
    amount: int,
    type: GemTransactionType,  # noqa: A002
    description: str,
    task_id: str | None = None,
    tx: Transaction | None = None,
) -> GemTransaction:
    """Atomically change a user's balance and append one ledger entry.

    Joins ``tx`` when given, otherwise opens its own transaction.
    """
    with span("gem_service.award_gems", user_id=user_id, amount=amount):
        if tx is not None:
            return await record_award(
                tx, user_id=user_id, amount=amount, type=type, description=description, task_id=task_id
            )
        async with ctx.store.transaction() as tx:
            return await record_award(
                tx, user_id=user_id, amount=amount, type=type, description=description, task_id=task_id
            )


async def get_gem_history(
    ctx: AppContext, *, user_id: str, limit: int = 50, offset: int = 0
) -> list[GemTransaction]:
    """Ledger entries for a user, newest first, one page at a time."""
    with span("gem_service.get_gem_history"):
        records = await ctx.store.list_records(
            collection="gem_transactions",
            filter_query="user_id = {:user_id}",
            filter_params={"user_id": user_id},
            sort="-created_at",
            limit=limit,
            offset=offset,
        )
        return [GemTransaction.model_validate(r) for r in records]


async def get_leaderboard(ctx: AppContext, *, household_id: str) -> list[LeaderboardEntry]:
    """Household members ordered by gem balance, highest first."""
    with span("gem_service.get_leaderboard"):
        record = await ctx.store.get_optional_record(collection="households", record_id=household_id)
        if record is None:
            msg = f"Household not found: {household_id}"
            raise errors.NotFoundError(msg)
        household = Household.model_validate(record)

        entries = []
        for member_id in household.members:
            member = await ctx.store.get_optional_record(collection="users", record_id=member_id)
            if member is None:
                continue
            user = User.model_validate(member)
            entries.append(LeaderboardEntry(user_id=user.id, display_name=user.display_name, gems=user.gems))

        return sorted(entries, key=lambda e: (-e.gems, e.display_name))


async def estimate_task_gems(ctx: AppContext, *, household_id: str, description: str) -> int:
    """Value a task description with the household rubric via the gem estimator.

    Raises:
        ValidationError: Empty description.
        LLMError: No estimator configured, estimator failure, or a value outside 5-25.
    """
    with span("gem_service.estimate_task_gems"):
        if not description.strip():
            msg = "Task description is required for gem estimation"
            raise errors.ValidationError(msg)

        if ctx.gem_estimator is None:
            msg = "Gem estimation is not configured"
            raise errors.LLMError(msg)

        record = await ctx.store.get_optional_record(collection="households", record_id=household_id)
        if record is None:
            msg = f"Household not found: {household_id}"
            raise errors.NotFoundError(msg)
        rubric = Household.model_validate(record).gem_prompt or DEFAULT_GEM_RUBRIC

        try:
            gems = await ctx.gem_estimator.estimate_gems(description=description, rubric=rubric)
        except errors.LLMError:
            raise
        except Exception as e:
            msg = f"Gem estimation failed: {e}"
            raise errors.LLMError(msg) from e

        if not isinstance(gems, int) or not constants.GEM_ESTIMATE_MIN <= gems <= constants.GEM_ESTIMATE_MAX:
            msg = f"Gem estimate out of range: {gems!r}"
            raise errors.LLMError(msg)

        return gems

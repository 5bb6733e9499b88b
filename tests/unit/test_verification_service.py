"""Unit tests for verification_service module."""

import pytest

from blueslash.core import errors
from blueslash.domain.gem import GemTransactionType
from blueslash.domain.task import TaskStatus
from blueslash.services import gem_service, household_service, reminder_service, task_service, verification_service
from tests.factories import balance, make_task, make_user


async def completed_task(ctx, house, *, claimant="bob", gems=10):
    task = await make_task(ctx, house, gems=gems)
    await task_service.claim_task(ctx, task_id=task.id, user_id=claimant)
    return await task_service.complete_task(ctx, task_id=task.id, user_id=claimant)


@pytest.mark.unit
@pytest.mark.parametrize(("members", "required"), [(1, 1), (2, 1), (3, 2), (4, 2), (5, 3)])
def test_required_verifications(members, required):
    assert verification_service.required_verifications(members) == required


@pytest.mark.unit
class TestVerifyTask:
    async def test_quorum_verifies_and_pays_claimant(self, ctx, house, notifier):
        task = await completed_task(ctx, house, gems=15)
        notifier.sent.clear()

        first = await verification_service.verify_task(ctx, task_id=task.id, user_id="carol", verified=True)
        assert first.status == TaskStatus.COMPLETED
        assert await balance(ctx, "bob") == 0

        second = await verification_service.verify_task(ctx, task_id=task.id, user_id="dave", verified=True)

        assert second.status == TaskStatus.VERIFIED
        assert second.claimed_by == "bob"
        assert await balance(ctx, "bob") == 15
        assert await balance(ctx, "carol") == 3
        assert await balance(ctx, "dave") == 3
        assert notifier.titles_for("bob") == ["Task Verified"]
        _, payload = notifier.sent[0]
        assert payload.body == '"Empty the dishwasher" was verified. You earned 15 gems!'

    async def test_completion_award_is_ledgered(self, ctx, house):
        task = await completed_task(ctx, house)
        await verification_service.verify_task(ctx, task_id=task.id, user_id="carol", verified=True)
        await verification_service.verify_task(ctx, task_id=task.id, user_id="dave", verified=True)

        history = await gem_service.get_gem_history(ctx, user_id="bob")

        assert [(t.type, t.amount, t.task_id) for t in history] == [
            (GemTransactionType.TASK_COMPLETION, 10, task.id)
        ]

    async def test_negative_votes_do_not_verify(self, ctx, house):
        task = await completed_task(ctx, house)

        await verification_service.verify_task(ctx, task_id=task.id, user_id="carol", verified=False)
        result = await verification_service.verify_task(ctx, task_id=task.id, user_id="dave", verified=False)

        assert result.status == TaskStatus.COMPLETED
        assert result.negative_votes == 2
        assert await balance(ctx, "bob") == 0
        # Voters are paid regardless of their vote
        assert await balance(ctx, "carol") == 3

    async def test_negative_quorum_rejects_when_enabled(self, ctx, house):
        ctx.settings.reject_on_negative_quorum = True
        task = await completed_task(ctx, house)

        await verification_service.verify_task(ctx, task_id=task.id, user_id="carol", verified=False)
        result = await verification_service.verify_task(ctx, task_id=task.id, user_id="dave", verified=False)

        assert result.status == TaskStatus.PUBLISHED
        assert result.claimed_by is None
        assert result.verifications == []

    async def test_claimant_cannot_verify_own_task(self, ctx, house):
        task = await completed_task(ctx, house)

        with pytest.raises(errors.PermissionDeniedError, match="your own task"):
            await verification_service.verify_task(ctx, task_id=task.id, user_id="bob", verified=True)

    async def test_non_member_cannot_verify(self, ctx, house):
        task = await completed_task(ctx, house)

        with pytest.raises(errors.PermissionDeniedError):
            await verification_service.verify_task(ctx, task_id=task.id, user_id="zed", verified=True)

    async def test_only_completed_tasks_are_verified(self, ctx, house):
        task = await make_task(ctx, house)

        with pytest.raises(errors.FailedPreconditionError):
            await verification_service.verify_task(ctx, task_id=task.id, user_id="carol", verified=True)

    async def test_revote_replaces_earlier_vote(self, ctx, house):
        task = await completed_task(ctx, house)

        await verification_service.verify_task(ctx, task_id=task.id, user_id="carol", verified=False)
        result = await verification_service.verify_task(ctx, task_id=task.id, user_id="carol", verified=True)

        assert [(v.user_id, v.verified) for v in result.verifications] == [("carol", True)]
        assert result.status == TaskStatus.COMPLETED

    async def test_verified_task_rejects_further_votes(self, ctx, house):
        task = await completed_task(ctx, house)
        await verification_service.verify_task(ctx, task_id=task.id, user_id="carol", verified=True)
        await verification_service.verify_task(ctx, task_id=task.id, user_id="dave", verified=True)

        with pytest.raises(errors.FailedPreconditionError):
            await verification_service.verify_task(ctx, task_id=task.id, user_id="alice", verified=True)

    async def test_verification_cancels_leftover_reminders(self, ctx, house):
        task = await make_task(ctx, house)
        await task_service.claim_task(ctx, task_id=task.id, user_id="bob")
        await reminder_service.schedule_reminder(
            ctx,
            task_id=task.id,
            user_id="bob",
            household_id=house.id,
            task_title=task.title,
            due_at=task.due_date,
            days_before=3,
        )
        await task_service.complete_task(ctx, task_id=task.id, user_id="bob")
        await reminder_service.schedule_reminder(
            ctx,
            task_id=task.id,
            user_id="bob",
            household_id=house.id,
            task_title=task.title,
            due_at=task.due_date,
            days_before=5,
        )

        await verification_service.verify_task(ctx, task_id=task.id, user_id="carol", verified=True)
        await verification_service.verify_task(ctx, task_id=task.id, user_id="dave", verified=True)

        reminders = await reminder_service.list_task_reminders(ctx, task_id=task.id)
        assert all(r.sent for r in reminders)

    async def test_quorum_follows_current_membership(self, ctx, house):
        task = await completed_task(ctx, house)
        await verification_service.verify_task(ctx, task_id=task.id, user_id="carol", verified=True)
        await make_user(ctx, "erin")
        invite = await household_service.generate_invite_link(ctx, household_id=house.id, requester_id="alice")
        await household_service.join_household_by_invite(ctx, token=invite.token, user_id="erin")

        # Five members now need three positive votes
        second = await verification_service.verify_task(ctx, task_id=task.id, user_id="dave", verified=True)
        assert second.status == TaskStatus.COMPLETED

        third = await verification_service.verify_task(ctx, task_id=task.id, user_id="erin", verified=True)
        assert third.status == TaskStatus.VERIFIED

"""Unit tests for user_service and notification delivery."""

import pytest

from blueslash.core import errors
from blueslash.domain.notification import NotificationPayload
from blueslash.services import notification_service, user_service
from tests.factories import make_user


PAYLOAD = NotificationPayload(title="Hello", body="World")


@pytest.mark.unit
class TestUserService:
    async def test_ensure_user_is_idempotent(self, ctx):
        first = await user_service.ensure_user(ctx, user_id="u1", email="ann@example.com", display_name="")
        second = await user_service.ensure_user(ctx, user_id="u1", email="other@example.com", display_name="Other")

        assert first.display_name == "ann"
        assert second.email == "ann@example.com"
        assert second.gems == 0

    async def test_get_unknown_user(self, ctx):
        with pytest.raises(errors.NotFoundError):
            await user_service.get_user(ctx, user_id="nobody")

    async def test_update_preferences(self, ctx):
        await make_user(ctx, "alice")

        user = await user_service.update_notification_preferences(ctx, user_id="alice", kitchen_posts=False)

        assert user.notification_preferences.kitchen_posts is False
        assert user.notification_preferences.task_reminders is True

    async def test_unknown_preference_rejected(self, ctx):
        await make_user(ctx, "alice")

        with pytest.raises(errors.ValidationError, match="sms"):
            await user_service.update_notification_preferences(ctx, user_id="alice", sms=True)

    async def test_token_toggles_push(self, ctx):
        await make_user(ctx, "alice", push=False)

        registered = await user_service.set_notification_token(ctx, user_id="alice", token="tok")
        cleared = await user_service.set_notification_token(ctx, user_id="alice", token=None)

        assert registered.notification_preferences.push is True
        assert cleared.notification_token is None
        assert cleared.notification_preferences.push is False


@pytest.mark.unit
class TestNotifyUsers:
    async def test_delivers_to_each_user_once(self, ctx, notifier):
        await make_user(ctx, "alice")
        await make_user(ctx, "bob")

        sent = await notification_service.notify_users(ctx, user_ids=["alice", "bob", "alice"], payload=PAYLOAD)

        assert sent == 2
        assert sorted(notifier.recipients) == ["alice", "bob"]

    async def test_push_disabled_users_skipped(self, ctx, notifier):
        await make_user(ctx, "alice", push=False)

        sent = await notification_service.notify_users(ctx, user_ids=["alice"], payload=PAYLOAD)

        assert sent == 0
        assert notifier.sent == []

    async def test_missing_user_is_skipped(self, ctx, notifier):
        await make_user(ctx, "alice")

        sent = await notification_service.notify_users(ctx, user_ids=["ghost", "alice"], payload=PAYLOAD)

        assert sent == 1

    async def test_unregistered_token_is_cleared(self, ctx, notifier):
        await make_user(ctx, "alice")
        notifier.unregistered = {"alice"}

        sent = await notification_service.notify_users(ctx, user_ids=["alice"], payload=PAYLOAD)

        assert sent == 0
        user = await user_service.get_user(ctx, user_id="alice")
        assert user.notification_token is None
        assert user.notification_preferences.push is False

    async def test_failures_never_raise(self, ctx, notifier):
        await make_user(ctx, "alice")
        await make_user(ctx, "bob")
        notifier.failing = {"alice"}

        sent = await notification_service.notify_users(ctx, user_ids=["alice", "bob"], payload=PAYLOAD)

        assert sent == 1
        assert notifier.recipients == ["bob"]

    async def test_unknown_required_preference_is_an_error(self, ctx):
        user = await make_user(ctx, "alice")

        with pytest.raises(ValueError, match="Unknown notification preference"):
            notification_service.wants_notification(user, ["carrier_pigeon"])

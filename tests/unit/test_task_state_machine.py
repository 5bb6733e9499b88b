"""Tests for task status transitions."""

from datetime import UTC, datetime

import pytest

from blueslash.core import errors
from blueslash.core.db_client import DELETE_FIELD
from blueslash.domain.task import Task, TaskStatus
from blueslash.services.task_state_machine import can_transition, ensure_status, transition_update


NOW = datetime(2026, 2, 1, tzinfo=UTC)


def task(status=TaskStatus.PUBLISHED, claimed_by=None):
    return Task(
        id="t1",
        household_id="h1",
        creator_id="alice",
        title="Laundry",
        status=status,
        claimed_by=claimed_by,
        due_date=NOW,
        gems=10,
    )


@pytest.mark.unit
@pytest.mark.parametrize(
    ("current", "target", "allowed"),
    [
        (TaskStatus.DRAFT, TaskStatus.PUBLISHED, True),
        (TaskStatus.DRAFT, TaskStatus.CLAIMED, False),
        (TaskStatus.PUBLISHED, TaskStatus.CLAIMED, True),
        (TaskStatus.CLAIMED, TaskStatus.COMPLETED, True),
        (TaskStatus.CLAIMED, TaskStatus.VERIFIED, False),
        (TaskStatus.COMPLETED, TaskStatus.VERIFIED, True),
        (TaskStatus.VERIFIED, TaskStatus.PUBLISHED, False),
    ],
)
def test_can_transition(current, target, allowed):
    assert can_transition(current, target) is allowed


@pytest.mark.unit
class TestTransitionUpdate:
    def test_claim_sets_claimant(self):
        update = transition_update(task(), TaskStatus.CLAIMED, now=NOW, claimed_by="bob")

        assert update == {"status": TaskStatus.CLAIMED, "updated_at": NOW, "claimed_by": "bob"}

    def test_completion_keeps_claimant(self):
        update = transition_update(task(TaskStatus.CLAIMED, "bob"), TaskStatus.COMPLETED, now=NOW)

        assert update["claimed_by"] == "bob"

    def test_release_clears_claimant(self):
        update = transition_update(task(TaskStatus.CLAIMED, "bob"), TaskStatus.PUBLISHED, now=NOW)

        assert update["claimed_by"] is DELETE_FIELD

    def test_claim_without_claimant_rejected(self):
        with pytest.raises(errors.FailedPreconditionError):
            transition_update(task(), TaskStatus.CLAIMED, now=NOW)

    def test_invalid_transition_rejected(self):
        with pytest.raises(errors.FailedPreconditionError):
            transition_update(task(TaskStatus.DRAFT), TaskStatus.COMPLETED, now=NOW, claimed_by="bob")


@pytest.mark.unit
def test_ensure_status():
    ensure_status(task(), TaskStatus.PUBLISHED, "claim")

    with pytest.raises(errors.FailedPreconditionError, match="Cannot claim"):
        ensure_status(task(TaskStatus.DRAFT), TaskStatus.PUBLISHED, "claim")


@pytest.mark.unit
def test_claimant_must_match_status():
    with pytest.raises(ValueError, match="claimed_by"):
        task(TaskStatus.PUBLISHED, claimed_by="bob")
    with pytest.raises(ValueError, match="claimed_by"):
        task(TaskStatus.COMPLETED)

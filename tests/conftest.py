"""Pytest configuration and shared fixtures.

Services run against a real DocumentStore on a temporary SQLite file; the
push, LLM and blob collaborators are replaced with recording fakes.
"""

from collections.abc import AsyncIterator

import pytest

from blueslash.core.config import Settings
from blueslash.core.context import AppContext
from blueslash.core.db_client import DocumentStore
from tests.factories import HouseholdFixture, make_household
from tests.unit.mocks import FakeGemEstimator, InMemoryBlobStore, RecordingNotifier


@pytest.fixture
def test_settings(tmp_path) -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,
        sqlite_db_path=str(tmp_path / "blueslash.db"),
        blob_store_dir=str(tmp_path / "blobs"),
        app_base_url="https://blueslash.test",
    )


@pytest.fixture
async def store(test_settings: Settings) -> AsyncIterator[DocumentStore]:
    document_store = DocumentStore(test_settings.sqlite_db_path)
    await document_store.init_schema()
    yield document_store
    await document_store.close()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def gem_estimator() -> FakeGemEstimator:
    return FakeGemEstimator(gems=10)


@pytest.fixture
def blob_store() -> InMemoryBlobStore:
    return InMemoryBlobStore()


@pytest.fixture
def ctx(
    store: DocumentStore,
    notifier: RecordingNotifier,
    gem_estimator: FakeGemEstimator,
    blob_store: InMemoryBlobStore,
    test_settings: Settings,
) -> AppContext:
    return AppContext(
        store=store,
        notifier=notifier,
        gem_estimator=gem_estimator,
        blob_store=blob_store,
        settings=test_settings,
    )


@pytest.fixture
async def house(ctx: AppContext) -> HouseholdFixture:
    """Four-member household: alice (head), bob, carol, dave."""
    return await make_household(ctx, ["alice", "bob", "carol", "dave"])

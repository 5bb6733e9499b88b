"""Explicit dependency bundle handed to every service operation."""

from dataclasses import dataclass, field

from blueslash.core.config import Settings, settings
from blueslash.core.db_client import DocumentStore
from blueslash.ports.blob_store_port import BlobStorePort
from blueslash.ports.gem_estimator_port import GemEstimatorPort
from blueslash.ports.notification_port import NotificationPort


@dataclass
class AppContext:
    """Store and collaborators used by the service layer.

    Built once at startup (see ``blueslash.main``) and replaced with fakes in tests.
    """

    store: DocumentStore
    notifier: NotificationPort
    gem_estimator: GemEstimatorPort | None = None
    blob_store: BlobStorePort | None = None
    settings: Settings = field(default_factory=lambda: settings)

"""
Connectors Package for the Account Lifecycle Engine.

This package provides integrations with the external systems a lifecycle
workflow touches: the identity directory, the user record store, per-user
object storage and the email channel.
"""

import logging

from ..config import LifecycleSettings
from .base_connector import BaseConnector, ConnectorResult, MockConnector
from .directory import CognitoDirectory, IdentityDirectory, MockDirectory
from .notifier import MockNotifier, Notifier, SESNotifier
from .object_store import MockObjectStore, ObjectStore, S3ObjectStore, namespace_key
from .record_store import DynamoRecordStore, MockRecordStore, RecordStore

logger = logging.getLogger(__name__)


class Connectors:
    """The set of connectors a runtime is wired with."""

    def __init__(self, directory: IdentityDirectory, records: RecordStore,
                 storage: ObjectStore, notifier: Notifier):
        self.directory = directory
        self.records = records
        self.storage = storage
        self.notifier = notifier

    def all(self):
        return [self.directory, self.records, self.storage, self.notifier]

    @classmethod
    def mock(cls) -> "Connectors":
        return cls(MockDirectory(), MockRecordStore(), MockObjectStore(), MockNotifier())


def build_connectors(settings: LifecycleSettings) -> Connectors:
    """Build mock or boto3-backed connectors depending on settings.mock_mode."""
    if settings.mock_mode:
        logger.info("Building mock connectors")
        return Connectors.mock()

    return Connectors(
        directory=CognitoDirectory(settings.directory.user_pool_id, region=settings.region),
        records=DynamoRecordStore(
            settings.records.table_name,
            identity_index=settings.records.identity_index,
            region=settings.region,
        ),
        storage=S3ObjectStore(settings.storage.bucket_name, region=settings.region),
        notifier=SESNotifier(
            settings.notifications.source_email,
            reply_to=settings.notifications.reply_to,
            region=settings.region,
        ),
    )


__all__ = [
    "BaseConnector",
    "MockConnector",
    "ConnectorResult",
    "Connectors",
    "build_connectors",
    "IdentityDirectory",
    "CognitoDirectory",
    "MockDirectory",
    "RecordStore",
    "DynamoRecordStore",
    "MockRecordStore",
    "ObjectStore",
    "S3ObjectStore",
    "MockObjectStore",
    "namespace_key",
    "Notifier",
    "SESNotifier",
    "MockNotifier",
]

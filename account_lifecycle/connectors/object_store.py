"""
Object Store Connector.

Creates the per-user storage namespace: a zero-byte placeholder object
whose key is the user id followed by a slash. Writing the same key twice
leaves the store unchanged, so the operation is idempotent.
"""

import logging
from abc import abstractmethod
from typing import Any, Dict, Optional, Set

import boto3

from .base_connector import BOTO_ERRORS, BaseConnector, ConnectorResult, MockConnector

logger = logging.getLogger(__name__)

FOLDER_CONTENT_TYPE = "application/x-directory"


def namespace_key(user_id: str) -> str:
    """Storage key of a user's namespace."""
    return f"{user_id}/"


class ObjectStore(BaseConnector):
    """Interface for per-user file storage."""

    system_name = "storage"

    @abstractmethod
    def ensure_namespace(self, user_id: str) -> ConnectorResult:
        """Create the user's namespace if needed; data is {"key": str}."""


class S3ObjectStore(ObjectStore):
    """Object store backed by an S3 bucket."""

    def __init__(self, bucket_name: Optional[str], region: str = "us-east-1",
                 client: Optional[Any] = None):
        super().__init__(mock_mode=False)
        self.bucket_name = bucket_name
        self.client = client or boto3.client("s3", region_name=region)

    def validate_config(self) -> bool:
        return bool(self.bucket_name)

    def ensure_namespace(self, user_id: str) -> ConnectorResult:
        if not self.bucket_name:
            return self._not_configured("bucket_name")

        key = namespace_key(user_id)
        try:
            self.client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=b"",
                ContentType=FOLDER_CONTENT_TYPE,
            )
            logger.info(f"Created storage namespace s3://{self.bucket_name}/{key}")
            return ConnectorResult(True, f"Created namespace {key}", {"key": key})

        except BOTO_ERRORS as e:
            return self._client_failure(f"create namespace {key}", e)


class MockObjectStore(MockConnector, ObjectStore):
    """In-memory object store."""

    def __init__(self):
        super().__init__()
        self.keys: Set[str] = set()

    def ensure_namespace(self, user_id: str) -> ConnectorResult:
        injected = self._record_call("ensure_namespace")
        if injected:
            return injected

        key = namespace_key(user_id)
        with self._lock:
            self.keys.add(key)

        logger.info(f"Mock created namespace {key}")
        return ConnectorResult(True, f"Created namespace {key}", {"key": key})

    def get_mock_state(self) -> Dict[str, Any]:
        state = super().get_mock_state()
        with self._lock:
            state["keys"] = sorted(self.keys)
        return state

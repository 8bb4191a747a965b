"""
User Record Store Connector.

Persistence of UserRecords keyed by the generated user id, with a
secondary lookup by identity id. Creation is a conditional put that
fails with a CONFLICT if the user id is already taken; tier changes are
unconditional "set to target value" updates.
"""

import logging
from abc import abstractmethod
from datetime import datetime
from typing import Any, Dict, Optional

import boto3
from boto3.dynamodb.conditions import Key

from ..models import ErrorKind, Tier, UserRecord
from .base_connector import BOTO_ERRORS, BaseConnector, ConnectorResult, MockConnector

logger = logging.getLogger(__name__)


class RecordStore(BaseConnector):
    """Interface for the primary user record store."""

    system_name = "records"

    @abstractmethod
    def put_if_absent(self, record: UserRecord) -> ConnectorResult:
        """
        Create a record unless one with the same user id exists.

        Returns:
            ConnectorResult; kind is CONFLICT when the user id is taken
        """

    @abstractmethod
    def find_by_identity(self, identity_id: str) -> ConnectorResult:
        """
        Look up the record of an identity (first match wins).

        Returns:
            ConnectorResult with the UserRecord as data; kind is NOT_FOUND
            when no record exists
        """

    @abstractmethod
    def set_tier(self, user_id: str, tier: Tier, updated_at: datetime) -> ConnectorResult:
        """Unconditionally set tier and updatedAt; data is the updated UserRecord."""

    @abstractmethod
    def get(self, user_id: str) -> ConnectorResult:
        """Get a record by user id."""


class DynamoRecordStore(RecordStore):
    """Record store backed by a DynamoDB table with an identity-id index."""

    def __init__(self, table_name: Optional[str], identity_index: str = "cognitoUserId",
                 region: str = "us-east-1", table: Optional[Any] = None):
        super().__init__(mock_mode=False)
        self.table_name = table_name
        self.identity_index = identity_index
        if table is not None:
            self.table = table
        elif table_name:
            self.table = boto3.resource("dynamodb", region_name=region).Table(table_name)
        else:
            self.table = None

    def validate_config(self) -> bool:
        return self.table is not None

    def put_if_absent(self, record: UserRecord) -> ConnectorResult:
        if self.table is None:
            return self._not_configured("table_name")

        try:
            self.table.put_item(
                Item=record.to_item(),
                ConditionExpression="attribute_not_exists(userId)",
            )
            logger.info(f"Created record {record.user_id} for identity {record.identity_id}")
            return ConnectorResult(True, f"Created record {record.user_id}", record)

        except BOTO_ERRORS as e:
            return self._client_failure(f"create record {record.user_id}", e)

    def find_by_identity(self, identity_id: str) -> ConnectorResult:
        if self.table is None:
            return self._not_configured("table_name")

        try:
            response = self.table.query(
                IndexName=self.identity_index,
                KeyConditionExpression=Key("cognitoUserId").eq(identity_id),
            )
        except BOTO_ERRORS as e:
            return self._client_failure(f"query record for identity {identity_id}", e)

        items = response.get("Items", [])
        if not items:
            error_msg = f"No record found for identity {identity_id}"
            logger.error(error_msg)
            return ConnectorResult(False, error_msg, error=error_msg, kind=ErrorKind.NOT_FOUND)

        if len(items) > 1:
            logger.warning(f"{len(items)} records share identity {identity_id}, using the first")

        return ConnectorResult(True, f"Found record for {identity_id}",
                               UserRecord.from_item(items[0]))

    def set_tier(self, user_id: str, tier: Tier, updated_at: datetime) -> ConnectorResult:
        if self.table is None:
            return self._not_configured("table_name")

        try:
            response = self.table.update_item(
                Key={"userId": user_id},
                UpdateExpression="SET #tier = :tier, #updatedAt = :updatedAt",
                ExpressionAttributeNames={"#tier": "tier", "#updatedAt": "updatedAt"},
                ExpressionAttributeValues={
                    ":tier": tier.value,
                    ":updatedAt": updated_at.isoformat(),
                },
                ReturnValues="ALL_NEW",
            )
            logger.info(f"Set tier of {user_id} to {tier.value}")
            attributes = response.get("Attributes")
            return ConnectorResult(True, f"Updated tier of {user_id}",
                                   UserRecord.from_item(attributes) if attributes else None)

        except BOTO_ERRORS as e:
            return self._client_failure(f"update tier of {user_id}", e)

    def get(self, user_id: str) -> ConnectorResult:
        if self.table is None:
            return self._not_configured("table_name")

        try:
            response = self.table.get_item(Key={"userId": user_id})
        except BOTO_ERRORS as e:
            return self._client_failure(f"get record {user_id}", e)

        item = response.get("Item")
        if not item:
            return ConnectorResult(False, f"Record {user_id} not found",
                                   error=f"Record {user_id} not found", kind=ErrorKind.NOT_FOUND)
        return ConnectorResult(True, f"Found record {user_id}", UserRecord.from_item(item))


class MockRecordStore(MockConnector, RecordStore):
    """In-memory record store."""

    def __init__(self):
        super().__init__()
        self.items: Dict[str, Dict[str, Any]] = {}

    def put_if_absent(self, record: UserRecord) -> ConnectorResult:
        injected = self._record_call("put_if_absent")
        if injected:
            return injected

        with self._lock:
            if record.user_id in self.items:
                error_msg = f"Record {record.user_id} already exists"
                logger.warning(error_msg)
                return ConnectorResult(False, error_msg, error=error_msg, kind=ErrorKind.CONFLICT)
            self.items[record.user_id] = record.to_item()

        logger.info(f"Mock created record {record.user_id}")
        return ConnectorResult(True, f"Created record {record.user_id}", record)

    def find_by_identity(self, identity_id: str) -> ConnectorResult:
        injected = self._record_call("find_by_identity")
        if injected:
            return injected

        with self._lock:
            matches = [item for _, item in sorted(self.items.items())
                       if item.get("cognitoUserId") == identity_id]

        if not matches:
            error_msg = f"No record found for identity {identity_id}"
            return ConnectorResult(False, error_msg, error=error_msg, kind=ErrorKind.NOT_FOUND)
        return ConnectorResult(True, f"Found record for {identity_id}",
                               UserRecord.from_item(matches[0]))

    def set_tier(self, user_id: str, tier: Tier, updated_at: datetime) -> ConnectorResult:
        injected = self._record_call("set_tier")
        if injected:
            return injected

        with self._lock:
            # Update creates the item if absent, like the real store
            item = self.items.setdefault(user_id, {"userId": user_id})
            item["tier"] = tier.value
            item["updatedAt"] = updated_at.isoformat()
            snapshot = dict(item)

        logger.info(f"Mock set tier of {user_id} to {tier.value}")
        try:
            record = UserRecord.from_item(snapshot)
        except ValueError:
            record = None
        return ConnectorResult(True, f"Updated tier of {user_id}", record)

    def get(self, user_id: str) -> ConnectorResult:
        injected = self._record_call("get")
        if injected:
            return injected

        with self._lock:
            item = self.items.get(user_id)
        if not item:
            return ConnectorResult(False, f"Record {user_id} not found",
                                   error=f"Record {user_id} not found", kind=ErrorKind.NOT_FOUND)
        return ConnectorResult(True, f"Found record {user_id}", UserRecord.from_item(item))

    def get_mock_state(self) -> Dict[str, Any]:
        state = super().get_mock_state()
        with self._lock:
            state["items"] = {k: dict(v) for k, v in self.items.items()}
        return state

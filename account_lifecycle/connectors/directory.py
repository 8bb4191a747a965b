"""
Identity Directory Connector.

Group membership management against the identity provider's user pool.
Adding an existing member and removing a non-member are both treated as
successful, idempotent outcomes.
"""

import logging
from abc import abstractmethod
from typing import Any, Dict, Optional, Set

import boto3

from ..models import GroupMembership
from .base_connector import BOTO_ERRORS, BaseConnector, ConnectorResult, MockConnector

logger = logging.getLogger(__name__)

# Raised by the user pool when the user or the membership does not exist
NOT_A_MEMBER_CODES = {"ResourceNotFoundException", "UserNotFoundException"}


class IdentityDirectory(BaseConnector):
    """Interface for the identity/group directory."""

    system_name = "directory"

    @abstractmethod
    def add_to_group(self, identity_id: str, group_name: str) -> ConnectorResult:
        """
        Add an identity to a group.

        Args:
            identity_id: Identity (username) in the directory
            group_name: Group to add to

        Returns:
            ConnectorResult with success status
        """

    @abstractmethod
    def remove_from_group(self, identity_id: str, group_name: str) -> ConnectorResult:
        """
        Remove an identity from a group.

        Returns:
            ConnectorResult whose data is {"removed": bool}; removed is False
            when the identity was not a member
        """

    @abstractmethod
    def list_groups(self, identity_id: str) -> ConnectorResult:
        """List the groups of an identity (data is a GroupMembership)."""


class CognitoDirectory(IdentityDirectory):
    """Identity directory backed by a Cognito user pool."""

    def __init__(self, user_pool_id: Optional[str], region: str = "us-east-1",
                 client: Optional[Any] = None):
        super().__init__(mock_mode=False)
        self.user_pool_id = user_pool_id
        self.client = client or boto3.client("cognito-idp", region_name=region)

    def validate_config(self) -> bool:
        return bool(self.user_pool_id)

    def add_to_group(self, identity_id: str, group_name: str) -> ConnectorResult:
        """Add user to a user pool group."""
        if not self.user_pool_id:
            return self._not_configured("user_pool_id")

        try:
            self.client.admin_add_user_to_group(
                UserPoolId=self.user_pool_id,
                Username=identity_id,
                GroupName=group_name,
            )
            logger.info(f"Added {identity_id} to group {group_name}")
            return ConnectorResult(True, f"Added {identity_id} to group {group_name}")

        except BOTO_ERRORS as e:
            return self._client_failure(f"add {identity_id} to group {group_name}", e)

    def remove_from_group(self, identity_id: str, group_name: str) -> ConnectorResult:
        """Remove user from a user pool group, tolerating non-membership."""
        if not self.user_pool_id:
            return self._not_configured("user_pool_id")

        try:
            self.client.admin_remove_user_from_group(
                UserPoolId=self.user_pool_id,
                Username=identity_id,
                GroupName=group_name,
            )
            logger.info(f"Removed {identity_id} from group {group_name}")
            return ConnectorResult(True, f"Removed {identity_id} from group {group_name}",
                                   {"removed": True})

        except BOTO_ERRORS as e:
            code = getattr(e, "response", {}).get("Error", {}).get("Code")
            if code in NOT_A_MEMBER_CODES:
                logger.info(f"{identity_id} is not a member of {group_name}, nothing to remove")
                return ConnectorResult(True, f"{identity_id} not a member of {group_name}",
                                       {"removed": False})
            return self._client_failure(f"remove {identity_id} from group {group_name}", e)

    def list_groups(self, identity_id: str) -> ConnectorResult:
        """List the groups of a user pool user."""
        if not self.user_pool_id:
            return self._not_configured("user_pool_id")

        try:
            paginator = self.client.get_paginator("admin_list_groups_for_user")
            groups = []
            for page in paginator.paginate(UserPoolId=self.user_pool_id, Username=identity_id):
                groups.extend(g["GroupName"] for g in page.get("Groups", []))

            logger.debug(f"Retrieved {len(groups)} groups for {identity_id}")
            return ConnectorResult(True, f"Groups for {identity_id}",
                                   GroupMembership(identity_id=identity_id, groups=groups))

        except BOTO_ERRORS as e:
            return self._client_failure(f"list groups for {identity_id}", e)


class MockDirectory(MockConnector, IdentityDirectory):
    """In-memory identity directory."""

    def __init__(self, memberships: Optional[Dict[str, Set[str]]] = None):
        super().__init__()
        self.memberships: Dict[str, Set[str]] = {
            identity: set(groups) for identity, groups in (memberships or {}).items()
        }

    def add_to_group(self, identity_id: str, group_name: str) -> ConnectorResult:
        injected = self._record_call("add_to_group")
        if injected:
            return injected

        with self._lock:
            self.memberships.setdefault(identity_id, set()).add(group_name)

        logger.info(f"Mock added {identity_id} to group {group_name}")
        return ConnectorResult(True, f"Added {identity_id} to {group_name}")

    def remove_from_group(self, identity_id: str, group_name: str) -> ConnectorResult:
        injected = self._record_call("remove_from_group")
        if injected:
            return injected

        with self._lock:
            groups = self.memberships.get(identity_id, set())
            removed = group_name in groups
            groups.discard(group_name)

        logger.info(f"Mock removed {identity_id} from group {group_name} (was member: {removed})")
        return ConnectorResult(True, f"Removed {identity_id} from {group_name}",
                               {"removed": removed})

    def list_groups(self, identity_id: str) -> ConnectorResult:
        injected = self._record_call("list_groups")
        if injected:
            return injected

        with self._lock:
            groups = sorted(self.memberships.get(identity_id, set()))
        return ConnectorResult(True, f"Groups for {identity_id}",
                               GroupMembership(identity_id=identity_id, groups=groups))

    def groups_of(self, identity_id: str) -> Set[str]:
        with self._lock:
            return set(self.memberships.get(identity_id, set()))

    def get_mock_state(self) -> Dict[str, Any]:
        state = super().get_mock_state()
        with self._lock:
            state["memberships"] = {k: sorted(v) for k, v in self.memberships.items()}
        return state

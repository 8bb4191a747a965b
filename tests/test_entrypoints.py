"""
Tests for the transition entry points.
"""

from unittest.mock import patch

import pytest
from pydantic import ValidationError

from account_lifecycle.bootstrap import build_runtime
from account_lifecycle.config import LifecycleSettings
from account_lifecycle.entrypoints import (
    SERVER_CONFIGURATION_ERROR,
    UPGRADE_COMPLETED,
    UPGRADE_FAILED,
    UPGRADE_INITIATED,
    UPGRADE_START_FAILED,
)
from account_lifecycle.errors import LifecycleError
from account_lifecycle.models import (
    ErrorKind,
    ExecutionStatus,
    PostVerificationEvent,
    UpgradeRequest,
    UserRecord,
)

pytestmark = pytest.mark.integration


def provider_payload(sub="abc", email="a@x.com", **attributes):
    user_attributes = {"sub": sub, "email": email}
    user_attributes.update(attributes)
    return {
        "triggerSource": "PostConfirmation_ConfirmSignUp",
        "userName": sub,
        "request": {"userAttributes": user_attributes},
        "response": {},
    }


class TestPostVerificationHandler:

    def test_returns_event_unchanged(self, runtime):
        payload = provider_payload(**{"custom:firstName": "Ada"})

        result = runtime.post_verification.handle(payload)

        assert result is payload

    def test_grants_user_group_and_starts_creation(self, runtime, connectors):
        runtime.post_verification.handle(provider_payload())
        runtime.shutdown(wait=True)

        assert connectors.directory.groups_of("abc") == {"user"}
        records = runtime.store.list_executions(identity_id="abc")
        assert len(records) == 1
        assert records[0].workflow_id == "account-creation"
        assert records[0].status == ExecutionStatus.SUCCEEDED
        assert len(connectors.records.items) == 1

    def test_start_returns_handle(self, runtime):
        event = PostVerificationEvent(identity_id="abc", user_name="abc", email="a@x.com")

        handle = runtime.post_verification.start(event)
        record = handle.wait(5)

        assert record.succeeded
        assert handle.reference.startswith("execution:account-creation:user-creation-abc-")

    def test_group_failure_is_raised(self, runtime, connectors):
        connectors.directory.inject_failure("add_to_group", ErrorKind.TRANSIENT)

        with pytest.raises(LifecycleError) as exc_info:
            runtime.post_verification.handle(provider_payload())

        assert exc_info.value.kind == ErrorKind.TRANSIENT
        assert runtime.store.list_executions() == []

    def test_invalid_event_is_raised_before_side_effects(self, runtime, connectors):
        with pytest.raises(ValidationError):
            runtime.post_verification.handle(provider_payload(email="nope"))

        assert connectors.directory.calls == []

    def test_start_failure_is_raised(self, runtime):
        with patch.object(runtime.executor, "start", side_effect=LifecycleError("engine down")):
            with pytest.raises(LifecycleError, match="engine down"):
                runtime.post_verification.handle(provider_payload())


class TestUpgradeHandler:

    @pytest.fixture
    def existing_user(self, connectors):
        connectors.directory.add_to_group("abc", "user")
        connectors.records.put_if_absent(UserRecord(user_id="u-1", identity_id="abc", email="a@x.com"))
        return "abc"

    def test_self_upgrade_initiated(self, runtime, connectors, existing_user):
        response = runtime.upgrade.handle(UpgradeRequest(
            target_identity_id="abc", requester_identity_id="abc", requester_groups=["user"]
        ))

        assert response.success
        assert response.message == UPGRADE_INITIATED
        assert response.execution_reference.startswith("execution:tier-upgrade:upgrade-user-abc-")

        record = runtime.executor.describe(response.execution_reference)
        assert record.workflow_id == "tier-upgrade"

    def test_wait_reports_completion(self, runtime, connectors, existing_user):
        response = runtime.upgrade.handle(UpgradeRequest(
            target_identity_id="abc", requester_identity_id="abc", requester_groups=["user"], wait=True
        ))

        assert response.success
        assert response.message == UPGRADE_COMPLETED
        assert connectors.directory.groups_of("abc") == {"paid"}
        assert connectors.records.items["u-1"]["tier"] == "paid"

    def test_wait_reports_failure(self, runtime):
        response = runtime.upgrade.handle(UpgradeRequest(
            target_identity_id="ghost", requester_identity_id="ghost", wait=True
        ))

        assert not response.success
        assert response.message == UPGRADE_FAILED
        assert response.execution_reference

    def test_already_paid_starts_nothing(self, runtime, connectors):
        response = runtime.upgrade.handle(UpgradeRequest(
            target_identity_id="abc", requester_identity_id="abc", requester_groups=["user", "paid"]
        ))

        assert not response.success
        assert response.message == "already a paid member"
        assert response.execution_reference is None
        assert runtime.store.list_executions() == []
        assert connectors.directory.calls == []

    def test_other_identity_without_admin_is_unauthorized(self, runtime, connectors):
        response = runtime.upgrade.handle(UpgradeRequest(
            target_identity_id="zzz", requester_identity_id="abc", requester_groups=["user"]
        ))

        assert not response.success
        assert response.message == "unauthorized"
        assert runtime.store.list_executions() == []

    def test_unauthorized_takes_precedence_over_already_paid(self, runtime):
        response = runtime.upgrade.handle(UpgradeRequest(
            target_identity_id="zzz", requester_identity_id="abc", requester_groups=["paid"]
        ))
        assert response.message == "unauthorized"

    def test_admin_may_upgrade_others(self, runtime, existing_user):
        response = runtime.upgrade.handle(UpgradeRequest(
            target_identity_id="abc", requester_identity_id="admin-1", requester_groups=["admin"]
        ))

        assert response.success
        assert response.message == UPGRADE_INITIATED

    def test_missing_configuration(self, connectors):
        settings = LifecycleSettings(mock_mode=False)
        runtime = build_runtime(settings, connectors)
        try:
            response = runtime.upgrade.handle(UpgradeRequest(
                target_identity_id="abc", requester_identity_id="abc"
            ))
        finally:
            runtime.shutdown()

        assert not response.success
        assert response.message == SERVER_CONFIGURATION_ERROR
        assert runtime.store.list_executions() == []

    def test_unauthorized_checked_before_configuration(self, connectors):
        runtime = build_runtime(LifecycleSettings(mock_mode=False), connectors)
        try:
            response = runtime.upgrade.handle(UpgradeRequest(
                target_identity_id="zzz", requester_identity_id="abc"
            ))
        finally:
            runtime.shutdown()

        assert response.message == "unauthorized"

    def test_start_failure_is_reported_not_raised(self, runtime):
        with patch.object(runtime.executor, "start", side_effect=RuntimeError("pool closed")):
            response = runtime.upgrade.handle(UpgradeRequest(
                target_identity_id="abc", requester_identity_id="abc"
            ))

        assert not response.success
        assert response.message == UPGRADE_START_FAILED

"""
Transition Entry Points.

The two triggers into the workflow executor:

- PostVerificationHandler: identity provider hook fired after a user
  verifies; grants the initial group and starts account creation.
- UpgradeHandler: authenticated request to move an identity to the paid
  tier; gated by the IdentityGate and always answered with an
  UpgradeResponse.
"""

import logging
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Dict, Optional, Union

from .config import LifecycleSettings
from .connectors import IdentityDirectory
from .engine.gate import IdentityGate
from .errors import ConfigurationError, LifecycleError
from .models import Group, PostVerificationEvent, TierUpgradeInput, UpgradeRequest, UpgradeResponse
from .workflows import ACCOUNT_CREATION, TIER_UPGRADE, ExecutionHandle, WorkflowExecutor

logger = logging.getLogger(__name__)

SERVER_CONFIGURATION_ERROR = "server configuration error"
UPGRADE_INITIATED = "upgrade initiated"
UPGRADE_START_FAILED = "failed to initiate upgrade"
UPGRADE_COMPLETED = "upgrade completed"
UPGRADE_FAILED = "upgrade failed"


class PostVerificationHandler:
    """
    Handles the identity provider's post-verification notification.

    Failures are re-raised so the provider fails the verification flow.
    """

    def __init__(self, directory: IdentityDirectory, executor: WorkflowExecutor,
                 initial_group: Union[Group, str] = Group.USER):
        self.directory = directory
        self.executor = executor
        self.initial_group = initial_group.value if isinstance(initial_group, Group) else initial_group

    def start(self, event: PostVerificationEvent) -> ExecutionHandle:
        """
        Grant the initial group and start the account creation workflow.

        Args:
            event: Parsed post-verification event

        Returns:
            ExecutionHandle of the started account creation run

        Raises:
            LifecycleError: the group grant or the workflow start failed
            ValidationError: the event does not carry a valid workflow input
        """
        workflow_input = event.to_workflow_input()
        result = self.directory.add_to_group(event.user_name, self.initial_group)
        if not result.success:
            raise LifecycleError(
                f"Failed to add {event.user_name} to group {self.initial_group}: {result.error}",
                result.kind,
            )

        handle = self.executor.start(ACCOUNT_CREATION, workflow_input)
        logger.info(f"Started account creation for {event.identity_id}: {handle.reference}")
        return handle

    def handle(self, event: Union[PostVerificationEvent, Dict[str, Any]]):
        """
        Process a post-verification event and hand it back unchanged.

        Accepts either a parsed PostVerificationEvent or the provider's raw
        trigger payload.
        """
        try:
            parsed = event if isinstance(event, PostVerificationEvent) \
                else PostVerificationEvent.from_provider_payload(event)
            self.start(parsed)
        except Exception:
            logger.exception("Error in post-verification handler")
            raise

        return event


class UpgradeHandler:
    """
    Handles tier upgrade requests.

    Checks run in order: authorization, configuration, already-paid.
    Nothing is started unless all three pass. Never raises.
    """

    def __init__(self, gate: IdentityGate, executor: WorkflowExecutor,
                 settings: Optional[LifecycleSettings] = None,
                 wait_timeout: Optional[float] = None):
        self.gate = gate
        self.executor = executor
        self.settings = settings or executor.settings
        self.wait_timeout = wait_timeout

    def handle(self, request: UpgradeRequest) -> UpgradeResponse:
        """
        Decide on and start a tier upgrade.

        Args:
            request: Upgrade request with the caller's identity and claims

        Returns:
            UpgradeResponse with the execution reference when started
        """
        decision = self.gate.authorize(
            request.requester_identity_id,
            request.requester_groups,
            request.target_identity_id,
        )
        if not decision:
            return UpgradeResponse(success=False, message=decision.reason)

        missing = self.settings.missing_required()
        if missing:
            logger.error(f"Cannot start upgrade, missing configuration: {', '.join(missing)}")
            return UpgradeResponse(success=False, message=SERVER_CONFIGURATION_ERROR)

        transition = self.gate.check_transition(request.requester_groups, Group.PAID)
        if not transition:
            logger.info(f"Upgrade of {request.target_identity_id} skipped: {transition.reason}")
            return UpgradeResponse(success=False, message=transition.reason)

        try:
            handle = self.executor.start(
                TIER_UPGRADE, TierUpgradeInput(identity_id=request.target_identity_id)
            )
        except ConfigurationError as e:
            logger.error(f"Cannot start upgrade: {e}")
            return UpgradeResponse(success=False, message=SERVER_CONFIGURATION_ERROR)
        except Exception:
            logger.exception(f"Failed to start upgrade for {request.target_identity_id}")
            return UpgradeResponse(success=False, message=UPGRADE_START_FAILED)

        if not request.wait:
            return UpgradeResponse(success=True, message=UPGRADE_INITIATED,
                                   execution_reference=handle.reference)

        try:
            record = handle.wait(self.wait_timeout)
        except FuturesTimeoutError:
            logger.warning(f"Gave up waiting for {handle.reference}")
            return UpgradeResponse(success=False, message=UPGRADE_FAILED,
                                   execution_reference=handle.reference)

        return UpgradeResponse(
            success=record.succeeded,
            message=UPGRADE_COMPLETED if record.succeeded else UPGRADE_FAILED,
            execution_reference=handle.reference,
        )

"""
Tier Upgrade Workflow.

Moves an identity from the user tier to the paid tier:

    RevokeGroup(user) -> GrantGroup(paid) -> AdvanceTier -> NotifyUser

Directory membership changes before the record's tier flag, since
authorization decisions are keyed off the directory. A failed grant
aborts the chain before the record store is touched.
"""

from typing import Optional

from ..config import LifecycleSettings
from ..connectors import Connectors
from ..models import Group, Tier, TierUpgradeInput, TierUpgradeResult
from ..notifications import PAID_WELCOME
from .base_workflow import WorkflowDefinition
from .steps import AdvanceTier, GrantGroup, NotifyUser, RevokeGroup

TIER_UPGRADE = "tier-upgrade"
TIER_UPGRADE_PREFIX = "upgrade-user"


def build_tier_upgrade(connectors: Connectors,
                       settings: Optional[LifecycleSettings] = None) -> WorkflowDefinition:
    """Build the tier upgrade workflow definition."""
    settings = settings or LifecycleSettings()

    return WorkflowDefinition(
        workflow_id=TIER_UPGRADE,
        input_model=TierUpgradeInput,
        name_prefix=TIER_UPGRADE_PREFIX,
        description="Move the identity to the paid group and tier",
        nodes=[
            RevokeGroup(connectors.directory, Group.USER, name="RemoveFromUserGroup"),
            GrantGroup(connectors.directory, Group.PAID, name="AddToPaidGroup"),
            AdvanceTier(connectors.records, Tier.PAID, name="UpdateUserTier"),
            NotifyUser(
                connectors.notifier,
                PAID_WELCOME,
                settings=settings.notifications,
                records=connectors.records,
                output_model=TierUpgradeResult,
                name="SendPaidWelcomeEmail",
            ),
        ],
    )

"""
Workflows Package.

This package provides the workflow building blocks, the concrete steps,
the account creation and tier upgrade definitions and the executor that
runs them.
"""

from .account_creation import ACCOUNT_CREATION, build_account_creation
from .base_workflow import Join, RunContext, Step, StepRunner, WorkflowDefinition
from .executor import ExecutionHandle, WorkflowExecutor
from .steps import (
    AdvanceTier,
    GenerateIdentity,
    GrantGroup,
    NotifyUser,
    PersistRecord,
    ProvisionStorage,
    RevokeGroup,
)
from .tier_upgrade import TIER_UPGRADE, build_tier_upgrade

__all__ = [
    "ACCOUNT_CREATION",
    "TIER_UPGRADE",
    "build_account_creation",
    "build_tier_upgrade",
    "Step",
    "Join",
    "RunContext",
    "StepRunner",
    "WorkflowDefinition",
    "ExecutionHandle",
    "WorkflowExecutor",
    "GenerateIdentity",
    "PersistRecord",
    "ProvisionStorage",
    "GrantGroup",
    "RevokeGroup",
    "AdvanceTier",
    "NotifyUser",
]

"""
Account Lifecycle Engine

Workflow orchestration for the lifecycle of a user account: account
creation after identity verification and the paid-tier upgrade.

Each transition is a short workflow of idempotent steps against the
identity directory, the user record store, per-user object storage and
the email channel, started through an authorizing entry point.
"""

__version__ = "1.0.0"
__author__ = "Account Lifecycle Team"
__email__ = "team@example.com"

from .bootstrap import LifecycleRuntime, build_runtime
from .config import LifecycleSettings, SettingsBuilder, load_settings
from .engine import ExecutionStore, IdentityGate
from .entrypoints import PostVerificationHandler, UpgradeHandler
from .workflows import WorkflowExecutor, build_account_creation, build_tier_upgrade

__all__ = [
    "LifecycleRuntime",
    "build_runtime",
    "LifecycleSettings",
    "SettingsBuilder",
    "load_settings",
    "ExecutionStore",
    "IdentityGate",
    "PostVerificationHandler",
    "UpgradeHandler",
    "WorkflowExecutor",
    "build_account_creation",
    "build_tier_upgrade",
]

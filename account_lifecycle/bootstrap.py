"""
Runtime assembly for the Account Lifecycle Engine.

Builds connectors, the executor with both workflow definitions, the
identity gate and the entry point handlers from a LifecycleSettings.
"""

import logging
from typing import Optional

from .audit import AuditLogger
from .config import LifecycleSettings, load_settings
from .connectors import Connectors, build_connectors
from .engine import ExecutionStore, IdentityGate
from .entrypoints import PostVerificationHandler, UpgradeHandler
from .workflows import WorkflowExecutor, build_account_creation, build_tier_upgrade

logger = logging.getLogger(__name__)


class LifecycleRuntime:
    """Everything a transport (API, CLI) needs to serve lifecycle transitions."""

    def __init__(self, settings: LifecycleSettings, connectors: Connectors,
                 executor: WorkflowExecutor, gate: IdentityGate,
                 post_verification: PostVerificationHandler, upgrade: UpgradeHandler,
                 audit_logger: Optional[AuditLogger] = None):
        self.settings = settings
        self.connectors = connectors
        self.executor = executor
        self.gate = gate
        self.post_verification = post_verification
        self.upgrade = upgrade
        self.audit_logger = audit_logger

    @property
    def store(self) -> ExecutionStore:
        return self.executor.store

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)


def build_runtime(settings: Optional[LifecycleSettings] = None,
                  connectors: Optional[Connectors] = None) -> LifecycleRuntime:
    """
    Assemble a runtime.

    Args:
        settings: Engine settings (loaded from the environment if omitted)
        connectors: Connectors to use instead of the ones built from settings

    Returns:
        LifecycleRuntime
    """
    settings = settings or load_settings()
    connectors = connectors or build_connectors(settings)

    for connector in connectors.all():
        if not connector.validate_config():
            logger.warning(f"{connector.get_system_name()} connector is not fully configured")

    audit_logger = AuditLogger(settings.audit_dir) if settings.audit_dir else None
    executor = WorkflowExecutor(
        definitions=[
            build_account_creation(connectors, settings),
            build_tier_upgrade(connectors, settings),
        ],
        store=ExecutionStore(settings.execution_state_file, settings.execution_retention),
        settings=settings,
        audit_logger=audit_logger,
    )
    gate = IdentityGate()

    logger.info(f"Built lifecycle runtime (mock_mode={settings.mock_mode})")
    return LifecycleRuntime(
        settings=settings,
        connectors=connectors,
        executor=executor,
        gate=gate,
        post_verification=PostVerificationHandler(connectors.directory, executor),
        upgrade=UpgradeHandler(gate, executor, settings),
        audit_logger=audit_logger,
    )

"""
Base Connector Classes for the Account Lifecycle Engine.

This module provides the foundation for all external-system connectors
(identity directory, record store, object store, notifier) with both
boto3-backed implementations and in-memory mock backends.
"""

import logging
import threading
from abc import ABC
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError

from ..errors import classify_client_error
from ..models import ErrorKind

logger = logging.getLogger(__name__)


class ConnectorResult:
    """Result of a connector operation."""

    def __init__(self, success: bool, message: str = "", data: Optional[Any] = None,
                 error: Optional[str] = None, kind: Optional[ErrorKind] = None):
        self.success = success
        self.message = message
        self.data = data
        self.error = error
        self.kind = kind

    def __bool__(self):
        return self.success

    def __str__(self):
        return f"{'✓' if self.success else '✗'} {self.message}"

    @property
    def retryable(self) -> bool:
        return not self.success and self.kind == ErrorKind.TRANSIENT


class BaseConnector(ABC):
    """
    Abstract base class for all system connectors.

    Each connector wraps exactly one external system. Remote failures are
    never raised: they come back as a failed ConnectorResult carrying the
    ErrorKind the calling step needs to decide between retry and abort.
    """

    system_name = "base"

    def __init__(self, mock_mode: bool = False):
        self.mock_mode = mock_mode
        logger.info(f"Initialized {self.__class__.__name__} (mock_mode={mock_mode})")

    def validate_config(self) -> bool:
        """
        Validate that the connector has all required configuration.

        Returns:
            True if configuration is valid, False otherwise
        """
        return True

    def get_system_name(self) -> str:
        """Get the name of the system this connector manages."""
        return self.system_name

    def _not_configured(self, setting: str) -> ConnectorResult:
        error_msg = f"{self.system_name}: {setting} is not configured"
        logger.error(error_msg)
        return ConnectorResult(False, error_msg, error=error_msg, kind=ErrorKind.CONFIGURATION)

    def _client_failure(self, action: str, error: Exception) -> ConnectorResult:
        """Turn a botocore error into a classified failed result."""
        error_msg = f"Failed to {action}: {error}"
        result = ConnectorResult(False, error_msg, error=str(error), kind=classify_client_error(error))
        if result.retryable:
            logger.warning(error_msg)
        else:
            logger.error(error_msg)
        return result


# Errors every boto3-backed connector catches
BOTO_ERRORS = (ClientError, BotoCoreError)


class MockConnector(BaseConnector):
    """
    Base class for mock/simulated connectors.

    Provides in-memory state guarded by a lock (steps in a Join call
    connectors concurrently) plus failure injection for simulations
    and tests.
    """

    def __init__(self):
        super().__init__(mock_mode=True)
        self._lock = threading.RLock()
        self._injected: Dict[str, List[ErrorKind]] = {}
        self.calls: List[str] = []

    def inject_failure(self, operation: str, kind: ErrorKind = ErrorKind.TRANSIENT,
                       times: int = 1) -> None:
        """
        Make the next `times` calls of `operation` fail with `kind`.

        Args:
            operation: Connector method name (e.g. "put_if_absent")
            kind: ErrorKind reported by the injected failure
            times: Number of consecutive calls to fail
        """
        with self._lock:
            self._injected.setdefault(operation, []).extend([kind] * times)

    def _record_call(self, operation: str) -> Optional[ConnectorResult]:
        """Record a call and return an injected failure if one is pending."""
        with self._lock:
            self.calls.append(operation)
            pending = self._injected.get(operation)
            if not pending:
                return None
            kind = pending.pop(0)

        error_msg = f"Injected {kind.value} failure for {self.system_name}.{operation}"
        logger.info(error_msg)
        return ConnectorResult(False, error_msg, error=error_msg, kind=kind)

    def call_count(self, operation: str) -> int:
        with self._lock:
            return self.calls.count(operation)

    def get_mock_state(self) -> Dict[str, Any]:
        """Get current mock state for inspection."""
        return {"calls": list(self.calls)}

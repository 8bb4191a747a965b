"""Shared fixtures for the Account Lifecycle Engine tests."""

import pytest

from account_lifecycle.bootstrap import build_runtime
from account_lifecycle.config import LifecycleSettings, RetrySettings, WorkflowSettings
from account_lifecycle.connectors import Connectors


@pytest.fixture
def settings():
    """Mock-mode settings with no waiting between retries."""
    return LifecycleSettings(
        mock_mode=True,
        retry=RetrySettings(max_attempts=3, interval_seconds=0, max_interval_seconds=0),
        workflow=WorkflowSettings(timeout_seconds=30, max_concurrent_runs=4),
    )


@pytest.fixture
def connectors():
    """Fresh in-memory connectors."""
    return Connectors.mock()


@pytest.fixture
def runtime(settings, connectors):
    """Runtime wired with mock connectors."""
    runtime = build_runtime(settings, connectors)
    yield runtime
    runtime.shutdown(wait=True)

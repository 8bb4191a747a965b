"""
Configuration for the Account Lifecycle Engine.

Settings for every external system are plain Pydantic structs assembled
by SettingsBuilder from defaults, a YAML/JSON file, the environment and
explicit overrides (in that order). Provisioning of the systems themselves
is not a concern of this package: only the identifiers needed to reach
them are configured here.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, Field

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class DirectorySettings(BaseModel):
    """Identity directory (user pool) settings."""
    user_pool_id: Optional[str] = None


class RecordStoreSettings(BaseModel):
    """User record table settings."""
    table_name: Optional[str] = None
    identity_index: str = Field("cognitoUserId", description="Index keyed by identity id")


class StorageSettings(BaseModel):
    """Per-user file storage settings."""
    bucket_name: Optional[str] = None


class NotificationSettings(BaseModel):
    """Transactional email settings."""
    source_email: str = "no-reply@example.com"
    reply_to: Optional[str] = None
    product_name: str = "Lambda Real Estate"


class RetrySettings(BaseModel):
    """Retry policy for transient step failures."""
    max_attempts: int = Field(6, ge=1)
    interval_seconds: float = Field(2.0, ge=0)
    backoff_rate: float = Field(2.0, ge=1)
    max_interval_seconds: float = Field(60.0, ge=0)


class WorkflowSettings(BaseModel):
    """Executor settings."""
    timeout_seconds: float = Field(300.0, gt=0)
    max_concurrent_runs: int = Field(8, ge=1)


class LifecycleSettings(BaseModel):
    """Complete engine configuration."""
    region: str = "us-east-1"
    mock_mode: bool = True
    directory: DirectorySettings = Field(default_factory=DirectorySettings)
    records: RecordStoreSettings = Field(default_factory=RecordStoreSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    workflow: WorkflowSettings = Field(default_factory=WorkflowSettings)
    audit_dir: Optional[str] = None
    execution_state_file: Optional[str] = None
    execution_retention: int = Field(1000, ge=1, description="Finished runs kept by the execution store")

    def missing_required(self) -> List[str]:
        """
        List the external identifiers that are required but not set.

        Mock mode needs none of them.
        """
        if self.mock_mode:
            return []

        required = {
            "directory.user_pool_id": self.directory.user_pool_id,
            "records.table_name": self.records.table_name,
            "storage.bucket_name": self.storage.bucket_name,
        }
        return [name for name, value in required.items() if not value]

    def require(self) -> None:
        """Raise ConfigurationError if any required identifier is missing."""
        missing = self.missing_required()
        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")


# Environment variable -> dotted settings path
ENV_MAPPING: Dict[str, str] = {
    "AWS_REGION": "region",
    "USER_POOL_ID": "directory.user_pool_id",
    "USER_TABLE_NAME": "records.table_name",
    "USER_FILES_BUCKET_NAME": "storage.bucket_name",
    "SES_SOURCE_EMAIL": "notifications.source_email",
    "LIFECYCLE_MOCK_MODE": "mock_mode",
    "LIFECYCLE_WORKFLOW_TIMEOUT": "workflow.timeout_seconds",
    "LIFECYCLE_AUDIT_DIR": "audit_dir",
    "LIFECYCLE_STATE_FILE": "execution_state_file",
    "LIFECYCLE_EXECUTION_RETENTION": "execution_retention",
}


class SettingsBuilder:
    """
    Builder for LifecycleSettings.

    Example:
        settings = (
            SettingsBuilder()
            .from_file("lifecycle.yaml")
            .from_env()
            .with_overrides(mock_mode=False)
            .build()
        )
    """

    def __init__(self):
        self._data: Dict[str, Any] = {}

    def from_file(self, path: Union[str, Path]) -> "SettingsBuilder":
        """
        Merge settings from a YAML or JSON file.

        Args:
            path: Path to a .yaml/.yml or .json file

        Returns:
            The builder
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"Configuration file not found: {path}")

        with open(path, encoding="utf-8") as f:
            if path.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)

        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration file {path} must contain a mapping")

        _deep_merge(self._data, data)
        logger.info(f"Loaded configuration from {path}")
        return self

    def from_env(self, environ: Optional[Mapping[str, str]] = None) -> "SettingsBuilder":
        """Merge settings from environment variables (see ENV_MAPPING)."""
        environ = os.environ if environ is None else environ

        for variable, dotted in ENV_MAPPING.items():
            value = environ.get(variable)
            if value is None or value == "":
                continue
            if dotted == "mock_mode":
                value = value.strip().lower() in ("1", "true", "yes", "on")
            _set_dotted(self._data, dotted, value)

        return self

    def with_overrides(self, **overrides: Any) -> "SettingsBuilder":
        """Merge explicit overrides. Nested sections may be given as dicts."""
        _deep_merge(self._data, overrides)
        return self

    def mock_mode(self, enabled: bool = True) -> "SettingsBuilder":
        self._data["mock_mode"] = enabled
        return self

    def build(self) -> LifecycleSettings:
        try:
            return LifecycleSettings.model_validate(self._data)
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e


def load_settings(config_path: Optional[Union[str, Path]] = None,
                  mock_mode: Optional[bool] = None) -> LifecycleSettings:
    """Convenience wrapper: file (optional) + environment + mock flag."""
    builder = SettingsBuilder()
    if config_path:
        builder.from_file(config_path)
    builder.from_env()
    if mock_mode is not None:
        builder.mock_mode(mock_mode)
    return builder.build()


def _set_dotted(target: Dict[str, Any], dotted: str, value: Any) -> None:
    keys = dotted.split(".")
    for key in keys[:-1]:
        target = target.setdefault(key, {})
    target[keys[-1]] = value


def _deep_merge(target: Dict[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        if isinstance(value, BaseModel):
            value = value.model_dump()
        if isinstance(value, Mapping) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = dict(value) if isinstance(value, Mapping) else value

"""
Execution Store for the Account Lifecycle Engine.

Tracks workflow runs and their step history so callers can look up the
status of an execution reference. State lives in memory with optional
JSON file persistence.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from ..models import ExecutionRecord, ExecutionStatus

logger = logging.getLogger(__name__)


class ExecutionStore:
    """
    Manages the records of workflow executions.

    Records are keyed by execution name; lookups also accept the
    execution reference handed back to callers.
    """

    def __init__(self, storage_path: Optional[Union[str, Path]] = None,
                 max_finished: int = 1000):
        """
        Initialize the execution store.

        Args:
            storage_path: Path to store execution state as JSON.
                         If None, state is kept in memory only.
            max_finished: Number of finished runs kept; older ones are
                         dropped. Running executions are always kept.
        """
        self.storage_path = Path(storage_path) if storage_path else None
        self.max_finished = max_finished
        self.executions: Dict[str, ExecutionRecord] = {}
        self._lock = threading.RLock()

        if self.storage_path:
            self.storage_path.parent.mkdir(parents=True, exist_ok=True)
            self._load_state()
            self._prune()

        logger.info(
            f"Initialized ExecutionStore with {'persistent' if self.storage_path else 'in-memory'} storage"
        )

    def reserve_name(self, base_name: str) -> str:
        """Return base_name, suffixed if a run with that name already exists."""
        with self._lock:
            name = base_name
            suffix = 1
            while name in self.executions:
                suffix += 1
                name = f"{base_name}-{suffix}"
            return name

    def add(self, record: ExecutionRecord) -> ExecutionRecord:
        with self._lock:
            if record.execution_name in self.executions:
                raise ValueError(f"Execution {record.execution_name} already exists")
            self.executions[record.execution_name] = record
            self._save_state()
        logger.info(f"Tracking execution {record.execution_name} ({record.workflow_id})")
        return record

    def save(self, record: ExecutionRecord) -> None:
        """Persist changes made to a tracked record."""
        with self._lock:
            self.executions[record.execution_name] = record
            self._prune()
            self._save_state()

    def get_execution(self, name_or_reference: str) -> Optional[ExecutionRecord]:
        """
        Get an execution by name or reference.

        Args:
            name_or_reference: Execution name or execution reference

        Returns:
            A copy of the ExecutionRecord if found, None otherwise
        """
        with self._lock:
            record = self.executions.get(name_or_reference)
            if record is None:
                record = next(
                    (r for r in self.executions.values()
                     if r.execution_reference == name_or_reference),
                    None,
                )
            return record.model_copy(deep=True) if record else None

    def list_executions(self, identity_id: Optional[str] = None,
                        workflow_id: Optional[str] = None,
                        status: Optional[ExecutionStatus] = None,
                        limit: int = 100) -> List[ExecutionRecord]:
        """List executions, most recent first, with optional filters."""
        with self._lock:
            records = [r.model_copy(deep=True) for r in self.executions.values()]

        if identity_id:
            records = [r for r in records if r.identity_id == identity_id]
        if workflow_id:
            records = [r for r in records if r.workflow_id == workflow_id]
        if status:
            records = [r for r in records if r.status == status]

        records.sort(key=lambda r: r.started_at, reverse=True)
        return records[:limit]

    def get_summary(self) -> Dict[str, Any]:
        """
        Get a summary of tracked executions.

        Returns:
            Dictionary with execution counts by status and by workflow
        """
        summary: Dict[str, Any] = {
            "total_executions": 0,
            "executions_by_status": {},
            "executions_by_workflow": {},
        }

        with self._lock:
            records = list(self.executions.values())

        for record in records:
            summary["total_executions"] += 1
            status = record.status.value
            summary["executions_by_status"][status] = summary["executions_by_status"].get(status, 0) + 1
            workflow = record.workflow_id
            summary["executions_by_workflow"][workflow] = \
                summary["executions_by_workflow"].get(workflow, 0) + 1

        return summary

    def _prune(self):
        """Drop the oldest finished runs beyond max_finished."""
        finished = [r for r in self.executions.values() if r.finished]
        excess = len(finished) - self.max_finished
        if excess <= 0:
            return

        finished.sort(key=lambda r: r.completed_at or r.started_at)
        for record in finished[:excess]:
            del self.executions[record.execution_name]
        logger.info(f"Dropped {excess} finished executions beyond the retention limit")

    def _save_state(self):
        """Save current state to persistent storage."""
        if not self.storage_path:
            return

        try:
            state_data = {
                "executions": {
                    name: record.model_dump(mode="json") for name, record in self.executions.items()
                },
                "last_updated": datetime.now(timezone.utc).isoformat(),
            }

            with open(self.storage_path, "w", encoding="utf-8") as f:
                json.dump(state_data, f, indent=2)

        except OSError as e:
            logger.error(f"Failed to save execution state to {self.storage_path}: {e}")

    def _load_state(self):
        """Load state from persistent storage."""
        if not self.storage_path or not self.storage_path.exists():
            return

        try:
            with open(self.storage_path, encoding="utf-8") as f:
                state_data = json.load(f)

            for name, data in state_data.get("executions", {}).items():
                self.executions[name] = ExecutionRecord.model_validate(data)

            logger.info(
                f"Loaded {len(self.executions)} executions from {self.storage_path}"
            )

        except (OSError, ValueError) as e:
            logger.error(f"Failed to load execution state from {self.storage_path}: {e}")
            # Continue with empty state if load fails

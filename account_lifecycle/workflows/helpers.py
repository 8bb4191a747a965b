"""
Workflow Helper Functions for the Account Lifecycle Engine.

Utility functions for naming executions, merging step outputs and
summarizing execution records.
"""

import logging
import re
import time
from typing import Any, Dict, Iterable, Optional

from ..errors import BranchCollisionError
from ..models import ExecutionRecord, StepOutcome

logger = logging.getLogger(__name__)

# Characters allowed in an execution name
_NAME_UNSAFE = re.compile(r"[^A-Za-z0-9_-]")


def execution_name(prefix: str, identity_id: str, started_ms: Optional[int] = None) -> str:
    """
    Build an execution name from the identity id and start time.

    The name keeps re-triggers for the same identity distinguishable; it is
    not a deduplication key.

    Args:
        prefix: Workflow name prefix (e.g. "user-creation")
        identity_id: External identity id the run acts on
        started_ms: Start time in epoch milliseconds (defaults to now)

    Returns:
        Execution name, at most 80 characters
    """
    if started_ms is None:
        started_ms = int(time.time() * 1000)

    safe_identity = _NAME_UNSAFE.sub("-", identity_id)
    name = f"{prefix}-{safe_identity}-{started_ms}"
    if len(name) > 80:
        # Keep the timestamp, shorten the identity part
        keep = 80 - len(prefix) - len(str(started_ms)) - 2
        name = f"{prefix}-{safe_identity[:max(keep, 1)]}-{started_ms}"
    return name


def execution_reference(workflow_id: str, name: str) -> str:
    """Reference handed back to callers for a started execution."""
    return f"execution:{workflow_id}:{name}"


def merge_branch_outputs(outputs: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Merge the outputs of Join branches by key.

    Raises:
        BranchCollisionError: two branches wrote the same field
    """
    merged: Dict[str, Any] = {}
    for output in outputs:
        collisions = set(merged) & set(output)
        if collisions:
            raise BranchCollisionError(
                f"Join branches wrote overlapping fields: {', '.join(sorted(collisions))}"
            )
        merged.update(output)
    return merged


def create_execution_summary(record: ExecutionRecord) -> Dict[str, Any]:
    """
    Create a summary of an execution for display and auditing.

    Args:
        record: ExecutionRecord

    Returns:
        Dictionary with execution summary
    """
    steps = record.steps
    succeeded = len([s for s in steps if s.outcome == StepOutcome.SUCCEEDED])
    soft_failed = len([s for s in steps if s.outcome == StepOutcome.SOFT_FAILED])

    return {
        "execution_name": record.execution_name,
        "execution_reference": record.execution_reference,
        "workflow_id": record.workflow_id,
        "identity_id": record.identity_id,
        "status": record.status.value,
        "started_at": record.started_at.isoformat() if record.started_at else None,
        "completed_at": record.completed_at.isoformat() if record.completed_at else None,
        "total_steps": len(steps),
        "successful_steps": succeeded,
        "soft_failed_steps": soft_failed,
        "failed_steps": len(steps) - succeeded - soft_failed,
        "total_attempts": sum(s.attempts for s in steps),
        "failed_step": record.failed_step,
        "error": record.error,
    }

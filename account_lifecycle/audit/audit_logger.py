"""
Audit Logging Module.

Appends one JSON line per step execution to a daily file, so every
lifecycle transition leaves a trail of what ran, how often it was
attempted and how it ended.
"""

import json
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from ..models import AuditRecord

logger = logging.getLogger(__name__)


class AuditLogger:
    """
    Append-only audit trail of step executions.

    Records are written to audit_YYYY-MM-DD.jsonl files under audit_dir.
    """

    def __init__(self, audit_dir: Union[str, Path] = "audit_logs"):
        """
        Initialize the audit logger.

        Args:
            audit_dir: Directory to store audit logs
        """
        self.audit_dir = Path(audit_dir)
        self.audit_dir.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()

    def log_event(self, record: AuditRecord) -> str:
        """
        Log an audit event.

        Args:
            record: The audit record to log

        Returns:
            The record ID

        Raises:
            OSError: the audit file could not be written
        """
        date_str = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        log_file = self.audit_dir / f"audit_{date_str}.jsonl"

        try:
            line = json.dumps(record.model_dump(mode="json"))
            # Join branches log concurrently
            with self._lock, open(log_file, "a", encoding="utf-8") as f:
                f.write(line + "\n")
        except OSError as e:
            logger.error(f"Failed to log audit event {record.id}: {e}")
            raise

        logger.debug(f"Logged audit event {record.id} for {record.execution_name}/{record.step}")
        return record.id

    def get_events(
        self,
        identity_id: Optional[str] = None,
        execution_name: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditRecord]:
        """
        Retrieve audit events, most recent first.

        Args:
            identity_id: Filter by identity id
            execution_name: Filter by execution name
            limit: Maximum number of records to return

        Returns:
            List of matching AuditRecords
        """
        results: List[AuditRecord] = []

        for log_file in sorted(self.audit_dir.glob("audit_*.jsonl"), reverse=True):
            if len(results) >= limit:
                break

            try:
                with open(log_file, encoding="utf-8") as f:
                    lines = f.readlines()
            except OSError as e:
                logger.error(f"Failed to read log file {log_file}: {e}")
                continue

            for line in reversed(lines):
                if len(results) >= limit:
                    break
                if not line.strip():
                    continue

                try:
                    record = AuditRecord.model_validate_json(line)
                except ValidationError as e:
                    logger.warning(f"Failed to parse audit record in {log_file.name}: {e}")
                    continue

                if identity_id and record.identity_id != identity_id:
                    continue
                if execution_name and record.execution_name != execution_name:
                    continue

                results.append(record)

        return results

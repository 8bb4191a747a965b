"""
Tests for execution tracking and the audit trail.
"""

from datetime import timedelta

import pytest

from account_lifecycle.audit import AuditLogger
from account_lifecycle.engine import ExecutionStore
from account_lifecycle.models import (
    AuditRecord,
    ExecutionRecord,
    ExecutionStatus,
    StepExecution,
    StepOutcome,
    utc_now,
)
from account_lifecycle.workflows.helpers import create_execution_summary, execution_reference


def make_record(name, identity_id="abc", workflow_id="account-creation", **kwargs):
    return ExecutionRecord(
        execution_name=name,
        execution_reference=execution_reference(workflow_id, name),
        workflow_id=workflow_id,
        identity_id=identity_id,
        **kwargs,
    )


class TestExecutionStore:

    def test_reserve_name_suffixes_taken_names(self):
        store = ExecutionStore()
        assert store.reserve_name("run-1") == "run-1"

        store.add(make_record("run-1"))
        assert store.reserve_name("run-1") == "run-1-2"

        store.add(make_record("run-1-2"))
        assert store.reserve_name("run-1") == "run-1-3"

    def test_add_rejects_duplicate_names(self):
        store = ExecutionStore()
        store.add(make_record("run-1"))

        with pytest.raises(ValueError):
            store.add(make_record("run-1"))

    def test_get_by_name_or_reference(self):
        store = ExecutionStore()
        record = store.add(make_record("run-1"))

        assert store.get_execution("run-1").execution_name == "run-1"
        assert store.get_execution(record.execution_reference).execution_name == "run-1"
        assert store.get_execution("missing") is None

    def test_get_returns_copy(self):
        store = ExecutionStore()
        store.add(make_record("run-1"))

        copy = store.get_execution("run-1")
        copy.status = ExecutionStatus.FAILED

        assert store.get_execution("run-1").status == ExecutionStatus.RUNNING

    def test_list_filters_and_orders(self):
        store = ExecutionStore()
        now = utc_now()
        store.add(make_record("old", started_at=now - timedelta(minutes=5)))
        store.add(make_record("new", started_at=now))
        store.add(make_record("other", identity_id="zzz", workflow_id="tier-upgrade",
                              status=ExecutionStatus.FAILED, started_at=now - timedelta(minutes=1)))

        assert [r.execution_name for r in store.list_executions()] == ["new", "other", "old"]
        assert [r.execution_name for r in store.list_executions(identity_id="abc")] == ["new", "old"]
        assert [r.execution_name for r in store.list_executions(workflow_id="tier-upgrade")] == ["other"]
        assert [r.execution_name for r in store.list_executions(status=ExecutionStatus.FAILED)] == ["other"]
        assert len(store.list_executions(limit=1)) == 1

    def test_summary_counts(self):
        store = ExecutionStore()
        store.add(make_record("a"))
        store.add(make_record("b", status=ExecutionStatus.SUCCEEDED))
        store.add(make_record("c", workflow_id="tier-upgrade", status=ExecutionStatus.SUCCEEDED))

        summary = store.get_summary()

        assert summary["total_executions"] == 3
        assert summary["executions_by_status"] == {"RUNNING": 1, "SUCCEEDED": 2}
        assert summary["executions_by_workflow"] == {"account-creation": 2, "tier-upgrade": 1}

    def test_state_persists_across_instances(self, tmp_path):
        path = tmp_path / "state" / "executions.json"
        store = ExecutionStore(path)
        record = store.add(make_record("run-1"))
        record.status = ExecutionStatus.SUCCEEDED
        record.steps.append(StepExecution(step="GenerateIdentity", attempts=1,
                                          outcome=StepOutcome.SUCCEEDED))
        store.save(record)

        reloaded = ExecutionStore(path).get_execution("run-1")

        assert reloaded.status == ExecutionStatus.SUCCEEDED
        assert reloaded.steps[0].step == "GenerateIdentity"

    def test_oldest_finished_runs_are_dropped(self):
        store = ExecutionStore(max_finished=2)
        now = utc_now()
        store.add(make_record("running", started_at=now - timedelta(minutes=10)))
        for minutes, name in ((3, "first"), (2, "second"), (1, "third")):
            record = store.add(make_record(name))
            record.status = ExecutionStatus.SUCCEEDED
            record.completed_at = now - timedelta(minutes=minutes)
            store.save(record)

        names = {r.execution_name for r in store.list_executions()}
        assert names == {"running", "second", "third"}
        assert store.get_execution("first") is None

    def test_retention_applies_to_loaded_state(self, tmp_path):
        path = tmp_path / "executions.json"
        store = ExecutionStore(path)
        now = utc_now()
        for minutes, name in ((2, "older"), (1, "newer")):
            record = store.add(make_record(name))
            record.status = ExecutionStatus.FAILED
            record.completed_at = now - timedelta(minutes=minutes)
            store.save(record)

        reloaded = ExecutionStore(path, max_finished=1)

        assert [r.execution_name for r in reloaded.list_executions()] == ["newer"]

    def test_unreadable_state_starts_empty(self, tmp_path):
        path = tmp_path / "executions.json"
        path.write_text("{not json")

        assert ExecutionStore(path).list_executions() == []


class TestExecutionSummary:

    def test_counts_step_outcomes(self):
        record = make_record("run-1", status=ExecutionStatus.FAILED, failed_step="PersistRecord",
                             error="conflict")
        record.steps = [
            StepExecution(step="GenerateIdentity", attempts=1, outcome=StepOutcome.SUCCEEDED),
            StepExecution(step="PersistRecord", attempts=3, outcome=StepOutcome.FAILED),
            StepExecution(step="ProvisionStorage", attempts=1, outcome=StepOutcome.SUCCEEDED),
            StepExecution(step="SendWelcomeEmail", attempts=2, outcome=StepOutcome.SOFT_FAILED),
        ]

        summary = create_execution_summary(record)

        assert summary["status"] == "FAILED"
        assert summary["total_steps"] == 4
        assert summary["successful_steps"] == 2
        assert summary["soft_failed_steps"] == 1
        assert summary["failed_steps"] == 1
        assert summary["total_attempts"] == 7
        assert summary["failed_step"] == "PersistRecord"
        assert summary["completed_at"] is None


class TestAuditLogger:

    def make_audit(self, number, identity_id="abc", execution_name="run-1"):
        return AuditRecord(
            id=f"audit-{number}",
            execution_name=execution_name,
            workflow_id="account-creation",
            identity_id=identity_id,
            step="GenerateIdentity",
            success=True,
            outcome=StepOutcome.SUCCEEDED,
        )

    def test_log_and_read_back_newest_first(self, tmp_path):
        audit_logger = AuditLogger(tmp_path / "audit")
        for number in range(3):
            audit_logger.log_event(self.make_audit(number))

        events = audit_logger.get_events()

        assert [e.id for e in events] == ["audit-2", "audit-1", "audit-0"]
        assert len(list((tmp_path / "audit").glob("audit_*.jsonl"))) == 1

    def test_filters(self, tmp_path):
        audit_logger = AuditLogger(tmp_path)
        audit_logger.log_event(self.make_audit(1))
        audit_logger.log_event(self.make_audit(2, identity_id="zzz", execution_name="run-2"))

        assert [e.id for e in audit_logger.get_events(identity_id="zzz")] == ["audit-2"]
        assert [e.id for e in audit_logger.get_events(execution_name="run-1")] == ["audit-1"]
        assert len(audit_logger.get_events(limit=1)) == 1

    def test_skips_corrupt_lines(self, tmp_path):
        audit_logger = AuditLogger(tmp_path)
        audit_logger.log_event(self.make_audit(1))
        log_file = next(tmp_path.glob("audit_*.jsonl"))
        with open(log_file, "a", encoding="utf-8") as f:
            f.write("garbage\n")

        assert [e.id for e in audit_logger.get_events()] == ["audit-1"]

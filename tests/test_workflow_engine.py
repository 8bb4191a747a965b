"""
Tests for the workflow building blocks: StepRunner, Join and the executor.
"""

import threading
import time
from typing import Optional
from unittest.mock import patch

import pytest

from account_lifecycle.audit import AuditLogger
from account_lifecycle.config import LifecycleSettings, RetrySettings, WorkflowSettings
from account_lifecycle.engine import ExecutionStore
from account_lifecycle.errors import (
    BranchCollisionError,
    ConfigurationError,
    InvalidInputError,
    NotFoundError,
    WorkflowFailedError,
    WorkflowTimeoutError,
)
from account_lifecycle.models import (
    ErrorKind,
    ExecutionRecord,
    ExecutionStatus,
    StepExecution,
    StepOutcome,
    StepResult,
    WorkflowPayload,
)
from account_lifecycle.workflows import Join, RunContext, Step, StepRunner, WorkflowDefinition, WorkflowExecutor


class Scratch(WorkflowPayload):
    a: Optional[int] = None
    b: Optional[int] = None
    c: Optional[int] = None


class Strict(Scratch):
    required: int


class ScriptedStep(Step):
    """Step returning queued results, then a fixed output."""

    def __init__(self, name, output=None, results=None, best_effort=False, delay=0.0,
                 fallback=None, gate: Optional[threading.Event] = None):
        super().__init__(name)
        self.output = output or {}
        self.results = list(results or [])
        self.best_effort = best_effort
        self.delay = delay
        self.fallback = fallback or {}
        self.gate = gate
        self.calls = 0
        self.finished = threading.Event()

    def execute(self, payload):
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(5)
        if self.delay:
            time.sleep(self.delay)
        try:
            if self.results:
                return self.results.pop(0)
            return StepResult.ok(**self.output)
        finally:
            self.finished.set()

    def fallback_output(self, payload):
        return self.fallback


def transient():
    return StepResult.failure(ErrorKind.TRANSIENT, "throttled")


def wait_until(predicate, timeout=5.0):
    give_up = time.monotonic() + timeout
    while time.monotonic() < give_up:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def make_context(timeout=30.0, max_attempts=3):
    record = ExecutionRecord(
        execution_name="test-run",
        execution_reference="execution:test:test-run",
        workflow_id="test",
        identity_id="abc",
    )
    runner = StepRunner(RetrySettings(max_attempts=max_attempts, interval_seconds=0,
                                      max_interval_seconds=0))
    return RunContext(record, runner, timeout)


def make_settings(timeout=30.0, max_attempts=3, interval=0.0):
    return LifecycleSettings(
        retry=RetrySettings(max_attempts=max_attempts, interval_seconds=interval,
                            max_interval_seconds=interval * 10),
        workflow=WorkflowSettings(timeout_seconds=timeout, max_concurrent_runs=2),
    )


class TestStepRunner:

    @pytest.fixture
    def runner(self):
        return StepRunner(RetrySettings(max_attempts=3, interval_seconds=0, max_interval_seconds=0))

    def test_retries_transient_failures(self, runner):
        step = ScriptedStep("flaky", output={"a": 1}, results=[transient(), transient()])
        execution = StepExecution(step="flaky")

        result = runner.run(step, Scratch(identity_id="abc"), execution=execution)

        assert result.success
        assert execution.attempts == 3

    def test_returns_last_failure_when_attempts_exhausted(self, runner):
        step = ScriptedStep("down", results=[transient() for _ in range(5)])
        execution = StepExecution(step="down")

        result = runner.run(step, Scratch(identity_id="abc"), execution=execution)

        assert not result.success
        assert result.kind == ErrorKind.TRANSIENT
        assert execution.attempts == 3

    def test_fatal_failures_are_not_retried(self, runner):
        step = ScriptedStep("conflict", results=[StepResult.failure(ErrorKind.CONFLICT, "exists")])
        execution = StepExecution(step="conflict")

        result = runner.run(step, Scratch(identity_id="abc"), execution=execution)

        assert result.kind == ErrorKind.CONFLICT
        assert execution.attempts == 1

    def test_deadline_stops_retries(self, runner):
        step = ScriptedStep("down", results=[transient() for _ in range(5)])
        execution = StepExecution(step="down")

        runner.run(step, Scratch(identity_id="abc"), deadline=time.monotonic() - 1, execution=execution)

        assert execution.attempts == 1

    def test_no_backoff_past_deadline(self):
        runner = StepRunner(RetrySettings(max_attempts=5, interval_seconds=1, max_interval_seconds=10))
        step = ScriptedStep("down", results=[transient() for _ in range(5)])
        execution = StepExecution(step="down")

        started = time.monotonic()
        result = runner.run(step, Scratch(identity_id="abc"), deadline=started + 0.2, execution=execution)

        assert not result.success
        assert execution.attempts == 1
        assert time.monotonic() - started < 0.5


class TestJoin:

    def test_merges_branch_outputs(self):
        join = Join([ScriptedStep("left", output={"a": 1}), ScriptedStep("right", output={"b": 2})])
        context = make_context()

        merged = join.run(Scratch(identity_id="abc"), context)

        assert merged == {"a": 1, "b": 2}
        assert sorted(s.step for s in context.record.steps) == ["left", "right"]

    def test_branches_see_the_same_input(self):
        seen = []

        class Capture(ScriptedStep):
            def execute(self, payload):
                seen.append(payload.c)
                return super().execute(payload)

        join = Join([Capture("one", output={"a": 1}), Capture("two", output={"b": 2})])
        join.run(Scratch(identity_id="abc", c=7), make_context())

        assert seen == [7, 7]

    def test_key_collision_is_an_error(self):
        join = Join([ScriptedStep("left", output={"a": 1}), ScriptedStep("right", output={"a": 2})])

        with pytest.raises(BranchCollisionError, match="a"):
            join.run(Scratch(identity_id="abc"), make_context())

    def test_fatal_branch_fails_fast_without_cancelling_others(self):
        release = threading.Event()
        slow = ScriptedStep("slow", output={"a": 1}, gate=release)
        broken = ScriptedStep("broken", results=[StepResult.failure(ErrorKind.NOT_FOUND, "missing")])
        join = Join([slow, broken])

        with pytest.raises(WorkflowFailedError) as exc_info:
            join.run(Scratch(identity_id="abc"), make_context())

        assert exc_info.value.step == "broken"
        assert exc_info.value.kind == ErrorKind.NOT_FOUND
        assert not slow.finished.is_set()

        # The dispatched branch still runs to completion
        release.set()
        assert slow.finished.wait(5)

    def test_branch_retries_transient_failures(self):
        flaky = ScriptedStep("flaky", output={"a": 1}, results=[transient()])
        join = Join([flaky, ScriptedStep("steady", output={"b": 2})])

        assert join.run(Scratch(identity_id="abc"), make_context()) == {"a": 1, "b": 2}
        assert flaky.calls == 2

    def test_wait_bounded_by_deadline(self):
        release = threading.Event()
        join = Join([ScriptedStep("stuck", gate=release)])

        try:
            with pytest.raises(WorkflowTimeoutError):
                join.run(Scratch(identity_id="abc"), make_context(timeout=0.1))
        finally:
            release.set()

    def test_requires_branches(self):
        with pytest.raises(ValueError):
            Join([])


class TestWorkflowExecutor:

    @pytest.fixture
    def store(self):
        return ExecutionStore()

    def make_executor(self, nodes, store, settings=None, audit_logger=None, input_model=Scratch):
        definition = WorkflowDefinition("test-flow", input_model, nodes, name_prefix="test")
        return WorkflowExecutor([definition], store, settings or make_settings(), audit_logger)

    def test_run_accumulates_outputs(self, store):
        executor = self.make_executor([
            ScriptedStep("first", output={"a": 1}),
            ScriptedStep("second", output={"b": 2}),
        ], store)

        record = executor.run("test-flow", {"identity_id": "abc"})

        assert record.status == ExecutionStatus.SUCCEEDED
        assert record.output == {"identity_id": "abc", "a": 1, "b": 2, "c": None}
        assert [s.step for s in record.steps] == ["first", "second"]
        assert all(s.outcome == StepOutcome.SUCCEEDED for s in record.steps)
        assert record.completed_at is not None

    def test_execution_naming(self, store):
        executor = self.make_executor([ScriptedStep("only")], store)

        record = executor.run("test-flow", {"identity_id": "abc"})

        prefix, identity, millis = record.execution_name.rsplit("-", 2)
        assert prefix == "test"
        assert identity == "abc"
        assert millis.isdigit()
        assert record.execution_reference == f"execution:test-flow:{record.execution_name}"

    def test_name_collision_gets_suffix(self, store):
        executor = self.make_executor([ScriptedStep("only")], store)

        with patch("account_lifecycle.workflows.executor.execution_name", return_value="test-abc-1"):
            first = executor.run("test-flow", {"identity_id": "abc"})
            second = executor.run("test-flow", {"identity_id": "abc"})

        assert first.execution_name == "test-abc-1"
        assert second.execution_name == "test-abc-1-2"

    def test_unknown_definition(self, store):
        executor = self.make_executor([ScriptedStep("only")], store)

        with pytest.raises(ConfigurationError):
            executor.start("missing", {"identity_id": "abc"})

    def test_invalid_input_starts_nothing(self, store):
        step = ScriptedStep("only")
        executor = self.make_executor([step], store)

        with pytest.raises(InvalidInputError):
            executor.start("test-flow", {"identity_id": ""})

        assert store.list_executions() == []
        assert step.calls == 0

    def test_fatal_failure_aborts_chain(self, store):
        later = ScriptedStep("later", output={"b": 2})
        executor = self.make_executor([
            ScriptedStep("broken", results=[StepResult.failure(ErrorKind.CONFLICT, "exists")]),
            later,
        ], store)

        record = executor.run("test-flow", {"identity_id": "abc"})

        assert record.status == ExecutionStatus.FAILED
        assert record.failed_step == "broken"
        assert record.error_kind == ErrorKind.CONFLICT
        assert later.calls == 0

    def test_retry_exhaustion_is_fatal(self, store):
        down = ScriptedStep("down", results=[transient() for _ in range(5)])
        executor = self.make_executor([down], store)

        record = executor.run("test-flow", {"identity_id": "abc"})

        assert record.status == ExecutionStatus.FAILED
        assert record.error_kind == ErrorKind.TRANSIENT
        assert record.steps[0].attempts == 3

    def test_best_effort_failure_is_soft(self, store):
        executor = self.make_executor([
            ScriptedStep("notify", results=[StepResult.failure(ErrorKind.CONFIGURATION, "rejected")],
                         best_effort=True, fallback={"a": 0}),
            ScriptedStep("after", output={"b": 2}),
        ], store)

        record = executor.run("test-flow", {"identity_id": "abc"})

        assert record.status == ExecutionStatus.SUCCEEDED
        assert record.output["a"] == 0
        assert record.steps[0].outcome == StepOutcome.SOFT_FAILED
        assert record.steps[0].kind == ErrorKind.SOFT_FAILURE
        assert record.steps[0].error == "rejected"

    def test_timeout_aborts_before_next_node(self, store):
        after = ScriptedStep("after")
        executor = self.make_executor([ScriptedStep("slow", delay=0.3), after], store,
                                      settings=make_settings(timeout=0.1))

        record = executor.run("test-flow", {"identity_id": "abc"})

        assert record.status == ExecutionStatus.TIMED_OUT
        assert record.error_kind == ErrorKind.TIMEOUT
        assert after.calls == 0

    def test_timeout_during_last_node(self, store):
        slow = ScriptedStep("slow", output={"a": 1}, delay=0.5)
        executor = self.make_executor([slow], store, settings=make_settings(timeout=0.1))

        started = time.monotonic()
        record = executor.run("test-flow", {"identity_id": "abc"})

        assert record.status == ExecutionStatus.TIMED_OUT
        assert record.error_kind == ErrorKind.TIMEOUT
        assert record.output is None
        assert time.monotonic() - started < 0.4

        # The overrunning step finishes on its own and its outcome is kept
        assert wait_until(lambda: store.get_execution(record.execution_name).steps[0].outcome
                          == StepOutcome.SUCCEEDED)
        assert store.get_execution(record.execution_name).status == ExecutionStatus.TIMED_OUT

    def test_timeout_during_retry_backoff(self, store):
        down = ScriptedStep("down", results=[transient() for _ in range(5)])
        executor = self.make_executor([down], store,
                                      settings=make_settings(timeout=0.3, max_attempts=5, interval=1.0))

        started = time.monotonic()
        record = executor.run("test-flow", {"identity_id": "abc"})

        assert record.status == ExecutionStatus.TIMED_OUT
        assert record.error_kind == ErrorKind.TIMEOUT
        assert record.steps[0].attempts == 1
        assert time.monotonic() - started < 1.0

    def test_late_join_branch_outcome_is_saved(self, store):
        release = threading.Event()
        slow = ScriptedStep("slow", output={"a": 1}, gate=release)
        broken = ScriptedStep("broken", results=[StepResult.failure(ErrorKind.NOT_FOUND, "missing")])
        executor = self.make_executor([Join([slow, broken])], store)

        record = executor.run("test-flow", {"identity_id": "abc"})
        assert record.status == ExecutionStatus.FAILED
        assert record.failed_step == "broken"

        release.set()

        def slow_outcome():
            steps = {s.step: s for s in store.get_execution(record.execution_name).steps}
            return steps["slow"].outcome

        assert wait_until(lambda: slow_outcome() == StepOutcome.SUCCEEDED)
        assert store.get_execution(record.execution_name).status == ExecutionStatus.FAILED

    def test_output_model_violation_fails_run(self, store):
        definition = WorkflowDefinition("strict", Scratch, [
            _with_output_model(ScriptedStep("incomplete", output={"a": 1}), Strict),
        ])
        executor = WorkflowExecutor([definition], store, make_settings())

        record = executor.run("strict", {"identity_id": "abc"})

        assert record.status == ExecutionStatus.FAILED
        assert record.error_kind == ErrorKind.INVALID_INPUT

    def test_start_and_wait(self, store):
        executor = self.make_executor([ScriptedStep("only", output={"a": 5})], store)

        handle = executor.start("test-flow", {"identity_id": "abc"})
        record = handle.wait(5)

        assert handle.done()
        assert record.succeeded
        assert record.output["a"] == 5
        assert executor.describe(handle.reference).execution_name == handle.name
        executor.shutdown()

    def test_describe_unknown(self, store):
        executor = self.make_executor([ScriptedStep("only")], store)
        with pytest.raises(NotFoundError):
            executor.describe("execution:test-flow:missing")

    def test_steps_are_audited(self, store, tmp_path):
        audit_logger = AuditLogger(tmp_path / "audit")
        executor = self.make_executor([
            ScriptedStep("flaky", output={"a": 1}, results=[transient()]),
            ScriptedStep("notify", results=[StepResult.failure(ErrorKind.TRANSIENT, "down")] * 3,
                         best_effort=True),
        ], store, audit_logger=audit_logger)

        record = executor.run("test-flow", {"identity_id": "abc"})

        events = audit_logger.get_events(execution_name=record.execution_name)
        by_step = {e.step: e for e in events}
        assert by_step["flaky"].attempts == 2
        assert by_step["flaky"].outcome == StepOutcome.SUCCEEDED
        assert by_step["notify"].outcome == StepOutcome.SOFT_FAILED
        assert by_step["notify"].success is True
        assert audit_logger.get_events(identity_id="someone-else") == []


def _with_output_model(step, model):
    step.output_model = model
    return step

"""
Workflow Executor for the Account Lifecycle Engine.

Starts workflow runs on a bounded worker pool, drives each run through
its definition's nodes and tracks the outcome in the ExecutionStore.
"""

import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Dict, Iterable, Optional, Union

from pydantic import BaseModel, ValidationError

from ..audit.audit_logger import AuditLogger
from ..config import LifecycleSettings
from ..engine.execution_store import ExecutionStore
from ..errors import (
    ConfigurationError,
    LifecycleError,
    NotFoundError,
    WorkflowFailedError,
    WorkflowTimeoutError,
    classify_exception,
)
from ..models import (
    AuditRecord,
    ErrorKind,
    ExecutionRecord,
    ExecutionStatus,
    StepExecution,
    StepOutcome,
    utc_now,
)
from .base_workflow import Node, RunContext, StepRunner, WorkflowDefinition
from .helpers import execution_name, execution_reference

logger = logging.getLogger(__name__)


class ExecutionHandle:
    """Reference to a started run."""

    def __init__(self, reference: str, name: str, future: Future, store: ExecutionStore):
        self.reference = reference
        self.name = name
        self._future = future
        self._store = store

    def done(self) -> bool:
        return self._future.done()

    def wait(self, timeout: Optional[float] = None) -> ExecutionRecord:
        """
        Block until the run finishes.

        Raises:
            concurrent.futures.TimeoutError: the run did not finish in time
        """
        self._future.result(timeout=timeout)
        return self._store.get_execution(self.name)

    def __repr__(self):
        return f"ExecutionHandle({self.reference!r})"


class WorkflowExecutor:
    """
    Runs registered workflow definitions.

    Input is validated before anything is started; once started, a run
    always ends in SUCCEEDED, FAILED or TIMED_OUT. Concurrent runs for the
    same identity are not serialized.
    """

    def __init__(self, definitions: Optional[Iterable[WorkflowDefinition]] = None,
                 store: Optional[ExecutionStore] = None,
                 settings: Optional[LifecycleSettings] = None,
                 audit_logger: Optional[AuditLogger] = None):
        self.settings = settings or LifecycleSettings()
        self.store = store or ExecutionStore()
        self.audit_logger = audit_logger
        self.runner = StepRunner(self.settings.retry)
        self.definitions: Dict[str, WorkflowDefinition] = {}
        self._pool = ThreadPoolExecutor(
            max_workers=self.settings.workflow.max_concurrent_runs,
            thread_name_prefix="workflow",
        )

        for definition in definitions or []:
            self.register(definition)

    def register(self, definition: WorkflowDefinition) -> None:
        self.definitions[definition.workflow_id] = definition
        logger.info(f"Registered workflow {definition.workflow_id}: {' -> '.join(definition.step_names)}")

    def get_definition(self, definition_id: str) -> WorkflowDefinition:
        definition = self.definitions.get(definition_id)
        if definition is None:
            raise ConfigurationError(f"Unknown workflow definition: {definition_id}")
        return definition

    def start(self, definition_id: str,
              payload: Union[BaseModel, Dict[str, Any]]) -> ExecutionHandle:
        """
        Start a run in the background.

        Args:
            definition_id: Id of a registered definition
            payload: Workflow input

        Returns:
            ExecutionHandle for the started run

        Raises:
            ConfigurationError: unknown definition id
            InvalidInputError: payload does not match the definition's input
        """
        definition, record, validated = self._prepare(definition_id, payload)
        future = self._pool.submit(self._execute, definition, record, validated)
        logger.info(f"Started execution {record.execution_reference}")
        return ExecutionHandle(record.execution_reference, record.execution_name, future, self.store)

    def run(self, definition_id: str, payload: Union[BaseModel, Dict[str, Any]]) -> ExecutionRecord:
        """Run a workflow in the calling thread and return its final record."""
        definition, record, validated = self._prepare(definition_id, payload)
        return self._execute(definition, record, validated)

    def describe(self, reference: str) -> ExecutionRecord:
        """
        Get the record of an execution by reference or name.

        Raises:
            NotFoundError: no such execution
        """
        record = self.store.get_execution(reference)
        if record is None:
            raise NotFoundError(f"Execution {reference} not found")
        return record

    def shutdown(self, wait: bool = True) -> None:
        self._pool.shutdown(wait=wait)
        logger.info("Workflow executor shut down")

    def _prepare(self, definition_id: str, payload: Union[BaseModel, Dict[str, Any]]):
        definition = self.get_definition(definition_id)
        validated = definition.validate_input(payload)

        identity_id = getattr(validated, "identity_id", "")
        name = self.store.reserve_name(execution_name(definition.name_prefix, identity_id))
        record = ExecutionRecord(
            execution_name=name,
            execution_reference=execution_reference(definition.workflow_id, name),
            workflow_id=definition.workflow_id,
            identity_id=identity_id,
            input=validated.model_dump(mode="json"),
        )
        try:
            self.store.add(record)
        except ValueError:
            # Lost a race for the name between reserve and add
            record.execution_name = self.store.reserve_name(name)
            record.execution_reference = execution_reference(definition.workflow_id,
                                                             record.execution_name)
            self.store.add(record)
        return definition, record, validated

    def _execute(self, definition: WorkflowDefinition, record: ExecutionRecord,
                 payload: BaseModel) -> ExecutionRecord:
        """Drive a run through all nodes and record the outcome."""
        context = RunContext(record, self.runner, self.settings.workflow.timeout_seconds,
                             on_step=self._record_step)
        current = payload
        node_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{record.execution_name}-node")
        logger.info(f"Executing {record.execution_name} ({definition.workflow_id})")

        try:
            for node in definition.nodes:
                if context.expired():
                    raise WorkflowTimeoutError(f"Deadline reached before {node.name}")
                output = self._run_node(node_pool, context, node, current)
                current = definition.advance(current, node, output)

            record.status = ExecutionStatus.SUCCEEDED
            record.output = current.model_dump(mode="json")
            logger.info(f"Execution {record.execution_name} succeeded")

        except WorkflowTimeoutError as e:
            self._fail(record, ExecutionStatus.TIMED_OUT, e)
        except WorkflowFailedError as e:
            record.failed_step = e.step
            self._fail(record, ExecutionStatus.FAILED, e)
        except LifecycleError as e:
            self._fail(record, ExecutionStatus.FAILED, e)
        except ValidationError as e:
            # A node did not produce the fields its output model requires
            record.error_kind = ErrorKind.INVALID_INPUT
            record.status = ExecutionStatus.FAILED
            record.error = str(e)
            logger.error(f"Execution {record.execution_name} produced an invalid payload: {e}")
        except Exception as e:
            record.error_kind = classify_exception(e)
            record.status = ExecutionStatus.FAILED
            record.error = f"{e.__class__.__name__}: {e}"
            logger.exception(f"Execution {record.execution_name} failed unexpectedly")
        finally:
            # A node still running past the deadline is left to finish on its own
            node_pool.shutdown(wait=False)
            record.completed_at = utc_now()
            self.store.save(record)

        return record.model_copy(deep=True)

    def _run_node(self, pool: ThreadPoolExecutor, context: RunContext, node: Node,
                  payload: BaseModel) -> Dict[str, Any]:
        """
        Run one node, waiting no longer than the run deadline.

        Raises:
            WorkflowTimeoutError: the node was still running at the deadline
        """
        future = pool.submit(node.invoke, context, payload)
        try:
            return future.result(timeout=context.remaining())
        except FuturesTimeoutError:
            raise WorkflowTimeoutError(f"{node.name} still running at the deadline") from None

    def _fail(self, record: ExecutionRecord, status: ExecutionStatus, error: LifecycleError):
        record.status = status
        record.error = error.message
        record.error_kind = error.kind
        logger.error(f"Execution {record.execution_name} {status.value}: {error.message}")

    def _record_step(self, record: ExecutionRecord, execution: StepExecution) -> None:
        if record.finished:
            # Join sibling or overrunning node completing after the run ended
            self.store.save(record)

        if not self.audit_logger:
            return

        audit_record = AuditRecord(
            id=str(uuid.uuid4()),
            execution_name=record.execution_name,
            workflow_id=record.workflow_id,
            identity_id=record.identity_id,
            step=execution.step,
            success=execution.outcome != StepOutcome.FAILED,
            outcome=execution.outcome,
            attempts=execution.attempts,
            kind=execution.kind,
            error_message=execution.error,
        )
        try:
            self.audit_logger.log_event(audit_record)
        except OSError:
            logger.exception(f"Audit trail write failed for {record.execution_name}/{execution.step}")

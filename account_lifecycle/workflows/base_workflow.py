"""
Base Workflow Classes for the Account Lifecycle Engine.

This module provides the building blocks lifecycle workflows are composed
of: steps, the Join that runs steps in parallel, the workflow definition
and the retrying step runner.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, Union

from pydantic import BaseModel, ValidationError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_result,
    stop_after_attempt,
    wait_exponential,
)

from ..config import RetrySettings
from ..connectors import ConnectorResult
from ..errors import InvalidInputError, WorkflowFailedError, WorkflowTimeoutError, classify_exception
from ..models import ErrorKind, ExecutionRecord, StepExecution, StepOutcome, StepResult, utc_now
from .helpers import merge_branch_outputs

logger = logging.getLogger(__name__)


class Step(ABC):
    """
    A single unit of work inside a workflow.

    Steps read fields of the accumulated payload and return a StepResult
    whose output is merged into the payload for the next node. A step is
    best effort when its final failure must not fail the workflow; in that
    case fallback_output() supplies the fields it would have written.
    """

    best_effort = False
    output_model: Optional[Type[BaseModel]] = None

    def __init__(self, name: Optional[str] = None, output_model: Optional[Type[BaseModel]] = None):
        self.name = name or self.__class__.__name__
        if output_model is not None:
            self.output_model = output_model

    @abstractmethod
    def execute(self, payload: BaseModel) -> StepResult:
        """
        Perform the step against the payload.

        Args:
            payload: Typed record accumulated so far

        Returns:
            StepResult with the fields this step adds as output
        """

    def run(self, payload: BaseModel) -> StepResult:
        """Execute the step, turning unexpected exceptions into failed results."""
        try:
            return self.execute(payload)
        except Exception as e:
            kind = classify_exception(e)
            logger.exception(f"Step {self.name} raised {e.__class__.__name__}")
            return StepResult.failure(kind, f"{e.__class__.__name__}: {e}")

    def fallback_output(self, payload: BaseModel) -> Dict[str, Any]:
        """Output recorded when a best-effort step fails for good."""
        return {}

    def invoke(self, context: "RunContext", payload: BaseModel) -> Dict[str, Any]:
        return context.run_step(self, payload)

    @staticmethod
    def from_connector(result: ConnectorResult, **output: Any) -> StepResult:
        """Map a connector result to a step result."""
        if result.success:
            return StepResult.ok(**output)
        return StepResult.failure(result.kind or ErrorKind.TRANSIENT,
                                  result.error or result.message or "Unknown error")

    def __repr__(self):
        return f"{self.__class__.__name__}(name={self.name!r})"


class Join:
    """
    Runs branch steps concurrently on the same input.

    Branch outputs are merged by key; two branches writing the same field
    is a definition error. The first fatal branch failure fails the Join;
    the other branches are not cancelled and may still complete.
    """

    def __init__(self, branches: Sequence[Step], output_model: Optional[Type[BaseModel]] = None,
                 name: str = "Join"):
        if not branches:
            raise ValueError("A Join needs at least one branch")
        self.branches = list(branches)
        self.output_model = output_model
        self.name = name

    def run(self, payload: BaseModel, context: "RunContext") -> Dict[str, Any]:
        """
        Run all branches and merge their outputs.

        Args:
            payload: Input shared by every branch
            context: Context of the run the Join belongs to

        Returns:
            Merged output of all branches

        Raises:
            WorkflowFailedError: a branch failed fatally
            WorkflowTimeoutError: the run deadline passed while waiting
            BranchCollisionError: two branches produced the same field
        """
        pool = ThreadPoolExecutor(max_workers=len(self.branches),
                                  thread_name_prefix=f"{context.record.execution_name}-join")
        futures = {pool.submit(context.run_step, branch, payload): branch for branch in self.branches}
        outputs: Dict[str, Dict[str, Any]] = {}

        try:
            for future in as_completed(futures, timeout=context.remaining()):
                branch = futures[future]
                outputs[branch.name] = future.result()
        except FuturesTimeoutError:
            pending = [futures[f].name for f in futures if not f.done()]
            raise WorkflowTimeoutError(
                f"{self.name} timed out waiting for {', '.join(pending)}"
            ) from None
        finally:
            pool.shutdown(wait=False)

        # Merge in declaration order so collisions are reported deterministically
        return merge_branch_outputs(outputs[b.name] for b in self.branches)

    def invoke(self, context: "RunContext", payload: BaseModel) -> Dict[str, Any]:
        return self.run(payload, context)

    def __repr__(self):
        return f"Join(name={self.name!r}, branches={[b.name for b in self.branches]})"


Node = Union[Step, Join]


class WorkflowDefinition:
    """
    Ordered list of nodes (steps or joins) with a typed input.

    Each node's output is merged into the running payload and validated
    against the node's output model, so a definition whose nodes do not
    produce the fields later nodes need fails at the node that broke it.
    """

    def __init__(self, workflow_id: str, input_model: Type[BaseModel], nodes: Sequence[Node],
                 name_prefix: Optional[str] = None, description: str = ""):
        if not nodes:
            raise ValueError(f"Workflow {workflow_id} has no nodes")
        self.workflow_id = workflow_id
        self.input_model = input_model
        self.nodes: List[Node] = list(nodes)
        self.name_prefix = name_prefix or workflow_id
        self.description = description

    @property
    def step_names(self) -> List[str]:
        names = []
        for node in self.nodes:
            if isinstance(node, Join):
                names.extend(b.name for b in node.branches)
            else:
                names.append(node.name)
        return names

    def validate_input(self, payload: Union[BaseModel, Dict[str, Any]]) -> BaseModel:
        """
        Validate a workflow input.

        Raises:
            InvalidInputError: payload does not match the input model
        """
        if isinstance(payload, BaseModel):
            payload = payload.model_dump()
        try:
            return self.input_model.model_validate(payload)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid input for {self.workflow_id}: {e}") from e

    def advance(self, payload: BaseModel, node: Node, output: Dict[str, Any]) -> BaseModel:
        """Merge a node's output into the payload and validate the result."""
        model = node.output_model or type(payload)
        return model.model_validate({**payload.model_dump(), **output})


class StepRunner:
    """
    Runs a step with retries.

    Failures classified TRANSIENT are retried with exponential backoff until
    the attempt limit or the run deadline; any other failure ends the step
    on the spot.
    """

    def __init__(self, retry: Optional[RetrySettings] = None):
        self.retry = retry or RetrySettings()

    def run(self, step: Step, payload: BaseModel, deadline: Optional[float] = None,
            execution: Optional[StepExecution] = None) -> StepResult:
        """
        Run a step until it succeeds, fails fatally or retries run out.

        Args:
            step: Step to run
            payload: Step input
            deadline: time.monotonic() value no retry may run past
            execution: StepExecution whose attempt counter is updated

        Returns:
            The final StepResult
        """
        execution = execution or StepExecution(step=step.name)
        backoff = wait_exponential(
            multiplier=self.retry.interval_seconds,
            exp_base=self.retry.backoff_rate,
            max=self.retry.max_interval_seconds,
        )

        def attempt() -> StepResult:
            execution.attempts += 1
            return step.run(payload)

        def deadline_reached(retry_state) -> bool:
            # No retry whose backoff would end past the deadline
            return deadline is not None and time.monotonic() + backoff(retry_state) >= deadline

        retrying = Retrying(
            retry=retry_if_result(lambda result: result.retryable),
            stop=stop_after_attempt(self.retry.max_attempts) | deadline_reached,
            wait=backoff,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            # Out of attempts: hand back the last failed result
            retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        )
        return retrying(attempt)


class RunContext:
    """
    State shared by the nodes of one workflow run.

    Join branches record their step executions concurrently, so updates to
    the execution record go through a lock.
    """

    def __init__(self, record: ExecutionRecord, runner: StepRunner, timeout_seconds: float,
                 on_step: Optional[Callable[[ExecutionRecord, StepExecution], None]] = None):
        self.record = record
        self.runner = runner
        self.deadline = time.monotonic() + timeout_seconds
        self.on_step = on_step
        self._lock = threading.Lock()

    def remaining(self) -> float:
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        return time.monotonic() >= self.deadline

    def run_step(self, step: Step, payload: BaseModel) -> Dict[str, Any]:
        """
        Run a step with retries and record its execution.

        Returns:
            The step output, or its fallback output after a soft failure

        Raises:
            WorkflowFailedError: the step failed and is not best effort
        """
        execution = StepExecution(step=step.name)
        with self._lock:
            self.record.steps.append(execution)

        result = self.runner.run(step, payload, self.deadline, execution)

        if result.success:
            execution.outcome = StepOutcome.SUCCEEDED
            output = result.output
            logger.info(f"[{self.record.execution_name}] {step.name} succeeded "
                        f"after {execution.attempts} attempt(s)")
        elif step.best_effort:
            execution.outcome = StepOutcome.SOFT_FAILED
            execution.kind = ErrorKind.SOFT_FAILURE
            execution.error = result.error
            output = step.fallback_output(payload)
            logger.warning(f"[{self.record.execution_name}] {step.name} failed, continuing: "
                           f"{result.error}")
        else:
            execution.outcome = StepOutcome.FAILED
            execution.kind = result.kind
            execution.error = result.error
            logger.error(f"[{self.record.execution_name}] {step.name} failed "
                         f"({result.kind.value if result.kind else 'unknown'}): {result.error}")

        execution.completed_at = utc_now()
        if self.on_step:
            self.on_step(self.record, execution)

        if execution.outcome == StepOutcome.FAILED:
            gave_up_early = execution.attempts < self.runner.retry.max_attempts
            if result.retryable and (gave_up_early or not self.remaining()):
                raise WorkflowTimeoutError(f"{step.name}: deadline reached while retrying")
            raise WorkflowFailedError(step.name, result.error or "step failed", result.kind)
        return output

"""
Run execution engine.

Runs a workflow's steps one after another: each step is attempted up to its
retry limit, its output is checked against the step's criterion, and the
context extracted from a passing output is handed to the next step. Progress
is written to the repository and published as events.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Tuple

from opentelemetry import trace

from promptchain.models.completion import CompletionResult
from promptchain.models.execution import ActiveRun, EventType, RunStatus, StepStatus
from promptchain.models.workflow import CONTEXT_PLACEHOLDER, CriteriaType, StepDefinition
from promptchain.persistence.repository import WorkflowRepository
from .context import extract_context
from .criteria import evaluate_criteria
from .registry import RunRegistry

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

DEFAULT_JUDGE_MODEL = "kimi-k2-instruct-0905"
DEFAULT_RETRY_DELAY_SECONDS = 1.0


class ExecutionError(Exception):
    """Base exception for run start failures."""

    def __init__(self, message: str, workflow_id: Optional[str] = None):
        self.message = message
        self.workflow_id = workflow_id
        super().__init__(message)


class WorkflowNotFoundError(ExecutionError):
    """Raised when the workflow to execute does not exist."""
    pass


class EmptyWorkflowError(ExecutionError):
    """Raised when the workflow to execute has no steps."""
    pass


class CompletionProvider(Protocol):
    async def call(self, prompt: str, model: str, context: str = "") -> CompletionResult:
        ...


class EventPublisher(Protocol):
    def publish(self, event: Dict[str, Any]) -> None:
        ...


@dataclass
class RunProgress:
    """Running totals of one run, readable by the task's failure boundary."""
    total_cost: float = 0.0
    total_tokens: int = 0
    current_execution_id: Optional[str] = None


@dataclass
class StepOutcome:
    passed: bool
    attempts: int
    output: str
    error: str
    tokens: int
    cost: float


def render_prompt(template: str, previous_context: str):
    """
    Fill the context placeholder.

    Returns the prompt and the context still to be sent separately: empty when
    the placeholder already carried it.
    """
    if CONTEXT_PLACEHOLDER in template:
        return template.replace(CONTEXT_PLACEHOLDER, previous_context), ""
    return template, previous_context


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowExecutor:
    """Starts runs and drives them to a terminal state in background tasks."""

    def __init__(
        self,
        repository: WorkflowRepository,
        llm_client: CompletionProvider,
        publisher: Optional[EventPublisher] = None,
        judge_model: str = DEFAULT_JUDGE_MODEL,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
    ):
        self.repository = repository
        self.llm_client = llm_client
        self.publisher = publisher
        self.judge_model = judge_model
        self.retry_delay_seconds = retry_delay_seconds
        self.registry = RunRegistry()
        self._tasks: Dict[str, asyncio.Task] = {}

    async def execute(self, workflow_id: str) -> str:
        """
        Start executing a workflow.

        Args:
            workflow_id: Workflow to execute

        Returns:
            The new run's id; the run continues in the background

        Raises:
            WorkflowNotFoundError: the workflow does not exist
            EmptyWorkflowError: the workflow has no steps
        """
        workflow = await self.repository.get_workflow(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError("Workflow not found", workflow_id)

        steps = await self.repository.get_workflow_steps(workflow_id)
        if not steps:
            raise EmptyWorkflowError("Workflow has no steps", workflow_id)

        run = await self.repository.create_run(workflow_id)
        plan = []
        for step in steps:
            step_exec = await self.repository.create_step_execution(run.id, step.id)
            plan.append((step, step_exec.id))

        self.registry.register(run.id, workflow_id)
        logger.info(f"Starting run {run.id} of workflow '{workflow.name}' ({len(steps)} steps)")

        task = asyncio.create_task(self._supervise(run.id, plan), name=f"run-{run.id}")
        self._tasks[run.id] = task
        task.add_done_callback(lambda _: self._tasks.pop(run.id, None))

        return run.id

    def get_run_status(self, run_id: str) -> Optional[ActiveRun]:
        """Status of a run that is still executing, None once it has finished."""
        return self.registry.get(run_id)

    async def wait_for_run(self, run_id: str) -> None:
        """Wait for a run's background task, if it is still going."""
        task = self._tasks.get(run_id)
        if task is not None:
            await asyncio.shield(task)

    async def wait_all(self) -> None:
        tasks = list(self._tasks.values())
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _supervise(self, run_id: str, plan: List[Tuple[StepDefinition, str]]) -> None:
        """Outer boundary of a run: nothing raised below may escape unrecorded."""
        progress = RunProgress()
        try:
            await self._execute_steps(run_id, plan, progress)
        except Exception as e:
            logger.exception(f"Execution error in run {run_id}")
            if progress.current_execution_id:
                try:
                    await self.repository.update_step_execution(progress.current_execution_id, {
                        "status": StepStatus.FAILED,
                        "error": str(e),
                        "completed_at": _now(),
                    })
                except Exception:
                    logger.exception(f"Could not record step failure for run {run_id}")
            try:
                await self._fail_run(run_id, str(e), progress.total_cost, progress.total_tokens)
            except Exception:
                logger.exception(f"Could not record failure of run {run_id}")
                self.registry.deregister(run_id)

    async def _execute_steps(
        self,
        run_id: str,
        plan: List[Tuple[StepDefinition, str]],
        progress: RunProgress,
    ) -> None:
        """Run each (step, step execution id) pair in order."""
        previous_context = ""

        for index, (step, execution_id) in enumerate(plan):
            progress.current_execution_id = execution_id

            await self.repository.update_step_execution(execution_id, {
                "status": StepStatus.RUNNING,
                "started_at": _now(),
                "input_context": previous_context,
            })

            self._broadcast(run_id, EventType.STEP_STARTED, {
                "stepId": step.id,
                "stepIndex": index,
                "stepName": step.name,
            })

            with tracer.start_as_current_span("execute_step") as span:
                span.set_attribute("run_id", run_id)
                span.set_attribute("step_id", step.id)
                span.set_attribute("model", step.model)
                outcome = await self._attempt_step(run_id, step, previous_context)
                span.set_attribute("attempts", outcome.attempts)
                span.set_attribute("passed", outcome.passed)

            progress.total_cost += outcome.cost
            progress.total_tokens += outcome.tokens

            await self.repository.update_step_execution(execution_id, {
                "status": StepStatus.PASSED if outcome.passed else StepStatus.FAILED,
                "attempts": outcome.attempts,
                "output": outcome.output,
                "error": None if outcome.passed else outcome.error,
                "tokens_used": outcome.tokens,
                "cost": outcome.cost,
                "completed_at": _now(),
            })
            progress.current_execution_id = None

            if outcome.passed:
                previous_context = extract_context(outcome.output, step.context_mode)
                self._broadcast(run_id, EventType.STEP_COMPLETED, {
                    "stepId": step.id,
                    "stepIndex": index,
                    "passed": True,
                })
                continue

            self._broadcast(run_id, EventType.STEP_COMPLETED, {
                "stepId": step.id,
                "stepIndex": index,
                "passed": False,
                "error": outcome.error,
            })
            await self._fail_run(
                run_id,
                f'Step "{step.name}" failed: {outcome.error}',
                progress.total_cost,
                progress.total_tokens,
            )
            return

        await self._complete_run(run_id, progress.total_cost, progress.total_tokens)

    async def _attempt_step(
        self, run_id: str, step: StepDefinition, previous_context: str
    ) -> StepOutcome:
        """Attempt a step until it passes or its retry limit is used up."""
        outcome = StepOutcome(passed=False, attempts=0, output="", error="", tokens=0, cost=0.0)
        judge = self._judge if step.criteria_type == CriteriaType.LLM.value else None

        while not outcome.passed and outcome.attempts < step.retry_limit:
            outcome.attempts += 1

            self._broadcast(run_id, EventType.STEP_ATTEMPT, {
                "stepId": step.id,
                "attempt": outcome.attempts,
                "maxAttempts": step.retry_limit,
            })

            try:
                prompt, context = render_prompt(step.prompt, previous_context)
                result = await self.llm_client.call(prompt, step.model, context)
                outcome.output = result.content
                outcome.cost += result.cost
                outcome.tokens += result.tokens.total

                self._broadcast(run_id, EventType.STEP_RESPONSE, {
                    "stepId": step.id,
                    "output": result.content,
                    "tokens": result.tokens.model_dump(),
                    "cost": result.cost,
                })

                evaluation = await evaluate_criteria(
                    result.content,
                    step.criteria_type,
                    step.criteria_value,
                    judge,
                )

                self._broadcast(run_id, EventType.STEP_EVALUATED, {
                    "stepId": step.id,
                    "passed": evaluation.passed,
                    "reason": evaluation.reason,
                })

                if evaluation.passed:
                    outcome.passed = True
                else:
                    outcome.error = evaluation.reason

            except Exception as e:
                logger.warning(f"Run {run_id} step '{step.name}' attempt {outcome.attempts} errored: {e}")
                outcome.error = str(e) or type(e).__name__
                self._broadcast(run_id, EventType.STEP_ERROR, {
                    "stepId": step.id,
                    "error": outcome.error,
                })

            if not outcome.passed and outcome.attempts < step.retry_limit:
                await asyncio.sleep(self.retry_delay_seconds)

        return outcome

    async def _judge(self, prompt: str) -> str:
        result = await self.llm_client.call(prompt, self.judge_model)
        return result.content

    async def _complete_run(self, run_id: str, total_cost: float, total_tokens: int) -> None:
        await self.repository.update_run(run_id, {
            "status": RunStatus.COMPLETED,
            "completed_at": _now(),
            "total_cost": total_cost,
            "total_tokens": total_tokens,
        })

        self.registry.deregister(run_id)
        logger.info(f"Run {run_id} completed: {total_tokens} tokens, ${total_cost:.4f}")

        self._broadcast(run_id, EventType.RUN_COMPLETED, {
            "status": RunStatus.COMPLETED.value,
            "totalCost": total_cost,
            "totalTokens": total_tokens,
        })

    async def _fail_run(
        self, run_id: str, error: str, total_cost: float = 0.0, total_tokens: int = 0
    ) -> None:
        await self.repository.update_run(run_id, {
            "status": RunStatus.FAILED,
            "completed_at": _now(),
            "total_cost": total_cost,
            "total_tokens": total_tokens,
            "error": error,
        })

        self.registry.deregister(run_id)
        logger.info(f"Run {run_id} failed: {error}")

        self._broadcast(run_id, EventType.RUN_COMPLETED, {
            "status": RunStatus.FAILED.value,
            "error": error,
            "totalCost": total_cost,
            "totalTokens": total_tokens,
        })

    def _broadcast(self, run_id: str, event_type: EventType, payload: Dict[str, Any]) -> None:
        if self.publisher is None:
            return

        event = {
            "runId": run_id,
            "type": event_type.value,
            **payload,
            "timestamp": int(time.time() * 1000),
        }
        try:
            self.publisher.publish(event)
        except Exception as e:
            logger.warning(f"Failed to publish {event_type.value} event for run {run_id}: {e}")

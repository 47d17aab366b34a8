"""
Repository interface for workflows, runs and step executions.
"""

from abc import ABC, abstractmethod
from typing import Optional, List, Dict, Any, Tuple

from promptchain.models.workflow import (
    StepDefinition,
    StepInput,
    WorkflowDefinition,
    WorkflowSummary,
)
from promptchain.models.execution import (
    Run,
    RunSummary,
    RunStats,
    StepExecution,
    StepExecutionDetail,
)


class WorkflowRepository(ABC):
    """
    Persistence for promptchain.

    Handles:
    - Workflow definitions and their ordered steps
    - Runs
    - Step executions

    ``update_run`` and ``update_step_execution`` take partial field dicts and
    return the updated record, or None when the id is unknown.
    """

    async def init(self) -> None:
        """Prepare storage (create tables, load files)."""

    async def close(self) -> None:
        """Release storage resources."""

    # Workflow Definitions

    @abstractmethod
    async def list_workflows(self) -> List[WorkflowSummary]:
        """All workflows with step/run counts, most recently updated first."""

    @abstractmethod
    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        pass

    @abstractmethod
    async def create_workflow(self, name: str, description: Optional[str] = None) -> WorkflowDefinition:
        pass

    @abstractmethod
    async def update_workflow(
        self, workflow_id: str, name: str, description: Optional[str]
    ) -> Optional[WorkflowDefinition]:
        pass

    @abstractmethod
    async def delete_workflow(self, workflow_id: str) -> bool:
        """Delete a workflow with its steps and runs. Returns False if it did not exist."""

    # Steps

    @abstractmethod
    async def get_workflow_steps(self, workflow_id: str) -> List[StepDefinition]:
        """Steps of a workflow ordered by order_index."""

    @abstractmethod
    async def add_step(self, workflow_id: str, order_index: int, data: StepInput) -> StepDefinition:
        pass

    @abstractmethod
    async def delete_workflow_steps(self, workflow_id: str) -> None:
        pass

    # Runs

    @abstractmethod
    async def create_run(self, workflow_id: str) -> Run:
        pass

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[RunSummary]:
        pass

    @abstractmethod
    async def update_run(self, run_id: str, updates: Dict[str, Any]) -> Optional[Run]:
        pass

    @abstractmethod
    async def list_runs(self, limit: int = 50, offset: int = 0) -> Tuple[List[RunSummary], int]:
        """Return ``(runs, total)`` with runs newest first."""

    @abstractmethod
    async def get_stats(self) -> RunStats:
        pass

    # Step Executions

    @abstractmethod
    async def create_step_execution(self, run_id: str, step_id: str) -> StepExecution:
        pass

    @abstractmethod
    async def get_step_execution(self, run_id: str, step_id: str) -> Optional[StepExecution]:
        pass

    @abstractmethod
    async def update_step_execution(
        self, execution_id: str, updates: Dict[str, Any]
    ) -> Optional[StepExecution]:
        pass

    @abstractmethod
    async def get_run_step_executions(self, run_id: str) -> List[StepExecutionDetail]:
        """Step executions of a run joined with their steps, in step order."""

    # Workflow import helper

    async def create_workflow_with_steps(
        self, name: str, description: Optional[str], steps: List[StepInput]
    ) -> WorkflowDefinition:
        workflow = await self.create_workflow(name, description)
        for index, step in enumerate(steps):
            await self.add_step(workflow.id, index, step)
        return workflow

    async def replace_workflow_steps(self, workflow_id: str, steps: List[StepInput]) -> None:
        await self.delete_workflow_steps(workflow_id)
        for index, step in enumerate(steps):
            await self.add_step(workflow_id, index, step)


def compute_stats(runs: List[Run]) -> RunStats:
    total_runs = len(runs)
    total_cost = sum(r.total_cost or 0.0 for r in runs)
    total_tokens = sum(r.total_tokens or 0 for r in runs)
    return RunStats(
        total_runs=total_runs,
        completed_runs=sum(1 for r in runs if r.status == "completed"),
        failed_runs=sum(1 for r in runs if r.status == "failed"),
        total_cost=total_cost,
        total_tokens=total_tokens,
        avg_cost_per_run=total_cost / total_runs if total_runs > 0 else 0.0,
    )

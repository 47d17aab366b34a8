"""
Run execution tracking models.
"""

from typing import Optional, List
from enum import Enum
from datetime import datetime
from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Run status. Anything other than RUNNING is terminal."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StepStatus(str, Enum):
    """Status of a single step within a run."""
    PENDING = "pending"
    RUNNING = "running"
    PASSED = "passed"
    FAILED = "failed"


class EventType(str, Enum):
    """Lifecycle events emitted while a run executes."""
    STEP_STARTED = "step_started"
    STEP_ATTEMPT = "step_attempt"
    STEP_RESPONSE = "step_response"
    STEP_EVALUATED = "step_evaluated"
    STEP_ERROR = "step_error"
    STEP_COMPLETED = "step_completed"
    RUN_COMPLETED = "run_completed"


class Run(BaseModel):
    """One execution of a workflow."""
    id: str
    workflow_id: str
    status: RunStatus = RunStatus.RUNNING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    total_cost: float = 0.0
    total_tokens: int = 0
    error: Optional[str] = None

    class Config:
        use_enum_values = True


class RunSummary(Run):
    """Run for list views."""
    workflow_name: str = "Unknown"
    total_steps: int = 0
    passed_steps: int = 0


class StepExecution(BaseModel):
    """Per-step record of a run's attempts and artifacts."""
    id: str
    run_id: str
    step_id: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    input_context: Optional[str] = None
    output: Optional[str] = None
    error: Optional[str] = None
    tokens_used: int = 0
    cost: float = 0.0
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        use_enum_values = True


class StepExecutionDetail(StepExecution):
    """Step execution joined with the step it ran."""
    step_name: str = "Unknown"
    model: str = "Unknown"
    prompt: str = ""
    criteria_type: Optional[str] = None
    criteria_value: Optional[str] = None


class RunDetail(RunSummary):
    """Run with all of its step executions in step order."""
    step_executions: List[StepExecutionDetail] = Field(default_factory=list)


class RunPage(BaseModel):
    """Paginated run listing."""
    runs: List[RunSummary]
    total: int
    limit: int
    offset: int


class RunStats(BaseModel):
    """Aggregate run statistics."""
    total_runs: int
    completed_runs: int
    failed_runs: int
    total_cost: float
    total_tokens: int
    avg_cost_per_run: float


class ActiveRun(BaseModel):
    """Entry of the in-memory active run table."""
    workflow_id: str = Field(..., serialization_alias="workflowId")
    status: RunStatus = RunStatus.RUNNING

    class Config:
        use_enum_values = True

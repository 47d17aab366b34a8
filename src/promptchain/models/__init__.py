"""
promptchain data models.
"""

from .workflow import (
    CONTEXT_PLACEHOLDER,
    DEFAULT_MODEL,
    CriteriaType,
    ContextMode,
    StepInput,
    StepDefinition,
    WorkflowDefinition,
    WorkflowSummary,
    WorkflowDetail,
    WorkflowCreate,
    WorkflowUpdate,
    WorkflowExport,
)
from .execution import (
    RunStatus,
    StepStatus,
    EventType,
    Run,
    RunSummary,
    RunDetail,
    RunPage,
    RunStats,
    StepExecution,
    StepExecutionDetail,
    ActiveRun,
)
from .completion import (
    TokenUsage,
    CompletionResult,
    CriteriaResult,
)

__all__ = [
    "CONTEXT_PLACEHOLDER",
    "DEFAULT_MODEL",
    "CriteriaType",
    "ContextMode",
    "StepInput",
    "StepDefinition",
    "WorkflowDefinition",
    "WorkflowSummary",
    "WorkflowDetail",
    "WorkflowCreate",
    "WorkflowUpdate",
    "WorkflowExport",
    "RunStatus",
    "StepStatus",
    "EventType",
    "Run",
    "RunSummary",
    "RunDetail",
    "RunPage",
    "RunStats",
    "StepExecution",
    "StepExecutionDetail",
    "ActiveRun",
    "TokenUsage",
    "CompletionResult",
    "CriteriaResult",
]

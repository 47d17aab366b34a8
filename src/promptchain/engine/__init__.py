"""
Run execution engine: criteria, context extraction and the step runner.
"""

from .criteria import evaluate_criteria
from .context import extract_context
from .registry import RunRegistry
from .executor import (
    WorkflowExecutor,
    ExecutionError,
    WorkflowNotFoundError,
    EmptyWorkflowError,
)

__all__ = [
    "evaluate_criteria",
    "extract_context",
    "RunRegistry",
    "WorkflowExecutor",
    "ExecutionError",
    "WorkflowNotFoundError",
    "EmptyWorkflowError",
]

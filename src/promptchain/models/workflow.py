"""
Workflow definition models.
"""

from typing import Optional, List
from enum import Enum
from datetime import datetime
from pydantic import BaseModel, Field


DEFAULT_MODEL = "kimi-k2-instruct-0905"
CONTEXT_PLACEHOLDER = "{context}"


class CriteriaType(str, Enum):
    """Kinds of pass/fail checks applied to a step's output."""
    CONTAINS = "contains"
    NOT_CONTAINS = "not_contains"
    REGEX = "regex"
    JSON = "json"
    CODE = "code"
    LENGTH_MIN = "length_min"
    LENGTH_MAX = "length_max"
    LLM = "llm"
    ALWAYS = "always"


class ContextMode(str, Enum):
    """How the output of a passed step is reduced before the next step sees it."""
    FULL = "full"
    CODE_ONLY = "code_only"
    FIRST_PARAGRAPH = "first_paragraph"
    LAST_PARAGRAPH = "last_paragraph"
    SUMMARY = "summary"


class StepInput(BaseModel):
    """Step fields as submitted by a client; omitted fields get defaults on insert."""
    name: Optional[str] = None
    model: Optional[str] = None
    prompt: Optional[str] = None
    criteria_type: Optional[str] = None
    criteria_value: Optional[str] = None
    retry_limit: Optional[int] = Field(default=None, ge=1)
    context_mode: Optional[str] = None


class StepDefinition(BaseModel):
    """A stored step of a workflow."""
    id: str
    workflow_id: str
    order_index: int
    name: str
    model: str = DEFAULT_MODEL
    prompt: str = ""
    # Kept as plain strings: unknown kinds are valid and fall back to auto-pass / full context
    criteria_type: str = CriteriaType.ALWAYS.value
    criteria_value: str = ""
    retry_limit: int = Field(default=3, ge=1)
    context_mode: str = ContextMode.FULL.value

    @classmethod
    def from_input(
        cls,
        step_id: str,
        workflow_id: str,
        order_index: int,
        data: StepInput,
        default_model: str = DEFAULT_MODEL,
    ) -> "StepDefinition":
        """Build a stored step from client input, applying defaults."""
        return cls(
            id=step_id,
            workflow_id=workflow_id,
            order_index=order_index,
            name=data.name or f"Step {order_index + 1}",
            model=data.model or default_model,
            prompt=data.prompt or "",
            criteria_type=data.criteria_type or CriteriaType.ALWAYS.value,
            criteria_value=data.criteria_value or "",
            retry_limit=data.retry_limit or 3,
            context_mode=data.context_mode or ContextMode.FULL.value,
        )

    def to_export(self) -> StepInput:
        return StepInput(
            name=self.name,
            model=self.model,
            prompt=self.prompt,
            criteria_type=self.criteria_type,
            criteria_value=self.criteria_value,
            retry_limit=self.retry_limit,
            context_mode=self.context_mode,
        )


class WorkflowDefinition(BaseModel):
    """Stored workflow header."""
    id: str
    name: str
    description: str = ""
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WorkflowSummary(WorkflowDefinition):
    """Workflow for list views."""
    step_count: int = 0
    run_count: int = 0


class WorkflowDetail(WorkflowDefinition):
    """Workflow with its ordered steps."""
    steps: List[StepDefinition] = Field(default_factory=list)


class WorkflowCreate(BaseModel):
    """Payload for creating a workflow."""
    name: str = Field(..., description="Workflow name")
    description: Optional[str] = None
    steps: List[StepInput] = Field(default_factory=list)


class WorkflowUpdate(BaseModel):
    """Payload for updating a workflow. Steps, when given, replace all existing steps."""
    name: Optional[str] = None
    description: Optional[str] = None
    steps: Optional[List[StepInput]] = None


class WorkflowExport(BaseModel):
    """Portable workflow document used by export/import."""
    name: Optional[str] = None
    description: Optional[str] = None
    steps: Optional[List[StepInput]] = None

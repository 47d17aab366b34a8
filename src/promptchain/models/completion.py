"""
Completion and evaluation result models.
"""

from pydantic import BaseModel


class TokenUsage(BaseModel):
    """Token counts reported for a completion."""
    input: int = 0
    output: int = 0
    total: int = 0


class CompletionResult(BaseModel):
    """Generated text plus usage and cost metadata."""
    content: str
    tokens: TokenUsage = TokenUsage()
    cost: float = 0.0


class CriteriaResult(BaseModel):
    """Verdict of a criteria check. The reason is shown to users and persisted."""
    passed: bool
    reason: str

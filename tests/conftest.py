"""
Shared fixtures for promptchain tests.
"""

import asyncio
from typing import Any, Dict, List, Optional

import pytest

from promptchain.engine.executor import WorkflowExecutor
from promptchain.models.completion import CompletionResult, TokenUsage
from promptchain.persistence.json_store import JSONFileRepository


class ScriptedLLM:
    """
    Completion provider double.

    Replies are consumed in order; an Exception instance in the script is
    raised instead of returned. Once the script runs out ``default`` is used.
    """

    def __init__(self, replies: Optional[List[Any]] = None, default: str = "Generated output", **kwargs):
        self.replies = list(replies or [])
        self.default = default
        self.calls: List[Dict[str, str]] = []
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    async def call(self, prompt: str, model: str, context: str = "") -> CompletionResult:
        self.calls.append({"prompt": prompt, "model": model, "context": context})
        if self.gate is not None:
            await self.gate.wait()

        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        return CompletionResult(
            content=reply,
            tokens=TokenUsage(input=10, output=5, total=15),
            cost=0.001,
        )

    async def close(self):
        self.closed = True


class EventRecorder:
    """Publisher that keeps every event."""

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    def publish(self, event: Dict[str, Any]) -> None:
        self.events.append(event)

    def types(self) -> List[str]:
        return [e["type"] for e in self.events]


@pytest.fixture
def repository() -> JSONFileRepository:
    """In-memory repository."""
    return JSONFileRepository()


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def executor(repository, llm, recorder) -> WorkflowExecutor:
    """Executor with no retry delay and a cheap judge model."""
    return WorkflowExecutor(
        repository=repository,
        llm_client=llm,
        publisher=recorder,
        judge_model="judge-model",
        retry_delay_seconds=0,
    )

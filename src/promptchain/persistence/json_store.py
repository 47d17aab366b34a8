"""
JSON document store.

The whole document is rewritten on every mutation. Writes run in a worker
thread, one at a time and in mutation order. With ``path=None`` the store
lives only in memory, which is what the tests use.
"""

import asyncio
import json
import logging
import os
import uuid
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple, Union

from promptchain.models.workflow import (
    DEFAULT_MODEL,
    StepDefinition,
    StepInput,
    WorkflowDefinition,
    WorkflowSummary,
)
from promptchain.models.execution import (
    Run,
    RunStatus,
    RunSummary,
    RunStats,
    StepExecution,
    StepExecutionDetail,
    StepStatus,
)
from .repository import WorkflowRepository, compute_stats

logger = logging.getLogger(__name__)

COLLECTIONS = ("workflows", "steps", "runs", "step_executions")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode(updates: Dict[str, Any]) -> Dict[str, Any]:
    encoded = {}
    for key, value in updates.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        encoded[key] = value
    return encoded


class JSONFileRepository(WorkflowRepository):
    """Repository backed by a single JSON file."""

    def __init__(
        self,
        path: Optional[Union[str, Path]] = None,
        default_model: str = DEFAULT_MODEL,
    ):
        self.path = Path(path) if path else None
        self.default_model = default_model
        self._data: Dict[str, List[Dict[str, Any]]] = {name: [] for name in COLLECTIONS}
        self._write_lock = asyncio.Lock()

    async def init(self) -> None:
        if self.path is None:
            return
        if not self.path.exists():
            await self._save()
            logger.info(f"Created data file {self.path}")
            return
        loaded = json.loads(self.path.read_text(encoding="utf-8"))
        for name in COLLECTIONS:
            self._data[name] = loaded.get(name, [])
        logger.info(f"Loaded data file {self.path}")

    async def _save(self) -> None:
        if self.path is None:
            return
        # Snapshot now so later mutations cannot leak into this write
        document = json.dumps(self._data, indent=2, default=str)
        async with self._write_lock:
            await asyncio.to_thread(self._write, document)

    def _write(self, document: str) -> None:
        if self.path.parent and not self.path.parent.exists():
            self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        tmp_path.write_text(document, encoding="utf-8")
        os.replace(tmp_path, self.path)

    def _find(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        for record in self._data[collection]:
            if record["id"] == record_id:
                return record
        return None

    # Workflow Definitions

    async def list_workflows(self) -> List[WorkflowSummary]:
        summaries = []
        for workflow in self._data["workflows"]:
            step_count = sum(1 for s in self._data["steps"] if s["workflow_id"] == workflow["id"])
            run_count = sum(1 for r in self._data["runs"] if r["workflow_id"] == workflow["id"])
            summaries.append(WorkflowSummary(**workflow, step_count=step_count, run_count=run_count))
        return sorted(summaries, key=lambda w: w.updated_at, reverse=True)

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        record = self._find("workflows", workflow_id)
        return WorkflowDefinition(**record) if record else None

    async def create_workflow(self, name: str, description: Optional[str] = None) -> WorkflowDefinition:
        now = _now()
        record = {
            "id": str(uuid.uuid4()),
            "name": name,
            "description": description or "",
            "created_at": now,
            "updated_at": now,
        }
        self._data["workflows"].append(record)
        await self._save()
        return WorkflowDefinition(**record)

    async def update_workflow(
        self, workflow_id: str, name: str, description: Optional[str]
    ) -> Optional[WorkflowDefinition]:
        record = self._find("workflows", workflow_id)
        if record is None:
            return None
        record.update(name=name, description=description or "", updated_at=_now())
        await self._save()
        return WorkflowDefinition(**record)

    async def delete_workflow(self, workflow_id: str) -> bool:
        if self._find("workflows", workflow_id) is None:
            return False
        run_ids = {r["id"] for r in self._data["runs"] if r["workflow_id"] == workflow_id}
        self._data["workflows"] = [w for w in self._data["workflows"] if w["id"] != workflow_id]
        self._data["steps"] = [s for s in self._data["steps"] if s["workflow_id"] != workflow_id]
        self._data["runs"] = [r for r in self._data["runs"] if r["workflow_id"] != workflow_id]
        self._data["step_executions"] = [
            se for se in self._data["step_executions"] if se["run_id"] not in run_ids
        ]
        await self._save()
        return True

    # Steps

    async def get_workflow_steps(self, workflow_id: str) -> List[StepDefinition]:
        steps = [StepDefinition(**s) for s in self._data["steps"] if s["workflow_id"] == workflow_id]
        return sorted(steps, key=lambda s: s.order_index)

    async def add_step(self, workflow_id: str, order_index: int, data: StepInput) -> StepDefinition:
        step = StepDefinition.from_input(
            str(uuid.uuid4()), workflow_id, order_index, data, self.default_model
        )
        self._data["steps"].append(step.model_dump())
        await self._save()
        return step

    async def delete_workflow_steps(self, workflow_id: str) -> None:
        self._data["steps"] = [s for s in self._data["steps"] if s["workflow_id"] != workflow_id]
        await self._save()

    # Runs

    async def create_run(self, workflow_id: str) -> Run:
        record = {
            "id": str(uuid.uuid4()),
            "workflow_id": workflow_id,
            "status": RunStatus.RUNNING.value,
            "started_at": _now(),
            "completed_at": None,
            "total_cost": 0.0,
            "total_tokens": 0,
            "error": None,
        }
        self._data["runs"].append(record)
        await self._save()
        return Run(**record)

    def _summarize_run(self, record: Dict[str, Any]) -> RunSummary:
        workflow = self._find("workflows", record["workflow_id"])
        executions = [se for se in self._data["step_executions"] if se["run_id"] == record["id"]]
        return RunSummary(
            **record,
            workflow_name=workflow["name"] if workflow else "Unknown",
            total_steps=len(executions),
            passed_steps=sum(1 for se in executions if se["status"] == StepStatus.PASSED.value),
        )

    async def get_run(self, run_id: str) -> Optional[RunSummary]:
        record = self._find("runs", run_id)
        return self._summarize_run(record) if record else None

    async def update_run(self, run_id: str, updates: Dict[str, Any]) -> Optional[Run]:
        record = self._find("runs", run_id)
        if record is None:
            return None
        record.update(_encode(updates))
        await self._save()
        return Run(**record)

    async def list_runs(self, limit: int = 50, offset: int = 0) -> Tuple[List[RunSummary], int]:
        ordered = sorted(self._data["runs"], key=lambda r: r["started_at"] or "", reverse=True)
        page = ordered[offset:offset + limit]
        return [self._summarize_run(r) for r in page], len(self._data["runs"])

    async def get_stats(self) -> RunStats:
        return compute_stats([Run(**r) for r in self._data["runs"]])

    # Step Executions

    async def create_step_execution(self, run_id: str, step_id: str) -> StepExecution:
        record = {
            "id": str(uuid.uuid4()),
            "run_id": run_id,
            "step_id": step_id,
            "status": StepStatus.PENDING.value,
            "attempts": 0,
            "input_context": None,
            "output": None,
            "error": None,
            "tokens_used": 0,
            "cost": 0.0,
            "started_at": None,
            "completed_at": None,
        }
        self._data["step_executions"].append(record)
        await self._save()
        return StepExecution(**record)

    async def get_step_execution(self, run_id: str, step_id: str) -> Optional[StepExecution]:
        for record in self._data["step_executions"]:
            if record["run_id"] == run_id and record["step_id"] == step_id:
                return StepExecution(**record)
        return None

    async def update_step_execution(
        self, execution_id: str, updates: Dict[str, Any]
    ) -> Optional[StepExecution]:
        record = self._find("step_executions", execution_id)
        if record is None:
            return None
        record.update(_encode(updates))
        await self._save()
        return StepExecution(**record)

    async def get_run_step_executions(self, run_id: str) -> List[StepExecutionDetail]:
        details = []
        order = {}
        for record in self._data["step_executions"]:
            if record["run_id"] != run_id:
                continue
            step = self._find("steps", record["step_id"])
            detail = StepExecutionDetail(
                **record,
                step_name=step["name"] if step else "Unknown",
                model=step["model"] if step else "Unknown",
                prompt=step["prompt"] if step else "",
                criteria_type=step["criteria_type"] if step else None,
                criteria_value=step["criteria_value"] if step else None,
            )
            order[detail.id] = step["order_index"] if step else 0
            details.append(detail)
        return sorted(details, key=lambda d: order[d.id])

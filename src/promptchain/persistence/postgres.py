"""
PostgreSQL repository for workflows and runs.
"""

import logging
from typing import Optional, List, Dict, Any, Tuple
from datetime import datetime, timezone
from enum import Enum
import uuid
import asyncpg

from promptchain.models.workflow import (
    DEFAULT_MODEL,
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
from .repository import WorkflowRepository

logger = logging.getLogger(__name__)

RUN_COLUMNS = ("status", "started_at", "completed_at", "total_cost", "total_tokens", "error")
STEP_EXECUTION_COLUMNS = (
    "status", "attempts", "input_context", "output", "error",
    "tokens_used", "cost", "started_at", "completed_at",
)


def _build_update(table: str, record_id: str, updates: Dict[str, Any], allowed) -> Tuple[str, list]:
    """Build a partial UPDATE ... RETURNING * for the allowed columns present in updates."""
    sets = []
    params = []
    param_idx = 1

    for column in allowed:
        if column not in updates:
            continue
        value = updates[column]
        if isinstance(value, Enum):
            value = value.value
        sets.append(f"{column} = ${param_idx}")
        params.append(value)
        param_idx += 1

    unknown = set(updates) - set(allowed)
    if unknown:
        raise ValueError(f"Unknown {table} fields: {sorted(unknown)}")

    params.append(record_id)
    if not sets:
        return f"SELECT * FROM {table} WHERE id = ${param_idx}", params
    query = f"UPDATE {table} SET {', '.join(sets)} WHERE id = ${param_idx} RETURNING *"
    return query, params


def _is_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


def _run_from_row(row) -> Dict[str, Any]:
    return {
        "id": str(row["id"]),
        "workflow_id": str(row["workflow_id"]),
        "status": row["status"],
        "started_at": row["started_at"],
        "completed_at": row["completed_at"],
        "total_cost": float(row["total_cost"]) if row["total_cost"] else 0.0,
        "total_tokens": row["total_tokens"] or 0,
        "error": row["error"],
    }


def _step_execution_from_row(row) -> Dict[str, Any]:
    return {
        "id": str(row["id"]),
        "run_id": str(row["run_id"]),
        "step_id": str(row["step_id"]),
        "status": row["status"],
        "attempts": row["attempts"] or 0,
        "input_context": row["input_context"],
        "output": row["output"],
        "error": row["error"],
        "tokens_used": row["tokens_used"] or 0,
        "cost": float(row["cost"]) if row["cost"] else 0.0,
        "started_at": row["started_at"],
        "completed_at": row["completed_at"],
    }


def _step_from_row(row) -> StepDefinition:
    return StepDefinition(
        id=str(row["id"]),
        workflow_id=str(row["workflow_id"]),
        order_index=row["order_index"],
        name=row["name"],
        model=row["model"],
        prompt=row["prompt"] or "",
        criteria_type=row["criteria_type"],
        criteria_value=row["criteria_value"] or "",
        retry_limit=row["retry_limit"],
        context_mode=row["context_mode"],
    )


class PostgresRepository(WorkflowRepository):
    """
    Repository for promptchain data in PostgreSQL.

    Handles CRUD operations for:
    - Workflows and steps
    - Runs
    - Step executions
    """

    def __init__(
        self,
        database_url: str,
        pool: Optional[asyncpg.Pool] = None,
        default_model: str = DEFAULT_MODEL,
    ):
        """
        Initialize repository.

        Args:
            database_url: PostgreSQL connection URL
            pool: Existing connection pool to use instead of creating one
            default_model: Model given to steps created without one
        """
        self.database_url = database_url
        self.pool = pool
        self.default_model = default_model

    async def init(self):
        if self.pool is None:
            self.pool = await asyncpg.create_pool(self.database_url, min_size=2, max_size=10)
            logger.info("Database connection established")
        await self.init_tables()

    async def close(self):
        if self.pool:
            await self.pool.close()
            self.pool = None

    async def init_tables(self):
        """Initialize database tables."""
        async with self.pool.acquire() as conn:
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS workflows (
                    id UUID DEFAULT gen_random_uuid() PRIMARY KEY,
                    name VARCHAR(255) NOT NULL,
                    description TEXT DEFAULT '',
                    created_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                    updated_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS workflow_steps (
                    id UUID DEFAULT gen_random_uuid() PRIMARY KEY,
                    workflow_id UUID REFERENCES workflows(id) ON DELETE CASCADE,
                    order_index INTEGER NOT NULL,
                    name VARCHAR(255) NOT NULL,
                    model VARCHAR(255) NOT NULL,
                    prompt TEXT DEFAULT '',
                    criteria_type VARCHAR(50) DEFAULT 'always',
                    criteria_value TEXT DEFAULT '',
                    retry_limit INTEGER DEFAULT 3,
                    context_mode VARCHAR(50) DEFAULT 'full'
                )
            """)

            await conn.execute("""
                CREATE TABLE IF NOT EXISTS runs (
                    id UUID DEFAULT gen_random_uuid() PRIMARY KEY,
                    workflow_id UUID REFERENCES workflows(id) ON DELETE CASCADE,
                    status VARCHAR(50) DEFAULT 'running',
                    started_at TIMESTAMPTZ DEFAULT CURRENT_TIMESTAMP,
                    completed_at TIMESTAMPTZ,
                    total_cost DECIMAL(20, 10) DEFAULT 0,
                    total_tokens BIGINT DEFAULT 0,
                    error TEXT
                )
            """)

            # step_id is not a foreign key: editing a workflow replaces its steps,
            # and old runs keep pointing at the step ids they ran
            await conn.execute("""
                CREATE TABLE IF NOT EXISTS step_executions (
                    id UUID DEFAULT gen_random_uuid() PRIMARY KEY,
                    run_id UUID REFERENCES runs(id) ON DELETE CASCADE,
                    step_id UUID NOT NULL,
                    status VARCHAR(50) DEFAULT 'pending',
                    attempts INTEGER DEFAULT 0,
                    input_context TEXT,
                    output TEXT,
                    error TEXT,
                    tokens_used BIGINT DEFAULT 0,
                    cost DECIMAL(20, 10) DEFAULT 0,
                    started_at TIMESTAMPTZ,
                    completed_at TIMESTAMPTZ
                )
            """)

            await conn.execute("CREATE INDEX IF NOT EXISTS idx_steps_workflow ON workflow_steps(workflow_id)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_started ON runs(started_at)")
            await conn.execute("CREATE INDEX IF NOT EXISTS idx_step_executions_run ON step_executions(run_id)")

            logger.info("promptchain tables initialized")

    # Workflow Definitions

    async def list_workflows(self) -> List[WorkflowSummary]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT w.*,
                    (SELECT COUNT(*) FROM workflow_steps s WHERE s.workflow_id = w.id) AS step_count,
                    (SELECT COUNT(*) FROM runs r WHERE r.workflow_id = w.id) AS run_count
                FROM workflows w
                ORDER BY w.updated_at DESC
            """)
            return [
                WorkflowSummary(
                    id=str(row["id"]),
                    name=row["name"],
                    description=row["description"] or "",
                    created_at=row["created_at"],
                    updated_at=row["updated_at"],
                    step_count=row["step_count"],
                    run_count=row["run_count"],
                )
                for row in rows
            ]

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        if not _is_uuid(workflow_id):
            return None
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM workflows WHERE id = $1", workflow_id)
            if row:
                return self._row_to_workflow(row)
            return None

    async def create_workflow(self, name: str, description: Optional[str] = None) -> WorkflowDefinition:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "INSERT INTO workflows (name, description) VALUES ($1, $2) RETURNING *",
                name,
                description or "",
            )
            return self._row_to_workflow(row)

    async def update_workflow(
        self, workflow_id: str, name: str, description: Optional[str]
    ) -> Optional[WorkflowDefinition]:
        if not _is_uuid(workflow_id):
            return None
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                UPDATE workflows SET name = $1, description = $2, updated_at = CURRENT_TIMESTAMP
                WHERE id = $3
                RETURNING *
            """, name, description or "", workflow_id)
            return self._row_to_workflow(row) if row else None

    async def delete_workflow(self, workflow_id: str) -> bool:
        if not _is_uuid(workflow_id):
            return False
        async with self.pool.acquire() as conn:
            result = await conn.execute("DELETE FROM workflows WHERE id = $1", workflow_id)
            return result.endswith(" 1")

    def _row_to_workflow(self, row) -> WorkflowDefinition:
        return WorkflowDefinition(
            id=str(row["id"]),
            name=row["name"],
            description=row["description"] or "",
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # Steps

    async def get_workflow_steps(self, workflow_id: str) -> List[StepDefinition]:
        if not _is_uuid(workflow_id):
            return []
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT * FROM workflow_steps WHERE workflow_id = $1 ORDER BY order_index",
                workflow_id,
            )
            return [_step_from_row(row) for row in rows]

    async def add_step(self, workflow_id: str, order_index: int, data: StepInput) -> StepDefinition:
        step = StepDefinition.from_input("", workflow_id, order_index, data, self.default_model)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                INSERT INTO workflow_steps
                (workflow_id, order_index, name, model, prompt, criteria_type, criteria_value, retry_limit, context_mode)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                RETURNING *
            """,
                workflow_id,
                step.order_index,
                step.name,
                step.model,
                step.prompt,
                step.criteria_type,
                step.criteria_value,
                step.retry_limit,
                step.context_mode,
            )
            return _step_from_row(row)

    async def delete_workflow_steps(self, workflow_id: str) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute("DELETE FROM workflow_steps WHERE workflow_id = $1", workflow_id)

    # Runs

    async def create_run(self, workflow_id: str) -> Run:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "INSERT INTO runs (workflow_id, status, started_at) VALUES ($1, 'running', $2) RETURNING *",
                workflow_id,
                datetime.now(timezone.utc),
            )
            return Run(**_run_from_row(row))

    async def get_run(self, run_id: str) -> Optional[RunSummary]:
        if not _is_uuid(run_id):
            return None
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(self._run_summary_query("WHERE r.id = $1"), run_id)
            return self._row_to_run_summary(row) if row else None

    async def update_run(self, run_id: str, updates: Dict[str, Any]) -> Optional[Run]:
        query, params = _build_update("runs", run_id, updates, RUN_COLUMNS)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)
            return Run(**_run_from_row(row)) if row else None

    async def list_runs(self, limit: int = 50, offset: int = 0) -> Tuple[List[RunSummary], int]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                self._run_summary_query("ORDER BY r.started_at DESC LIMIT $1 OFFSET $2"),
                limit,
                offset,
            )
            total = await conn.fetchval("SELECT COUNT(*) FROM runs")
            return [self._row_to_run_summary(row) for row in rows], total

    async def get_stats(self) -> RunStats:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("""
                SELECT
                    COUNT(*) AS total_runs,
                    COUNT(*) FILTER (WHERE status = 'completed') AS completed_runs,
                    COUNT(*) FILTER (WHERE status = 'failed') AS failed_runs,
                    COALESCE(SUM(total_cost), 0) AS total_cost,
                    COALESCE(SUM(total_tokens), 0) AS total_tokens
                FROM runs
            """)
            total_runs = row["total_runs"]
            total_cost = float(row["total_cost"])
            return RunStats(
                total_runs=total_runs,
                completed_runs=row["completed_runs"],
                failed_runs=row["failed_runs"],
                total_cost=total_cost,
                total_tokens=int(row["total_tokens"]),
                avg_cost_per_run=total_cost / total_runs if total_runs > 0 else 0.0,
            )

    def _run_summary_query(self, tail: str) -> str:
        return f"""
            SELECT r.*,
                COALESCE(w.name, 'Unknown') AS workflow_name,
                (SELECT COUNT(*) FROM step_executions se WHERE se.run_id = r.id) AS total_steps,
                (SELECT COUNT(*) FROM step_executions se WHERE se.run_id = r.id AND se.status = 'passed') AS passed_steps
            FROM runs r
            LEFT JOIN workflows w ON w.id = r.workflow_id
            {tail}
        """

    def _row_to_run_summary(self, row) -> RunSummary:
        return RunSummary(
            **_run_from_row(row),
            workflow_name=row["workflow_name"],
            total_steps=row["total_steps"],
            passed_steps=row["passed_steps"],
        )

    # Step Executions

    async def create_step_execution(self, run_id: str, step_id: str) -> StepExecution:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "INSERT INTO step_executions (run_id, step_id) VALUES ($1, $2) RETURNING *",
                run_id,
                step_id,
            )
            return StepExecution(**_step_execution_from_row(row))

    async def get_step_execution(self, run_id: str, step_id: str) -> Optional[StepExecution]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM step_executions WHERE run_id = $1 AND step_id = $2",
                run_id,
                step_id,
            )
            return StepExecution(**_step_execution_from_row(row)) if row else None

    async def update_step_execution(
        self, execution_id: str, updates: Dict[str, Any]
    ) -> Optional[StepExecution]:
        query, params = _build_update("step_executions", execution_id, updates, STEP_EXECUTION_COLUMNS)
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(query, *params)
            return StepExecution(**_step_execution_from_row(row)) if row else None

    async def get_run_step_executions(self, run_id: str) -> List[StepExecutionDetail]:
        if not _is_uuid(run_id):
            return []
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("""
                SELECT se.*,
                    COALESCE(s.name, 'Unknown') AS step_name,
                    COALESCE(s.model, 'Unknown') AS model,
                    COALESCE(s.prompt, '') AS prompt,
                    s.criteria_type,
                    s.criteria_value
                FROM step_executions se
                LEFT JOIN workflow_steps s ON s.id = se.step_id
                WHERE se.run_id = $1
                ORDER BY COALESCE(s.order_index, 0)
            """, run_id)
            return [
                StepExecutionDetail(
                    **_step_execution_from_row(row),
                    step_name=row["step_name"],
                    model=row["model"],
                    prompt=row["prompt"],
                    criteria_type=row["criteria_type"],
                    criteria_value=row["criteria_value"],
                )
                for row in rows
            ]

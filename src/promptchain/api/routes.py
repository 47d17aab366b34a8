"""
REST API routes for promptchain.
"""

import logging
import re
from datetime import datetime, timezone
from typing import List

from fastapi import APIRouter, HTTPException, Query
from fastapi.responses import JSONResponse

from promptchain.models.workflow import (
    WorkflowCreate,
    WorkflowDetail,
    WorkflowExport,
    WorkflowSummary,
    WorkflowUpdate,
)
from promptchain.models.execution import ActiveRun, RunDetail, RunPage, RunStats, RunSummary
from promptchain.engine.executor import EmptyWorkflowError, WorkflowNotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")


# These will be set by the main app
_repository = None
_executor = None
_llm_client = None


def set_dependencies(repository, executor, llm_client=None):
    """Set dependencies from main app."""
    global _repository, _executor, _llm_client
    _repository = repository
    _executor = executor
    _llm_client = llm_client


def _require_repository():
    if not _repository:
        raise HTTPException(status_code=503, detail="Service not ready")
    return _repository


def _export_filename(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE) + ".json"


async def _workflow_detail(workflow_id: str) -> WorkflowDetail:
    repository = _require_repository()
    workflow = await repository.get_workflow(workflow_id)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    steps = await repository.get_workflow_steps(workflow_id)
    return WorkflowDetail(**workflow.model_dump(), steps=steps)


# Service

@router.get("/health", tags=["service"])
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "timestamp": datetime.now(timezone.utc).isoformat()}


@router.get("/models", tags=["service"])
async def list_models():
    """Models available to workflow steps."""
    if not _llm_client:
        raise HTTPException(status_code=503, detail="Service not ready")
    return _llm_client.get_models()


# Workflow Definitions

@router.get("/workflows", response_model=List[WorkflowSummary], tags=["workflows"])
async def list_workflows():
    """List all workflows with step and run counts."""
    return await _require_repository().list_workflows()


@router.post("/workflows/import", response_model=WorkflowDetail, status_code=201, tags=["workflows"])
async def import_workflow(document: WorkflowExport):
    """Create a workflow from an exported document."""
    repository = _require_repository()
    if not document.name or document.steps is None:
        raise HTTPException(status_code=400, detail="Invalid workflow format")

    workflow = await repository.create_workflow_with_steps(
        document.name, document.description, document.steps
    )
    logger.info(f"Imported workflow {workflow.id} with {len(document.steps)} steps")
    return await _workflow_detail(workflow.id)


@router.get("/workflows/{workflow_id}", response_model=WorkflowDetail, tags=["workflows"])
async def get_workflow(workflow_id: str):
    """Get a workflow with its ordered steps."""
    return await _workflow_detail(workflow_id)


@router.post("/workflows", response_model=WorkflowDetail, status_code=201, tags=["workflows"])
async def create_workflow(request: WorkflowCreate):
    """Create a workflow, optionally with steps."""
    repository = _require_repository()
    workflow = await repository.create_workflow_with_steps(
        request.name, request.description, request.steps
    )
    return await _workflow_detail(workflow.id)


@router.put("/workflows/{workflow_id}", response_model=WorkflowDetail, tags=["workflows"])
async def update_workflow(workflow_id: str, request: WorkflowUpdate):
    """Update a workflow. Steps, when given, replace all existing steps."""
    repository = _require_repository()
    workflow = await repository.get_workflow(workflow_id)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")

    await repository.update_workflow(
        workflow_id,
        request.name or workflow.name,
        request.description if request.description is not None else workflow.description,
    )
    if request.steps is not None:
        await repository.replace_workflow_steps(workflow_id, request.steps)

    return await _workflow_detail(workflow_id)


@router.delete("/workflows/{workflow_id}", tags=["workflows"])
async def delete_workflow(workflow_id: str):
    """Delete a workflow together with its steps and runs."""
    deleted = await _require_repository().delete_workflow(workflow_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return {"message": "Workflow deleted"}


@router.get("/workflows/{workflow_id}/export", tags=["workflows"])
async def export_workflow(workflow_id: str):
    """Download a workflow as a portable JSON document."""
    detail = await _workflow_detail(workflow_id)
    document = WorkflowExport(
        name=detail.name,
        description=detail.description,
        steps=[step.to_export() for step in detail.steps],
    )
    return JSONResponse(
        content=document.model_dump(),
        headers={"Content-Disposition": f'attachment; filename="{_export_filename(detail.name)}"'},
    )


# Runs

@router.get("/runs", response_model=RunPage, tags=["runs"])
async def list_runs(
    limit: int = Query(default=50, ge=1, le=1000),
    offset: int = Query(default=0, ge=0),
):
    """List runs, newest first."""
    runs, total = await _require_repository().list_runs(limit=limit, offset=offset)
    return RunPage(runs=runs, total=total, limit=limit, offset=offset)


@router.get("/runs/stats/summary", response_model=RunStats, tags=["runs"])
async def get_stats():
    """Aggregate statistics over all runs."""
    return await _require_repository().get_stats()


@router.post("/runs/start/{workflow_id}", response_model=RunSummary, status_code=201, tags=["runs"])
async def start_run(workflow_id: str):
    """Start executing a workflow. The run continues in the background."""
    if not _executor:
        raise HTTPException(status_code=503, detail="Service not ready")

    try:
        run_id = await _executor.execute(workflow_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except EmptyWorkflowError as e:
        raise HTTPException(status_code=400, detail=e.message)

    return await _require_repository().get_run(run_id)


@router.get("/runs/{run_id}", response_model=RunDetail, tags=["runs"])
async def get_run(run_id: str):
    """Get a run with its step executions."""
    repository = _require_repository()
    run = await repository.get_run(run_id)
    if not run:
        raise HTTPException(status_code=404, detail="Run not found")

    step_executions = await repository.get_run_step_executions(run_id)
    return RunDetail(**run.model_dump(), step_executions=step_executions)


@router.get("/runs/{run_id}/status", response_model=ActiveRun, tags=["runs"])
async def get_run_status(run_id: str):
    """Status of a run that is still executing."""
    if not _executor:
        raise HTTPException(status_code=503, detail="Service not ready")

    status = _executor.get_run_status(run_id)
    if status is None:
        raise HTTPException(status_code=404, detail="Run is not active")
    return status

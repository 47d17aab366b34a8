"""
promptchain service

A FastAPI service for running sequential LLM prompt workflows with:
- Per-step pass/fail criteria and bounded retries
- Context hand-off between steps
- JSON file or PostgreSQL persistence
- WebSocket streaming of run events
"""

import asyncio
import logging
from typing import Optional
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from opentelemetry import trace
from opentelemetry.instrumentation.fastapi import FastAPIInstrumentor
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.sdk.resources import Resource

from promptchain import __version__
from promptchain.config import config
from promptchain.persistence import WorkflowRepository, create_repository
from promptchain.tools.llm_client import LLMClient
from promptchain.engine.executor import WorkflowExecutor
from promptchain.api.routes import router, set_dependencies
from promptchain.api.websocket import ConnectionManager, websocket_endpoint

# Configure logging
logging.basicConfig(level=getattr(logging, config.log_level.upper(), logging.INFO))
logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 30.0

# Global resources
repository: Optional[WorkflowRepository] = None
llm_client: Optional[LLMClient] = None
executor: Optional[WorkflowExecutor] = None
manager = ConnectionManager(queue_size=config.event_queue_size)


def setup_tracing() -> None:
    resource = Resource.create({"service.name": "promptchain"})
    provider = TracerProvider(resource=resource)
    processor = BatchSpanProcessor(OTLPSpanExporter(endpoint=config.otel_endpoint))
    provider.add_span_processor(processor)
    trace.set_tracer_provider(provider)
    logger.info(f"Exporting traces to {config.otel_endpoint}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global repository, llm_client, executor

    if config.otel_enabled:
        setup_tracing()

    repository = create_repository(config)
    await repository.init()

    if not config.llm_api_key:
        logger.warning("UNBOUND_API_KEY not set. LLM calls will fail.")

    llm_client = LLMClient(
        base_url=config.llm_base_url,
        api_key=config.llm_api_key,
        timeout=config.llm_timeout_seconds,
        max_retries=config.llm_max_retries,
    )

    executor = WorkflowExecutor(
        repository=repository,
        llm_client=llm_client,
        publisher=manager,
        judge_model=config.judge_model,
        retry_delay_seconds=config.retry_delay_seconds,
    )
    set_dependencies(repository, executor, llm_client)

    logger.info("promptchain service started")
    yield

    # Cleanup
    try:
        await asyncio.wait_for(executor.wait_all(), timeout=SHUTDOWN_GRACE_SECONDS)
    except asyncio.TimeoutError:
        logger.warning(f"Shutting down with {len(executor.registry)} run(s) still executing")

    set_dependencies(None, None)
    await llm_client.close()
    await repository.close()

    logger.info("promptchain service stopped")


app = FastAPI(
    title="promptchain",
    description="Sequential LLM prompt workflows with per-step criteria",
    version=__version__,
    lifespan=lifespan,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Instrument with OpenTelemetry
FastAPIInstrumentor.instrument_app(app)

# Include API routes
app.include_router(router)


@app.websocket("/ws")
async def events_websocket(websocket: WebSocket):
    """WebSocket endpoint streaming events of every run."""
    await websocket_endpoint(websocket, manager)


@app.websocket("/ws/runs/{run_id}")
async def run_websocket(websocket: WebSocket, run_id: str):
    """WebSocket endpoint streaming events of one run."""
    await websocket_endpoint(websocket, manager, run_id)


def main():
    import uvicorn
    uvicorn.run(app, host=config.host, port=config.port)


if __name__ == "__main__":
    main()

# main.py - FastAPI app entry point for the anomaly_service
# This file wires ingestion, the workflow engine and the API together and runs the application.

import asyncio
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .config import settings
from .routes import anomalies, workflows, executions, system, health
from .record_store import create_record_store
from .event_publisher import EventPublisher, HttpEventPublisher, InMemoryEventPublisher
from .ai_oracle import AIOracle
from .anomaly_registry import AnomalyRegistry
from .workflow_registry import WorkflowRegistry
from .workflow_engine import WorkflowEngine
from .decision_policy import AutonomyConfig
from .ingestion_scheduler import IngestionScheduler
from .source_adapters.adapter_registry import build_default_registry

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

def create_event_publisher() -> EventPublisher:
    if settings.communication_service_url:
        logger.info(f"Publishing events to {settings.communication_service_url}")
        return HttpEventPublisher(settings.communication_service_url, settings.event_publish_timeout)
    logger.info("No communication service configured, keeping events in memory")
    return InMemoryEventPublisher()

async def periodic_cleanup(engine: WorkflowEngine):
    """Background task to cleanup completed executions."""
    while True:
        try:
            await asyncio.sleep(settings.workflow_cleanup_interval)
            await engine.cleanup_completed_executions()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Periodic cleanup failed: {str(e)}")

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info(f"Starting {settings.service_name} on port {settings.service_port}")

    record_store = create_record_store()
    if await record_store.ping():
        logger.info("Record store connection established")
    else:
        logger.error("Record store is not reachable, requests will fail until it recovers")

    event_publisher = create_event_publisher()
    oracle = AIOracle()
    anomaly_registry = AnomalyRegistry(record_store, event_publisher)
    workflow_registry = WorkflowRegistry(record_store)
    engine = WorkflowEngine(
        workflow_registry, anomaly_registry, oracle, event_publisher,
        autonomy=AutonomyConfig(
            autonomous_mode=settings.autonomous_mode,
            auto_approve_threshold=settings.auto_approve_threshold
        )
    )
    scheduler = IngestionScheduler(
        build_default_registry(settings), anomaly_registry, oracle, engine, event_publisher
    )

    app.state.record_store = record_store
    app.state.event_publisher = event_publisher
    app.state.ai_oracle = oracle
    app.state.anomaly_registry = anomaly_registry
    app.state.workflow_registry = workflow_registry
    app.state.workflow_engine = engine
    app.state.ingestion_scheduler = scheduler

    scheduler.start()
    cleanup_task = asyncio.create_task(periodic_cleanup(engine))
    logger.info("Started periodic cleanup task")

    yield

    # Shutdown
    logger.info("Shutting down anomaly service...")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass

    await scheduler.stop()
    await engine.shutdown()
    await oracle.close()
    await event_publisher.close()

    logger.info("Anomaly service shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="Anomaly Service",
    description="Ingests external event feeds and drives anomalies through decision workflows",
    version="1.0.0",
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure properly for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(anomalies.router)
app.include_router(workflows.router)
app.include_router(executions.router)
app.include_router(system.router)
app.include_router(health.router)

@app.get("/")
async def root():
    """Root endpoint with service info."""
    return {
        "service": settings.service_name,
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs",
        "health": "/health"
    }

if __name__ == "__main__":
    uvicorn.run(
        app,
        host="0.0.0.0",
        port=settings.service_port,
        reload=False,
        log_level=settings.log_level.lower()
    )

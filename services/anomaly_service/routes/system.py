# system.py - Administrative endpoints
# This file defines the endpoints for autonomous mode and on-demand ingestion.

from fastapi import APIRouter, HTTPException, Depends, Request
import logging

from ..models import AutonomousModeRequest, IngestionReport
from ..workflow_engine import WorkflowEngine
from ..ingestion_scheduler import IngestionScheduler

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/system", tags=["system"])

# Dependencies
def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.workflow_engine

def get_scheduler(request: Request) -> IngestionScheduler:
    return request.app.state.ingestion_scheduler

@router.get("/autonomous-mode")
async def get_autonomous_mode(engine: WorkflowEngine = Depends(get_engine)):
    return engine.autonomy.model_dump()

@router.put("/autonomous-mode")
async def set_autonomous_mode(
    request: AutonomousModeRequest,
    engine: WorkflowEngine = Depends(get_engine)
):
    """Turn automatic approval on or off, optionally changing the threshold."""
    try:
        autonomy = await engine.set_autonomous_mode(request.enabled, request.auto_approve_threshold)
        return autonomy.model_dump()

    except Exception as e:
        logger.error(f"Failed to set autonomous mode: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/ingestion/run", response_model=IngestionReport)
async def run_ingestion(scheduler: IngestionScheduler = Depends(get_scheduler)):
    """Run one ingestion cycle now and return its report."""
    try:
        report = await scheduler.trigger_manual_ingestion()
        if report.skipped:
            raise HTTPException(status_code=409, detail="Ingestion cycle already in progress")
        return report

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Manual ingestion failed: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/ingestion")
async def get_ingestion_state(scheduler: IngestionScheduler = Depends(get_scheduler)):
    return scheduler.state

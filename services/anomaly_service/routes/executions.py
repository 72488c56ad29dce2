# executions.py - Monitor and cancel workflow executions
# This file defines the API endpoints for inspecting workflow executions.

from fastapi import APIRouter, HTTPException, Depends, Request
from typing import List, Optional
import logging

from ..models import WorkflowExecution, WorkflowStatus, TERMINAL_EXECUTION_STATUSES
from ..workflow_registry import WorkflowRegistry
from ..workflow_engine import WorkflowEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/executions", tags=["executions"])

# Dependencies
def get_registry(request: Request) -> WorkflowRegistry:
    return request.app.state.workflow_registry

def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.workflow_engine

@router.get("/", response_model=List[WorkflowExecution])
async def list_executions(
    status: Optional[WorkflowStatus] = None,
    limit: int = 50,
    offset: int = 0,
    registry: WorkflowRegistry = Depends(get_registry)
):
    """List workflow executions with optional filtering."""
    try:
        return await registry.list_workflow_executions(status=status, limit=limit, offset=offset)

    except Exception as e:
        logger.error(f"Failed to list executions: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{execution_id}", response_model=WorkflowExecution)
async def get_execution(
    execution_id: str,
    registry: WorkflowRegistry = Depends(get_registry)
):
    """Get specific workflow execution details."""
    try:
        execution = await registry.get_workflow_execution(execution_id)
        if not execution:
            raise HTTPException(status_code=404, detail="Execution not found")

        return execution

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get execution {execution_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{execution_id}/status")
async def get_execution_status(
    execution_id: str,
    registry: WorkflowRegistry = Depends(get_registry)
):
    """Get execution status and progress."""
    try:
        execution = await registry.get_workflow_execution(execution_id)
        if not execution:
            raise HTTPException(status_code=404, detail="Execution not found")

        workflow = await registry.get_workflow_definition(execution.workflow_id)
        total_steps = len(workflow.steps) if workflow else 0
        completed_steps = len(execution.step_results)
        progress_percentage = (completed_steps / total_steps * 100) if total_steps > 0 else 0

        return {
            "execution_id": execution_id,
            "status": execution.status,
            "current_step": execution.current_step,
            "progress_percentage": round(progress_percentage, 2),
            "completed_steps": completed_steps,
            "total_steps": total_steps,
            "started_at": execution.started_at,
            "completed_at": execution.completed_at,
            "duration": execution.duration,
            "error": execution.error
        }

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get execution status {execution_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{execution_id}/cancel")
async def cancel_execution(
    execution_id: str,
    registry: WorkflowRegistry = Depends(get_registry),
    engine: WorkflowEngine = Depends(get_engine)
):
    """Cancel a running workflow execution."""
    try:
        execution = await registry.get_workflow_execution(execution_id)
        if not execution:
            raise HTTPException(status_code=404, detail="Execution not found")

        if execution.status in TERMINAL_EXECUTION_STATUSES:
            raise HTTPException(
                status_code=400,
                detail=f"Cannot cancel execution with status: {execution.status.value}"
            )

        await engine.cancel_workflow_execution(execution_id)

        execution = await registry.get_workflow_execution(execution_id)
        if execution.status == WorkflowStatus.CANCELLED:
            return {"message": f"Execution {execution_id} cancelled successfully"}
        if execution.status in TERMINAL_EXECUTION_STATUSES:
            raise HTTPException(
                status_code=400,
                detail=f"Execution already finished with status: {execution.status.value}"
            )
        return {"message": f"Execution {execution_id} was not running"}

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to cancel execution {execution_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

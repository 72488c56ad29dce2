# anomalies.py - Anomaly submission, listing and review endpoints
# This file defines the API endpoints for browsing anomalies and the human review path.

from fastapi import APIRouter, HTTPException, Depends, Request
from typing import Any, Dict, List, Optional
import logging

from ..models import (
    Anomaly, AnomalyCreateRequest, AnomalyReviewRequest, AnomalyUpdateRequest,
    AnomalyType, Severity, AnomalyStatus, HIGH_SEVERITIES
)
from ..anomaly_registry import AnomalyRegistry
from ..workflow_engine import WorkflowEngine
from ..exceptions import RecordNotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/anomalies", tags=["anomalies"])

# Dependencies
def get_registry(request: Request) -> AnomalyRegistry:
    return request.app.state.anomaly_registry

def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.workflow_engine

@router.get("/", response_model=List[Anomaly])
async def list_anomalies(
    type: Optional[AnomalyType] = None,
    severity: Optional[Severity] = None,
    status: Optional[AnomalyStatus] = None,
    limit: int = 50,
    offset: int = 0,
    registry: AnomalyRegistry = Depends(get_registry)
):
    """List anomalies, newest first, with optional filtering."""
    try:
        filters = {"type": type, "severity": severity, "status": status}
        return await registry.list_anomalies(
            {k: v for k, v in filters.items() if v is not None}, limit=limit, offset=offset
        )

    except Exception as e:
        logger.error(f"Failed to list anomalies: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/", response_model=Anomaly)
async def create_anomaly(
    request: AnomalyCreateRequest,
    trigger_workflow: bool = True,
    registry: AnomalyRegistry = Depends(get_registry),
    engine: WorkflowEngine = Depends(get_engine)
):
    """Submit an anomaly manually. High and critical ones start the active workflow."""
    try:
        anomaly = Anomaly(**request.model_dump(), source_type="manual")
        await registry.create_anomaly(anomaly)

        if trigger_workflow and anomaly.severity in HIGH_SEVERITIES:
            execution_id = await engine.trigger_workflow("anomaly_detected", anomaly.model_dump(mode="json"))
            if execution_id:
                logger.info(f"Anomaly {anomaly.id} started execution {execution_id}")

        return anomaly

    except Exception as e:
        logger.error(f"Failed to create anomaly: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/stats/overview")
async def get_stats_overview(
    registry: AnomalyRegistry = Depends(get_registry)
) -> Dict[str, Any]:
    """Totals by severity, type and review state, plus the last 24 hours."""
    try:
        return await registry.get_stats()

    except Exception as e:
        logger.error(f"Failed to compute anomaly stats: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{anomaly_id}", response_model=Anomaly)
async def get_anomaly(
    anomaly_id: str,
    registry: AnomalyRegistry = Depends(get_registry)
):
    try:
        anomaly = await registry.get_anomaly(anomaly_id)
        if not anomaly:
            raise HTTPException(status_code=404, detail="Anomaly not found")
        return anomaly

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get anomaly {anomaly_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.put("/{anomaly_id}", response_model=Anomaly)
async def update_anomaly(
    anomaly_id: str,
    request: AnomalyUpdateRequest,
    registry: AnomalyRegistry = Depends(get_registry)
):
    """Manual edit. Any field, status included, may be set directly."""
    try:
        anomaly = await registry.update_anomaly(anomaly_id, request.model_dump(exclude_none=True))
        if not anomaly:
            raise HTTPException(status_code=404, detail="Anomaly not found")
        return anomaly

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to update anomaly {anomaly_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.delete("/{anomaly_id}")
async def delete_anomaly(
    anomaly_id: str,
    registry: AnomalyRegistry = Depends(get_registry)
):
    try:
        await registry.delete_anomaly(anomaly_id)
        return {"message": f"Anomaly {anomaly_id} deleted successfully"}

    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Anomaly not found")
    except Exception as e:
        logger.error(f"Failed to delete anomaly {anomaly_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{anomaly_id}/approve", response_model=Anomaly)
async def approve_anomaly(
    anomaly_id: str,
    request: AnomalyReviewRequest,
    registry: AnomalyRegistry = Depends(get_registry)
):
    """Approve an anomaly out-of-band from any running workflow."""
    try:
        return await registry.approve_anomaly(anomaly_id, request.reviewer_id)

    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Anomaly not found")
    except Exception as e:
        logger.error(f"Failed to approve anomaly {anomaly_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{anomaly_id}/reject", response_model=Anomaly)
async def reject_anomaly(
    anomaly_id: str,
    request: AnomalyReviewRequest,
    registry: AnomalyRegistry = Depends(get_registry)
):
    try:
        return await registry.reject_anomaly(anomaly_id, request.reviewer_id, request.reason)

    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Anomaly not found")
    except Exception as e:
        logger.error(f"Failed to reject anomaly {anomaly_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{anomaly_id}/resolve", response_model=Anomaly)
async def resolve_anomaly(
    anomaly_id: str,
    registry: AnomalyRegistry = Depends(get_registry)
):
    try:
        return await registry.resolve_anomaly(anomaly_id)

    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Anomaly not found")
    except Exception as e:
        logger.error(f"Failed to resolve anomaly {anomaly_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

# health.py - Health check endpoints
# This file defines endpoints for checking the health of the anomaly_service.

from fastapi import APIRouter, Request
from datetime import datetime

from ..config import settings

router = APIRouter(prefix="/health", tags=["health"])

@router.get("/")
async def health_check(request: Request):
    """Health check including the record store, oracle and scheduler."""
    state = request.app.state
    store_healthy = await state.record_store.ping()

    return {
        "status": "healthy" if store_healthy else "degraded",
        "service": settings.service_name,
        "timestamp": datetime.utcnow().isoformat(),
        "version": "1.0.0",
        "components": {
            "record_store": {
                "status": "healthy" if store_healthy else "unhealthy",
                "backend": type(state.record_store).__name__
            },
            "ai_oracle": {
                "status": "healthy" if state.ai_oracle.available else "fallback"
            },
            "ingestion_scheduler": {
                "enabled": state.ingestion_scheduler.enabled,
                "is_running": state.ingestion_scheduler.is_running,
                "cycles_completed": state.ingestion_scheduler.cycles_completed
            }
        },
        "running_executions": len(state.workflow_engine.get_running_executions())
    }

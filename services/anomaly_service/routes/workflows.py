# workflows.py - CRUD endpoints for workflow definitions
# This file defines the API endpoints for managing and manually running workflows.

from fastapi import APIRouter, HTTPException, Depends, Request
from typing import Any, Dict, List, Optional
import logging

from ..models import (
    WorkflowDefinition, WorkflowCreateRequest, WorkflowUpdateRequest,
    WorkflowFromTemplateRequest, WorkflowExecutionRequest, WorkflowExecution,
    DefinitionStatus, WorkflowStatus
)
from ..workflow_registry import WorkflowRegistry
from ..workflow_engine import WorkflowEngine
from ..workflow_templates import get_workflow_templates, build_definition_from_template
from ..exceptions import DuplicateRecordError, RecordNotFoundError, WorkflowNotActiveError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/workflows", tags=["workflows"])

# Dependencies
def get_registry(request: Request) -> WorkflowRegistry:
    return request.app.state.workflow_registry

def get_engine(request: Request) -> WorkflowEngine:
    return request.app.state.workflow_engine

@router.get("/", response_model=List[WorkflowDefinition])
async def list_workflows(
    status: Optional[DefinitionStatus] = None,
    registry: WorkflowRegistry = Depends(get_registry)
):
    """List all workflow definitions."""
    try:
        return await registry.list_workflow_definitions(status)

    except Exception as e:
        logger.error(f"Failed to list workflows: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/templates")
async def list_templates() -> List[Dict[str, Any]]:
    return get_workflow_templates()

@router.post("/", response_model=WorkflowDefinition)
async def create_workflow(
    request: WorkflowCreateRequest,
    registry: WorkflowRegistry = Depends(get_registry)
):
    """Create a new workflow definition."""
    try:
        workflow = WorkflowDefinition(**request.model_dump())
        return await registry.store_workflow_definition(workflow)

    except DuplicateRecordError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create workflow: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/from-template", response_model=WorkflowDefinition)
async def create_workflow_from_template(
    request: WorkflowFromTemplateRequest,
    registry: WorkflowRegistry = Depends(get_registry)
):
    try:
        workflow = build_definition_from_template(request.template_type, request.name, request.status)
        return await registry.store_workflow_definition(workflow)

    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except DuplicateRecordError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to create workflow from template: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{workflow_id}", response_model=WorkflowDefinition)
async def get_workflow(
    workflow_id: str,
    registry: WorkflowRegistry = Depends(get_registry)
):
    """Get specific workflow definition."""
    try:
        workflow = await registry.get_workflow_definition(workflow_id)
        if not workflow:
            raise HTTPException(status_code=404, detail="Workflow not found")

        return workflow

    except HTTPException:
        raise
    except Exception as e:
        logger.error(f"Failed to get workflow {workflow_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.put("/{workflow_id}", response_model=WorkflowDefinition)
async def update_workflow(
    workflow_id: str,
    request: WorkflowUpdateRequest,
    registry: WorkflowRegistry = Depends(get_registry)
):
    """Edit a definition; every edit bumps its version."""
    try:
        return await registry.update_workflow_definition(workflow_id, request)

    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Workflow not found")
    except DuplicateRecordError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to update workflow {workflow_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.delete("/{workflow_id}")
async def delete_workflow(
    workflow_id: str,
    registry: WorkflowRegistry = Depends(get_registry)
):
    try:
        await registry.delete_workflow_definition(workflow_id)
        return {"message": f"Workflow {workflow_id} deleted successfully"}

    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Workflow not found")
    except Exception as e:
        logger.error(f"Failed to delete workflow {workflow_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{workflow_id}/activate", response_model=WorkflowDefinition)
async def activate_workflow(
    workflow_id: str,
    registry: WorkflowRegistry = Depends(get_registry)
):
    return await _set_status(registry, workflow_id, DefinitionStatus.ACTIVE)

@router.post("/{workflow_id}/deactivate", response_model=WorkflowDefinition)
async def deactivate_workflow(
    workflow_id: str,
    registry: WorkflowRegistry = Depends(get_registry)
):
    return await _set_status(registry, workflow_id, DefinitionStatus.INACTIVE)

async def _set_status(registry: WorkflowRegistry, workflow_id: str, status: DefinitionStatus):
    try:
        return await registry.set_definition_status(workflow_id, status)

    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Workflow not found")
    except Exception as e:
        logger.error(f"Failed to set workflow {workflow_id} to {status.value}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{workflow_id}/execute")
async def execute_workflow(
    workflow_id: str,
    request: WorkflowExecutionRequest,
    engine: WorkflowEngine = Depends(get_engine)
):
    """Start workflow execution."""
    try:
        execution_id = await engine.trigger_workflow_by_id(workflow_id, request.input_data)
        logger.info(f"Started workflow execution {execution_id}")
        return {"execution_id": execution_id, "status": WorkflowStatus.PENDING.value}

    except RecordNotFoundError:
        raise HTTPException(status_code=404, detail="Workflow not found")
    except WorkflowNotActiveError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.error(f"Failed to execute workflow {workflow_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{workflow_id}/executions", response_model=List[WorkflowExecution])
async def list_workflow_executions(
    workflow_id: str,
    status: Optional[WorkflowStatus] = None,
    limit: int = 50,
    offset: int = 0,
    registry: WorkflowRegistry = Depends(get_registry)
):
    """List executions for a specific workflow."""
    try:
        return await registry.list_workflow_executions(
            workflow_id=workflow_id, status=status, limit=limit, offset=offset
        )

    except Exception as e:
        logger.error(f"Failed to list executions for workflow {workflow_id}: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

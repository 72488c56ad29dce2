# workflow_registry.py - Workflow definition and execution storage
# This file contains logic for storing and retrieving workflows through the record store.

import logging
from typing import List, Optional, Iterable
from datetime import datetime

from .models import (
    WorkflowDefinition, WorkflowExecution, WorkflowUpdateRequest,
    DefinitionStatus, WorkflowStatus
)
from .record_store import RecordStore, WORKFLOWS, EXECUTIONS
from .exceptions import DuplicateRecordError, RecordNotFoundError

logger = logging.getLogger(__name__)

class WorkflowRegistry:
    def __init__(self, store: RecordStore):
        self.store = store

    # Workflow Definitions
    async def store_workflow_definition(self, workflow: WorkflowDefinition) -> WorkflowDefinition:
        """Store a new workflow definition. Names are unique."""
        existing = await self.store.find_one(WORKFLOWS, {"name": workflow.name})
        if existing and existing["id"] != workflow.id:
            raise DuplicateRecordError(f"Workflow named '{workflow.name}' already exists")

        await self.store.create(WORKFLOWS, workflow.model_dump(mode="json"))
        logger.info(f"Stored workflow definition {workflow.id}: {workflow.name}")
        return workflow

    async def get_workflow_definition(self, workflow_id: str) -> Optional[WorkflowDefinition]:
        data = await self.store.find_by_id(WORKFLOWS, workflow_id)
        return WorkflowDefinition(**data) if data else None

    async def list_workflow_definitions(self, status: Optional[DefinitionStatus] = None) -> List[WorkflowDefinition]:
        filters = {"status": status.value} if status else None
        records = await self.store.find_all(WORKFLOWS, filters, sort_by="created_at")
        return [WorkflowDefinition(**r) for r in records]

    async def find_active_definition(self) -> Optional[WorkflowDefinition]:
        """Return the oldest active definition, if any."""
        active = await self.list_workflow_definitions(DefinitionStatus.ACTIVE)
        return active[0] if active else None

    async def update_workflow_definition(self, workflow_id: str,
                                         request: WorkflowUpdateRequest) -> WorkflowDefinition:
        """Apply an edit and bump the version counter."""
        workflow = await self.get_workflow_definition(workflow_id)
        if not workflow:
            raise RecordNotFoundError(WORKFLOWS, workflow_id)

        changes = request.model_dump(exclude_none=True)
        if "name" in changes and changes["name"] != workflow.name:
            existing = await self.store.find_one(WORKFLOWS, {"name": changes["name"]})
            if existing:
                raise DuplicateRecordError(f"Workflow named '{changes['name']}' already exists")

        updated = workflow.model_copy(update={
            **{key: getattr(request, key) for key in changes},
            "version": workflow.version + 1,
            "updated_at": datetime.utcnow()
        })
        await self.store.update(WORKFLOWS, workflow_id, updated.model_dump(mode="json"))
        logger.info(f"Updated workflow {workflow_id} to version {updated.version}")
        return updated

    async def set_definition_status(self, workflow_id: str, status: DefinitionStatus) -> WorkflowDefinition:
        record = await self.store.update(WORKFLOWS, workflow_id, {
            "status": status.value,
            "updated_at": datetime.utcnow().isoformat()
        })
        if record is None:
            raise RecordNotFoundError(WORKFLOWS, workflow_id)
        logger.info(f"Workflow {workflow_id} is now {status.value}")
        return WorkflowDefinition(**record)

    async def delete_workflow_definition(self, workflow_id: str):
        """Remove a definition. Past executions keep their records."""
        if not await self.store.delete(WORKFLOWS, workflow_id):
            raise RecordNotFoundError(WORKFLOWS, workflow_id)
        logger.info(f"Deleted workflow definition {workflow_id}")

    # Workflow Executions
    async def store_workflow_execution(self, execution: WorkflowExecution) -> WorkflowExecution:
        await self.store.create(EXECUTIONS, execution.model_dump(mode="json"))
        return execution

    async def update_workflow_execution(self, execution: WorkflowExecution, fields: Iterable[str]):
        """Persist only the listed fields of an in-flight execution."""
        changes = execution.model_dump(mode="json", include=set(fields))
        await self.store.update(EXECUTIONS, execution.id, changes)

    async def get_workflow_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        data = await self.store.find_by_id(EXECUTIONS, execution_id)
        return WorkflowExecution(**data) if data else None

    async def list_workflow_executions(self, workflow_id: Optional[str] = None,
                                       status: Optional[WorkflowStatus] = None,
                                       limit: Optional[int] = None,
                                       offset: int = 0) -> List[WorkflowExecution]:
        """List executions, newest first, with optional filtering."""
        filters = {}
        if workflow_id:
            filters["workflow_id"] = workflow_id
        if status:
            filters["status"] = status.value

        records = await self.store.find_all(
            EXECUTIONS, filters or None, sort_by="created_at", descending=True,
            limit=limit, offset=offset
        )
        return [WorkflowExecution(**r) for r in records]

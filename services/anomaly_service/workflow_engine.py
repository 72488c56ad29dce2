# workflow_engine.py - Core execution engine for anomaly workflows
# This file contains the step-by-step state machine, its step handlers and the supervised task pool.

import asyncio
import functools
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional
from datetime import datetime

from .models import (
    WorkflowDefinition, WorkflowExecution, WorkflowStep, StepResult,
    WorkflowStatus, DefinitionStatus, AnomalyStatus, StepType, Decision,
    TERMINAL_EXECUTION_STATUSES
)
from .ai_oracle import AIOracle
from .anomaly_registry import AnomalyRegistry
from .workflow_registry import WorkflowRegistry
from .event_publisher import EventPublisher
from .decision_policy import AutonomyConfig, decide
from .exceptions import RecordNotFoundError, WorkflowNotActiveError, StepTimeoutError
from .record_store import WORKFLOWS
from .config import settings

logger = logging.getLogger(__name__)

StepHandler = Callable[[WorkflowStep, "WorkflowContext"], Awaitable[Dict[str, Any]]]


class WorkflowContext:
    """Execution-scoped state shared by the steps of one run."""

    def __init__(self, input_data: Dict[str, Any], anomaly: Optional[Dict[str, Any]] = None):
        self.input = input_data
        self.anomaly = anomaly
        self.anomaly_id: Optional[str] = anomaly.get("id") if anomaly else None
        self.step_results: Dict[str, Dict[str, Any]] = {}
        self.variables: Dict[str, Any] = {}


class WorkflowEngine:
    """Runs workflow definitions against anomalies, one step at a time."""

    def __init__(self, workflow_registry: WorkflowRegistry, anomaly_registry: AnomalyRegistry,
                 oracle: AIOracle, event_publisher: EventPublisher,
                 autonomy: Optional[AutonomyConfig] = None,
                 max_concurrent_workflows: int = None, default_step_timeout: float = None):
        self.workflow_registry = workflow_registry
        self.anomaly_registry = anomaly_registry
        self.oracle = oracle
        self.event_publisher = event_publisher
        self.autonomy = autonomy or AutonomyConfig(
            autonomous_mode=settings.autonomous_mode,
            auto_approve_threshold=settings.auto_approve_threshold
        )
        self.default_step_timeout = default_step_timeout or settings.default_step_timeout

        self.running_executions: Dict[str, asyncio.Task] = {}
        self._slots = asyncio.Semaphore(max_concurrent_workflows or settings.max_concurrent_workflows)

        self.step_handlers: Dict[str, StepHandler] = {
            StepType.INTAKE.value: self._execute_intake_step,
            StepType.AI_ANALYSIS.value: self._execute_ai_analysis_step,
            StepType.VERIFICATION.value: self._execute_verification_step,
            StepType.DECISION.value: self._execute_decision_step,
            StepType.HUMAN_REVIEW.value: self._execute_human_review_step,
            StepType.APPROVAL.value: self._execute_approval_step,
            StepType.RESPONSE.value: self._execute_response_step,
            StepType.NOTIFICATION.value: self._execute_notification_step,
        }

    def register_step_handler(self, step_type: str, handler: StepHandler):
        """Register (or replace) the handler for a step type."""
        self.step_handlers[step_type] = handler
        logger.info(f"Registered step handler for type {step_type}")

    # =========================
    # TRIGGERS
    # =========================

    async def trigger_workflow(self, trigger: str, data: Dict[str, Any]) -> Optional[str]:
        """Start the active workflow for ``data`` and return the execution id.

        The trigger name is recorded but not used for routing: the oldest
        active definition runs. Returns None when no definition is active.
        """
        try:
            workflow = await self.workflow_registry.find_active_definition()
            if not workflow:
                logger.warning(f"No active workflow found for trigger: {trigger}")
                return None

            execution = await self._create_execution(workflow, trigger, data)
            self.start_workflow_execution(workflow, execution)
            return execution.id

        except Exception as e:
            logger.error(f"Failed to trigger workflow for {trigger}: {str(e)}")
            return None

    async def trigger_workflow_by_id(self, workflow_id: str, data: Dict[str, Any],
                                     trigger: str = "manual") -> str:
        """Start a specific active workflow; raises if it is missing or not active."""
        workflow = await self.workflow_registry.get_workflow_definition(workflow_id)
        if not workflow:
            raise RecordNotFoundError(WORKFLOWS, workflow_id)
        if workflow.status != DefinitionStatus.ACTIVE:
            raise WorkflowNotActiveError(f"Workflow {workflow.name} is not active")

        execution = await self._create_execution(workflow, trigger, data)
        self.start_workflow_execution(workflow, execution)
        return execution.id

    async def _create_execution(self, workflow: WorkflowDefinition, trigger: str,
                                data: Dict[str, Any]) -> WorkflowExecution:
        execution = WorkflowExecution(
            workflow_id=workflow.id,
            anomaly_id=data.get("anomaly_id") or data.get("id"),
            status=WorkflowStatus.PENDING,
            input={"trigger": trigger, "data": data},
            triggered_by=trigger
        )
        await self.workflow_registry.store_workflow_execution(execution)
        logger.info(f"Created execution {execution.id} of workflow {workflow.name} (trigger: {trigger})")
        return execution

    # =========================
    # SUPERVISED EXECUTION
    # =========================

    def start_workflow_execution(self, workflow_def: WorkflowDefinition,
                                 execution: WorkflowExecution) -> asyncio.Task:
        """Start workflow execution in background."""
        task = asyncio.create_task(
            self._run_with_slot(workflow_def, execution),
            name=f"workflow-execution-{execution.id}"
        )
        self.running_executions[execution.id] = task
        task.add_done_callback(functools.partial(self._on_execution_done, execution.id))
        return task

    async def _run_with_slot(self, workflow_def: WorkflowDefinition,
                             execution: WorkflowExecution) -> WorkflowExecution:
        async with self._slots:
            return await self.execute_workflow(workflow_def, execution)

    def _on_execution_done(self, execution_id: str, task: asyncio.Task):
        if task.cancelled():
            logger.info(f"Execution task {execution_id} was cancelled")
        elif task.exception() is not None:
            logger.error(f"Execution task {execution_id} crashed: {task.exception()!r}")

    async def wait_for_execution(self, execution_id: str) -> Optional[WorkflowExecution]:
        """Block until the execution finishes and return its stored state."""
        task = self.running_executions.get(execution_id)
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                if not task.cancelled():
                    raise
        return await self.workflow_registry.get_workflow_execution(execution_id)

    async def cancel_workflow_execution(self, execution_id: str) -> bool:
        """Cancel a running workflow execution.

        Returns True only when the stored execution ends up ``cancelled``;
        a run that finished before the cancellation landed keeps its status.
        """
        task = self.running_executions.get(execution_id)
        if task is None or task.done():
            return False

        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        # cleanup_completed_executions may already have removed the entry
        self.running_executions.pop(execution_id, None)

        execution = await self.workflow_registry.get_workflow_execution(execution_id)
        if execution is None:
            return False
        if execution.status in TERMINAL_EXECUTION_STATUSES:
            if execution.status != WorkflowStatus.CANCELLED:
                logger.info(f"Execution {execution_id} finished as {execution.status.value} before cancellation")
                return False
            return True

        execution.status = WorkflowStatus.CANCELLED
        execution.completed_at = datetime.utcnow()
        execution.duration = self._duration_ms(execution)
        await self.workflow_registry.update_workflow_execution(
            execution, ["status", "completed_at", "duration"]
        )
        await self.event_publisher.publish_workflow_progress(
            execution_id, execution.workflow_id, execution.status.value, execution.current_step
        )

        logger.info(f"Cancelled workflow execution {execution_id}")
        return True

    def get_running_executions(self) -> List[str]:
        """Get list of currently running execution IDs."""
        return [eid for eid, task in self.running_executions.items() if not task.done()]

    async def cleanup_completed_executions(self):
        """Clean up completed execution tasks."""
        completed_executions = [eid for eid, task in self.running_executions.items() if task.done()]

        for execution_id in completed_executions:
            self.running_executions.pop(execution_id, None)

        if completed_executions:
            logger.info(f"Cleaned up {len(completed_executions)} completed execution tasks")

    async def shutdown(self):
        for execution_id in self.get_running_executions():
            await self.cancel_workflow_execution(execution_id)

    # =========================
    # STATE MACHINE
    # =========================

    async def execute_workflow(self, workflow_def: WorkflowDefinition,
                               execution: WorkflowExecution) -> WorkflowExecution:
        """Run every step of ``workflow_def`` in declared order.

        Step failures are captured on the execution (status ``failed`` and
        ``error``) instead of being raised.
        """
        logger.info(f"Starting workflow execution {execution.id} ({workflow_def.name})")

        execution.status = WorkflowStatus.RUNNING
        execution.started_at = datetime.utcnow()
        await self.workflow_registry.update_workflow_execution(execution, ["status", "started_at"])
        await self.event_publisher.publish_workflow_progress(
            execution.id, workflow_def.id, execution.status.value,
            total_steps=len(workflow_def.steps)
        )

        current: Optional[WorkflowStep] = None
        try:
            context = await self._build_context(execution)

            for step in workflow_def.steps:
                current = step

                # Marker is persisted before the step body runs
                execution.current_step = step.id
                await self.workflow_registry.update_workflow_execution(execution, ["current_step"])

                result = await self._execute_step(step, context)

                execution.step_results.append(StepResult(step_id=step.id, step_name=step.name, result=result))
                context.step_results[step.id] = result
                await self.workflow_registry.update_workflow_execution(execution, ["step_results"])
                await self.event_publisher.publish_workflow_progress(
                    execution.id, workflow_def.id, execution.status.value, step.id,
                    completed_steps=len(execution.step_results),
                    total_steps=len(workflow_def.steps)
                )

                if result.get("terminate"):
                    logger.info(f"Step {step.name} terminated execution {execution.id} early")
                    break

            execution.status = WorkflowStatus.COMPLETED
            execution.output = {"final_context": context.variables}
            execution.completed_at = datetime.utcnow()
            execution.duration = self._duration_ms(execution)
            await self.workflow_registry.update_workflow_execution(
                execution, ["status", "output", "completed_at", "duration"]
            )
            logger.info(f"Workflow {workflow_def.name} completed in {execution.duration}ms")

        except Exception as e:
            message = str(e) or e.__class__.__name__
            if current is not None:
                message = f"Step {current.name} failed: {message}"
            logger.error(f"Workflow execution {execution.id} failed: {message}")

            execution.status = WorkflowStatus.FAILED
            execution.error = message
            execution.completed_at = datetime.utcnow()
            execution.duration = self._duration_ms(execution)
            await self.workflow_registry.update_workflow_execution(
                execution, ["status", "error", "completed_at", "duration"]
            )

        await self.event_publisher.publish_workflow_progress(
            execution.id, workflow_def.id, execution.status.value, execution.current_step,
            error=execution.error, duration=execution.duration
        )
        return execution

    async def _build_context(self, execution: WorkflowExecution) -> WorkflowContext:
        data = execution.input.get("data") or {}

        anomaly = None
        if execution.anomaly_id:
            stored = await self.anomaly_registry.get_anomaly(execution.anomaly_id)
            if stored:
                anomaly = stored.model_dump(mode="json")
        if anomaly is None and data.get("title"):
            # Ad-hoc input that was never persisted; nothing to write back to
            anomaly = {k: v for k, v in data.items() if k != "id"}

        context = WorkflowContext(execution.input, anomaly)
        if "sources" in data:
            context.variables["sources"] = data["sources"]
        return context

    async def _execute_step(self, step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
        logger.debug(f"Executing step: {step.name} ({step.type})")
        handler = self.step_handlers.get(step.type, self._execute_custom_step)
        timeout = step.timeout or self.default_step_timeout

        try:
            return await asyncio.wait_for(handler(step, context), timeout=timeout)
        except asyncio.TimeoutError:
            raise StepTimeoutError(step.name, timeout)

    @staticmethod
    def _duration_ms(execution: WorkflowExecution) -> Optional[int]:
        if not execution.started_at or not execution.completed_at:
            return None
        return int((execution.completed_at - execution.started_at).total_seconds() * 1000)

    async def _update_anomaly(self, context: WorkflowContext, changes: Dict[str, Any]):
        if not context.anomaly_id:
            return
        updated = await self.anomaly_registry.update_anomaly(context.anomaly_id, changes)
        if updated:
            context.anomaly = updated.model_dump(mode="json")

    # =========================
    # STEP HANDLERS
    # =========================

    async def _execute_intake_step(self, step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
        return {
            "success": True,
            "validated": True,
            "anomaly_id": context.anomaly_id,
            "timestamp": datetime.utcnow().isoformat()
        }

    async def _execute_ai_analysis_step(self, step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
        if not context.anomaly:
            return {"success": False, "error": "No anomaly data available"}

        anomaly = context.anomaly
        analysis = await self.oracle.analyze_anomaly(
            title=anomaly.get("title", ""),
            description=anomaly.get("description", ""),
            type=anomaly.get("type", "other"),
            location=anomaly.get("location", ""),
            raw_data=anomaly.get("raw_data", {})
        )
        analysis_data = analysis.model_dump(mode="json")

        await self._update_anomaly(context, {
            "ai_analysis": analysis_data,
            "confidence": analysis.confidence,
            "status": AnomalyStatus.ANALYZING
        })
        context.variables["ai_analysis"] = analysis_data

        return {
            "success": True,
            "analysis": analysis_data,
            "confidence": analysis.confidence
        }

    async def _execute_verification_step(self, step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
        sources = context.variables.get("sources") or []
        verification = await self.oracle.cross_verify(context.anomaly_id or "", sources)
        verification_data = verification.model_dump(mode="json")

        await self._update_anomaly(context, {
            "verification_data": verification_data,
            "status": AnomalyStatus.VERIFIED if verification.verified else AnomalyStatus.PENDING_REVIEW
        })
        context.variables["verification"] = verification_data

        return {
            "success": True,
            "verified": verification.verified,
            "confidence": verification.confidence
        }

    async def _execute_decision_step(self, step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
        ai_analysis = context.variables.get("ai_analysis") or {}
        verification = context.variables.get("verification") or {}

        outcome = decide(
            confidence=ai_analysis.get("confidence", 0.0),
            verified=verification.get("verified", False),
            autonomous_mode=self.autonomy.autonomous_mode,
            threshold=self.autonomy.auto_approve_threshold
        )
        decision_data = outcome.model_dump(mode="json")
        context.variables["decision"] = decision_data

        result = {"success": True, **decision_data}
        if step.config.get("terminate_on_review") and outcome.requires_human_review:
            result["terminate"] = True
        return result

    async def _execute_human_review_step(self, step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
        await self._update_anomaly(context, {"status": AnomalyStatus.PENDING_REVIEW})
        return {
            "success": True,
            "status": AnomalyStatus.PENDING_REVIEW.value,
            "message": "Anomaly queued for human review"
        }

    async def _execute_approval_step(self, step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
        decision = context.variables.get("decision") or {}

        if decision.get("decision") == Decision.AUTO_APPROVED.value:
            await self._update_anomaly(context, {
                "status": AnomalyStatus.APPROVED,
                "reviewed_at": datetime.utcnow()
            })
            return {"success": True, "approved": True, "method": "automatic"}

        return {"success": True, "approved": False, "method": "manual_required"}

    async def _execute_response_step(self, step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
        if not context.anomaly:
            return {"success": False, "error": "No anomaly data"}

        impact = await self.oracle.generate_impact_assessment(context.anomaly)
        await self._update_anomaly(context, {"impact_assessment": impact})

        return {"success": True, "impact_assessment": impact}

    async def _execute_notification_step(self, step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
        # Channel fan-out (email, SMS, ...) belongs to the communication service
        logger.info(f"Notification step for anomaly {context.anomaly_id}")
        await self.event_publisher.publish_system_event("workflow_notification", {
            "anomaly_id": context.anomaly_id,
            "step_id": step.id,
            "decision": (context.variables.get("decision") or {}).get("decision")
        })
        return {"success": True, "notifications_sent": 0, "channels": []}

    async def _execute_custom_step(self, step: WorkflowStep, context: WorkflowContext) -> Dict[str, Any]:
        return {"success": True, "implemented": False, "message": f"Step type '{step.type}' not implemented"}

    # =========================
    # ADMINISTRATION
    # =========================

    async def set_autonomous_mode(self, enabled: bool, threshold: Optional[float] = None) -> AutonomyConfig:
        self.autonomy.set_autonomous_mode(enabled, threshold)
        await self.event_publisher.publish_system_event("autonomous_mode_changed", {
            "enabled": self.autonomy.autonomous_mode,
            "auto_approve_threshold": self.autonomy.auto_approve_threshold
        })
        return self.autonomy

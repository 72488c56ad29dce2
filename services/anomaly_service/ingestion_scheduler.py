# ingestion_scheduler.py - Scheduled multi-source anomaly ingestion
# This file contains the cron-driven loop that fetches feeds, deduplicates candidates,
# persists new anomalies and hands high-severity ones to the workflow engine.

import asyncio
import logging
from typing import Any, Dict, Optional
from datetime import datetime
from croniter import croniter

from .models import Anomaly, AnomalyStatus, CandidateAnomaly, IngestionReport, HIGH_SEVERITIES
from .ai_oracle import AIOracle
from .anomaly_registry import AnomalyRegistry
from .workflow_engine import WorkflowEngine
from .event_publisher import EventPublisher
from .source_adapters.adapter_registry import SourceAdapterRegistry
from .config import settings

logger = logging.getLogger(__name__)

WORKFLOW_TRIGGER = "anomaly_detected"


class IngestionScheduler:
    def __init__(self, adapter_registry: SourceAdapterRegistry, anomaly_registry: AnomalyRegistry,
                 oracle: AIOracle, engine: WorkflowEngine, event_publisher: EventPublisher,
                 schedule: str = None, initial_delay: float = None, enabled: bool = None):
        self.adapter_registry = adapter_registry
        self.anomaly_registry = anomaly_registry
        self.oracle = oracle
        self.engine = engine
        self.event_publisher = event_publisher

        self.schedule = schedule or settings.ingestion_schedule
        self.initial_delay = settings.ingestion_initial_delay if initial_delay is None else initial_delay
        self.enabled = settings.ingestion_enabled if enabled is None else enabled

        if not croniter.is_valid(self.schedule):
            raise ValueError(f"Invalid ingestion schedule: {self.schedule}")

        self.is_running = False
        self.last_report: Optional[IngestionReport] = None
        self.next_run_at: Optional[datetime] = None
        self.cycles_completed = 0
        self._loop_task: Optional[asyncio.Task] = None
        self._cycle_task: Optional[asyncio.Task] = None

    # =========================
    # TIMER
    # =========================

    def start(self):
        """Begin the recurring schedule: one run after the initial delay, then every cron tick."""
        if not self.enabled:
            logger.info("Ingestion scheduler disabled")
            return
        if self._loop_task and not self._loop_task.done():
            logger.warning("Ingestion scheduler already started")
            return

        self._loop_task = asyncio.create_task(self._run_loop(), name="ingestion-scheduler")
        logger.info(f"Ingestion scheduler started (schedule: {self.schedule})")

    async def stop(self):
        for task in (self._loop_task, self._cycle_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._loop_task = None
        self._cycle_task = None
        self.next_run_at = None
        logger.info("Ingestion scheduler stopped")

    async def _run_loop(self):
        await asyncio.sleep(self.initial_delay)
        self._tick()

        ticks = croniter(self.schedule, datetime.now())
        while True:
            self.next_run_at = ticks.get_next(datetime)
            delay = (self.next_run_at - datetime.now()).total_seconds()
            await asyncio.sleep(max(0.0, delay))
            self._tick()

    def _tick(self):
        # Cycles run detached from the timer; a tick during a running cycle is dropped
        if self.is_running:
            logger.warning("Ingestion cycle still in progress, skipping scheduled tick")
            return
        self._cycle_task = asyncio.create_task(self._scheduled_cycle(), name="ingestion-cycle")

    async def _scheduled_cycle(self):
        try:
            await self.run_cycle()
        except Exception as e:
            logger.error(f"Scheduled ingestion cycle failed: {str(e)}")

    # =========================
    # CYCLE
    # =========================

    async def trigger_manual_ingestion(self) -> IngestionReport:
        logger.info("Manual ingestion triggered")
        return await self.run_cycle()

    async def run_cycle(self) -> IngestionReport:
        """Fetch every adapter concurrently and ingest the resulting candidates.

        At most one cycle runs at a time; an overlapping call returns a
        report with ``skipped`` set instead of waiting.
        """
        if self.is_running:
            logger.warning("Ingestion cycle already running, skipping")
            return IngestionReport(skipped=True, completed_at=datetime.utcnow())

        self.is_running = True
        report = IngestionReport()
        try:
            adapters = self.adapter_registry.list_adapters()
            logger.info(f"Starting ingestion cycle across {len(adapters)} sources")

            results = await asyncio.gather(
                *(adapter.fetch_candidates() for adapter in adapters),
                return_exceptions=True
            )

            for adapter, result in zip(adapters, results):
                if isinstance(result, Exception):
                    logger.error(f"Source {adapter.name} failed: {str(result)}")
                    report.source_errors[adapter.name] = str(result)
                    continue

                for candidate in result:
                    report.candidates_seen += 1
                    try:
                        await self._ingest_candidate(candidate, report)
                    except Exception as e:
                        report.candidates_failed += 1
                        logger.error(f"Failed to ingest '{candidate.title}' from {adapter.name}: {str(e)}")

            report.completed_at = datetime.utcnow()
            logger.info(
                f"Ingestion cycle complete: {report.anomalies_created} created, "
                f"{report.duplicates_skipped} duplicates, {len(report.source_errors)} failed sources"
            )

            if report.anomalies_created > 0:
                await self.event_publisher.publish_system_event("ingestion_complete", {
                    "processed": report.processed,
                    "created": report.anomalies_created,
                    "workflows_triggered": len(report.workflows_triggered),
                    "timestamp": report.completed_at.isoformat()
                })

            self.last_report = report
            self.cycles_completed += 1
            return report

        finally:
            self.is_running = False

    async def _ingest_candidate(self, candidate: CandidateAnomaly, report: IngestionReport):
        existing = await self.anomaly_registry.find_duplicate(
            candidate.title, candidate.latitude, candidate.longitude
        )
        if existing:
            report.duplicates_skipped += 1
            logger.debug(f"Skipping duplicate anomaly '{candidate.title}' ({existing.id})")
            return

        analysis = await self.oracle.analyze_anomaly(
            title=candidate.title,
            description=candidate.description,
            type=candidate.type.value,
            location=candidate.location,
            raw_data=candidate.raw_data
        )

        # Fallback analysis never overrides the feed's severity guess
        severity = candidate.severity if analysis.is_fallback else analysis.severity

        anomaly = Anomaly(
            title=candidate.title,
            description=candidate.description,
            type=candidate.type,
            severity=severity,
            status=AnomalyStatus.DETECTED,
            confidence=analysis.confidence,
            latitude=candidate.latitude,
            longitude=candidate.longitude,
            location=candidate.location,
            source_id=candidate.source_id,
            source_type=candidate.source_type,
            raw_data=candidate.raw_data,
            ai_analysis=analysis.model_dump(mode="json"),
            media_urls=candidate.media_urls,
            tags=analysis.categories
        )
        await self.anomaly_registry.create_anomaly(anomaly)
        report.anomalies_created += 1

        if anomaly.severity in HIGH_SEVERITIES:
            execution_id = await self.engine.trigger_workflow(WORKFLOW_TRIGGER, anomaly.model_dump(mode="json"))
            if execution_id:
                report.workflows_triggered.append(execution_id)

    # =========================
    # STATUS
    # =========================

    @property
    def state(self) -> Dict[str, Any]:
        return {
            "enabled": self.enabled,
            "schedule": self.schedule,
            "started": bool(self._loop_task and not self._loop_task.done()),
            "is_running": self.is_running,
            "next_run_at": self.next_run_at.isoformat() if self.next_run_at else None,
            "cycles_completed": self.cycles_completed,
            "sources": [adapter.describe() for adapter in self.adapter_registry.list_adapters()],
            "last_report": self.last_report.model_dump(mode="json") if self.last_report else None
        }

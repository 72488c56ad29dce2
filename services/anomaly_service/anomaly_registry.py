# anomaly_registry.py - Anomaly persistence and review actions
# This file wraps the record store for anomaly reads/writes and publishes lifecycle events.

import logging
from typing import Dict, List, Optional, Any
from datetime import datetime, timedelta
from enum import Enum

from .models import Anomaly, AnomalyStatus, Severity, clamp_confidence
from .record_store import RecordStore, ANOMALIES
from .event_publisher import EventPublisher
from .exceptions import RecordNotFoundError

logger = logging.getLogger(__name__)


def _jsonable(changes: Dict[str, Any]) -> Dict[str, Any]:
    out = {}
    for key, value in changes.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif hasattr(value, "model_dump"):
            value = value.model_dump(mode="json")
        elif isinstance(value, Enum):
            value = value.value
        out[key] = value
    return out


class AnomalyRegistry:
    def __init__(self, store: RecordStore, event_publisher: EventPublisher):
        self.store = store
        self.event_publisher = event_publisher

    async def create_anomaly(self, anomaly: Anomaly) -> Anomaly:
        record = anomaly.model_dump(mode="json")
        await self.store.create(ANOMALIES, record)
        await self.event_publisher.publish_anomaly("created", record)
        logger.debug(f"Created anomaly {anomaly.id}")
        return anomaly

    async def get_anomaly(self, anomaly_id: str) -> Optional[Anomaly]:
        data = await self.store.find_by_id(ANOMALIES, anomaly_id)
        return Anomaly(**data) if data else None

    async def list_anomalies(self, filters: Optional[Dict[str, Any]] = None,
                             limit: Optional[int] = None, offset: int = 0) -> List[Anomaly]:
        records = await self.store.find_all(
            ANOMALIES, _jsonable(filters or {}) or None, sort_by="created_at",
            descending=True, limit=limit, offset=offset
        )
        return [Anomaly(**r) for r in records]

    async def find_duplicate(self, title: str, latitude: float, longitude: float) -> Optional[Anomaly]:
        """Exact-match dedup on (title, latitude, longitude)."""
        data = await self.store.find_one(ANOMALIES, {
            "title": title,
            "latitude": float(latitude),
            "longitude": float(longitude)
        })
        return Anomaly(**data) if data else None

    async def update_anomaly(self, anomaly_id: str, changes: Dict[str, Any]) -> Optional[Anomaly]:
        """Merge changes into an anomaly and publish the update."""
        changes = dict(changes)
        if "confidence" in changes:
            changes["confidence"] = clamp_confidence(changes["confidence"])
        changes["updated_at"] = datetime.utcnow()

        record = await self.store.update(ANOMALIES, anomaly_id, _jsonable(changes))
        if record is None:
            logger.warning(f"Anomaly {anomaly_id} not found for update")
            return None

        await self.event_publisher.publish_anomaly("updated", record)
        return Anomaly(**record)

    async def delete_anomaly(self, anomaly_id: str):
        if not await self.store.delete(ANOMALIES, anomaly_id):
            raise RecordNotFoundError(ANOMALIES, anomaly_id)
        await self.event_publisher.publish_anomaly("deleted", {"id": anomaly_id})
        logger.info(f"Deleted anomaly {anomaly_id}")

    async def get_stats(self) -> Dict[str, Any]:
        """Counts for the operations overview."""
        since = (datetime.utcnow() - timedelta(hours=24)).isoformat()
        records = await self.store.find_all(ANOMALIES)

        by_type: Dict[str, int] = {}
        by_severity: Dict[str, int] = {}
        for record in records:
            by_type[record["type"]] = by_type.get(record["type"], 0) + 1
            by_severity[record["severity"]] = by_severity.get(record["severity"], 0) + 1

        return {
            "total": len(records),
            "critical": await self.store.count(ANOMALIES, {"severity": Severity.CRITICAL.value}),
            "high": await self.store.count(ANOMALIES, {"severity": Severity.HIGH.value}),
            "pending": await self.store.count(ANOMALIES, {"status": AnomalyStatus.PENDING_REVIEW.value}),
            "last_24_hours": sum(1 for r in records if r.get("created_at", "") >= since),
            "by_type": [{"type": k, "count": v} for k, v in sorted(by_type.items())],
            "by_severity": [{"severity": k, "count": v} for k, v in sorted(by_severity.items())]
        }

    # Review actions (administrative path, independent of workflow executions)
    async def approve_anomaly(self, anomaly_id: str, reviewer_id: Optional[str] = None) -> Anomaly:
        return await self._review(anomaly_id, AnomalyStatus.APPROVED, reviewer_id)

    async def reject_anomaly(self, anomaly_id: str, reviewer_id: Optional[str] = None,
                             reason: Optional[str] = None) -> Anomaly:
        return await self._review(anomaly_id, AnomalyStatus.REJECTED, reviewer_id, reason)

    async def resolve_anomaly(self, anomaly_id: str) -> Anomaly:
        anomaly = await self.update_anomaly(anomaly_id, {
            "status": AnomalyStatus.RESOLVED,
            "resolved_at": datetime.utcnow()
        })
        if anomaly is None:
            raise RecordNotFoundError(ANOMALIES, anomaly_id)
        return anomaly

    async def _review(self, anomaly_id: str, status: AnomalyStatus,
                      reviewer_id: Optional[str], reason: Optional[str] = None) -> Anomaly:
        current = await self.get_anomaly(anomaly_id)
        if current is None:
            raise RecordNotFoundError(ANOMALIES, anomaly_id)

        changes: Dict[str, Any] = {
            "status": status,
            "reviewed_by": reviewer_id,
            "reviewed_at": datetime.utcnow()
        }
        if reason:
            changes["metadata"] = {**current.metadata, "rejection_reason": reason}

        anomaly = await self.update_anomaly(anomaly_id, changes)
        logger.info(f"Anomaly {anomaly_id} {status.value} by {reviewer_id or 'anonymous'}")
        return anomaly

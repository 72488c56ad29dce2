# services/anomaly_service/event_publisher.py
# Event publishing for anomaly lifecycle, workflow progress and system events

import asyncio
import httpx
import logging
from abc import ABC, abstractmethod
from collections import deque
from typing import Dict, Any, Callable, List, Optional
from datetime import datetime

logger = logging.getLogger(__name__)

ANOMALY_CREATED = "anomaly.created"
ANOMALY_UPDATED = "anomaly.updated"
ANOMALY_DELETED = "anomaly.deleted"
WORKFLOW_PROGRESS = "workflow.progress"
SYSTEM_PREFIX = "system."

class EventPublisher(ABC):
    """Best-effort fan-out of notifications to external observers.

    Implementations must never raise from ``publish``.
    """

    @abstractmethod
    async def publish(self, topic: str, payload: Dict[str, Any]):
        ...

    async def publish_anomaly(self, action: str, anomaly: Dict[str, Any]):
        """Publish anomaly lifecycle event (created, updated or deleted)."""
        await self.publish(f"anomaly.{action}", {"type": action, "data": anomaly})

    async def publish_workflow_progress(self, execution_id: str, workflow_id: str,
                                        status: str, current_step: Optional[str] = None,
                                        **extra):
        """Publish workflow progress event."""
        payload = {
            "execution_id": execution_id,
            "workflow_id": workflow_id,
            "status": status,
            "current_step": current_step
        }
        payload.update(extra)
        await self.publish(WORKFLOW_PROGRESS, payload)

    async def publish_system_event(self, event: str, data: Dict[str, Any]):
        await self.publish(f"{SYSTEM_PREFIX}{event}", {"event": event, "data": data})

    async def close(self):
        pass

class HttpEventPublisher(EventPublisher):
    """Publishes events to the communication service."""

    def __init__(self, communication_url: str, timeout: float = 5.0,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.communication_url = communication_url.rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def publish(self, topic: str, payload: Dict[str, Any]):
        event_data = {
            "event_type": topic,
            "source_service": "anomaly-service",
            "source_id": payload.get("execution_id") or payload.get("data", {}).get("id", ""),
            "priority": "high" if topic == ANOMALY_CREATED else "medium",
            "payload": payload,
            "metadata": {
                "timestamp": datetime.utcnow().isoformat()
            }
        }
        await self._send_to_communication(event_data)

    async def _send_to_communication(self, event_data: Dict[str, Any]):
        """Send event to communication service."""
        try:
            response = await self.http_client.post(
                f"{self.communication_url}/events/publish",
                json=event_data
            )
            response.raise_for_status()

        except Exception as e:
            logger.warning(f"Failed to send event to communication service: {str(e)}")

    async def close(self):
        """Close HTTP client."""
        await self.http_client.aclose()

class InMemoryEventPublisher(EventPublisher):
    """Keeps recent events in memory and fans them out to local subscribers."""

    def __init__(self, max_events: int = 1000):
        self.events: deque = deque(maxlen=max_events)
        self._subscribers: List[Callable[[str, Dict[str, Any]], Any]] = []

    def subscribe(self, handler: Callable[[str, Dict[str, Any]], Any]):
        self._subscribers.append(handler)

    def unsubscribe(self, handler: Callable[[str, Dict[str, Any]], Any]):
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    async def publish(self, topic: str, payload: Dict[str, Any]):
        event = {"topic": topic, "payload": payload, "timestamp": datetime.utcnow().isoformat()}
        self.events.append(event)

        for handler in list(self._subscribers):
            try:
                if asyncio.iscoroutinefunction(handler):
                    await handler(topic, payload)
                else:
                    handler(topic, payload)
            except Exception as e:
                logger.warning(f"Event subscriber failed for {topic}: {str(e)}")

    def recent(self, topic_prefix: str = "") -> List[Dict[str, Any]]:
        return [e for e in self.events if e["topic"].startswith(topic_prefix)]

"""Shared fixtures: in-memory collaborators and a scriptable oracle."""

import pytest

from services.anomaly_service.models import (
    AIAnalysisResult, VerificationResult, Anomaly, CandidateAnomaly, Severity
)
from services.anomaly_service.record_store import InMemoryRecordStore
from services.anomaly_service.event_publisher import InMemoryEventPublisher
from services.anomaly_service.anomaly_registry import AnomalyRegistry
from services.anomaly_service.workflow_registry import WorkflowRegistry
from services.anomaly_service.workflow_engine import WorkflowEngine
from services.anomaly_service.decision_policy import AutonomyConfig
from services.anomaly_service.source_adapters.base_adapter import BaseSourceAdapter


class FakeOracle:
    """Oracle double whose answers are set by the test."""

    def __init__(self, confidence=0.97, verified=True, severity=Severity.HIGH, fallback=False):
        self.available = True
        self.confidence = confidence
        self.verified = verified
        self.severity = severity
        self.fallback = fallback
        self.analyze_calls = []
        self.verify_calls = []

    async def analyze_anomaly(self, title, description, type, location, raw_data):
        self.analyze_calls.append(title)
        return AIAnalysisResult(
            summary=f"Assessment of {title}",
            severity=self.severity,
            confidence=self.confidence,
            categories=[type, "fake"],
            metadata={"mock": True} if self.fallback else {}
        )

    async def cross_verify(self, subject_id, sources):
        self.verify_calls.append((subject_id, list(sources)))
        return VerificationResult(verified=self.verified, confidence=0.9, matching_sources=len(sources))

    async def generate_impact_assessment(self, anomaly):
        return {"overall_impact": "high", "affected_areas": [anomaly.get("location", "")]}

    async def close(self):
        pass


class StaticAdapter(BaseSourceAdapter):
    """Adapter serving fixed candidates without any network access."""

    def __init__(self, name, candidates=None, error=None):
        super().__init__(name, "test", "http://feeds.invalid/" + name)
        self.candidates = candidates or []
        self.error = error
        self.fetch_count = 0

    async def fetch(self):
        self.fetch_count += 1
        if self.error is not None:
            raise self.error
        return {"items": [c.model_dump(mode="json") for c in self.candidates]}

    def _items(self, payload):
        return payload["items"]

    def _parse_item(self, item, payload):
        return CandidateAnomaly(**item)


def make_anomaly(**overrides) -> Anomaly:
    data = {
        "title": "Earthquake M6.1 - 10km SW of Testville",
        "description": "A magnitude 6.1 earthquake occurred near Testville.",
        "type": "seismic",
        "severity": Severity.HIGH,
        "latitude": 35.5,
        "longitude": -117.25,
        "location": "10km SW of Testville"
    }
    data.update(overrides)
    return Anomaly(**data)


def make_candidate(**overrides) -> CandidateAnomaly:
    data = {
        "title": "Wildfire near Ridgecrest",
        "description": "Wildfire spreading quickly.",
        "type": "environmental",
        "severity": Severity.MEDIUM,
        "latitude": 35.62,
        "longitude": -117.67,
        "location": "Ridgecrest"
    }
    data.update(overrides)
    return CandidateAnomaly(**data)


@pytest.fixture
def store():
    return InMemoryRecordStore()


@pytest.fixture
def publisher():
    return InMemoryEventPublisher()


@pytest.fixture
def oracle():
    return FakeOracle()


@pytest.fixture
def anomaly_registry(store, publisher):
    return AnomalyRegistry(store, publisher)


@pytest.fixture
def workflow_registry(store):
    return WorkflowRegistry(store)


@pytest.fixture
def engine(workflow_registry, anomaly_registry, oracle, publisher):
    return WorkflowEngine(
        workflow_registry, anomaly_registry, oracle, publisher,
        autonomy=AutonomyConfig(),
        max_concurrent_workflows=5,
        default_step_timeout=5
    )

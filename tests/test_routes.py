"""HTTP surface tests."""

import time

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from conftest import FakeOracle, StaticAdapter, make_candidate
from services.anomaly_service.routes import anomalies, workflows, executions, system, health
from services.anomaly_service.record_store import InMemoryRecordStore
from services.anomaly_service.event_publisher import (
    InMemoryEventPublisher, ANOMALY_CREATED, ANOMALY_UPDATED, ANOMALY_DELETED
)
from services.anomaly_service.anomaly_registry import AnomalyRegistry
from services.anomaly_service.workflow_registry import WorkflowRegistry
from services.anomaly_service.workflow_engine import WorkflowEngine
from services.anomaly_service.decision_policy import AutonomyConfig
from services.anomaly_service.ingestion_scheduler import IngestionScheduler
from services.anomaly_service.source_adapters.adapter_registry import SourceAdapterRegistry
from services.anomaly_service.models import Severity, WorkflowExecution, WorkflowStatus


def _build_app(oracle):
    app = FastAPI()
    for module in (anomalies, workflows, executions, system, health):
        app.include_router(module.router)

    store = InMemoryRecordStore()
    publisher = InMemoryEventPublisher()
    anomaly_registry = AnomalyRegistry(store, publisher)
    workflow_registry = WorkflowRegistry(store)
    engine = WorkflowEngine(workflow_registry, anomaly_registry, oracle, publisher,
                            autonomy=AutonomyConfig(), default_step_timeout=5)
    adapters = SourceAdapterRegistry()
    adapters.register(StaticAdapter("feed", [make_candidate()]))

    app.state.record_store = store
    app.state.event_publisher = publisher
    app.state.ai_oracle = oracle
    app.state.anomaly_registry = anomaly_registry
    app.state.workflow_registry = workflow_registry
    app.state.workflow_engine = engine
    app.state.ingestion_scheduler = IngestionScheduler(
        adapters, anomaly_registry, oracle, engine, publisher, enabled=False
    )
    return app


@pytest.fixture
def client():
    oracle = FakeOracle(severity=Severity.LOW)
    with TestClient(_build_app(oracle)) as test_client:
        yield test_client


def _wait_for_terminal(client, execution_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/executions/{execution_id}").json()
        if body["status"] in ("completed", "failed", "cancelled"):
            return body
        time.sleep(0.02)
    raise AssertionError(f"execution {execution_id} did not finish")


ANOMALY_BODY = {
    "title": "Gas leak on 5th Ave",
    "description": "Strong smell of gas reported",
    "type": "infrastructure",
    "severity": "medium",
    "latitude": 40.75,
    "longitude": -73.99,
    "location": "5th Ave",
}


def test_anomaly_lifecycle(client):
    created = client.post("/anomalies/", json=ANOMALY_BODY)
    assert created.status_code == 200
    anomaly_id = created.json()["id"]
    assert created.json()["status"] == "detected"
    assert created.json()["source_type"] == "manual"

    assert client.get(f"/anomalies/{anomaly_id}").json()["title"] == ANOMALY_BODY["title"]
    assert len(client.get("/anomalies/", params={"type": "infrastructure"}).json()) == 1
    assert client.get("/anomalies/", params={"type": "weather"}).json() == []

    approved = client.post(f"/anomalies/{anomaly_id}/approve", json={"reviewer_id": "ops-1"})
    assert approved.json()["status"] == "approved"
    assert approved.json()["reviewed_by"] == "ops-1"

    resolved = client.post(f"/anomalies/{anomaly_id}/resolve")
    assert resolved.json()["status"] == "resolved"


def test_anomaly_validation_and_missing(client):
    assert client.post("/anomalies/", json={**ANOMALY_BODY, "latitude": 123}).status_code == 422
    assert client.get("/anomalies/nope").status_code == 404
    assert client.post("/anomalies/nope/reject", json={"reason": "x"}).status_code == 404


def test_workflow_crud(client):
    created = client.post("/workflows/from-template", json={"template_type": "default", "name": "Main"})
    assert created.status_code == 200
    workflow_id = created.json()["id"]
    assert created.json()["status"] == "draft"
    assert len(created.json()["steps"]) == 8

    duplicate = client.post("/workflows/from-template", json={"template_type": "emergency", "name": "Main"})
    assert duplicate.status_code == 409

    updated = client.put(f"/workflows/{workflow_id}", json={"description": "edited"})
    assert updated.json()["version"] == 2

    activated = client.post(f"/workflows/{workflow_id}/activate")
    assert activated.json()["status"] == "active"
    assert activated.json()["version"] == 2

    assert [w["id"] for w in client.get("/workflows/", params={"status": "active"}).json()] == [workflow_id]
    assert len(client.get("/workflows/templates").json()) == 2
    assert client.get("/workflows/missing").status_code == 404


def test_execute_inactive_workflow_is_rejected(client):
    workflow_id = client.post("/workflows/from-template", json={"template_type": "emergency"}).json()["id"]

    response = client.post(f"/workflows/{workflow_id}/execute", json={"input_data": {}})
    assert response.status_code == 400
    assert client.post("/workflows/missing/execute", json={"input_data": {}}).status_code == 404


def test_manual_execution_runs_to_completion(client):
    workflow_id = client.post(
        "/workflows/from-template", json={"template_type": "default", "status": "active"}
    ).json()["id"]
    anomaly = client.post("/anomalies/", json=ANOMALY_BODY).json()

    started = client.post(f"/workflows/{workflow_id}/execute", json={"input_data": anomaly})
    assert started.status_code == 200
    execution_id = started.json()["execution_id"]

    execution = _wait_for_terminal(client, execution_id)
    assert execution["status"] == "completed"
    assert execution["anomaly_id"] == anomaly["id"]

    status = client.get(f"/executions/{execution_id}/status").json()
    assert status["progress_percentage"] == 100.0
    assert status["total_steps"] == 8

    assert [e["id"] for e in client.get(f"/workflows/{workflow_id}/executions").json()] == [execution_id]
    assert client.post(f"/executions/{execution_id}/cancel").status_code == 400
    assert client.get(f"/anomalies/{anomaly['id']}").json()["status"] == "pending_review"


def test_autonomous_mode_toggle(client):
    assert client.get("/system/autonomous-mode").json() == {
        "autonomous_mode": False, "auto_approve_threshold": 0.95
    }

    response = client.put("/system/autonomous-mode", json={"enabled": True, "auto_approve_threshold": 0.9})
    assert response.json() == {"autonomous_mode": True, "auto_approve_threshold": 0.9}

    assert client.put("/system/autonomous-mode", json={"enabled": True, "auto_approve_threshold": 2}).status_code == 422


def test_manual_ingestion_and_state(client):
    report = client.post("/system/ingestion/run").json()
    assert report["anomalies_created"] == 1
    assert report["skipped"] is False

    again = client.post("/system/ingestion/run").json()
    assert again["duplicates_skipped"] == 1

    state = client.get("/system/ingestion").json()
    assert state["enabled"] is False
    assert state["cycles_completed"] == 2
    assert state["sources"][0]["name"] == "feed"


def test_health(client):
    body = client.get("/health/").json()
    assert body["status"] == "healthy"
    assert body["components"]["record_store"]["backend"] == "InMemoryRecordStore"
    assert body["running_executions"] == 0


def test_service_starts_with_memory_backend(monkeypatch):
    from services.anomaly_service import main
    from services.anomaly_service.config import settings

    monkeypatch.setattr(settings, "store_backend", "memory")
    monkeypatch.setattr(settings, "ingestion_enabled", False)
    monkeypatch.setattr(settings, "communication_service_url", None)
    monkeypatch.setattr(settings, "openai_endpoint", None)
    monkeypatch.setattr(settings, "openai_api_key", None)

    with TestClient(main.app) as test_client:
        assert test_client.get("/").json()["service"] == settings.service_name
        health_body = test_client.get("/health/").json()

    assert health_body["status"] == "healthy"
    assert health_body["components"]["ai_oracle"]["status"] == "fallback"
    assert health_body["components"]["ingestion_scheduler"]["enabled"] is False


def test_manual_edit_can_set_status_directly(client):
    anomaly_id = client.post("/anomalies/", json=ANOMALY_BODY).json()["id"]

    edited = client.put(f"/anomalies/{anomaly_id}", json={"status": "resolved", "tags": ["gas"]})
    assert edited.status_code == 200
    assert edited.json()["status"] == "resolved"
    assert edited.json()["tags"] == ["gas"]
    assert edited.json()["title"] == ANOMALY_BODY["title"]

    assert client.put(f"/anomalies/{anomaly_id}", json={"latitude": 95}).status_code == 422
    assert client.put("/anomalies/missing", json={"title": "x"}).status_code == 404

    topics = [e["topic"] for e in client.app.state.event_publisher.recent("anomaly.")]
    assert topics == [ANOMALY_CREATED, ANOMALY_UPDATED]


def test_delete_anomaly_publishes_event(client):
    anomaly_id = client.post("/anomalies/", json=ANOMALY_BODY).json()["id"]

    assert client.delete(f"/anomalies/{anomaly_id}").status_code == 200
    assert client.get(f"/anomalies/{anomaly_id}").status_code == 404
    assert client.delete(f"/anomalies/{anomaly_id}").status_code == 404

    deleted = client.app.state.event_publisher.recent(ANOMALY_DELETED)
    assert [e["payload"]["data"] for e in deleted] == [{"id": anomaly_id}]


def test_stats_overview(client):
    client.post("/anomalies/", json=ANOMALY_BODY)
    client.post("/anomalies/", json={**ANOMALY_BODY, "title": "Tremor", "type": "seismic", "severity": "critical"})
    pending = client.post("/anomalies/", json={**ANOMALY_BODY, "title": "Outage", "severity": "high"}).json()
    client.put(f"/anomalies/{pending['id']}", json={"status": "pending_review"})

    stats = client.get("/anomalies/stats/overview").json()

    assert stats["total"] == 3
    assert stats["critical"] == 1
    assert stats["high"] == 1
    assert stats["pending"] == 1
    assert stats["last_24_hours"] == 3
    assert stats["by_type"] == [{"type": "infrastructure", "count": 2}, {"type": "seismic", "count": 1}]
    assert {"severity": "medium", "count": 1} in stats["by_severity"]


def test_delete_workflow(client):
    workflow_id = client.post("/workflows/from-template", json={"template_type": "emergency"}).json()["id"]

    assert client.delete(f"/workflows/{workflow_id}").status_code == 200
    assert client.get(f"/workflows/{workflow_id}").status_code == 404
    assert client.delete(f"/workflows/{workflow_id}").status_code == 404
    assert client.get("/workflows/").json() == []


def test_cancel_reports_the_stored_outcome(client):
    state = client.app.state
    execution = WorkflowExecution(workflow_id="w1", status=WorkflowStatus.RUNNING)
    client.portal.call(state.workflow_registry.store_workflow_execution, execution)

    async def finishes_before_cancel(execution_id):
        stored = await state.workflow_registry.get_workflow_execution(execution_id)
        stored.status = WorkflowStatus.COMPLETED
        await state.workflow_registry.update_workflow_execution(stored, ["status"])
        return True

    state.workflow_engine.cancel_workflow_execution = finishes_before_cancel

    response = client.post(f"/executions/{execution.id}/cancel")
    assert response.status_code == 400
    assert "completed" in response.json()["detail"]

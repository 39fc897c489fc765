"""Tests for the HTTP API."""

from __future__ import annotations

import hashlib
import hmac
import json
from collections.abc import Iterator

import pytest
from fastapi import status
from fastapi.testclient import TestClient

from automation_engine.core.config import Settings
from automation_engine.main import create_app
from automation_engine.workflows.engine import WorkflowEngine
from automation_engine.workflows.models import (
    UserContext,
    WorkflowAction,
    WorkflowDefinition,
    WorkflowTrigger,
)
from automation_engine.workflows.stores import InMemoryUserStore, InMemoryWorkflowStore
from automation_engine.workflows.triggers import TriggerManager, WebhookConfig

SECRET = "whsec_routes"

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


def _make_workflow(
    workflow_id: str,
    trigger: WorkflowTrigger,
    *,
    enabled: bool = True,
) -> WorkflowDefinition:
    return WorkflowDefinition(
        id=workflow_id,
        name=workflow_id,
        enabled=enabled,
        trigger=trigger,
        actions=[
            WorkflowAction(
                id="notify",
                type="notification",
                config={"title": "Hi {{user.name}}", "message": "{{event.note}}"},
            )
        ],
    )


@pytest.fixture
def engine() -> WorkflowEngine:
    return WorkflowEngine()


@pytest.fixture
def trigger_manager(settings: Settings) -> TriggerManager:
    manager = TriggerManager(settings)
    manager.register_webhook("signed", WebhookConfig("signed_event", secret=SECRET))
    return manager


@pytest.fixture
def test_client(
    settings: Settings, engine: WorkflowEngine, trigger_manager: TriggerManager
) -> Iterator[TestClient]:
    """Client for an app with one manual, one disabled and one webhook workflow."""
    workflows = InMemoryWorkflowStore(
        [
            _make_workflow("wf-manual", WorkflowTrigger(type="manual")),
            _make_workflow("wf-off", WorkflowTrigger(type="manual"), enabled=False),
            _make_workflow(
                "wf-hook", WorkflowTrigger(type="webhook", config={"webhookId": "hook-1"})
            ),
        ]
    )
    users = InMemoryUserStore(
        [UserContext(user_id="user-1", email="alex@example.com", name="Alex")]
    )
    app = create_app(
        settings,
        engine=engine,
        workflow_store=workflows,
        user_store=users,
        trigger_manager=trigger_manager,
    )
    with TestClient(app) as client:
        yield client


# ---------------------------------------------------------------------------
# Workflow routes
# ---------------------------------------------------------------------------


class TestTriggerWorkflow:
    """Tests for POST /workflows/{workflow_id}/trigger."""

    def test_trigger_for_user(self, test_client: TestClient) -> None:
        response = test_client.post(
            "/workflows/wf-manual/trigger",
            json={"eventType": "manual_trigger", "eventData": {"note": "hello"}, "userId": "user-1"},
        )

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["workflowId"] == "wf-manual"
        assert data["status"] == "completed"
        result = data["executedActions"][0]["result"]
        assert result["title"] == "Hi Alex"
        assert result["message"] == "hello"

    def test_trigger_without_body(self, test_client: TestClient) -> None:
        response = test_client.post("/workflows/wf-manual/trigger")
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["context"]["eventType"] == "manual_trigger"

    def test_unknown_workflow(self, test_client: TestClient) -> None:
        response = test_client.post("/workflows/missing/trigger", json={})
        assert response.status_code == status.HTTP_404_NOT_FOUND
        body = response.json()
        assert body["code"] == "NOT_FOUND"
        assert body["detail"] == "Workflow not found: missing"
        assert "request_id" in body

    def test_unknown_user(self, test_client: TestClient) -> None:
        response = test_client.post("/workflows/wf-manual/trigger", json={"userId": "nobody"})
        assert response.status_code == status.HTTP_404_NOT_FOUND

    def test_disabled_workflow(self, test_client: TestClient) -> None:
        response = test_client.post("/workflows/wf-off/trigger", json={})
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["code"] == "WORKFLOW_DISABLED"


class TestExecutionRoutes:
    """Tests for execution lookups."""

    def test_get_execution(self, test_client: TestClient) -> None:
        execution_id = test_client.post("/workflows/wf-manual/trigger", json={}).json()["id"]

        response = test_client.get(f"/executions/{execution_id}")

        assert response.status_code == status.HTTP_200_OK
        assert response.json()["id"] == execution_id

    def test_get_unknown_execution(self, test_client: TestClient) -> None:
        response = test_client.get("/executions/exec_missing")
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == "Execution not found: exec_missing"

    def test_list_workflow_executions(self, test_client: TestClient) -> None:
        test_client.post("/workflows/wf-manual/trigger", json={})
        test_client.post("/workflows/wf-manual/trigger", json={})

        response = test_client.get("/workflows/wf-manual/executions")

        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["count"] == 2
        assert len(data["executions"]) == 2


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


class TestWebhookRoutes:
    """Tests for POST /webhooks/{webhook_id}."""

    def test_unknown_webhook(self, test_client: TestClient) -> None:
        response = test_client.post("/webhooks/missing", json={})
        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json() == {"success": False, "message": "Webhook not found"}

    def test_signed_webhook(
        self, test_client: TestClient, trigger_manager: TriggerManager
    ) -> None:
        body = json.dumps({"amount": 10}).encode()
        signature = hmac.new(SECRET.encode(), body, hashlib.sha256).hexdigest()

        response = test_client.post(
            "/webhooks/signed",
            content=body,
            headers={"Content-Type": "application/json", "X-Signature": f"sha256={signature}"},
        )

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"success": True, "message": "Webhook processed successfully"}
        assert trigger_manager.get_recent_events()[-1].event_data == {"amount": 10}

    def test_bad_signature(self, test_client: TestClient) -> None:
        response = test_client.post(
            "/webhooks/signed",
            content=b'{"amount": 10}',
            headers={"Content-Type": "application/json", "X-Signature": "sha256=deadbeef"},
        )
        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["message"] == "Invalid webhook signature"

    def test_invalid_json(self, test_client: TestClient) -> None:
        response = test_client.post(
            "/webhooks/signed",
            content=b"not json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST

    def test_workflow_bound_webhook(self, test_client: TestClient, engine: WorkflowEngine) -> None:
        response = test_client.post("/webhooks/hook-1", json={"note": "from hook"})

        assert response.status_code == status.HTTP_200_OK
        history = engine.get_workflow_executions("wf-hook")
        assert len(history) == 1
        assert history[0].context.event_type == "webhook_received"


class TestHealth:
    """Tests for GET /health."""

    def test_health(self, test_client: TestClient) -> None:
        response = test_client.get("/health")
        assert response.status_code == status.HTTP_200_OK
        data = response.json()
        assert data["status"] == "healthy"
        assert data["scheduler_running"] is False
        assert data["scheduled_workflows"] == 0

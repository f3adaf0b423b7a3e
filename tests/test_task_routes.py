"""Tests for worker task routes."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from neolease.api.factory import create_app


@pytest.fixture
def client():
    return TestClient(create_app(role="worker"))


def test_task_routes_absent_on_public_app():
    client = TestClient(create_app(role="public"))
    response = client.post("/tasks/rentals/mark-overdue")
    assert response.status_code == 404


def test_worker_health(client):
    response = client.get("/tasks/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "subsystem": "tasks"}


class TestMarkOverdue:
    def test_unauthorized(self, client):
        with patch("neolease.api.routes.tasks_rentals.mark_overdue_rentals") as sweep:
            response = client.post("/tasks/rentals/mark-overdue")
        assert response.status_code == 401
        sweep.assert_not_called()

    def test_runs_sweep(self, client):
        counts = {"checked": 3, "marked": 2, "skipped": 1}
        with patch("neolease.api.routes.tasks_rentals.verify_task_auth", return_value=True), \
             patch("neolease.api.routes.tasks_rentals.mark_overdue_rentals", return_value=counts):
            response = client.post("/tasks/rentals/mark-overdue")
        assert response.status_code == 200
        assert response.json() == {"ok": True, "checked": 3, "marked": 2, "skipped": 1}

    def test_local_secret(self, client, monkeypatch):
        monkeypatch.setenv("TASKS_OIDC_AUDIENCE", "neolease-tasks-local")
        monkeypatch.setenv("INTERNAL_TASK_SECRET", "local-secret")
        counts = {"checked": 0, "marked": 0, "skipped": 0}
        with patch("neolease.api.routes.tasks_rentals.mark_overdue_rentals", return_value=counts):
            response = client.post(
                "/tasks/rentals/mark-overdue",
                headers={"X-Internal-Task-Secret": "local-secret"},
            )
        assert response.status_code == 200


class TestReconciliationSweep:
    def test_unauthorized(self, client):
        with patch("neolease.api.routes.tasks_reconciliation.retry_open_issues") as sweep:
            response = client.post("/tasks/reconciliation/sweep")
        assert response.status_code == 401
        sweep.assert_not_called()

    def test_runs_sweep(self, client):
        counts = {"checked": 2, "resolved": 1, "failed": 1, "skipped": 0}
        with patch("neolease.api.routes.tasks_reconciliation.verify_task_auth", return_value=True), \
             patch("neolease.api.routes.tasks_reconciliation.retry_open_issues", return_value=counts):
            response = client.post("/tasks/reconciliation/sweep")
        assert response.status_code == 200
        assert response.json()["resolved"] == 1

"""Health endpoint tests for the Task Marketplace service."""

from __future__ import annotations

import pytest

from tests.unit.routers.conftest import create_task, setup_assigned_task


@pytest.mark.unit
async def test_health_returns_ok_with_correct_schema(client):
    """GET /health returns 200 with correct schema."""
    response = await client.get("/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "ok"
    assert isinstance(data["uptime_seconds"], (int, float))
    assert isinstance(data["started_at"], str)
    assert data["total_tasks"] == 0

    expected_statuses = {"open", "assigned", "in-progress", "completed", "cancelled"}
    assert set(data["tasks_by_status"].keys()) == expected_statuses
    for status_key in expected_statuses:
        assert data["tasks_by_status"][status_key] == 0


@pytest.mark.unit
async def test_health_task_counts_reflect_actual_data(client):
    """Counts follow created and assigned tasks."""
    resp = await create_task(client)
    assert resp.status_code == 201
    await setup_assigned_task(client)

    data = (await client.get("/health")).json()
    assert data["total_tasks"] == 2
    assert data["tasks_by_status"]["open"] == 1
    assert data["tasks_by_status"]["assigned"] == 1


@pytest.mark.unit
async def test_health_rejects_post(client):
    response = await client.post("/health")
    assert response.status_code == 405
    assert response.json()["error"] == "METHOD_NOT_ALLOWED"

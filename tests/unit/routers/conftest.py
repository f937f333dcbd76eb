"""Router test fixtures with mocked Identity and User directory services."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from task_marketplace.app import create_app
from task_marketplace.config import clear_settings_cache
from task_marketplace.core.exceptions import ServiceError
from task_marketplace.core.lifespan import lifespan
from task_marketplace.core.state import get_app_state, reset_app_state
from tests.helpers import auth_header, parse_token, proposal_payload, task_payload

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path

# ---------------------------------------------------------------------------
# Fixed user IDs
# ---------------------------------------------------------------------------
CLIENT_ID = "u-carla-client"
OTHER_CLIENT_ID = "u-oscar-client"
WORKER_A_ID = "u-anna-worker"
WORKER_B_ID = "u-ben-worker"
WORKER_C_ID = "u-cleo-worker"


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
async def app(tmp_path: Path) -> AsyncIterator[Any]:
    """Create a test app with temp database and mocked external services."""
    db_path = tmp_path / "test.db"
    log_dir = tmp_path / "logs"
    config_content = f"""\
service:
  name: "task-marketplace"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_dir}"
database:
  path: "{db_path}"
identity:
  base_url: "http://localhost:8001"
  verify_token_path: "/auth/verify"
  timeout_seconds: 10
user_directory:
  base_url: "http://localhost:8002"
  completed_tasks_path: "/users/{{user_id}}/completed-tasks"
  rating_path: "/users/{{user_id}}/rating"
  timeout_seconds: 10
request:
  max_body_size: 1048576
listing:
  default_page_size: 10
  max_page_size: 100
"""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(config_content)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        state = get_app_state()

        # Mock Identity client: tokens are "<role>:<user_id>"
        mock_identity = AsyncMock()
        mock_identity.close = AsyncMock()
        mock_identity.verify_token = AsyncMock(side_effect=parse_token)
        state.identity_client = mock_identity

        # Mock User directory client, updates succeed by default
        mock_directory = AsyncMock()
        mock_directory.close = AsyncMock()
        mock_directory.increment_completed_tasks = AsyncMock(return_value={})
        mock_directory.update_rating = AsyncMock(return_value={})
        state.user_directory_client = mock_directory

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def user_directory(_app: Any) -> AsyncMock:
    """The mocked User directory client."""
    return get_app_state().user_directory_client


# ---------------------------------------------------------------------------
# Mock override fixtures (use these to replace default mock behavior)
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_identity_unavailable(_app: Any) -> None:
    """Configure the Identity mock to simulate service unavailability."""
    state = get_app_state()
    state.identity_client.verify_token = AsyncMock(
        side_effect=ConnectionError("Identity service unreachable")
    )


@pytest.fixture
def mock_identity_rejects(_app: Any) -> None:
    """Configure the Identity mock to report every token as invalid."""
    state = get_app_state()
    state.identity_client.verify_token = AsyncMock(return_value={"valid": False})


@pytest.fixture
def mock_user_directory_unavailable(_app: Any) -> None:
    """Configure the User directory mock to fail every update."""
    state = get_app_state()
    error = ServiceError("USER_SERVICE_UNAVAILABLE", "Cannot connect to User directory", 502, {})
    state.user_directory_client.increment_completed_tasks = AsyncMock(side_effect=error)
    state.user_directory_client.update_rating = AsyncMock(side_effect=error)


# ---------------------------------------------------------------------------
# Task lifecycle helper functions
# ---------------------------------------------------------------------------
async def create_task(
    client: AsyncClient,
    client_id: str = CLIENT_ID,
    **overrides: Any,
) -> Any:
    """Create a task via POST /tasks and return the response."""
    return await client.post(
        "/tasks",
        json=task_payload(**overrides),
        headers=auth_header(client_id, "client"),
    )


async def create_task_id(client: AsyncClient, client_id: str = CLIENT_ID, **overrides: Any) -> str:
    """Create a task and return its ID."""
    resp = await create_task(client, client_id, **overrides)
    assert resp.status_code == 201, resp.text
    return resp.json()["task_id"]


async def submit_proposal(
    client: AsyncClient,
    worker_id: str,
    task_id: str,
    **overrides: Any,
) -> Any:
    """Submit a proposal via POST /tasks/{task_id}/proposals."""
    return await client.post(
        f"/tasks/{task_id}/proposals",
        json=proposal_payload(**overrides),
        headers=auth_header(worker_id, "worker"),
    )


async def proposal_id_for(client: AsyncClient, task_id: str, worker_id: str) -> str:
    """Look up the ID of a worker's proposal on a task."""
    resp = await client.get(f"/tasks/{task_id}")
    for proposal in resp.json()["proposals"]:
        if proposal["worker_id"] == worker_id:
            return proposal["proposal_id"]
    msg = f"No proposal from {worker_id} on {task_id}"
    raise AssertionError(msg)


async def assign_task(
    client: AsyncClient,
    task_id: str,
    worker_id: str,
    client_id: str = CLIENT_ID,
) -> Any:
    """Accept a worker's proposal via PUT /tasks/{task_id}/assign."""
    return await client.put(
        f"/tasks/{task_id}/assign",
        json={"worker_id": worker_id},
        headers=auth_header(client_id, "client"),
    )


async def set_status(
    client: AsyncClient,
    task_id: str,
    status: str,
    user_id: str,
    role: str,
) -> Any:
    """Move a task via PUT /tasks/{task_id}/status."""
    return await client.put(
        f"/tasks/{task_id}/status",
        json={"status": status},
        headers=auth_header(user_id, role),
    )


async def rate_task(
    client: AsyncClient,
    task_id: str,
    rating: Any,
    client_id: str = CLIENT_ID,
) -> Any:
    """Rate a task via POST /tasks/{task_id}/rate."""
    return await client.post(
        f"/tasks/{task_id}/rate",
        json={"rating": rating},
        headers=auth_header(client_id, "client"),
    )


async def setup_assigned_task(client: AsyncClient, worker_id: str = WORKER_A_ID) -> str:
    """Create a task, have ``worker_id`` propose, and accept the proposal."""
    task_id = await create_task_id(client)
    resp = await submit_proposal(client, worker_id, task_id)
    assert resp.status_code == 201, resp.text
    resp = await assign_task(client, task_id, worker_id)
    assert resp.status_code == 200, resp.text
    return task_id


async def setup_completed_task(client: AsyncClient, worker_id: str = WORKER_A_ID) -> str:
    """Drive a task all the way to ``completed``."""
    task_id = await setup_assigned_task(client, worker_id)
    resp = await set_status(client, task_id, "in-progress", worker_id, "worker")
    assert resp.status_code == 200, resp.text
    resp = await set_status(client, task_id, "completed", worker_id, "worker")
    assert resp.status_code == 200, resp.text
    return task_id

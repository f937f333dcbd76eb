"""Task CRUD, listing, authentication and request validation tests."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from tests.helpers import auth_header, task_payload
from tests.unit.routers.conftest import (
    CLIENT_ID,
    OTHER_CLIENT_ID,
    WORKER_A_ID,
    create_task,
    create_task_id,
    setup_assigned_task,
    submit_proposal,
)

if TYPE_CHECKING:
    from httpx import AsyncClient


class TestCreateTask:
    @pytest.mark.unit
    async def test_create_task(self, client: AsyncClient) -> None:
        resp = await create_task(client, is_urgent=True)
        assert resp.status_code == 201

        body = resp.json()
        assert body["task_id"].startswith("t-")
        assert body["client_id"] == CLIENT_ID
        assert body["status"] == "open"
        assert body["worker_id"] is None
        assert body["rating"] is None
        assert body["is_urgent"] is True
        assert body["proposals"] == []
        assert body["proposal_count"] == 0
        assert body["deadline"].endswith("Z")

    @pytest.mark.unit
    async def test_is_urgent_defaults_to_false(self, client: AsyncClient) -> None:
        resp = await create_task(client)
        assert resp.json()["is_urgent"] is False

    @pytest.mark.unit
    async def test_worker_cannot_create_task(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/tasks",
            json=task_payload(),
            headers=auth_header(WORKER_A_ID, "worker"),
        )
        assert resp.status_code == 403
        assert resp.json()["error"] == "FORBIDDEN"

    @pytest.mark.unit
    async def test_missing_field(self, client: AsyncClient) -> None:
        payload = task_payload()
        del payload["skills"]
        resp = await client.post("/tasks", json=payload, headers=auth_header(CLIENT_ID, "client"))
        assert resp.status_code == 400
        body = resp.json()
        assert body["error"] == "VALIDATION_ERROR"
        assert body["details"] == {"field": "skills"}

    @pytest.mark.unit
    async def test_past_deadline(self, client: AsyncClient) -> None:
        resp = await create_task(client, deadline="2001-01-01T00:00:00Z")
        assert resp.status_code == 400
        assert resp.json()["details"] == {"field": "deadline"}

    @pytest.mark.unit
    async def test_large_budget_is_stored(self, client: AsyncClient) -> None:
        resp = await create_task(client, budget=10**30)
        assert resp.status_code == 201, resp.text
        assert resp.json()["budget"] == 1e30

    @pytest.mark.unit
    async def test_budget_beyond_float_range(self, client: AsyncClient) -> None:
        resp = await create_task(client, budget=10**400)
        assert resp.status_code == 400
        assert resp.json()["details"] == {"field": "budget"}

    @pytest.mark.unit
    async def test_invalid_json(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/tasks",
            content=b"{not json",
            headers={**auth_header(CLIENT_ID, "client"), "Content-Type": "application/json"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_JSON"

    @pytest.mark.unit
    async def test_json_array_body(self, client: AsyncClient) -> None:
        resp = await client.post("/tasks", json=[1, 2], headers=auth_header(CLIENT_ID, "client"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "INVALID_JSON"

    @pytest.mark.unit
    async def test_wrong_content_type(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/tasks",
            content=b"title=x",
            headers={**auth_header(CLIENT_ID, "client"), "Content-Type": "text/plain"},
        )
        assert resp.status_code == 415
        assert resp.json()["error"] == "UNSUPPORTED_MEDIA_TYPE"

    @pytest.mark.unit
    async def test_oversized_body(self, client: AsyncClient) -> None:
        resp = await create_task(client, description="x" * 1_100_000)
        assert resp.status_code == 413
        assert resp.json()["error"] == "PAYLOAD_TOO_LARGE"


class TestAuthentication:
    @pytest.mark.unit
    async def test_missing_authorization_header(self, client: AsyncClient) -> None:
        resp = await client.post("/tasks", json=task_payload())
        assert resp.status_code == 401
        assert resp.json()["error"] == "UNAUTHORIZED"

    @pytest.mark.unit
    async def test_non_bearer_scheme(self, client: AsyncClient) -> None:
        resp = await client.post(
            "/tasks",
            json=task_payload(),
            headers={"Authorization": "Basic dXNlcjpwYXNz"},
        )
        assert resp.status_code == 401

    @pytest.mark.unit
    @pytest.mark.usefixtures("mock_identity_rejects")
    async def test_rejected_token(self, client: AsyncClient) -> None:
        resp = await create_task(client)
        assert resp.status_code == 401
        assert resp.json()["error"] == "UNAUTHORIZED"

    @pytest.mark.unit
    @pytest.mark.usefixtures("mock_identity_unavailable")
    async def test_identity_unavailable(self, client: AsyncClient) -> None:
        resp = await create_task(client)
        assert resp.status_code == 502
        assert resp.json()["error"] == "IDENTITY_SERVICE_UNAVAILABLE"

    @pytest.mark.unit
    async def test_unknown_role(self, client: AsyncClient) -> None:
        resp = await client.post("/tasks", json=task_payload(), headers=auth_header("u-x", "guest"))
        assert resp.status_code == 401


class TestGetTask:
    @pytest.mark.unit
    async def test_get_task_is_public(self, client: AsyncClient) -> None:
        task_id = await create_task_id(client)
        resp = await client.get(f"/tasks/{task_id}")
        assert resp.status_code == 200
        assert resp.json()["task_id"] == task_id

    @pytest.mark.unit
    async def test_get_missing_task(self, client: AsyncClient) -> None:
        resp = await client.get("/tasks/t-missing")
        assert resp.status_code == 404
        assert resp.json()["error"] == "TASK_NOT_FOUND"


class TestUpdateTask:
    @pytest.mark.unit
    async def test_owner_updates_open_task(self, client: AsyncClient) -> None:
        task_id = await create_task_id(client)
        resp = await client.put(
            f"/tasks/{task_id}",
            json={"budget": 250, "skills": ["deep cleaning"]},
            headers=auth_header(CLIENT_ID, "client"),
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["budget"] == 250
        assert body["skills"] == ["deep cleaning"]
        assert body["title"] == task_payload()["title"]

    @pytest.mark.unit
    async def test_non_owner_cannot_update(self, client: AsyncClient) -> None:
        task_id = await create_task_id(client)
        resp = await client.put(
            f"/tasks/{task_id}",
            json={"budget": 250},
            headers=auth_header(OTHER_CLIENT_ID, "client"),
        )
        assert resp.status_code == 403

    @pytest.mark.unit
    async def test_cannot_update_assigned_task(self, client: AsyncClient) -> None:
        task_id = await setup_assigned_task(client)
        resp = await client.put(
            f"/tasks/{task_id}",
            json={"budget": 250},
            headers=auth_header(CLIENT_ID, "client"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "TASK_NOT_OPEN"

    @pytest.mark.unit
    async def test_status_is_not_an_editable_field(self, client: AsyncClient) -> None:
        task_id = await create_task_id(client)
        resp = await client.put(
            f"/tasks/{task_id}",
            json={"status": "completed"},
            headers=auth_header(CLIENT_ID, "client"),
        )
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"

    @pytest.mark.unit
    async def test_update_with_large_budget(self, client: AsyncClient) -> None:
        task_id = await create_task_id(client)
        resp = await client.put(
            f"/tasks/{task_id}",
            json={"budget": 10**30},
            headers=auth_header(CLIENT_ID, "client"),
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["budget"] == 1e30

    @pytest.mark.unit
    async def test_update_missing_task(self, client: AsyncClient) -> None:
        resp = await client.put(
            "/tasks/t-missing",
            json={"budget": 250},
            headers=auth_header(CLIENT_ID, "client"),
        )
        assert resp.status_code == 404


class TestDeleteTask:
    @pytest.mark.unit
    async def test_owner_deletes_open_task_with_proposals(self, client: AsyncClient) -> None:
        task_id = await create_task_id(client)
        await submit_proposal(client, WORKER_A_ID, task_id)

        resp = await client.delete(f"/tasks/{task_id}", headers=auth_header(CLIENT_ID, "client"))
        assert resp.status_code == 200
        assert resp.json() == {"message": "Task removed", "task_id": task_id}

        assert (await client.get(f"/tasks/{task_id}")).status_code == 404

    @pytest.mark.unit
    async def test_non_owner_cannot_delete(self, client: AsyncClient) -> None:
        task_id = await create_task_id(client)
        resp = await client.delete(
            f"/tasks/{task_id}",
            headers=auth_header(OTHER_CLIENT_ID, "client"),
        )
        assert resp.status_code == 403

    @pytest.mark.unit
    async def test_cannot_delete_assigned_task(self, client: AsyncClient) -> None:
        task_id = await setup_assigned_task(client)
        resp = await client.delete(f"/tasks/{task_id}", headers=auth_header(CLIENT_ID, "client"))
        assert resp.status_code == 400
        assert resp.json()["error"] == "TASK_NOT_OPEN"


class TestListTasks:
    @pytest.mark.unit
    async def test_empty_list(self, client: AsyncClient) -> None:
        resp = await client.get("/tasks")
        assert resp.status_code == 200
        assert resp.json() == {"tasks": [], "current_page": 1, "total_pages": 0, "total_tasks": 0}

    @pytest.mark.unit
    async def test_filters(self, client: AsyncClient) -> None:
        cheap = await create_task_id(client, budget=20, skills=["ironing"])
        urgent = await create_task_id(
            client,
            budget=300,
            category="Delivery",
            location="Munich",
            is_urgent=True,
            skills=["driving"],
        )
        other = await create_task_id(
            client,
            OTHER_CLIENT_ID,
            title="Set up home network",
            category="IT & Technology",
            budget=150,
            skills=["networking", "driving"],
        )

        async def ids(query: str) -> list[str]:
            resp = await client.get(f"/tasks?{query}")
            assert resp.status_code == 200, resp.text
            return sorted(task["task_id"] for task in resp.json()["tasks"])

        assert await ids("category=Delivery") == [urgent]
        assert await ids("location=Munich") == [urgent]
        assert await ids(f"client_id={OTHER_CLIENT_ID}") == [other]
        assert await ids("min_budget=100") == sorted([urgent, other])
        assert await ids("max_budget=100") == [cheap]
        assert await ids("min_budget=100&max_budget=200") == [other]
        assert await ids("skills=ironing,networking") == sorted([cheap, other])
        assert await ids("is_urgent=true") == [urgent]
        assert await ids("search=NETWORK") == [other]
        assert await ids("status=open") == sorted([cheap, urgent, other])
        assert await ids("status=assigned") == []

    @pytest.mark.unit
    async def test_search_folds_non_ascii_case(self, client: AsyncClient) -> None:
        task_id = await create_task_id(
            client,
            title="Élagage des arbres du jardin",
            category="Gardening",
            skills=["gardening"],
        )
        await create_task_id(client)

        for term in ("élagage", "ÉLAGAGE", "Arbres"):
            resp = await client.get("/tasks", params={"search": term})
            assert resp.status_code == 200
            body = resp.json()
            assert body["total_tasks"] == 1, term
            assert body["tasks"][0]["task_id"] == task_id

    @pytest.mark.unit
    async def test_page_beyond_offset_range(self, client: AsyncClient) -> None:
        resp = await client.get("/tasks?page=100000000000000000000")
        assert resp.status_code == 400
        assert resp.json()["details"] == {"field": "page"}

    @pytest.mark.unit
    async def test_far_page_within_range_is_empty(self, client: AsyncClient) -> None:
        await create_task_id(client)
        resp = await client.get("/tasks?page=1000000000&limit=1")
        assert resp.status_code == 200
        body = resp.json()
        assert body["tasks"] == []
        assert body["current_page"] == 1000000000
        assert body["total_tasks"] == 1

    @pytest.mark.unit
    async def test_worker_filter(self, client: AsyncClient) -> None:
        assigned = await setup_assigned_task(client, WORKER_A_ID)
        await create_task_id(client)

        resp = await client.get(f"/tasks?worker_id={WORKER_A_ID}")
        assert [task["task_id"] for task in resp.json()["tasks"]] == [assigned]

    @pytest.mark.unit
    async def test_sorting_and_pagination(self, client: AsyncClient) -> None:
        for budget in (30, 10, 50, 20, 40):
            await create_task_id(client, budget=budget)

        resp = await client.get("/tasks?sort_by=budget&sort_order=asc&limit=2&page=2")
        body = resp.json()
        assert [task["budget"] for task in body["tasks"]] == [30, 40]
        assert body["current_page"] == 2
        assert body["total_pages"] == 3
        assert body["total_tasks"] == 5
        assert "proposals" not in body["tasks"][0]

        resp = await client.get("/tasks?sort_by=budget&limit=2&page=3")
        assert [task["budget"] for task in resp.json()["tasks"]] == [10]

    @pytest.mark.unit
    async def test_newest_first_by_default(self, client: AsyncClient) -> None:
        first = await create_task_id(client)
        second = await create_task_id(client)

        resp = await client.get("/tasks")
        assert [task["task_id"] for task in resp.json()["tasks"]] == [second, first]

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "query",
        [
            "page=0",
            "page=abc",
            "limit=0",
            "limit=101",
            "sort_by=status",
            "sort_order=sideways",
            "status=paused",
            "min_budget=cheap",
            "min_budget=50&max_budget=10",
            "is_urgent=maybe",
        ],
    )
    async def test_invalid_query(self, client: AsyncClient, query: str) -> None:
        resp = await client.get(f"/tasks?{query}")
        assert resp.status_code == 400
        assert resp.json()["error"] == "VALIDATION_ERROR"

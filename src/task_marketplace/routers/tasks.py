"""Task lifecycle endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_marketplace.core.exceptions import ValidationError
from task_marketplace.core.state import get_app_state
from task_marketplace.routers.validation import (
    extract_bearer_token,
    parse_int_param,
    parse_json_body,
    parse_number_param,
)
from task_marketplace.schemas import TaskListResponse, TaskResponse

if TYPE_CHECKING:
    from task_marketplace.services.task_manager import TaskManager

router = APIRouter()


def _task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


def _parse_bool_param(raw: str | None, name: str) -> bool | None:
    if raw is None:
        return None
    lowered = raw.lower()
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    raise ValidationError(f"{name} must be 'true' or 'false'", details={"field": name})


def _parse_skills_param(raw: str | None) -> list[str] | None:
    if raw is None:
        return None
    skills = [skill.strip() for skill in raw.split(",") if skill.strip()]
    return skills or None


# ---------------------------------------------------------------------------
# POST /tasks: create task (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.post("/tasks", status_code=201)
async def create_task(request: Request) -> JSONResponse:
    """Create a new open task."""
    token = extract_bearer_token(request.headers.get("authorization"))
    body = await request.body()
    data = {} if body == b"" else parse_json_body(body)

    result = await _task_manager().create_task(token, data)
    return JSONResponse(status_code=201, content=result)


# ---------------------------------------------------------------------------
# GET /tasks: list tasks (MUST be before GET /tasks/{task_id})
# ---------------------------------------------------------------------------


@router.get("/tasks", response_model=TaskListResponse)
async def list_tasks(request: Request) -> dict[str, Any]:
    """List tasks with optional filters, sorting and pagination."""
    params = request.query_params

    filters: dict[str, Any] = {
        "status": params.get("status"),
        "category": params.get("category"),
        "location": params.get("location"),
        "client_id": params.get("client_id"),
        "worker_id": params.get("worker_id"),
        "min_budget": parse_number_param(params.get("min_budget"), "min_budget"),
        "max_budget": parse_number_param(params.get("max_budget"), "max_budget"),
        "skills": _parse_skills_param(params.get("skills")),
        "is_urgent": _parse_bool_param(params.get("is_urgent"), "is_urgent"),
        "search": params.get("search") or None,
    }

    return await _task_manager().list_tasks(
        filters,
        page=parse_int_param(params.get("page"), "page"),
        limit=parse_int_param(params.get("limit"), "limit"),
        sort_by=params.get("sort_by"),
        sort_order=params.get("sort_order"),
    )


# ---------------------------------------------------------------------------
# Single task
# ---------------------------------------------------------------------------


@router.get("/tasks/{task_id}", response_model=TaskResponse)
async def get_task(task_id: str) -> dict[str, Any]:
    """Get a task with its proposals."""
    return await _task_manager().get_task(task_id)


@router.put("/tasks/{task_id}")
async def update_task(task_id: str, request: Request) -> JSONResponse:
    """Edit an open task."""
    token = extract_bearer_token(request.headers.get("authorization"))
    body = await request.body()
    data = parse_json_body(body)

    result = await _task_manager().update_task(task_id, token, data)
    return JSONResponse(status_code=200, content=result)


@router.delete("/tasks/{task_id}")
async def delete_task(task_id: str, request: Request) -> JSONResponse:
    """Delete an open task and its proposals."""
    token = extract_bearer_token(request.headers.get("authorization"))

    result = await _task_manager().delete_task(task_id, token)
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Status endpoint
# ---------------------------------------------------------------------------


@router.put("/tasks/{task_id}/status")
async def update_status(task_id: str, request: Request) -> JSONResponse:
    """Move a task along the lifecycle."""
    token = extract_bearer_token(request.headers.get("authorization"))
    body = await request.body()
    data = parse_json_body(body)
    if "status" not in data:
        raise ValidationError("Missing required field: status", details={"field": "status"})

    result = await _task_manager().advance_status(task_id, token, data["status"])
    return JSONResponse(status_code=200, content=result)


# ---------------------------------------------------------------------------
# Rate endpoint
# ---------------------------------------------------------------------------


@router.post("/tasks/{task_id}/rate")
async def rate_task(task_id: str, request: Request) -> JSONResponse:
    """Rate the worker of a completed task."""
    token = extract_bearer_token(request.headers.get("authorization"))
    body = await request.body()
    data = parse_json_body(body)
    if "rating" not in data:
        raise ValidationError("Missing required field: rating", details={"field": "rating"})

    result = await _task_manager().rate_task(task_id, token, data["rating"])
    return JSONResponse(status_code=200, content=result)

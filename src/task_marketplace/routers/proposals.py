"""Proposal endpoints: submit, withdraw, accept, reject."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from task_marketplace.core.state import get_app_state
from task_marketplace.routers.validation import (
    extract_bearer_token,
    extract_string,
    parse_json_body,
)

if TYPE_CHECKING:
    from task_marketplace.services.task_manager import TaskManager

router = APIRouter()


def _task_manager() -> TaskManager:
    state = get_app_state()
    if state.task_manager is None:
        msg = "TaskManager not initialized"
        raise RuntimeError(msg)
    return state.task_manager


@router.post("/tasks/{task_id}/proposals", status_code=201)
@router.post("/tasks/{task_id}/apply", status_code=201)
async def submit_proposal(task_id: str, request: Request) -> JSONResponse:
    """Submit a proposal on an open task."""
    token = extract_bearer_token(request.headers.get("authorization"))
    body = await request.body()
    data = parse_json_body(body)

    result = await _task_manager().submit_proposal(task_id, token, data)
    return JSONResponse(status_code=201, content=result)


@router.delete("/tasks/{task_id}/proposals/{proposal_id}")
async def withdraw_proposal(task_id: str, proposal_id: str, request: Request) -> JSONResponse:
    """Withdraw the caller's own proposal."""
    token = extract_bearer_token(request.headers.get("authorization"))

    result = await _task_manager().withdraw_proposal(task_id, proposal_id, token)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/proposals/{proposal_id}/accept")
async def accept_proposal(task_id: str, proposal_id: str, request: Request) -> JSONResponse:
    """Accept a proposal and assign the task to its worker."""
    token = extract_bearer_token(request.headers.get("authorization"))

    result = await _task_manager().accept_proposal_by_id(task_id, proposal_id, token)
    return JSONResponse(status_code=200, content=result)


@router.put("/tasks/{task_id}/assign")
async def assign_task(task_id: str, request: Request) -> JSONResponse:
    """Accept the pending proposal of the given worker."""
    token = extract_bearer_token(request.headers.get("authorization"))
    body = await request.body()
    data = parse_json_body(body)
    worker_id = extract_string(data, "worker_id")

    result = await _task_manager().accept_proposal(task_id, token, worker_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/tasks/{task_id}/proposals/{proposal_id}/reject")
async def reject_proposal(task_id: str, proposal_id: str, request: Request) -> JSONResponse:
    """Reject a pending proposal."""
    token = extract_bearer_token(request.headers.get("authorization"))

    result = await _task_manager().reject_proposal(task_id, proposal_id, token)
    return JSONResponse(status_code=200, content=result)

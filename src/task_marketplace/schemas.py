"""Pydantic request/response models for the API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    model_config = ConfigDict(extra="forbid")
    status: Literal["ok"]
    uptime_seconds: float
    started_at: str
    total_tasks: int
    tasks_by_status: dict[str, int]


class MilestoneModel(BaseModel):
    model_config = ConfigDict(extra="forbid")
    title: str
    amount: int | float


class ProposalResponse(BaseModel):
    """A worker's proposal as embedded in a task."""

    model_config = ConfigDict(extra="forbid")
    proposal_id: str
    worker_id: str
    cover_letter: str
    proposed_budget: int | float
    estimated_time: str
    milestones: list[MilestoneModel]
    status: str
    submitted_at: str
    updated_at: str


class TaskResponse(BaseModel):
    """Full task detail response model."""

    model_config = ConfigDict(extra="forbid")
    task_id: str
    client_id: str
    title: str
    description: str
    category: str
    location: str
    budget: int | float
    deadline: str
    skills: list[str]
    is_urgent: bool
    status: str
    worker_id: str | None
    rating: int | None
    proposal_count: int
    proposals: list[ProposalResponse]
    created_at: str
    updated_at: str
    assigned_at: str | None
    started_at: str | None
    completed_at: str | None
    cancelled_at: str | None
    rated_at: str | None


class TaskSummary(BaseModel):
    """Summary task model for list views."""

    model_config = ConfigDict(extra="forbid")
    task_id: str
    client_id: str
    title: str
    category: str
    location: str
    budget: int | float
    deadline: str
    skills: list[str]
    is_urgent: bool
    status: str
    worker_id: str | None
    rating: int | None
    created_at: str


class TaskListResponse(BaseModel):
    """One page of task summaries."""

    model_config = ConfigDict(extra="forbid")
    tasks: list[TaskSummary]
    current_page: int
    total_pages: int
    total_tasks: int

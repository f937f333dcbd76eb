"""Task lifecycle management. All business logic lives here."""

from __future__ import annotations

import math
import uuid
from typing import TYPE_CHECKING, Any

from task_marketplace.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from task_marketplace.logging import get_logger
from task_marketplace.services import lifecycle
from task_marketplace.services.task_store import (
    DuplicateProposalError,
    DuplicateTaskError,
    TaskStore,
)

if TYPE_CHECKING:
    from task_marketplace.clients.user_directory_client import UserDirectoryClient
    from task_marketplace.services.token_validator import Caller, TokenValidator

_SORT_ORDERS = frozenset({"asc", "desc"})
# SQLite binds integers as signed 64-bit
_MAX_OFFSET = 2**63 - 1


class TaskManager:
    """
    Manages the full task lifecycle: creation, proposals, acceptance,
    progress, completion or cancellation, and rating.

    Delegates persistence to TaskStore, authentication to the Identity
    service via TokenValidator, and worker statistics to the User directory.
    """

    def __init__(
        self,
        store: TaskStore,
        token_validator: TokenValidator,
        user_directory_client: UserDirectoryClient,
        default_page_size: int,
        max_page_size: int,
    ) -> None:
        self._store = store
        self._token_validator = token_validator
        self._user_directory_client = user_directory_client
        self._default_page_size = default_page_size
        self._max_page_size = max_page_size
        self._logger = get_logger(__name__)

    def set_user_directory_client(self, user_directory_client: UserDirectoryClient) -> None:
        """Swap the User directory client (used when the app state is rewired)."""
        self._user_directory_client = user_directory_client

    # ------------------------------------------------------------------
    # Private helper methods
    # ------------------------------------------------------------------

    @staticmethod
    def _proposal_to_response(row: dict[str, Any]) -> dict[str, Any]:
        return {
            "proposal_id": row["proposal_id"],
            "worker_id": row["worker_id"],
            "cover_letter": row["cover_letter"],
            "proposed_budget": row["proposed_budget"],
            "estimated_time": row["estimated_time"],
            "milestones": row["milestones"],
            "status": row["status"],
            "submitted_at": row["submitted_at"],
            "updated_at": row["updated_at"],
        }

    def _task_to_response(self, row: dict[str, Any]) -> dict[str, Any]:
        """Convert a task row plus its proposals to a full task response dict."""
        proposals = [
            self._proposal_to_response(proposal)
            for proposal in self._store.get_proposals_for_task(row["task_id"])
        ]
        return {
            "task_id": row["task_id"],
            "client_id": row["client_id"],
            "title": row["title"],
            "description": row["description"],
            "category": row["category"],
            "location": row["location"],
            "budget": row["budget"],
            "deadline": row["deadline"],
            "skills": row["skills"],
            "is_urgent": row["is_urgent"],
            "status": row["status"],
            "worker_id": row["worker_id"],
            "rating": row["rating"],
            "proposal_count": len(proposals),
            "proposals": proposals,
            "created_at": row["created_at"],
            "updated_at": row["updated_at"],
            "assigned_at": row["assigned_at"],
            "started_at": row["started_at"],
            "completed_at": row["completed_at"],
            "cancelled_at": row["cancelled_at"],
            "rated_at": row["rated_at"],
        }

    @staticmethod
    def _task_to_summary(row: dict[str, Any]) -> dict[str, Any]:
        """Convert a task row to a summary dict for list views."""
        return {
            "task_id": row["task_id"],
            "client_id": row["client_id"],
            "title": row["title"],
            "category": row["category"],
            "location": row["location"],
            "budget": row["budget"],
            "deadline": row["deadline"],
            "skills": row["skills"],
            "is_urgent": row["is_urgent"],
            "status": row["status"],
            "worker_id": row["worker_id"],
            "rating": row["rating"],
            "created_at": row["created_at"],
        }

    def _load_task(self, task_id: str) -> dict[str, Any]:
        task = self._store.get_task(task_id)
        if task is None:
            raise NotFoundError("Task not found", error="TASK_NOT_FOUND")
        return task

    def _reload_response(self, task_id: str) -> dict[str, Any]:
        updated = self._store.get_task(task_id)
        if updated is None:
            msg = f"Task {task_id} not found after update"
            raise RuntimeError(msg)
        return self._task_to_response(updated)

    @staticmethod
    def _require_owner(task: dict[str, Any], caller: Caller, message: str) -> None:
        if caller.user_id != task["client_id"]:
            raise AuthorizationError(message)

    def _status_changed_under_us(self, task_id: str, action: str) -> InvalidStateError:
        """Build the error for a compare-and-swap that lost a race."""
        current = self._store.get_task(task_id)
        status = current["status"] if current is not None else "deleted"
        return InvalidStateError(
            f"Cannot {action}: task status changed to '{status}'",
            error="CONCURRENT_UPDATE",
            details={"status": status},
        )

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(self, token: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Create a new open task owned by the calling client.

        Error precedence:
        1. UNAUTHORIZED / IDENTITY_SERVICE_UNAVAILABLE: token verification
        2. FORBIDDEN: caller is not a client
        3. VALIDATION_ERROR: missing or invalid fields
        """
        caller = await self._token_validator.authenticate(token)
        if caller.role != "client":
            raise AuthorizationError("Only clients can create tasks")

        fields = lifecycle.validate_task_fields(data, partial=False)

        task_id = f"t-{uuid.uuid4()}"
        created_at = lifecycle.now_iso()
        try:
            self._store.insert_task(
                {
                    "task_id": task_id,
                    "client_id": caller.user_id,
                    **fields,
                    "status": lifecycle.OPEN,
                    "worker_id": None,
                    "rating": None,
                    "created_at": created_at,
                    "updated_at": created_at,
                    "assigned_at": None,
                    "started_at": None,
                    "completed_at": None,
                    "cancelled_at": None,
                    "rated_at": None,
                }
            )
        except DuplicateTaskError as exc:
            raise ServiceError(
                "TASK_ALREADY_EXISTS",
                "A task with this id already exists",
                409,
                {},
            ) from exc

        self._logger.info(
            "Task created",
            extra={"task_id": task_id, "client_id": caller.user_id, "category": fields["category"]},
        )
        return self._reload_response(task_id)

    async def get_task(self, task_id: str) -> dict[str, Any]:
        """
        Get a single task with its proposals.

        Raises:
            NotFoundError: TASK_NOT_FOUND
        """
        return self._task_to_response(self._load_task(task_id))

    async def list_tasks(
        self,
        filters: dict[str, Any],
        *,
        page: int | None,
        limit: int | None,
        sort_by: str | None,
        sort_order: str | None,
    ) -> dict[str, Any]:
        """
        List tasks with optional filters. All filters use AND logic.

        Returns a page dict: tasks, current_page, total_pages, total_tasks.
        """
        page_number = 1 if page is None else page
        if page_number < 1:
            raise ValidationError("page must be >= 1", details={"field": "page"})

        page_size = self._default_page_size if limit is None else limit
        if not 1 <= page_size <= self._max_page_size:
            raise ValidationError(
                f"limit must be between 1 and {self._max_page_size}",
                details={"field": "limit"},
            )
        if (page_number - 1) * page_size > _MAX_OFFSET:
            raise ValidationError("page is out of range", details={"field": "page"})

        sort_column = "created_at" if sort_by is None else sort_by
        if sort_column not in TaskStore.SORT_COLUMNS:
            raise ValidationError(
                f"sort_by must be one of: {', '.join(sorted(TaskStore.SORT_COLUMNS))}",
                details={"field": "sort_by"},
            )
        direction = "desc" if sort_order is None else sort_order
        if direction not in _SORT_ORDERS:
            raise ValidationError("sort_order must be 'asc' or 'desc'", details={"field": "sort_order"})

        status = filters.get("status")
        if status is not None and status not in lifecycle.TASK_STATUSES:
            raise ValidationError(
                f"status must be one of: {', '.join(lifecycle.TASK_STATUSES)}",
                details={"field": "status"},
            )

        min_budget = filters.get("min_budget")
        max_budget = filters.get("max_budget")
        if min_budget is not None and max_budget is not None and min_budget > max_budget:
            raise ValidationError("min_budget must not exceed max_budget")

        total = self._store.count_matching_tasks(filters)
        rows = self._store.list_tasks(
            filters,
            sort_by=sort_column,
            sort_order=direction,
            limit=page_size,
            offset=(page_number - 1) * page_size,
        )
        return {
            "tasks": [self._task_to_summary(row) for row in rows],
            "current_page": page_number,
            "total_pages": math.ceil(total / page_size),
            "total_tasks": total,
        }

    async def update_task(self, task_id: str, token: str, data: dict[str, Any]) -> dict[str, Any]:
        """
        Edit an open task.

        Error precedence:
        1. UNAUTHORIZED: token verification
        2. TASK_NOT_FOUND
        3. FORBIDDEN: caller is not the owner
        4. TASK_NOT_OPEN
        5. VALIDATION_ERROR
        """
        caller = await self._token_validator.authenticate(token)
        task = self._load_task(task_id)
        self._require_owner(task, caller, "Not authorized to update this task")
        lifecycle.require_open(task, "update")

        fields = lifecycle.validate_task_fields(data, partial=True)
        fields["updated_at"] = lifecycle.now_iso()

        if self._store.update_task(task_id, fields, expected_status=lifecycle.OPEN) == 0:
            raise self._status_changed_under_us(task_id, "update task")

        self._logger.info(
            "Task updated",
            extra={"task_id": task_id, "fields": sorted(k for k in fields if k != "updated_at")},
        )
        return self._reload_response(task_id)

    async def delete_task(self, task_id: str, token: str) -> dict[str, Any]:
        """
        Delete an open task together with its proposals.

        Error precedence: UNAUTHORIZED, TASK_NOT_FOUND, FORBIDDEN, TASK_NOT_OPEN.
        """
        caller = await self._token_validator.authenticate(token)
        task = self._load_task(task_id)
        self._require_owner(task, caller, "Not authorized to delete this task")
        lifecycle.require_open(task, "delete")

        if self._store.delete_task(task_id, expected_status=lifecycle.OPEN) == 0:
            raise self._status_changed_under_us(task_id, "delete task")

        self._logger.info("Task deleted", extra={"task_id": task_id, "client_id": caller.user_id})
        return {"message": "Task removed", "task_id": task_id}

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    async def submit_proposal(
        self,
        task_id: str,
        token: str,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """
        Append a pending proposal from the calling worker.

        Error precedence:
        1. UNAUTHORIZED: token verification
        2. FORBIDDEN: caller is not a worker
        3. VALIDATION_ERROR: cover letter, budget, estimated time, milestones
        4. TASK_NOT_FOUND
        5. TASK_NOT_OPEN
        6. DUPLICATE_PROPOSAL: caller already has a proposal on this task
        """
        caller = await self._token_validator.authenticate(token)
        if caller.role != "worker":
            raise AuthorizationError("Only workers can submit proposals")

        fields = lifecycle.validate_proposal_fields(data)

        task = self._load_task(task_id)
        lifecycle.require_open(task, "submit a proposal on")

        if self._store.get_proposal_by_worker(task_id, caller.user_id) is not None:
            raise AuthorizationError(
                "You have already submitted a proposal for this task",
                error="DUPLICATE_PROPOSAL",
            )

        proposal_id = f"p-{uuid.uuid4()}"
        submitted_at = lifecycle.now_iso()
        try:
            self._store.insert_proposal(
                {
                    "proposal_id": proposal_id,
                    "task_id": task_id,
                    "worker_id": caller.user_id,
                    **fields,
                    "status": lifecycle.PENDING,
                    "submitted_at": submitted_at,
                    "updated_at": submitted_at,
                }
            )
        except DuplicateProposalError as exc:
            raise AuthorizationError(
                "You have already submitted a proposal for this task",
                error="DUPLICATE_PROPOSAL",
            ) from exc

        self._logger.info(
            "Proposal submitted",
            extra={"task_id": task_id, "proposal_id": proposal_id, "worker_id": caller.user_id},
        )
        return self._reload_response(task_id)

    async def withdraw_proposal(
        self,
        task_id: str,
        proposal_id: str,
        token: str,
    ) -> dict[str, Any]:
        """
        Remove the caller's own proposal while the task is still open.

        Once a task leaves ``open`` no proposal can be withdrawn, which also
        keeps the accepted worker from walking away through this route.

        Error precedence: UNAUTHORIZED, TASK_NOT_FOUND, PROPOSAL_NOT_FOUND,
        FORBIDDEN, TASK_NOT_OPEN.
        """
        caller = await self._token_validator.authenticate(token)
        task = self._load_task(task_id)

        proposal = self._store.get_proposal(task_id, proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found", error="PROPOSAL_NOT_FOUND")

        if caller.user_id != proposal["worker_id"]:
            raise AuthorizationError("Only the worker who submitted a proposal can withdraw it")

        lifecycle.require_open(task, "withdraw a proposal from")

        if self._store.delete_proposal(task_id, proposal_id, task_status=lifecycle.OPEN) == 0:
            raise self._status_changed_under_us(task_id, "withdraw proposal")

        self._logger.info(
            "Proposal withdrawn",
            extra={"task_id": task_id, "proposal_id": proposal_id, "worker_id": caller.user_id},
        )
        return self._reload_response(task_id)

    async def accept_proposal(self, task_id: str, token: str, worker_id: str) -> dict[str, Any]:
        """
        Accept the pending proposal of ``worker_id`` and assign the task.

        Error precedence:
        1. UNAUTHORIZED: token verification
        2. TASK_NOT_FOUND
        3. FORBIDDEN: caller is not the owner
        4. TASK_NOT_OPEN
        5. PROPOSAL_NOT_FOUND: no pending proposal from that worker
        """
        caller = await self._token_validator.authenticate(token)
        task = self._load_task(task_id)
        self._require_owner(
            task,
            caller,
            "Only the client who created the task can accept proposals",
        )
        lifecycle.require_open(task, "accept a proposal on")

        proposal = self._store.get_proposal_by_worker(task_id, worker_id)
        if proposal is None or proposal["status"] != lifecycle.PENDING:
            raise NotFoundError("Proposal not found", error="PROPOSAL_NOT_FOUND")

        return self._accept(task_id, proposal, caller)

    async def accept_proposal_by_id(
        self,
        task_id: str,
        proposal_id: str,
        token: str,
    ) -> dict[str, Any]:
        """Accept a proposal addressed by its id (same rules as accept_proposal)."""
        caller = await self._token_validator.authenticate(token)
        task = self._load_task(task_id)
        self._require_owner(
            task,
            caller,
            "Only the client who created the task can accept proposals",
        )
        lifecycle.require_open(task, "accept a proposal on")

        proposal = self._store.get_proposal(task_id, proposal_id)
        if proposal is None or proposal["status"] != lifecycle.PENDING:
            raise NotFoundError("Proposal not found", error="PROPOSAL_NOT_FOUND")

        return self._accept(task_id, proposal, caller)

    def _accept(self, task_id: str, proposal: dict[str, Any], caller: Caller) -> dict[str, Any]:
        accepted = self._store.accept_proposal(
            task_id,
            proposal["proposal_id"],
            proposal["worker_id"],
            lifecycle.now_iso(),
        )
        if not accepted:
            raise self._status_changed_under_us(task_id, "accept proposal")

        self._logger.info(
            "Proposal accepted",
            extra={
                "task_id": task_id,
                "proposal_id": proposal["proposal_id"],
                "worker_id": proposal["worker_id"],
                "client_id": caller.user_id,
            },
        )
        return self._reload_response(task_id)

    async def reject_proposal(
        self,
        task_id: str,
        proposal_id: str,
        token: str,
    ) -> dict[str, Any]:
        """
        Reject one pending proposal. The task status does not change.

        Error precedence: UNAUTHORIZED, TASK_NOT_FOUND, FORBIDDEN,
        PROPOSAL_NOT_FOUND, PROPOSAL_NOT_PENDING.
        """
        caller = await self._token_validator.authenticate(token)
        task = self._load_task(task_id)
        self._require_owner(
            task,
            caller,
            "Only the client who created the task can reject proposals",
        )

        proposal = self._store.get_proposal(task_id, proposal_id)
        if proposal is None:
            raise NotFoundError("Proposal not found", error="PROPOSAL_NOT_FOUND")
        if proposal["status"] != lifecycle.PENDING:
            raise InvalidStateError(
                f"Cannot reject a proposal in '{proposal['status']}' status",
                error="PROPOSAL_NOT_PENDING",
                details={"status": proposal["status"]},
            )

        changed = self._store.update_proposal_status(
            task_id,
            proposal_id,
            lifecycle.REJECTED,
            lifecycle.now_iso(),
            expected_status=lifecycle.PENDING,
        )
        if changed == 0:
            raise InvalidStateError(
                "Proposal is no longer pending",
                error="PROPOSAL_NOT_PENDING",
            )

        self._logger.info(
            "Proposal rejected",
            extra={"task_id": task_id, "proposal_id": proposal_id, "client_id": caller.user_id},
        )
        return self._reload_response(task_id)

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    async def advance_status(self, task_id: str, token: str, target: object) -> dict[str, Any]:
        """
        Move a task along the transition table.

        Error precedence:
        1. UNAUTHORIZED: token verification
        2. TASK_NOT_FOUND
        3. VALIDATION_ERROR: unknown target status
        4. INVALID_TRANSITION: pair not in the table
        5. FORBIDDEN: caller may not perform this transition

        Completing a task bumps the assignee's completed-task counter in the
        User directory after the status change is stored.
        """
        caller = await self._token_validator.authenticate(token)
        task = self._load_task(task_id)

        if not isinstance(target, str):
            raise ValidationError("status must be a string", details={"field": "status"})

        current = task["status"]
        lifecycle.check_transition(current, target)
        lifecycle.authorize_transition(task, target, caller.user_id)

        now = lifecycle.now_iso()
        updates: dict[str, Any] = {"status": target, "updated_at": now}
        if target == lifecycle.IN_PROGRESS:
            updates["started_at"] = now
        elif target == lifecycle.COMPLETED:
            updates["completed_at"] = now
        elif target == lifecycle.CANCELLED:
            updates["cancelled_at"] = now
            updates["worker_id"] = None

        if self._store.update_task(task_id, updates, expected_status=current) == 0:
            raise self._status_changed_under_us(task_id, f"move task to '{target}'")

        self._logger.info(
            "Task status changed",
            extra={
                "task_id": task_id,
                "from_status": current,
                "to_status": target,
                "actor_id": caller.user_id,
            },
        )

        if target == lifecycle.COMPLETED:
            worker_id = task["worker_id"]
            try:
                await self._user_directory_client.increment_completed_tasks(worker_id)
            except ServiceError:
                self._logger.error(
                    "Failed to increment completed tasks",
                    extra={"task_id": task_id, "worker_id": worker_id},
                )
                raise

        return self._reload_response(task_id)

    # ------------------------------------------------------------------
    # Rating
    # ------------------------------------------------------------------

    async def rate_task(self, task_id: str, token: str, rating: object) -> dict[str, Any]:
        """
        Rate the worker of a completed task, once.

        Error precedence:
        1. UNAUTHORIZED: token verification
        2. TASK_NOT_FOUND
        3. FORBIDDEN: caller is not the owner
        4. VALIDATION_ERROR: rating not an integer in [1, 5]
        5. TASK_NOT_COMPLETED / ALREADY_RATED

        The worker's aggregate rating becomes the mean over every rated,
        completed task assigned to them, including this one.
        """
        caller = await self._token_validator.authenticate(token)
        task = self._load_task(task_id)
        self._require_owner(task, caller, "Not authorized to rate this task")

        rating_value = lifecycle.validate_rating(rating)

        if task["status"] != lifecycle.COMPLETED:
            raise InvalidStateError(
                "Can only rate completed tasks",
                error="TASK_NOT_COMPLETED",
                details={"status": task["status"]},
            )
        if task["rating"] is not None:
            raise InvalidStateError("Task has already been rated", error="ALREADY_RATED")

        if self._store.set_rating(task_id, rating_value, lifecycle.now_iso()) == 0:
            raise InvalidStateError("Task has already been rated", error="ALREADY_RATED")

        worker_id = task["worker_id"]
        ratings = self._store.get_worker_ratings(worker_id)
        average = round(sum(ratings) / len(ratings), 2)

        self._logger.info(
            "Task rated",
            extra={
                "task_id": task_id,
                "worker_id": worker_id,
                "rating": rating_value,
                "worker_average": average,
                "rated_tasks": len(ratings),
            },
        )

        try:
            await self._user_directory_client.update_rating(worker_id, average)
        except ServiceError:
            self._logger.error(
                "Failed to update worker rating",
                extra={"task_id": task_id, "worker_id": worker_id},
            )
            raise

        return self._reload_response(task_id)

    # ------------------------------------------------------------------
    # Statistics (health endpoint)
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Return aggregate task statistics for health reporting."""
        return {
            "total_tasks": self._store.count_tasks(),
            "tasks_by_status": self.count_tasks_by_status(),
        }

    def count_tasks_by_status(self) -> dict[str, int]:
        """Count tasks grouped by status. Returns every status with 0 defaults."""
        counts: dict[str, int] = dict.fromkeys(lifecycle.TASK_STATUSES, 0)
        for status_val, count in self._store.count_tasks_by_status().items():
            if status_val in counts:
                counts[status_val] = int(count)
        return counts

    def close(self) -> None:
        """Close the database connection."""
        self._store.close()

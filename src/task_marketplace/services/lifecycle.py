"""
Task lifecycle rules: statuses, the transition table, and field validation.

Everything here is pure. TaskManager loads the aggregate, asks these rules
whether an operation is allowed, and persists the result.
"""

from __future__ import annotations

import math
import re
from datetime import UTC, datetime
from typing import Any

from task_marketplace.core.exceptions import (
    AuthorizationError,
    InvalidStateError,
    ValidationError,
)

# Task statuses
OPEN = "open"
ASSIGNED = "assigned"
IN_PROGRESS = "in-progress"
COMPLETED = "completed"
CANCELLED = "cancelled"

TASK_STATUSES: tuple[str, ...] = (OPEN, ASSIGNED, IN_PROGRESS, COMPLETED, CANCELLED)

# Proposal statuses
PENDING = "pending"
REJECTED = "rejected"

CATEGORIES: tuple[str, ...] = (
    "Cleaning",
    "IT & Technology",
    "Gardening",
    "Handyman",
    "Delivery",
)

# current status -> targets reachable through advance_status
TRANSITIONS: dict[str, frozenset[str]] = {
    OPEN: frozenset(),
    ASSIGNED: frozenset({IN_PROGRESS, CANCELLED}),
    IN_PROGRESS: frozenset({COMPLETED, CANCELLED}),
    COMPLETED: frozenset(),
    CANCELLED: frozenset(),
}

CLIENT_ONLY_TARGETS = frozenset({CANCELLED})
ASSIGNEE_ONLY_TARGETS = frozenset({IN_PROGRESS, COMPLETED})

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 5000
MAX_LOCATION_LENGTH = 200
MAX_SKILLS = 30
MAX_SKILL_LENGTH = 50
MIN_COVER_LETTER_LENGTH = 50
MAX_COVER_LETTER_LENGTH = 1000
MAX_MILESTONES = 20
MIN_RATING = 1
MAX_RATING = 5

_ESTIMATED_TIME_RE = re.compile(r"^([1-9][0-9]*)\s+(hours?|days?|weeks?)$", re.IGNORECASE)

TASK_FIELDS: tuple[str, ...] = (
    "title",
    "description",
    "category",
    "location",
    "budget",
    "deadline",
    "skills",
    "is_urgent",
)


def now_iso() -> str:
    """Return current UTC time as ISO 8601 string with Z suffix."""
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def is_positive_number(value: object) -> bool:
    """Check if value is a finite number above zero (bool excluded)."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    try:
        number = float(value)
    except OverflowError:
        return False
    return math.isfinite(number) and number > 0


def _require_text(data: dict[str, Any], field_name: str, max_length: int) -> str:
    value = data.get(field_name)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(
            f"{field_name} is required",
            details={"field": field_name},
        )
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(
            f"{field_name} must not exceed {max_length} characters",
            details={"field": field_name},
        )
    return value


def _parse_deadline(value: object, now: datetime) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("deadline is required", details={"field": "deadline"})
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(
            "deadline must be a valid ISO 8601 date",
            details={"field": "deadline"},
        ) from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    parsed = parsed.astimezone(UTC)
    if parsed <= now:
        raise ValidationError("deadline must be in the future", details={"field": "deadline"})
    return parsed.isoformat(timespec="seconds").replace("+00:00", "Z")


def _parse_skills(value: object) -> list[str]:
    if not isinstance(value, list) or len(value) == 0:
        raise ValidationError("skills must be a non-empty list", details={"field": "skills"})
    skills: list[str] = []
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ValidationError(
                "skills must contain non-empty strings",
                details={"field": "skills"},
            )
        skill = item.strip()
        if len(skill) > MAX_SKILL_LENGTH:
            raise ValidationError(
                f"each skill must not exceed {MAX_SKILL_LENGTH} characters",
                details={"field": "skills"},
            )
        if skill not in skills:
            skills.append(skill)
    if len(skills) > MAX_SKILLS:
        raise ValidationError(
            f"no more than {MAX_SKILLS} skills are allowed",
            details={"field": "skills"},
        )
    return skills


def validate_task_fields(
    data: dict[str, Any],
    *,
    partial: bool,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Validate and normalize task fields.

    With ``partial=False`` every required field must be present and
    ``is_urgent`` defaults to False. With ``partial=True`` only the fields
    present in ``data`` are validated and returned; at least one is required.
    """
    if now is None:
        now = datetime.now(UTC)

    unknown = sorted(set(data) - set(TASK_FIELDS))
    if unknown:
        raise ValidationError(
            f"Unknown field: {unknown[0]}",
            details={"field": unknown[0]},
        )

    if partial and not any(field_name in data for field_name in TASK_FIELDS):
        raise ValidationError("At least one task field must be provided")

    def wanted(field_name: str) -> bool:
        return not partial or field_name in data

    fields: dict[str, Any] = {}

    if wanted("title"):
        fields["title"] = _require_text(data, "title", MAX_TITLE_LENGTH)
    if wanted("description"):
        fields["description"] = _require_text(data, "description", MAX_DESCRIPTION_LENGTH)
    if wanted("category"):
        category = data.get("category")
        if category not in CATEGORIES:
            raise ValidationError(
                f"category must be one of: {', '.join(CATEGORIES)}",
                details={"field": "category"},
            )
        fields["category"] = category
    if wanted("location"):
        fields["location"] = _require_text(data, "location", MAX_LOCATION_LENGTH)
    if wanted("budget"):
        budget = data.get("budget")
        if not is_positive_number(budget):
            raise ValidationError(
                "budget must be a positive number",
                details={"field": "budget"},
            )
        fields["budget"] = float(budget)
    if wanted("deadline"):
        fields["deadline"] = _parse_deadline(data.get("deadline"), now)
    if wanted("skills"):
        fields["skills"] = _parse_skills(data.get("skills"))

    if "is_urgent" in data:
        is_urgent = data["is_urgent"]
        if not isinstance(is_urgent, bool):
            raise ValidationError("is_urgent must be a boolean", details={"field": "is_urgent"})
        fields["is_urgent"] = is_urgent
    elif not partial:
        fields["is_urgent"] = False

    return fields


def _parse_milestones(value: object) -> list[dict[str, Any]]:
    if not isinstance(value, list):
        raise ValidationError("milestones must be a list", details={"field": "milestones"})
    if len(value) > MAX_MILESTONES:
        raise ValidationError(
            f"no more than {MAX_MILESTONES} milestones are allowed",
            details={"field": "milestones"},
        )
    milestones: list[dict[str, Any]] = []
    for item in value:
        if not isinstance(item, dict):
            raise ValidationError(
                "each milestone must be an object",
                details={"field": "milestones"},
            )
        title = item.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError(
                "milestone title is required",
                details={"field": "milestones"},
            )
        amount = item.get("amount")
        if not is_positive_number(amount):
            raise ValidationError(
                "milestone amount must be a positive number",
                details={"field": "milestones"},
            )
        milestones.append({"title": title.strip(), "amount": float(amount)})
    return milestones


def validate_proposal_fields(data: dict[str, Any]) -> dict[str, Any]:
    """Validate and normalize the fields of a new proposal."""
    cover_letter = data.get("cover_letter")
    if not isinstance(cover_letter, str):
        raise ValidationError("cover_letter is required", details={"field": "cover_letter"})
    cover_letter = cover_letter.strip()
    if not MIN_COVER_LETTER_LENGTH <= len(cover_letter) <= MAX_COVER_LETTER_LENGTH:
        raise ValidationError(
            (
                f"cover_letter must be between {MIN_COVER_LETTER_LENGTH} and "
                f"{MAX_COVER_LETTER_LENGTH} characters"
            ),
            details={"field": "cover_letter"},
        )

    proposed_budget = data.get("proposed_budget")
    if not is_positive_number(proposed_budget):
        raise ValidationError(
            "proposed_budget must be a positive number",
            details={"field": "proposed_budget"},
        )

    estimated_time = data.get("estimated_time")
    if not isinstance(estimated_time, str):
        raise ValidationError("estimated_time is required", details={"field": "estimated_time"})
    match = _ESTIMATED_TIME_RE.match(estimated_time.strip())
    if match is None:
        raise ValidationError(
            "estimated_time must look like '<number> hours|days|weeks'",
            details={"field": "estimated_time"},
        )
    estimated_time = f"{match.group(1)} {match.group(2).lower()}"

    milestones: list[dict[str, Any]] = []
    if data.get("milestones") is not None:
        milestones = _parse_milestones(data["milestones"])

    return {
        "cover_letter": cover_letter,
        "proposed_budget": float(proposed_budget),
        "estimated_time": estimated_time,
        "milestones": milestones,
    }


def validate_rating(value: object) -> int:
    """Ratings are whole numbers from 1 to 5."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"rating must be an integer between {MIN_RATING} and {MAX_RATING}",
            details={"field": "rating"},
        )
    if not MIN_RATING <= value <= MAX_RATING:
        raise ValidationError(
            f"rating must be between {MIN_RATING} and {MAX_RATING}",
            details={"field": "rating"},
        )
    return value


def check_transition(current: str, target: str) -> None:
    """Raise unless ``current -> target`` is in the transition table."""
    if target not in TASK_STATUSES:
        raise ValidationError(
            f"status must be one of: {', '.join(TASK_STATUSES)}",
            details={"field": "status"},
        )
    if target == ASSIGNED and current == OPEN:
        raise InvalidStateError(
            "Tasks are assigned by accepting a proposal",
            error="INVALID_TRANSITION",
            details={"from": current, "to": target},
        )
    if target not in TRANSITIONS.get(current, frozenset()):
        raise InvalidStateError(
            f"Cannot move task from '{current}' to '{target}'",
            error="INVALID_TRANSITION",
            details={"from": current, "to": target},
        )


def authorize_transition(task: dict[str, Any], target: str, user_id: str) -> None:
    """
    Raise unless ``user_id`` may move ``task`` to ``target``.

    Cancellation belongs to the client; progress and completion belong to
    the assignee. Anyone else is refused outright.
    """
    is_client = user_id == task["client_id"]
    is_worker = task["worker_id"] is not None and user_id == task["worker_id"]

    if not is_client and not is_worker:
        raise AuthorizationError("Not authorized to update this task status")
    if target in CLIENT_ONLY_TARGETS and not is_client:
        raise AuthorizationError("Only the client can cancel a task")
    if target in ASSIGNEE_ONLY_TARGETS and not is_worker:
        raise AuthorizationError("Only the assigned worker can update work status")


def require_open(task: dict[str, Any], action: str) -> None:
    """Raise InvalidStateError unless the task is still open."""
    if task["status"] != OPEN:
        raise InvalidStateError(
            f"Cannot {action} task in '{task['status']}' status, must be 'open'",
            error="TASK_NOT_OPEN",
            details={"status": task["status"]},
        )

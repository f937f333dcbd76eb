"""Shared test helpers for bearer tokens and request payloads."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any


def make_token(user_id: str, role: str) -> str:
    """Build an opaque test token that the mocked Identity service understands."""
    return f"{role}:{user_id}"


def parse_token(token: str) -> dict[str, Any]:
    """Resolve a test token the way the Identity service would."""
    role, sep, user_id = token.partition(":")
    if not sep or not user_id:
        return {"valid": False}
    return {"valid": True, "user_id": user_id, "role": role}


def auth_header(user_id: str, role: str) -> dict[str, str]:
    """Authorization header for the given user."""
    return {"Authorization": f"Bearer {make_token(user_id, role)}"}


def future_deadline(days: int = 7) -> str:
    """ISO 8601 deadline ``days`` from now."""
    return (datetime.now(UTC) + timedelta(days=days)).isoformat(timespec="seconds")


def task_payload(**overrides: Any) -> dict[str, Any]:
    """A valid create-task body; keyword arguments replace fields."""
    payload: dict[str, Any] = {
        "title": "Deep clean two-bedroom flat",
        "description": "Kitchen, bathroom and both bedrooms, including windows.",
        "category": "Cleaning",
        "location": "Berlin",
        "budget": 100,
        "deadline": future_deadline(),
        "skills": ["cleaning", "windows"],
    }
    payload.update(overrides)
    return payload


COVER_LETTER = (
    "I have five years of professional cleaning experience and bring my own supplies."
)


def proposal_payload(**overrides: Any) -> dict[str, Any]:
    """A valid proposal body; keyword arguments replace fields."""
    payload: dict[str, Any] = {
        "cover_letter": COVER_LETTER,
        "proposed_budget": 90,
        "estimated_time": "3 days",
    }
    payload.update(overrides)
    return payload

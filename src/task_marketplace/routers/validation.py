"""Shared request validation helpers for marketplace routers."""

from __future__ import annotations

import json
import math
from typing import Any

from task_marketplace.core.exceptions import AuthenticationError, ValidationError


def parse_json_body(raw_body: bytes) -> dict[str, Any]:
    """Parse JSON body, raising ValidationError on failure."""
    try:
        data = json.loads(raw_body)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise ValidationError("Request body is not valid JSON", error="INVALID_JSON") from exc

    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object", error="INVALID_JSON")

    return data


def extract_string(data: dict[str, Any], field_name: str) -> str:
    """Extract a required, non-empty string field from a parsed JSON body."""
    value = data.get(field_name)
    if value is None:
        raise ValidationError(
            f"Missing required field: {field_name}",
            details={"field": field_name},
        )
    if not isinstance(value, str) or not value:
        raise ValidationError(
            f"Field '{field_name}' must be a non-empty string",
            details={"field": field_name},
        )
    return value


def extract_bearer_token(authorization: str | None) -> str:
    """Extract the bearer token from the Authorization header."""
    if authorization is None:
        raise AuthenticationError("Missing Authorization header")

    if not authorization.startswith("Bearer "):
        raise AuthenticationError("Authorization header must use Bearer scheme")

    token = authorization[len("Bearer ") :].strip()
    if not token:
        raise AuthenticationError("Bearer token must not be empty")

    return token


def parse_int_param(raw: str | None, name: str) -> int | None:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be an integer", details={"field": name}) from exc


def parse_number_param(raw: str | None, name: str) -> float | None:
    if raw is None:
        return None
    try:
        value = float(raw)
    except ValueError as exc:
        raise ValidationError(f"{name} must be a number", details={"field": name}) from exc
    if not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number", details={"field": name})
    return value

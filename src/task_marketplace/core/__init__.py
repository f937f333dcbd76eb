"""Core infrastructure components."""

from task_marketplace.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    InvalidStateError,
    NotFoundError,
    ServiceError,
    ValidationError,
)
from task_marketplace.core.state import AppState, get_app_state, init_app_state

__all__ = [
    "AppState",
    "AuthenticationError",
    "AuthorizationError",
    "InvalidStateError",
    "NotFoundError",
    "ServiceError",
    "ValidationError",
    "get_app_state",
    "init_app_state",
]

"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from task_marketplace.clients.identity_client import IdentityClient
    from task_marketplace.clients.user_directory_client import UserDirectoryClient
    from task_marketplace.services.task_manager import TaskManager
    from task_marketplace.services.token_validator import TokenValidator


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    task_manager: TaskManager | None = None
    identity_client: IdentityClient | None = None
    user_directory_client: UserDirectoryClient | None = None
    token_validator: TokenValidator | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep service dependency references in sync with AppState fields."""
        super().__setattr__(name, value)
        if value is None:
            return

        token_validator = self.__dict__.get("token_validator")
        if name == "identity_client" and token_validator is not None:
            token_validator.set_identity_client(value)

        task_manager = self.__dict__.get("task_manager")
        if task_manager is None:
            return

        if name == "user_directory_client":
            task_manager.set_user_directory_client(value)
        elif name == "task_manager":
            user_directory_client = self.__dict__.get("user_directory_client")
            if user_directory_client is not None:
                value.set_user_directory_client(user_directory_client)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None

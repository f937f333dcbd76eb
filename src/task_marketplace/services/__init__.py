"""Business logic services."""

from task_marketplace.services.task_manager import TaskManager
from task_marketplace.services.task_store import TaskStore
from task_marketplace.services.token_validator import Caller, TokenValidator

__all__ = ["Caller", "TaskManager", "TaskStore", "TokenValidator"]

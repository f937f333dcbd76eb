"""API routers."""

from task_marketplace.routers import health, proposals, tasks

__all__ = ["health", "proposals", "tasks"]

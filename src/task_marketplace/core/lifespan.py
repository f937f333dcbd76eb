"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from task_marketplace.clients.identity_client import IdentityClient
from task_marketplace.clients.user_directory_client import UserDirectoryClient
from task_marketplace.config import get_settings
from task_marketplace.core.state import init_app_state
from task_marketplace.logging import get_logger, setup_logging
from task_marketplace.services.task_manager import TaskManager
from task_marketplace.services.task_store import TaskStore
from task_marketplace.services.token_validator import TokenValidator

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    # HTTP client for bearer token verification
    identity_client = IdentityClient(
        base_url=settings.identity.base_url,
        verify_token_path=settings.identity.verify_token_path,
        timeout_seconds=settings.identity.timeout_seconds,
    )
    state.identity_client = identity_client

    # HTTP client for worker statistics
    user_directory_client = UserDirectoryClient(
        base_url=settings.user_directory.base_url,
        completed_tasks_path=settings.user_directory.completed_tasks_path,
        rating_path=settings.user_directory.rating_path,
        timeout_seconds=settings.user_directory.timeout_seconds,
    )
    state.user_directory_client = user_directory_client

    token_validator = TokenValidator(identity_client=identity_client)
    state.token_validator = token_validator

    # TaskManager owns all business logic
    store = TaskStore(db_path=settings.database.path)
    task_manager = TaskManager(
        store=store,
        token_validator=token_validator,
        user_directory_client=user_directory_client,
        default_page_size=settings.listing.default_page_size,
        max_page_size=settings.listing.max_page_size,
    )
    state.task_manager = task_manager

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": settings.database.path,
            "identity_base_url": settings.identity.base_url,
            "user_directory_base_url": settings.user_directory.base_url,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    task_manager.close()

    await identity_client.close()
    await user_directory_client.close()

"""Async HTTP client for the User directory service."""

from __future__ import annotations

from typing import Any

import httpx

from task_marketplace.core.exceptions import NotFoundError, ServiceError
from task_marketplace.logging import get_logger


class UserDirectoryClient:
    """
    Client for the user records the marketplace reports back to.

    Two operations:
    1. increment_completed_tasks: bumps a worker's completed-task counter
       when one of their tasks reaches ``completed``.
    2. update_rating: stores a worker's recomputed aggregate rating after
       a client rates a completed task.

    Neither call is retried here.
    """

    def __init__(
        self,
        base_url: str,
        completed_tasks_path: str,
        rating_path: str,
        timeout_seconds: int,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._completed_tasks_path = completed_tasks_path
        self._rating_path = rating_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def increment_completed_tasks(self, user_id: str) -> dict[str, Any]:
        """
        Increment the completed-task counter of a user.

        Raises:
            NotFoundError: USER_NOT_FOUND (404) if the directory has no such user
            ServiceError: USER_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        path = self._completed_tasks_path.format(user_id=user_id)
        return await self._send("POST", path, user_id, payload={"increment": 1})

    async def update_rating(self, user_id: str, rating: float) -> dict[str, Any]:
        """
        Set the aggregate rating of a user.

        Raises:
            NotFoundError: USER_NOT_FOUND (404) if the directory has no such user
            ServiceError: USER_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        path = self._rating_path.format(user_id=user_id)
        return await self._send("PUT", path, user_id, payload={"rating": rating})

    async def _send(
        self,
        method: str,
        path: str,
        user_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        logger = get_logger(__name__)

        try:
            response = await self._client.request(method, path, json=payload)
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "User directory connection failed",
                extra={"error": str(exc), "base_url": self._base_url, "user_id": user_id},
            )
            raise ServiceError(
                error="USER_SERVICE_UNAVAILABLE",
                message="Cannot connect to User directory",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "User directory HTTP error",
                extra={"error": str(exc), "base_url": self._base_url, "user_id": user_id},
            )
            raise ServiceError(
                error="USER_SERVICE_UNAVAILABLE",
                message="User directory request failed",
                status_code=502,
                details={},
            ) from exc

        if response.status_code == 404:
            raise NotFoundError(
                "User not found",
                error="USER_NOT_FOUND",
                details={"user_id": user_id},
            )

        if response.status_code not in (200, 204):
            logger.warning(
                "User directory unexpected status",
                extra={
                    "status_code": response.status_code,
                    "method": method,
                    "path": path,
                },
            )
            raise ServiceError(
                error="USER_SERVICE_UNAVAILABLE",
                message="User directory returned unexpected status",
                status_code=502,
                details={},
            )

        if response.status_code == 204 or not response.content:
            return {}

        try:
            result = response.json()
        except ValueError:
            return {}
        return result if isinstance(result, dict) else {}

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

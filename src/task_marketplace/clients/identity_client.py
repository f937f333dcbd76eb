"""Async HTTP client for the Identity service."""

from __future__ import annotations

from typing import Any

import httpx

from task_marketplace.core.exceptions import AuthenticationError, ServiceError
from task_marketplace.logging import get_logger


class IdentityClient:
    """
    Client for Identity service bearer token verification.

    The marketplace never issues or inspects credentials itself. Tokens are
    forwarded to the Identity service, which answers with the user id and
    role the token belongs to.
    """

    def __init__(
        self,
        base_url: str,
        verify_token_path: str,
        timeout_seconds: int,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url
        self._verify_token_path = verify_token_path
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            transport=transport,
        )

    async def verify_token(self, token: str) -> dict[str, Any]:
        """
        Verify a bearer token via the Identity service.

        Args:
            token: Opaque bearer token taken from the Authorization header

        Returns:
            dict with keys: valid (bool), user_id (str), role (str)

        Raises:
            AuthenticationError: UNAUTHORIZED (401) if the Identity service says valid=false
            ServiceError: IDENTITY_SERVICE_UNAVAILABLE (502) on connection/timeout/unexpected errors
        """
        logger = get_logger(__name__)

        try:
            response = await self._client.post(
                self._verify_token_path,
                json={"token": token},
            )
        except (httpx.ConnectError, httpx.TimeoutException) as exc:
            logger.warning(
                "Identity service connection failed",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Cannot connect to Identity service",
                status_code=502,
                details={},
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning(
                "Identity service HTTP error",
                extra={"error": str(exc), "base_url": self._base_url},
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service request failed",
                status_code=502,
                details={},
            ) from exc

        if response.status_code in (400, 401):
            raise AuthenticationError("Token is not valid")

        if response.status_code != 200:
            logger.warning(
                "Identity service unexpected status",
                extra={
                    "status_code": response.status_code,
                    "base_url": self._base_url,
                },
            )
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned unexpected status",
                status_code=502,
                details={},
            )

        try:
            result = response.json()
        except ValueError as exc:
            raise ServiceError(
                error="IDENTITY_SERVICE_UNAVAILABLE",
                message="Identity service returned a malformed response",
                status_code=502,
                details={},
            ) from exc

        if not isinstance(result, dict) or not result.get("valid", False):
            raise AuthenticationError("Token is not valid")

        return result

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

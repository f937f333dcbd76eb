"""Bearer token authentication for marketplace operations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from task_marketplace.core.exceptions import AuthenticationError, ServiceError

if TYPE_CHECKING:
    from task_marketplace.clients.identity_client import IdentityClient

VALID_ROLES = frozenset({"client", "worker", "admin"})


@dataclass(frozen=True)
class Caller:
    """Authenticated identity of the user making a request."""

    user_id: str
    role: str


class TokenValidator:
    """Resolves bearer tokens to callers via the Identity service."""

    def __init__(self, identity_client: IdentityClient) -> None:
        self._identity_client = identity_client

    def set_identity_client(self, identity_client: IdentityClient) -> None:
        """Swap the Identity client (used when the app state is rewired)."""
        self._identity_client = identity_client

    async def authenticate(self, token: str) -> Caller:
        """
        Verify a bearer token and return the caller it belongs to.

        Error precedence:
        1. UNAUTHORIZED: empty token
        2. IDENTITY_SERVICE_UNAVAILABLE: Identity unreachable or misbehaving
        3. UNAUTHORIZED: token rejected, user id missing, or unknown role
        """
        if not token:
            raise AuthenticationError("Bearer token must not be empty")

        result: Any
        try:
            result = await self._identity_client.verify_token(token)
        except ServiceError:
            raise
        except Exception as exc:
            raise ServiceError(
                "IDENTITY_SERVICE_UNAVAILABLE",
                "Cannot connect to Identity service",
                502,
                {},
            ) from exc

        if not isinstance(result, dict) or not result.get("valid", False):
            raise AuthenticationError("Token is not valid")

        user_id = result.get("user_id")
        if not isinstance(user_id, str) or len(user_id) < 1:
            raise AuthenticationError("Token does not identify a user")

        role = result.get("role")
        if role not in VALID_ROLES:
            raise AuthenticationError("Token carries an unknown role")

        return Caller(user_id=user_id, role=str(role))

"""Unit tests for TokenValidator."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from task_marketplace.core.exceptions import AuthenticationError, ServiceError
from task_marketplace.services.token_validator import Caller, TokenValidator


def _validator(**verify_kwargs: object) -> tuple[TokenValidator, AsyncMock]:
    mock_identity = AsyncMock()
    mock_identity.verify_token = AsyncMock(**verify_kwargs)
    return TokenValidator(identity_client=mock_identity), mock_identity


@pytest.mark.unit
async def test_authenticate_returns_caller() -> None:
    validator, mock_identity = _validator(
        return_value={"valid": True, "user_id": "u-1", "role": "worker"}
    )

    caller = await validator.authenticate("tok")

    assert caller == Caller(user_id="u-1", role="worker")
    mock_identity.verify_token.assert_awaited_once_with("tok")


@pytest.mark.unit
async def test_authenticate_empty_token() -> None:
    """Empty token is rejected without calling Identity."""
    validator, mock_identity = _validator()

    with pytest.raises(AuthenticationError):
        await validator.authenticate("")

    mock_identity.verify_token.assert_not_awaited()


@pytest.mark.unit
async def test_authenticate_identity_unavailable() -> None:
    """Connection errors from Identity are wrapped as IDENTITY_SERVICE_UNAVAILABLE."""
    validator, _ = _validator(side_effect=ConnectionError("unavailable"))

    with pytest.raises(ServiceError) as exc_info:
        await validator.authenticate("tok")

    assert exc_info.value.error == "IDENTITY_SERVICE_UNAVAILABLE"
    assert exc_info.value.status_code == 502


@pytest.mark.unit
async def test_authenticate_identity_service_error() -> None:
    """ServiceError from Identity is propagated unchanged."""
    expected = ServiceError("IDENTITY_SERVICE_UNAVAILABLE", "fail", 502, {})
    validator, _ = _validator(side_effect=expected)

    with pytest.raises(ServiceError) as exc_info:
        await validator.authenticate("tok")

    assert exc_info.value is expected


@pytest.mark.unit
@pytest.mark.parametrize(
    "result",
    [
        {"valid": False},
        {"valid": True, "role": "client"},
        {"valid": True, "user_id": "", "role": "client"},
        {"valid": True, "user_id": "u-1", "role": "superuser"},
        {"valid": True, "user_id": "u-1"},
        "not-a-dict",
    ],
)
async def test_authenticate_rejects_unusable_results(result: object) -> None:
    validator, _ = _validator(return_value=result)

    with pytest.raises(AuthenticationError) as exc_info:
        await validator.authenticate("tok")

    assert exc_info.value.status_code == 401
    assert exc_info.value.error == "UNAUTHORIZED"

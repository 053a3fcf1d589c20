"""
Unit tests for the Auth client and principal resolution.
"""

from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from starlette.requests import Request

from shared.circuit_breaker import CircuitBreakerState
from shared.errors import AuthenticationError
from shared.retry import RetryConfig
from service_invites.app.adapters.auth_client import AuthClient
from service_invites.app.domain.auth_middleware import AuthMiddleware, Principal


def make_request(authorization=None):
    headers = [(b"authorization", authorization.encode())] if authorization is not None else []
    return Request({"type": "http", "method": "POST", "path": "/invites/accept", "headers": headers})


class TestAuthClient:
    """Test cases for AuthClient."""

    @pytest.fixture
    def calls(self):
        return []

    def _client(self, handler, calls):
        def _record(request):
            calls.append(request)
            return handler(request)

        client = AuthClient("http://auth.local/", transport=httpx.MockTransport(_record))
        client.retry_config = RetryConfig(max_attempts=2, base_delay=0, jitter=False)
        return client

    @pytest.mark.asyncio
    async def test_verify_token_success(self, calls):
        """A valid session returns the auth service payload."""
        client = self._client(
            lambda request: httpx.Response(200, json={"valid": True, "user_info": {"user_id": "tenant-a"}}),
            calls,
        )

        result = await client.verify_token("session-credential")

        assert result["valid"] is True
        assert result["user_info"]["user_id"] == "tenant-a"
        assert str(calls[0].url) == "http://auth.local/auth/verify"

    @pytest.mark.asyncio
    async def test_verify_token_rejected(self, calls):
        """A 401 from the auth service is an invalid session, not an outage."""
        client = self._client(lambda request: httpx.Response(401), calls)

        result = await client.verify_token("stale-credential")

        assert result == {"valid": False}
        assert client.circuit_breaker.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_server_error(self, calls):
        """Server errors surface as AuthenticationError without retrying."""
        client = self._client(lambda request: httpx.Response(500), calls)

        with pytest.raises(AuthenticationError):
            await client.verify_token("session-credential")

        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error_retried(self, calls):
        """Connection failures are retried before giving up."""
        def _fail(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = self._client(_fail, calls)

        with pytest.raises(AuthenticationError):
            await client.verify_token("session-credential")

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_circuit_opens_after_repeated_failures(self, calls):
        """After three failed verifications the breaker stops calling out."""
        client = self._client(lambda request: httpx.Response(503), calls)

        for _ in range(3):
            with pytest.raises(AuthenticationError):
                await client.verify_token("session-credential")
        assert client.circuit_breaker.state == CircuitBreakerState.OPEN

        with pytest.raises(AuthenticationError):
            await client.verify_token("session-credential")
        assert len(calls) == 3


class TestAuthMiddleware:
    """Test cases for AuthMiddleware."""

    @pytest.fixture
    def auth_client(self):
        client = MagicMock()
        client.verify_token = AsyncMock(return_value={
            "valid": True,
            "user_info": {"user_id": "tenant-a", "name": "Tina Tenant"},
        })
        return client

    @pytest.fixture
    def middleware(self, auth_client):
        return AuthMiddleware(auth_client)

    @pytest.mark.asyncio
    async def test_no_header_is_anonymous(self, middleware, auth_client):
        assert await middleware.authenticate_request(make_request()) is None
        auth_client.verify_token.assert_not_called()

    @pytest.mark.asyncio
    async def test_valid_bearer(self, middleware, auth_client):
        request = make_request("Bearer session-credential")

        principal = await middleware.authenticate_request(request)

        assert principal == Principal("tenant-a", "Tina Tenant")
        assert request.state.principal == principal
        auth_client.verify_token.assert_awaited_once_with("session-credential")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("header", ["Basic abc", "Bearer ", "bearer abc"])
    async def test_malformed_header(self, middleware, header):
        with pytest.raises(AuthenticationError):
            await middleware.authenticate_request(make_request(header))

    @pytest.mark.asyncio
    async def test_invalid_session(self, middleware, auth_client):
        auth_client.verify_token.return_value = {"valid": False}

        with pytest.raises(AuthenticationError):
            await middleware.authenticate_request(make_request("Bearer stale"))

    @pytest.mark.asyncio
    async def test_require_principal(self, middleware):
        with pytest.raises(AuthenticationError):
            await middleware.require_principal(make_request())

        principal = await middleware.require_principal(make_request("Bearer session-credential"))
        assert principal.principal_id == "tenant-a"

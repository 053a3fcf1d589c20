"""
Auth service client for the Invites Service.
"""

from typing import Any, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from shared.errors import AuthenticationError
from shared.logging import get_logger
from shared.retry import RetryConfig, call_with_retry


class AuthClient:
    """Client for communicating with the Auth service."""

    def __init__(self, auth_service_url: str, timeout: float = 5.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.auth_service_url = auth_service_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self.logger = get_logger("invites.auth_client")
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=30.0,
            expected_exception=httpx.HTTPError,
            name="auth_service",
        )

        # Configure retry for auth service calls
        self.retry_config = RetryConfig(
            max_attempts=3,
            base_delay=0.2,
            max_delay=2.0,
            exponential_base=2.0,
            jitter=True
        )

    async def _post_verify(self, credential: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(
                f"{self.auth_service_url}/auth/verify",
                json={"token": credential}
            )

        if response.status_code == 200:
            return response.json()
        if response.status_code in (401, 403):
            return {"valid": False}
        response.raise_for_status()
        raise AuthenticationError(
            f"Auth service error: {response.status_code}",
            details={"status_code": response.status_code}
        )

    async def verify_token(self, credential: str) -> Dict[str, Any]:
        """Verify a session credential with the Auth service.

        Returns the service payload, ``{"valid": bool, "user_info": {...}}``.
        """
        try:
            result = await self.circuit_breaker.call(
                call_with_retry,
                self._post_verify,
                credential,
                exceptions=(httpx.TransportError,),
                config=self.retry_config,
            )
        except CircuitBreakerOpenException:
            self.logger.warning("Auth service circuit open")
            raise AuthenticationError("Auth service unavailable")
        except httpx.HTTPError as e:
            self.logger.error("Auth service HTTP error", error_type=type(e).__name__)
            raise AuthenticationError("Auth service unavailable")

        if not result.get("valid"):
            self.logger.warning("Session credential rejected")
        return result

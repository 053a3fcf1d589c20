"""
Invites service for the property access layer.
"""

import asyncio
from dataclasses import asdict
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import FastAPI, Request, Response
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig, get_config
from shared.errors import AuthenticationError, TransientStorageError
from shared.retry import RetryConfig, call_with_retry
from .adapters.auth_client import AuthClient
from .adapters.properties import PropertyDirectory, PropertyLinker
from .domain.auth_middleware import AuthMiddleware, Principal
from .domain.clock import Clock
from .domain.origin_guard import OriginGuard
from .persistence import Database, TRANSIENT_DB_ERRORS
from .ratelimit.token_bucket import TokenBucketRateLimiter, caller_identity
from .schemas import (
    InviteTokenRequest,
    IssueInviteRequest,
    IssueInviteResponse,
    RevokeInviteResponse,
    TokenListResponse,
    TokenSummaryResponse,
)
from .tokens import (
    CleanupScheduler,
    TokenAcceptor,
    TokenCleaner,
    TokenHasher,
    TokenIssuer,
    TokenRevoker,
    TokenValidator,
)

SERVICE_NAME = "invites"
SERVICE_PORT = 8020


class InvitesService(BaseService):
    """Invites service implementation."""

    def __init__(self, config: Optional[ServiceConfig] = None, auth_client: Optional[AuthClient] = None,
                 clock: Optional[Clock] = None, properties: Optional[PropertyDirectory] = None):
        super().__init__(SERVICE_NAME, SERVICE_PORT, config=config or get_config(SERVICE_NAME, SERVICE_PORT))
        self.clock = clock or Clock()
        self.database = Database(
            self.config.database_url,
            echo=self.config.database_echo,
            pool_size=self.config.database_pool_size,
            busy_timeout=self.config.database_busy_timeout_seconds,
        )
        self.hasher = TokenHasher(self.config.invite_hash_key)
        self.properties = properties or PropertyDirectory()
        self.linker = PropertyLinker()

        self.auth_client = auth_client or AuthClient(self.config.auth_service_url)
        self.auth_middleware = AuthMiddleware(self.auth_client)
        self.origin_guard = OriginGuard(self.config.allowed_origins_list, self.config.allow_dev_origins)
        self.rate_limiter = TokenBucketRateLimiter(self.database, self.config, self.clock, metrics=self.metrics)

        self.issuer = TokenIssuer(self.database, self.hasher, self.properties, self.config, self.clock)
        self.validator = TokenValidator(self.database, self.hasher, self.properties, self.config, self.clock)
        self.acceptor = TokenAcceptor(
            self.database, self.hasher, self.properties, self.linker, self.config, self.clock
        )
        self.revoker = TokenRevoker(self.database, self.properties, self.clock)
        self.cleaner = TokenCleaner(self.database, self.config, self.clock, metrics=self.metrics)
        self.cleanup_scheduler = CleanupScheduler(self.cleaner, self.config.cleanup_interval_seconds)

        # Calling-layer retries for transient storage failures (issue/validate only)
        self.retry_config = RetryConfig(
            max_attempts=self.config.transient_retry_attempts,
            base_delay=0.1,
            max_delay=1.0,
            exponential_base=2.0,
            jitter=True
        )

        self._setup_invite_routes()

        # Expose service instance via app state for introspection/testing
        self.app.state.invites_service = self

    async def on_startup(self):
        await self.database.start()
        self.cleanup_scheduler.start()

    async def on_shutdown(self):
        await self.cleanup_scheduler.stop()
        await self.database.stop()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check invites dependencies."""
        return {"database": "ok" if await self.database.ping() else "error"}

    async def _bounded(self, operation: str, func: Callable[..., Awaitable[Any]], *args,
                       retry: bool = False) -> Any:
        """Run ``func`` under the operation timeout, mapping storage failures to TransientStorageError."""

        async def _attempt():
            try:
                return await asyncio.wait_for(func(*args), timeout=self.config.operation_timeout_seconds)
            except asyncio.TimeoutError:
                self.logger.warning("Operation timed out", operation=operation)
                raise TransientStorageError("Operation timed out", details={"operation": operation})
            except TRANSIENT_DB_ERRORS as e:
                self.logger.error("Storage error", operation=operation, error_type=type(e).__name__)
                raise TransientStorageError(details={"operation": operation})

        with self.metrics.time_operation("invite_operation_duration_seconds", operation=operation):
            if retry:
                return await call_with_retry(
                    _attempt, exceptions=(TransientStorageError,), config=self.retry_config
                )
            return await _attempt()

    async def _enforce_rate_limit(self, request: Request, response: Response, operation: str,
                                  principal: Optional[Principal]) -> Dict[str, Any]:
        """Spend one unit of the caller's budget for ``operation``."""
        identity = caller_identity(request, principal.principal_id if principal else None)
        result = await self._bounded("rate_limit", self.rate_limiter.enforce, operation, identity)
        self._set_rate_limit_headers(response, result)
        return result

    def _set_rate_limit_headers(self, response: Response, rate_result: Dict[str, Any]) -> None:
        """Propagate rate limiting metadata via standard headers."""
        limit = rate_result.get("limit")
        remaining = rate_result.get("remaining")

        if limit is not None:
            response.headers["X-RateLimit-Limit"] = str(int(limit))
        if remaining is not None:
            response.headers["X-RateLimit-Remaining"] = str(int(remaining))

    async def _optional_principal(self, request: Request) -> Optional[Principal]:
        try:
            return await self.auth_middleware.authenticate_request(request)
        except AuthenticationError:
            # A stale session still gets the public preview, throttled by IP.
            return None

    def _setup_invite_routes(self):
        """Set up invite-specific routes."""

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": SERVICE_NAME,
                "message": "Property invites service",
                "version": "1.0.0"
            }

        @self.app.post("/invites", status_code=201, response_model=IssueInviteResponse)
        async def issue_invite(body: IssueInviteRequest, request: Request, response: Response):
            """Issue an invite token for a property the caller owns."""
            self.origin_guard.check_request(request)
            principal = await self.auth_middleware.require_principal(request)
            await self._enforce_rate_limit(request, response, "issue", principal)

            issued = await self._bounded(
                "issue", self.issuer.issue,
                body.property_id, principal.principal_id, body.max_uses, body.ttl_days,
                retry=True,
            )
            self.metrics.increment_counter("invites_issued_total")
            self.metrics.record_business_event("invite_issued")

            return IssueInviteResponse(
                token=issued.token,
                token_id=issued.token_id,
                property_id=issued.property_id,
                max_uses=issued.max_uses,
                expires_at=issued.expires_at,
            )

        @self.app.post("/invites/validate")
        async def validate_invite(body: InviteTokenRequest, request: Request, response: Response):
            """Preview the property behind a token without redeeming it."""
            self.origin_guard.check_request(request)
            principal = await self._optional_principal(request)
            rate_result = await self._enforce_rate_limit(request, response, "validate", principal)

            outcome = await self._bounded("validate", self.validator.validate, body.token, retry=True)
            self.metrics.increment_counter("invite_validations_total", outcome=outcome.reason)

            result = JSONResponse(content=outcome.to_response())
            self._set_rate_limit_headers(result, rate_result)
            return result

        @self.app.post("/invites/accept")
        async def accept_invite(body: InviteTokenRequest, request: Request, response: Response):
            """Redeem a token and link the caller to its property."""
            self.origin_guard.check_request(request)
            principal = await self.auth_middleware.require_principal(request)
            await self._enforce_rate_limit(request, response, "accept", principal)

            result = await self._bounded("accept", self.acceptor.accept, body.token, principal.principal_id)

            if result.success:
                outcome = "already_redeemed" if result.already_redeemed else "success"
                if not result.already_redeemed:
                    self.metrics.record_business_event("invite_accepted")
            else:
                outcome = result.error
            self.metrics.increment_counter("invite_accepts_total", outcome=outcome)

            return result.to_response()

        @self.app.post("/invites/{token_id}/revoke", response_model=RevokeInviteResponse)
        async def revoke_invite(token_id: str, request: Request, response: Response):
            """Revoke a token issued for a property the caller owns."""
            self.origin_guard.check_request(request)
            principal = await self.auth_middleware.require_principal(request)
            await self._enforce_rate_limit(request, response, "revoke", principal)

            changed = await self._bounded("revoke", self.revoker.revoke, token_id, principal.principal_id)
            if changed:
                self.metrics.increment_counter("invite_revocations_total")

            return RevokeInviteResponse(success=True)

        @self.app.get("/invites/properties/{property_id}/tokens", response_model=TokenListResponse)
        async def list_invites(property_id: str, request: Request, response: Response):
            """List the tokens issued for a property the caller owns."""
            self.origin_guard.check_request(request)
            principal = await self.auth_middleware.require_principal(request)
            await self._enforce_rate_limit(request, response, "issue", principal)

            summaries = await self._bounded(
                "list", self.issuer.list_tokens, property_id, principal.principal_id, retry=True
            )
            return TokenListResponse(
                property_id=property_id,
                tokens=[TokenSummaryResponse(**asdict(summary)) for summary in summaries],
            )


def create_app(config: Optional[ServiceConfig] = None, **dependencies) -> FastAPI:
    """Create FastAPI application."""
    service = InvitesService(config=config, **dependencies)
    return service.app


if __name__ == "__main__":
    service = InvitesService()
    service.run()

"""
Principal resolution for the Invites Service.
"""

from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from shared.errors import AuthenticationError
from shared.logging import get_logger, set_user_context
from ..adapters.auth_client import AuthClient


@dataclass(frozen=True)
class Principal:
    """Verified caller identity."""

    principal_id: str
    display_name: Optional[str] = None


class AuthMiddleware:
    """Turns a bearer credential into a :class:`Principal` via the Auth service."""

    def __init__(self, auth_client: AuthClient):
        self.auth_client = auth_client
        self.logger = get_logger("invites.auth_middleware")

    async def authenticate_request(self, request: Request) -> Optional[Principal]:
        """Return the caller's principal, or None when no credential was sent."""
        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return None

        if not auth_header.startswith("Bearer "):
            raise AuthenticationError("Invalid authorization header format")

        credential = auth_header[7:].strip()
        if not credential:
            raise AuthenticationError("Invalid authorization header format")

        auth_result = await self.auth_client.verify_token(credential)
        user_info = auth_result.get("user_info") or {}
        user_id = user_info.get("user_id")
        if not auth_result.get("valid") or not user_id:
            raise AuthenticationError("Invalid or expired session")

        principal = Principal(
            principal_id=str(user_id),
            display_name=user_info.get("name") or user_info.get("email"),
        )
        request.state.principal = principal
        set_user_context(principal.principal_id)

        self.logger.info("Request authenticated", user_id=principal.principal_id)
        return principal

    async def require_principal(self, request: Request) -> Principal:
        principal = await self.authenticate_request(request)
        if principal is None:
            raise AuthenticationError("Authorization header required")
        return principal

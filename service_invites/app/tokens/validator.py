"""
Read-only invite preview.

Every failure collapses to the same public payload. The specific reason is
kept on the outcome for metrics and logs only.
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select

from shared.config import BaseConfig
from shared.logging import get_logger
from ..adapters.properties import PropertyDirectory
from ..domain.clock import Clock
from ..persistence import Database, InviteToken
from .crypto import TokenHasher, parse_token

INVALID_RESPONSE: Dict[str, Any] = {"valid": False, "error": "invalid"}


@dataclass(frozen=True)
class PropertyPreview:
    name: str
    address: Optional[str]
    issuer_name: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "address": self.address, "issuer_name": self.issuer_name}


@dataclass(frozen=True)
class ValidationOutcome:
    preview: Optional[PropertyPreview]
    reason: str
    token_id: Optional[str] = None

    @property
    def valid(self) -> bool:
        return self.preview is not None

    def to_response(self) -> Dict[str, Any]:
        if self.preview is None:
            return dict(INVALID_RESPONSE)
        return {"valid": True, "property_preview": self.preview.to_dict()}


class TokenValidator:
    """Checks a presented token without changing any state."""

    def __init__(self, database: Database, hasher: TokenHasher, properties: PropertyDirectory,
                 config: BaseConfig, clock: Clock):
        self.database = database
        self.hasher = hasher
        self.properties = properties
        self.config = config
        self.clock = clock
        self.logger = get_logger("invites.tokens.validator")

    async def validate(self, token: str) -> ValidationOutcome:
        parsed = parse_token(token)
        now = self.clock.now()
        grace = timedelta(seconds=self.config.expiry_grace_seconds)

        async with self.database.session() as session:
            row = (await session.execute(
                select(InviteToken).where(InviteToken.selector == parsed.selector)
            )).scalar_one_or_none()

            if row is None:
                self.hasher.burn(parsed.verifier)
                return self._invalid("not_found")
            if not self.hasher.verify(parsed.verifier, row.salt, row.token_hash):
                return self._invalid("not_found")
            if row.revoked_at is not None:
                return self._invalid("revoked", row.id)
            if row.expires_at + grace <= now:
                return self._invalid("expired", row.id)
            if row.use_count >= row.max_uses:
                return self._invalid("exhausted", row.id)

            record = await self.properties.get_property(session, row.property_id)

        if record is None:
            return self._invalid("property_missing", row.id)

        self.logger.info("Invite previewed", token_id=row.id, property_id=row.property_id)
        return ValidationOutcome(
            preview=PropertyPreview(name=record.name, address=record.address, issuer_name=record.owner_name),
            reason="valid",
            token_id=row.id,
        )

    def _invalid(self, reason: str, token_id: Optional[str] = None) -> ValidationOutcome:
        self.logger.info("Invite preview rejected", reason=reason, token_id=token_id)
        return ValidationOutcome(preview=None, reason=reason, token_id=token_id)

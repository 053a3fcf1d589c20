"""
Invite token issuance and owner-facing listing.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from shared.config import BaseConfig
from shared.errors import PermissionDenied, ServiceError, ValidationError
from shared.logging import get_logger
from ..adapters.properties import PropertyDirectory
from ..domain.clock import Clock
from ..persistence import Database, InviteToken
from .crypto import TokenHasher

SELECTOR_ATTEMPTS = 3


@dataclass(frozen=True)
class IssuedToken:
    token: str
    token_id: str
    property_id: str
    max_uses: int
    expires_at: datetime

    def __repr__(self) -> str:
        return f"IssuedToken(token_id={self.token_id!r}, property_id={self.property_id!r})"


@dataclass(frozen=True)
class TokenSummary:
    token_id: str
    max_uses: int
    use_count: int
    uses_remaining: int
    expires_at: datetime
    revoked_at: Optional[datetime]
    created_at: datetime
    status: str


def token_status(token: InviteToken, now: datetime, grace: timedelta) -> str:
    """Lifecycle status of a token row as seen by its owner."""
    if token.revoked_at is not None:
        return "revoked"
    if token.expires_at + grace <= now:
        return "expired"
    if token.use_count >= token.max_uses:
        return "exhausted"
    return "active"


class TokenIssuer:
    """Creates invite tokens bound to a property and its owner."""

    def __init__(self, database: Database, hasher: TokenHasher, properties: PropertyDirectory,
                 config: BaseConfig, clock: Clock):
        self.database = database
        self.hasher = hasher
        self.properties = properties
        self.config = config
        self.clock = clock
        self.logger = get_logger("invites.tokens.issuer")

    def _clamp_max_uses(self, max_uses: Optional[int]) -> int:
        if max_uses is None:
            max_uses = self.config.invite_default_max_uses
        return max(1, min(int(max_uses), self.config.invite_max_uses_limit))

    def _check_ttl(self, ttl_days: Optional[int]) -> int:
        if ttl_days is None:
            return self.config.invite_default_ttl_days
        if not self.config.invite_min_ttl_days <= ttl_days <= self.config.invite_max_ttl_days:
            raise ValidationError(
                "ttl_days out of range",
                details={
                    "min_ttl_days": self.config.invite_min_ttl_days,
                    "max_ttl_days": self.config.invite_max_ttl_days,
                },
            )
        return ttl_days

    async def issue(self, property_id: str, issuer_id: str, max_uses: Optional[int] = None,
                    ttl_days: Optional[int] = None) -> IssuedToken:
        """Create a token for ``property_id``. The plaintext is returned once and never stored."""
        if not property_id:
            raise ValidationError("property_id is required")
        ttl_days = self._check_ttl(ttl_days)
        max_uses = self._clamp_max_uses(max_uses)

        async with self.database.session() as session:
            if not await self.properties.is_owner(session, property_id, issuer_id):
                self.logger.warning("Issue denied", property_id=property_id, principal_id=issuer_id)
                raise PermissionDenied("You do not own this property")

        now = self.clock.now()
        expires_at = now + timedelta(days=ttl_days)

        for attempt in range(1, SELECTOR_ATTEMPTS + 1):
            generated = self.hasher.generate()
            row = InviteToken(
                selector=generated.selector,
                token_hash=generated.token_hash,
                salt=generated.salt,
                property_id=property_id,
                issuer_id=issuer_id,
                max_uses=max_uses,
                use_count=0,
                expires_at=expires_at,
                created_at=now,
            )
            async with self.database.session() as session:
                session.add(row)
                try:
                    await session.commit()
                except IntegrityError:
                    await session.rollback()
                    self.logger.warning("Selector collision, regenerating", attempt=attempt)
                    continue

            self.logger.info(
                "Invite token issued",
                token_id=row.id,
                property_id=property_id,
                principal_id=issuer_id,
                max_uses=max_uses,
            )
            return IssuedToken(
                token=generated.plaintext,
                token_id=row.id,
                property_id=property_id,
                max_uses=max_uses,
                expires_at=expires_at,
            )

        raise ServiceError("Could not allocate a unique invite token")

    async def list_tokens(self, property_id: str, principal_id: str) -> List[TokenSummary]:
        """Summaries of every token issued for a property the caller owns."""
        now = self.clock.now()
        grace = timedelta(seconds=self.config.expiry_grace_seconds)

        async with self.database.session() as session:
            if not await self.properties.is_owner(session, property_id, principal_id):
                raise PermissionDenied("You do not own this property")
            rows = (await session.execute(
                select(InviteToken)
                .where(InviteToken.property_id == property_id)
                .order_by(InviteToken.created_at.desc())
            )).scalars().all()

        return [
            TokenSummary(
                token_id=row.id,
                max_uses=row.max_uses,
                use_count=row.use_count,
                uses_remaining=max(0, row.max_uses - row.use_count),
                expires_at=row.expires_at,
                revoked_at=row.revoked_at,
                created_at=row.created_at,
                status=token_status(row, now, grace),
            )
            for row in rows
        ]

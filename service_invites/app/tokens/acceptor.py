"""
Invite redemption.

The use counter is only ever advanced by one conditional UPDATE that
re-checks capacity, revocation and expiry in its WHERE clause. Storage
serializes those updates per row (row lock on PostgreSQL, the database
write lock on SQLite), so for a token with ``max_uses = N`` at most N
redemptions can commit regardless of how many run at once. Values read
before the UPDATE are only used to pick a friendlier error message.

The redemption record and the tenant link are written in the same
transaction as the increment. A principal that already redeemed the token
gets success again without another increment, which is what makes a
retried accept safe. Nothing in here retries on its own.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shared.config import BaseConfig
from shared.logging import get_logger
from ..adapters.properties import PropertyDirectory, PropertyLinker
from ..domain.clock import Clock
from ..persistence import Database, InviteToken, RedemptionRecord
from .crypto import ParsedToken, TokenHasher, parse_token

ERROR_INVALID = "invalid"
ERROR_EXPIRED = "expired"
ERROR_REVOKED = "revoked"
ERROR_MAX_USES_REACHED = "max_uses_reached"
ERROR_OWNER_CONFLICT = "owner_conflict"


@dataclass(frozen=True)
class AcceptResult:
    success: bool
    property_id: Optional[str] = None
    error: Optional[str] = None
    already_redeemed: bool = False
    token_id: Optional[str] = None

    def to_response(self) -> Dict[str, Any]:
        if self.success:
            return {"success": True, "property_id": self.property_id, "already_redeemed": self.already_redeemed}
        return {"success": False, "error": self.error}


class TokenAcceptor:
    """Redeems invite tokens for authenticated principals."""

    def __init__(self, database: Database, hasher: TokenHasher, properties: PropertyDirectory,
                 linker: PropertyLinker, config: BaseConfig, clock: Clock):
        self.database = database
        self.hasher = hasher
        self.properties = properties
        self.linker = linker
        self.config = config
        self.clock = clock
        self.logger = get_logger("invites.tokens.acceptor")

    async def accept(self, token: str, principal_id: str) -> AcceptResult:
        parsed = parse_token(token)
        now = self.clock.now()
        grace = timedelta(seconds=self.config.expiry_grace_seconds)

        async with self.database.session() as session:
            row = await self._lookup(session, parsed)
            if row is None:
                return self._rejected(ERROR_INVALID, principal_id)

            token_id = row.id
            property_id = row.property_id

            if row.revoked_at is not None:
                return self._rejected(ERROR_REVOKED, principal_id, token_id)

            if await self._has_redeemed(session, token_id, principal_id):
                return self._redeemed(token_id, property_id, principal_id, already_redeemed=True)

            if row.expires_at + grace <= now:
                return self._rejected(ERROR_EXPIRED, principal_id, token_id)

            record = await self.properties.get_property(session, property_id)
            if record is None:
                return self._rejected(ERROR_INVALID, principal_id, token_id)
            if record.owner_id == principal_id:
                return self._rejected(ERROR_OWNER_CONFLICT, principal_id, token_id)

            try:
                claimed = await self._claim(session, token_id, now, grace)
                if not claimed:
                    error = await self._classify_refusal(session, token_id, now, grace)
                    await session.rollback()
                    return self._rejected(error, principal_id, token_id)

                session.add(RedemptionRecord(
                    token_id=token_id,
                    principal_id=principal_id,
                    property_id=property_id,
                    redeemed_at=now,
                ))
                await session.flush()
                await self.linker.link(session, property_id, principal_id, now)
                await session.commit()
            except IntegrityError:
                # Same principal redeemed concurrently; its increment is the one that counts.
                await session.rollback()
                if await self._has_redeemed(session, token_id, principal_id):
                    return self._redeemed(token_id, property_id, principal_id, already_redeemed=True)
                raise

        return self._redeemed(token_id, property_id, principal_id, already_redeemed=False)

    async def _lookup(self, session: AsyncSession, parsed: ParsedToken) -> Optional[InviteToken]:
        row = (await session.execute(
            select(InviteToken).where(InviteToken.selector == parsed.selector)
        )).scalar_one_or_none()
        if row is None:
            self.hasher.burn(parsed.verifier)
            return None
        if not self.hasher.verify(parsed.verifier, row.salt, row.token_hash):
            return None
        return row

    async def _has_redeemed(self, session: AsyncSession, token_id: str, principal_id: str) -> bool:
        found = (await session.execute(
            select(RedemptionRecord.id).where(
                RedemptionRecord.token_id == token_id,
                RedemptionRecord.principal_id == principal_id,
            )
        )).first()
        return found is not None

    async def _claim(self, session: AsyncSession, token_id: str, now: datetime, grace: timedelta) -> bool:
        """Consume one use if the token can still be redeemed. Returns False when no row changed."""
        stmt = (
            update(InviteToken)
            .where(
                InviteToken.id == token_id,
                InviteToken.use_count < InviteToken.max_uses,
                InviteToken.revoked_at.is_(None),
                InviteToken.expires_at > now - grace,
            )
            .values(use_count=InviteToken.use_count + 1, last_used_at=now)
            .returning(InviteToken.use_count)
            .execution_options(synchronize_session=False)
        )
        return (await session.execute(stmt)).first() is not None

    async def _classify_refusal(self, session: AsyncSession, token_id: str, now: datetime,
                                grace: timedelta) -> str:
        """Explain a refused claim from the row as it is now."""
        current = (await session.execute(
            select(
                InviteToken.revoked_at,
                InviteToken.expires_at,
                InviteToken.use_count,
                InviteToken.max_uses,
            ).where(InviteToken.id == token_id)
        )).first()
        if current is None:
            return ERROR_INVALID
        if current.revoked_at is not None:
            return ERROR_REVOKED
        if current.expires_at + grace <= now:
            return ERROR_EXPIRED
        return ERROR_MAX_USES_REACHED

    def _redeemed(self, token_id: str, property_id: str, principal_id: str,
                  already_redeemed: bool) -> AcceptResult:
        self.logger.info(
            "Invite redeemed",
            token_id=token_id,
            property_id=property_id,
            principal_id=principal_id,
            already_redeemed=already_redeemed,
        )
        return AcceptResult(
            success=True,
            property_id=property_id,
            already_redeemed=already_redeemed,
            token_id=token_id,
        )

    def _rejected(self, error: str, principal_id: str, token_id: Optional[str] = None) -> AcceptResult:
        self.logger.info("Invite redemption refused", error_kind=error, token_id=token_id, principal_id=principal_id)
        return AcceptResult(success=False, error=error, token_id=token_id)

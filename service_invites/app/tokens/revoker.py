"""
Manual revocation and scheduled garbage collection of invite state.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import delete, or_, select, update

from shared.config import BaseConfig
from shared.errors import PermissionDenied
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..adapters.properties import PropertyDirectory
from ..domain.clock import Clock
from ..persistence import Database, InviteToken, RateLimitBucket, RedemptionRecord, TRANSIENT_DB_ERRORS


class TokenRevoker:
    """Owner-initiated revocation."""

    def __init__(self, database: Database, properties: PropertyDirectory, clock: Clock):
        self.database = database
        self.properties = properties
        self.clock = clock
        self.logger = get_logger("invites.tokens.revoker")

    async def revoke(self, token_id: str, principal_id: str) -> bool:
        """Revoke ``token_id`` if the caller owns its property.

        Returns True when this call set ``revoked_at`` and False when the
        token was already revoked. Unknown tokens are reported the same way
        as tokens the caller does not own.
        """
        now = self.clock.now()

        async with self.database.session() as session:
            row = (await session.execute(
                select(InviteToken.property_id).where(InviteToken.id == token_id)
            )).first()
            if row is None or not await self.properties.is_owner(session, row.property_id, principal_id):
                self.logger.warning("Revoke denied", token_id=token_id, principal_id=principal_id)
                raise PermissionDenied("You cannot revoke this invite")

            result = await session.execute(
                update(InviteToken)
                .where(InviteToken.id == token_id, InviteToken.revoked_at.is_(None))
                .values(revoked_at=now, revoked_by=principal_id)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        changed = result.rowcount > 0
        self.logger.info(
            "Invite revoked" if changed else "Invite already revoked",
            token_id=token_id,
            property_id=row.property_id,
            principal_id=principal_id,
        )
        return changed


@dataclass
class CleanupReport:
    tokens_deleted: int = 0
    redemptions_deleted: int = 0
    buckets_deleted: int = 0
    cleaned_at: Optional[datetime] = None

    @property
    def total(self) -> int:
        return self.tokens_deleted + self.redemptions_deleted + self.buckets_deleted


class TokenCleaner:
    """Deletes invite tokens and rate-limit buckets that are past retention."""

    def __init__(self, database: Database, config: BaseConfig, clock: Clock,
                 metrics: Optional[MetricsCollector] = None):
        self.database = database
        self.config = config
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("invites.tokens.cleaner")

    async def cleanup(self) -> CleanupReport:
        now = self.clock.now()
        expired_before = now - timedelta(days=self.config.token_retention_days)
        revoked_before = now - timedelta(days=self.config.revoked_retention_days)
        idle_before = now.timestamp() - self.config.rate_limit_idle_seconds

        stale = or_(
            InviteToken.expires_at < expired_before,
            InviteToken.revoked_at < revoked_before,
        )

        async with self.database.session() as session:
            stale_ids = select(InviteToken.id).where(stale).scalar_subquery()
            redemptions = await session.execute(
                delete(RedemptionRecord)
                .where(RedemptionRecord.token_id.in_(stale_ids))
                .execution_options(synchronize_session=False)
            )
            tokens = await session.execute(
                delete(InviteToken).where(stale).execution_options(synchronize_session=False)
            )
            buckets = await session.execute(
                delete(RateLimitBucket)
                .where(RateLimitBucket.last_refill < idle_before)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        report = CleanupReport(
            tokens_deleted=tokens.rowcount,
            redemptions_deleted=redemptions.rowcount,
            buckets_deleted=buckets.rowcount,
            cleaned_at=now,
        )

        if self.metrics:
            self.metrics.increment_counter("cleanup_deleted_total", report.tokens_deleted, kind="tokens")
            self.metrics.increment_counter("cleanup_deleted_total", report.redemptions_deleted, kind="redemptions")
            self.metrics.increment_counter("cleanup_deleted_total", report.buckets_deleted, kind="buckets")

        self.logger.info(
            "Cleanup finished",
            tokens_deleted=report.tokens_deleted,
            redemptions_deleted=report.redemptions_deleted,
            buckets_deleted=report.buckets_deleted,
        )
        return report


class CleanupScheduler:
    """Runs the cleaner on a fixed interval for the life of the service."""

    def __init__(self, cleaner: TokenCleaner, interval_seconds: float):
        self.cleaner = cleaner
        self.interval_seconds = interval_seconds
        self.logger = get_logger("invites.tokens.cleanup_scheduler")
        self._task: Optional[asyncio.Task] = None
        self.last_report: Optional[CleanupReport] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        if self.interval_seconds <= 0:
            self.logger.info("Cleanup scheduler disabled")
            return
        if self.running:
            return
        self._task = asyncio.create_task(self._run())
        self.logger.info("Cleanup scheduler started", interval_seconds=self.interval_seconds)

    async def stop(self):
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        self.logger.info("Cleanup scheduler stopped")

    async def _run(self):
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                self.last_report = await self.cleaner.cleanup()
            except asyncio.CancelledError:
                raise
            except TRANSIENT_DB_ERRORS as e:
                self.logger.warning("Scheduled cleanup failed, retrying next interval",
                                    error_type=type(e).__name__)
            except Exception as e:
                self.logger.error("Unexpected error in scheduled cleanup", error_type=type(e).__name__)

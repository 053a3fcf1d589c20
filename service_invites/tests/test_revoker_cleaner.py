"""
Unit tests for revocation, cleanup and the cleanup scheduler.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from shared.errors import PermissionDenied, ServiceError
from shared.metrics import MetricsCollector
from service_invites.app.persistence import RateLimitBucket, RedemptionRecord
from service_invites.app.tokens import CleanupReport, CleanupScheduler, TokenCleaner
from .conftest import OTHER_OWNER_ID, OWNER_ID, PROPERTY_ID, fetch_token, insert_bucket, insert_token


class TestTokenRevoker:
    """Test cases for TokenRevoker."""

    @pytest.mark.asyncio
    async def test_owner_revokes(self, issuer, revoker, database, clock):
        """Revocation records when and by whom."""
        issued = await issuer.issue(PROPERTY_ID, OWNER_ID)

        assert await revoker.revoke(issued.token_id, OWNER_ID) is True

        row = await fetch_token(database, issued.token_id)
        assert row.revoked_at == clock.now()
        assert row.revoked_by == OWNER_ID

    @pytest.mark.asyncio
    async def test_revoke_is_idempotent(self, issuer, revoker, database, clock):
        """A second revoke succeeds without moving revoked_at."""
        issued = await issuer.issue(PROPERTY_ID, OWNER_ID)
        await revoker.revoke(issued.token_id, OWNER_ID)
        first_revoked_at = clock.now()
        clock.advance(seconds=60)

        assert await revoker.revoke(issued.token_id, OWNER_ID) is False
        assert (await fetch_token(database, issued.token_id)).revoked_at == first_revoked_at

    @pytest.mark.asyncio
    async def test_non_owner_denied(self, issuer, revoker, database):
        """Only the property owner may revoke."""
        issued = await issuer.issue(PROPERTY_ID, OWNER_ID)

        with pytest.raises(PermissionDenied):
            await revoker.revoke(issued.token_id, OTHER_OWNER_ID)
        with pytest.raises(PermissionDenied):
            await revoker.revoke(issued.token_id, "tenant-a")

        assert (await fetch_token(database, issued.token_id)).revoked_at is None

    @pytest.mark.asyncio
    async def test_unknown_token_denied(self, revoker):
        """Unknown token ids look the same as foreign ones."""
        with pytest.raises(PermissionDenied):
            await revoker.revoke("00000000-0000-0000-0000-000000000000", OWNER_ID)


class TestTokenCleaner:
    """Test cases for TokenCleaner."""

    @pytest.mark.asyncio
    async def test_retention_boundaries(self, database, cleaner, clock):
        """Only rows past their retention window are deleted."""
        now = clock.now()
        recently_expired = await insert_token(database, expires_at=now - timedelta(days=6))
        long_expired = await insert_token(database, expires_at=now - timedelta(days=8), use_count=1)
        recently_revoked = await insert_token(database, revoked_at=now - timedelta(days=29))
        long_revoked = await insert_token(database, revoked_at=now - timedelta(days=31))
        live = await insert_token(database)

        async with database.session() as session:
            session.add(RedemptionRecord(
                token_id=long_expired.id, principal_id="tenant-a", property_id=PROPERTY_ID,
                redeemed_at=now - timedelta(days=9),
            ))
            await session.commit()

        await insert_bucket(database, "validate:ip:1.1.1.1", last_refill=now.timestamp() - 90_000)
        await insert_bucket(database, "validate:ip:2.2.2.2", last_refill=now.timestamp() - 60)

        report = await cleaner.cleanup()

        assert report.tokens_deleted == 2
        assert report.redemptions_deleted == 1
        assert report.buckets_deleted == 1
        assert report.total == 4
        assert report.cleaned_at == now

        assert await fetch_token(database, recently_expired.id) is not None
        assert await fetch_token(database, recently_revoked.id) is not None
        assert await fetch_token(database, live.id) is not None
        assert await fetch_token(database, long_expired.id) is None
        assert await fetch_token(database, long_revoked.id) is None

        async with database.session() as session:
            assert await session.get(RateLimitBucket, "validate:ip:1.1.1.1") is None
            assert await session.get(RateLimitBucket, "validate:ip:2.2.2.2") is not None

    @pytest.mark.asyncio
    async def test_cleanup_on_empty_store(self, cleaner):
        report = await cleaner.cleanup()

        assert report.total == 0

    @pytest.mark.asyncio
    async def test_cleanup_metrics(self, database, config, clock):
        """Deleted rows are counted per kind."""
        metrics = MetricsCollector("invites")
        cleaner = TokenCleaner(database, config, clock, metrics=metrics)
        await insert_token(database, expires_at=clock.now() - timedelta(days=30))

        await cleaner.cleanup()

        value = metrics.registry.get_sample_value("cleanup_deleted_total", {"kind": "tokens"})
        assert value == 1.0


class TestCleanupScheduler:
    """Test cases for CleanupScheduler."""

    @pytest.mark.asyncio
    async def test_disabled_with_zero_interval(self, cleaner):
        scheduler = CleanupScheduler(cleaner, 0)

        scheduler.start()

        assert scheduler.running is False
        await scheduler.stop()

    @pytest.mark.asyncio
    async def test_runs_periodically(self, database, cleaner, clock):
        """The scheduler runs cleanup on its interval until stopped."""
        expired = await insert_token(database, expires_at=clock.now() - timedelta(days=30))
        scheduler = CleanupScheduler(cleaner, 0.01)

        scheduler.start()
        for _ in range(200):
            if scheduler.last_report is not None:
                break
            await asyncio.sleep(0.01)
        await scheduler.stop()

        assert scheduler.last_report is not None
        assert scheduler.running is False
        assert await fetch_token(database, expired.id) is None

    @pytest.mark.asyncio
    async def test_keeps_running_after_unexpected_error(self):
        """A failed run is logged and the next interval still cleans up."""
        report = CleanupReport(tokens_deleted=2)
        cleaner = MagicMock()
        cleaner.cleanup = AsyncMock(side_effect=[ServiceError("Database not started"), report])
        scheduler = CleanupScheduler(cleaner, 0.01)

        scheduler.start()
        for _ in range(200):
            if scheduler.last_report is not None:
                break
            await asyncio.sleep(0.01)

        assert scheduler.running is True
        await scheduler.stop()

        assert scheduler.last_report is report
        assert cleaner.cleanup.await_count >= 2
        assert scheduler.running is False
